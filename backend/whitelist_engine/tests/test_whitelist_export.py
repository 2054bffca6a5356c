"""
Tests for the game-server whitelist export.

Test coverage:
- TestFormatAdminLine: line format and EOS preference
- TestSections: section membership and de-duplication
- TestRender: standalone sections and the combined file
"""

from datetime import datetime, timezone

import pytest

from whitelist_engine.entitlements.cache import ActiveEntitlement
from whitelist_engine.services.whitelist_export import (
    NO_ENTRIES,
    WhitelistExporter,
    format_admin_line,
)

STAFF_STEAM = "76561198000000001"
MEMBER_STEAM = "76561198000000002"
GENERAL_STEAM = "76561198000000003"

RULE = "//////////////////////////////////\n"


@pytest.fixture
def exporter(db_session, cache):
    return WhitelistExporter(db_session, cache, default_group="Member")


@pytest.fixture
def populated(make_role_config, make_grant):
    make_role_config("1002", "SquadAdmin", "kick,reserve", position=200)
    make_role_config("1003", "Member", "reserve", position=10)

    make_grant(
        steam_id=STAFF_STEAM, discord_user_id="1", source="role", kind="staff",
        role_name="SquadAdmin", username="alice", discord_username="alice_d",
    )
    # Also on the general list; shown only once, under staff
    make_grant(steam_id=STAFF_STEAM, username="alice", duration_value=1, duration_type="months")
    make_grant(
        steam_id=MEMBER_STEAM, discord_user_id="2", source="role", kind="whitelist", role_name="Member",
    )
    make_grant(steam_id=GENERAL_STEAM, source="donation", username="carol", duration_value=1, duration_type="months")


def _entry(**kwargs):
    values = dict(steam_id=STAFF_STEAM, group_name="Member", kind="whitelist", source="manual", permanent=True)
    values.update(kwargs)
    return ActiveEntitlement(**values)


class TestFormatAdminLine:

    def test_bare(self):
        assert format_admin_line(_entry(), "Member") == f"Admin={STAFF_STEAM}:Member\n"

    def test_names(self):
        line = format_admin_line(_entry(username="alice", discord_username="alice_d"), "SquadAdmin")
        assert line == f"Admin={STAFF_STEAM}:SquadAdmin // alice alice_d\n"

    def test_discord_name_only(self):
        line = format_admin_line(_entry(discord_username="alice_d"), "Member")
        assert line == f"Admin={STAFF_STEAM}:Member //  alice_d\n"

    def test_prefer_eos_id(self):
        entry = _entry(eos_id="0002abcdef")
        assert format_admin_line(entry, "Member", prefer_eos_id=True) == "Admin=0002abcdef:Member\n"
        assert format_admin_line(entry, "Member") == f"Admin={STAFF_STEAM}:Member\n"

    def test_prefer_eos_id_falls_back_to_steam(self):
        assert format_admin_line(_entry(), "Member", prefer_eos_id=True) == f"Admin={STAFF_STEAM}:Member\n"


class TestSections:

    def test_sections(self, exporter, populated):
        sections = exporter.sections()

        assert [e.steam_id for e in sections.staff] == [STAFF_STEAM]
        assert [e.steam_id for e in sections.members] == [MEMBER_STEAM]
        assert [e.steam_id for e in sections.general] == [GENERAL_STEAM]

    def test_group_definitions_ordered(self, exporter, populated):
        assert list(exporter.group_definitions().items()) == [
            ("SquadAdmin", "kick,reserve"),
            ("Member", "reserve"),
        ]

    def test_default_group_added_when_unconfigured(self, exporter):
        assert exporter.group_definitions() == {"Member": "reserve"}


class TestRender:

    def test_empty_sections(self, exporter):
        assert exporter.render_staff() == NO_ENTRIES
        assert exporter.render_members() == NO_ENTRIES
        assert exporter.render_general() == NO_ENTRIES

    def test_render_staff(self, exporter, populated):
        assert exporter.render_staff() == (
            "Group=SquadAdmin:kick,reserve\n"
            f"Admin={STAFF_STEAM}:SquadAdmin // alice alice_d\n"
        )

    def test_render_members(self, exporter, populated):
        assert exporter.render_members() == (
            "Group=Member:reserve\n"
            f"Admin={MEMBER_STEAM}:Member\n"
        )

    def test_render_general_uses_default_group(self, exporter, populated):
        assert exporter.render_general() == (
            "Group=Member:reserve\n"
            f"Admin={GENERAL_STEAM}:Member // carol\n"
        )

    def test_render_combined(self, exporter, populated):
        now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

        text = exporter.render_combined(now=now)

        assert text == (
            RULE
            + "// Comprehensive Squad Whitelist\n"
            + f"// Generated: {now.isoformat()}\n"
            + RULE
            + "\n"
            + "// Group Definitions\n"
            + "Group=SquadAdmin:kick,reserve\n"
            + "Group=Member:reserve\n"
            + "\n"
            + "// Staff (Role-based + Database)\n"
            + f"Admin={STAFF_STEAM}:SquadAdmin // alice alice_d\n"
            + "\n"
            + "// Members (Role-based)\n"
            + f"Admin={MEMBER_STEAM}:Member\n"
            + "\n"
            + "// General Whitelist (Database)\n"
            + f"Admin={GENERAL_STEAM}:Member // carol\n"
            + "\n"
            + RULE
            + "// End of Whitelist\n"
            + RULE
        )

    def test_revoked_subject_disappears(self, exporter, populated, db_session):
        from whitelist_engine.entitlements.service import EntitlementService

        assert GENERAL_STEAM in exporter.render_general()

        EntitlementService(db_session, exporter.cache).revoke(GENERAL_STEAM, "admin-1")

        assert exporter.render_general() == NO_ENTRIES

    def test_blocked_role_grant_not_exported(self, exporter, make_grant):
        make_grant(
            steam_id=STAFF_STEAM, discord_user_id="1", source="role", kind="staff", role_name="SquadAdmin",
            approved=False, revoked=True, revoked_by="SECURITY_SYSTEM",
        )
        assert exporter.render_staff() == NO_ENTRIES
