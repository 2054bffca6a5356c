"""
Tests for EntitlementCache and the active entitlement view.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from whitelist_engine.entitlements.cache import (
    ActiveEntitlement,
    EntitlementCache,
    compute_active_entitlements,
)
from whitelist_engine.entitlements.store import GrantStore

STEAM_A = "76561198000000001"
STEAM_B = "76561198000000002"


@pytest.fixture
def store(db_session, cache):
    return GrantStore(db_session, cache)


class TestComputeActiveEntitlements:

    def test_groups_by_steam_id(self, db_session, make_grant):
        now = datetime.now(timezone.utc)
        make_grant(steam_id=STEAM_A, duration_value=10, duration_type="days", granted_at=now - timedelta(days=15))
        make_grant(steam_id=STEAM_A, duration_value=10, duration_type="days", granted_at=now - timedelta(days=5))
        make_grant(steam_id=STEAM_B, duration_value=1, duration_type="days", granted_at=now - timedelta(days=30))

        entries = compute_active_entitlements(db_session, "whitelist")

        assert [e.steam_id for e in entries] == [STEAM_A]
        assert entries[0].group_name == "Member"
        assert entries[0].permanent is False

    def test_role_grant_names_group(self, db_session, make_grant):
        make_grant(steam_id=STEAM_A, source="role", kind="staff", role_name="SquadAdmin", discord_user_id="1")
        make_grant(steam_id=STEAM_A, kind="staff")

        entries = compute_active_entitlements(db_session, "staff")

        assert len(entries) == 1
        assert entries[0].group_name == "SquadAdmin"
        assert entries[0].source == "role"
        assert entries[0].permanent is True

    def test_grants_without_steam_id_skipped(self, db_session, make_grant):
        make_grant(discord_user_id="1", source="role", kind="staff", role_name="SquadAdmin")
        assert compute_active_entitlements(db_session, "staff") == []

    def test_blocked_grants_excluded(self, db_session, make_grant):
        make_grant(
            steam_id=STEAM_A, discord_user_id="1", source="role", kind="staff",
            role_name="SquadAdmin", approved=False, revoked=True, revoked_by="SECURITY_SYSTEM",
        )
        assert compute_active_entitlements(db_session, "staff") == []

    def test_entries_are_frozen(self):
        entry = ActiveEntitlement(
            steam_id=STEAM_A, group_name="Member", kind="whitelist", source="manual", permanent=True,
        )
        with pytest.raises(Exception):
            entry.group_name = "HeadAdmin"


class TestEntitlementCache:

    def test_hit_does_not_recompute(self, db_session, make_grant, cache):
        make_grant(steam_id=STEAM_A)

        with patch(
            "whitelist_engine.entitlements.cache.compute_active_entitlements",
            wraps=compute_active_entitlements,
        ) as compute:
            cache.get_active_entitlements(db_session, "whitelist")
            cache.get_active_entitlements(db_session, "whitelist")

        assert compute.call_count == 1

    def test_write_visible_after_store_write(self, db_session, store, cache):
        assert cache.get_active_entitlements(db_session, "whitelist") == []

        store.create_grant(source="manual", kind="whitelist", steam_id=STEAM_A)

        entries = cache.get_active_entitlements(db_session, "whitelist")
        assert [e.steam_id for e in entries] == [STEAM_A]

    def test_revoke_visible_immediately(self, db_session, store, cache):
        grant = store.create_grant(source="manual", kind="whitelist", steam_id=STEAM_A)
        assert len(cache.get_active_entitlements(db_session, "whitelist")) == 1

        store.revoke([grant], revoked_by="admin-1")

        assert cache.get_active_entitlements(db_session, "whitelist") == []

    def test_invalidate_drops_all_kinds(self, db_session, cache):
        cache.get_active_entitlements(db_session, "whitelist")
        cache.get_active_entitlements(db_session, "staff")

        assert cache.invalidate(reason="test") == 2
        assert cache.invalidate(reason="test") == 0

    def test_ttl_expiry_recomputes(self, db_session, make_grant):
        cache = EntitlementCache(ttl_seconds=1)
        cache.get_active_entitlements(db_session, "whitelist")

        # Written behind the cache's back, as another process would
        make_grant(steam_id=STEAM_A)
        assert cache.get_active_entitlements(db_session, "whitelist") == []

        stale = datetime.now(timezone.utc) - timedelta(seconds=5)
        cache._entries["whitelist"] = (cache._entries["whitelist"][0], stale)

        assert len(cache.get_active_entitlements(db_session, "whitelist")) == 1

    def test_returned_list_is_a_copy(self, db_session, make_grant, cache):
        make_grant(steam_id=STEAM_A)
        entries = cache.get_active_entitlements(db_session, "whitelist")
        entries.clear()
        assert len(cache.get_active_entitlements(db_session, "whitelist")) == 1
