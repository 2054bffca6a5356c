"""
Tests for role configuration management and YAML seeding.

Test coverage:
- TestValidation: permission and group name validation
- TestCreate / TestUpdate / TestDelete: CRUD with sibling propagation
- TestGroupPermissions: export ordering
- TestSeedFromConfig: squad_groups.yml seeding
"""

import pytest

from whitelist_engine.config.squad_groups import (
    SquadGroupsLoader,
    get_squad_groups_loader,
    reset_squad_groups_loader,
)
from whitelist_engine.entitlements.errors import (
    ConfigurationError,
    DuplicateRoleConfigError,
    RoleConfigNotFoundError,
)
from whitelist_engine.models.role_config import RoleConfig
from whitelist_engine.platform.audit import AuditLog
from whitelist_engine.services.role_config_service import (
    RoleConfigService,
    normalize_permissions,
    validate_group_name,
)

ADMIN = "admin-1"


@pytest.fixture
def service(db_session):
    return RoleConfigService(db_session)


@pytest.fixture(autouse=True)
def _reset_loader():
    reset_squad_groups_loader()
    yield
    reset_squad_groups_loader()


def _permissions(db_session, discord_role_id):
    db_session.expire_all()
    return (
        db_session.query(RoleConfig)
        .filter(RoleConfig.discord_role_id == discord_role_id)
        .one()
        .permissions
    )


class TestValidation:

    def test_normalize_permissions(self):
        assert normalize_permissions([" Reserve", "kick", "reserve", ""]) == ["kick", "reserve"]

    def test_unknown_permission(self):
        with pytest.raises(ConfigurationError, match="fly"):
            normalize_permissions(["reserve", "fly"])

    @pytest.mark.parametrize("name", ["", "Head Admin", "Admin;DROP", "x" * 101, None])
    def test_invalid_group_name(self, name):
        with pytest.raises(ConfigurationError):
            validate_group_name(name)

    def test_valid_group_name(self):
        assert validate_group_name("Squad_Admin2") == "Squad_Admin2"


class TestCreate:

    def test_create(self, service, db_session):
        config = service.create(
            discord_role_id="1001",
            group_name="SquadAdmin",
            permissions=["reserve", "kick"],
            role_name="Squad Admin",
            discord_position=200,
            actor_id=ADMIN,
        )

        assert config.permissions == "kick,reserve"
        assert config.created_by == ADMIN
        audit = db_session.query(AuditLog).one()
        assert audit.action_type == "CONFIG_UPDATE"
        assert audit.details["operation"] == "create"

    def test_comma_string_permissions(self, service):
        config = service.create(discord_role_id="1001", group_name="Member", permissions="reserve")
        assert config.permission_list == ["reserve"]

    def test_duplicate_role(self, service, db_session):
        service.create(discord_role_id="1001", group_name="SquadAdmin", permissions=["reserve"])

        with pytest.raises(DuplicateRoleConfigError) as exc_info:
            service.create(discord_role_id="1001", group_name="Member", permissions=["reserve"])

        assert exc_info.value.existing_group == "SquadAdmin"
        assert db_session.query(RoleConfig).count() == 1

    def test_invalid_permission_writes_nothing(self, service, db_session):
        with pytest.raises(ConfigurationError):
            service.create(discord_role_id="1001", group_name="SquadAdmin", permissions=["teleport"])
        assert db_session.query(RoleConfig).count() == 0

    def test_new_sibling_inherits_group_permissions(self, service):
        service.create(discord_role_id="1001", group_name="SquadAdmin", permissions=["reserve", "kick"])
        sibling = service.create(discord_role_id="1002", group_name="SquadAdmin")
        assert sibling.permissions == "kick,reserve"

    def test_new_sibling_permissions_propagate(self, service, db_session):
        service.create(discord_role_id="1001", group_name="SquadAdmin", permissions=["reserve"])
        service.create(discord_role_id="1002", group_name="SquadAdmin", permissions=["reserve", "ban"])
        assert _permissions(db_session, "1001") == "ban,reserve"


class TestUpdate:

    def test_permissions_propagate_to_siblings(self, service, db_session):
        service.create(discord_role_id="1001", group_name="SquadAdmin", permissions=["reserve"])
        service.create(discord_role_id="1002", group_name="SquadAdmin")
        service.create(discord_role_id="2001", group_name="Member", permissions=["reserve"])

        service.update("1002", permissions=["reserve", "kick"], actor_id=ADMIN)

        assert _permissions(db_session, "1001") == "kick,reserve"
        assert _permissions(db_session, "1002") == "kick,reserve"
        assert _permissions(db_session, "2001") == "reserve"

    def test_move_into_existing_group_adopts_permissions(self, service):
        service.create(discord_role_id="1001", group_name="SquadAdmin", permissions=["reserve", "kick"])
        service.create(discord_role_id="2001", group_name="Member", permissions=["reserve"])

        moved = service.update("2001", group_name="SquadAdmin")

        assert moved.group_name == "SquadAdmin"
        assert moved.permissions == "kick,reserve"

    def test_invalid_update_leaves_row_untouched(self, service, db_session):
        service.create(discord_role_id="1001", group_name="SquadAdmin", permissions=["reserve"])

        with pytest.raises(ConfigurationError):
            service.update("1001", group_name="Moderator", permissions=["teleport"])

        db_session.expire_all()
        config = service.get("1001")
        assert config.group_name == "SquadAdmin"
        assert config.permissions == "reserve"

    def test_update_records_previous(self, service, db_session):
        service.create(discord_role_id="1001", group_name="SquadAdmin", permissions=["reserve"])
        service.update("1001", discord_position=250, actor_id=ADMIN)

        audits = db_session.query(AuditLog).filter(AuditLog.target_id == "1001").all()
        update = [a for a in audits if a.details["operation"] == "update"][0]
        assert update.details["previous"]["discord_position"] == 0
        assert update.details["discord_position"] == 250

    def test_update_unknown(self, service):
        with pytest.raises(RoleConfigNotFoundError):
            service.update("404", permissions=["reserve"])


class TestDelete:

    def test_delete(self, service, db_session):
        service.create(discord_role_id="1001", group_name="SquadAdmin", permissions=["reserve"])
        assert service.delete("1001", actor_id=ADMIN) == "1001"
        assert db_session.query(RoleConfig).count() == 0

    def test_delete_unknown(self, service):
        with pytest.raises(RoleConfigNotFoundError):
            service.delete("404")


class TestGroupPermissions:

    def test_ordered_by_highest_position(self, service):
        service.create(discord_role_id="1", group_name="Member", permissions=["reserve"], discord_position=10)
        service.create(discord_role_id="2", group_name="SquadAdmin", permissions=["kick"], discord_position=200)
        service.create(discord_role_id="3", group_name="Moderator", permissions=["chat"], discord_position=100)
        service.create(discord_role_id="4", group_name="Member", discord_position=250)

        assert service.group_permissions() == [
            ("Member", "reserve"),
            ("SquadAdmin", "kick"),
            ("Moderator", "chat"),
        ]

    def test_list_ordered_by_position(self, service):
        service.create(discord_role_id="1", group_name="Member", permissions=["reserve"], discord_position=10)
        service.create(discord_role_id="2", group_name="SquadAdmin", permissions=["kick"], discord_position=200)
        assert [c.discord_role_id for c in service.list()] == ["2", "1"]


class TestSeedFromConfig:

    CONFIG = {
        "default_group": "Member",
        "groups": {
            "SquadAdmin": {
                "permissions": "reserve,kick",
                "discord_roles": [
                    {"id": 1001, "name": "Squad Admin", "position": 200},
                    {"id": "1002", "name": "Trial Admin", "position": 190},
                ],
            },
            "Member": {
                "permissions": "reserve",
                "discord_roles": [{"id": "2001", "name": "Member", "position": 10}],
            },
        },
    }

    def test_seed_creates_missing(self, service, db_session, make_yaml_config):
        path = make_yaml_config("squad_groups.yml", self.CONFIG)
        loader = SquadGroupsLoader(str(path))

        created = service.seed_from_config(loader)

        assert sorted(created) == ["1001", "1002", "2001"]
        config = service.get("1001")
        assert config.group_name == "SquadAdmin"
        assert config.permissions == "kick,reserve"
        assert config.discord_position == 200
        assert config.created_by == "SYSTEM"

    def test_seed_is_idempotent(self, service, make_yaml_config):
        path = make_yaml_config("squad_groups.yml", self.CONFIG)
        loader = SquadGroupsLoader(str(path))

        service.seed_from_config(loader)
        assert service.seed_from_config(loader) == []

    def test_seed_keeps_existing_rows(self, service, make_yaml_config):
        service.create(discord_role_id="1001", group_name="HeadAdmin", permissions=["reserve"])
        path = make_yaml_config("squad_groups.yml", self.CONFIG)

        created = service.seed_from_config(SquadGroupsLoader(str(path)))

        assert "1001" not in created
        assert service.get("1001").group_name == "HeadAdmin"

    def test_loader_singleton_and_env_path(self, make_yaml_config, monkeypatch):
        path = make_yaml_config("groups.yml", self.CONFIG)
        monkeypatch.setenv("SQUAD_GROUPS_CONFIG", str(path))

        loader = get_squad_groups_loader()

        assert loader is get_squad_groups_loader()
        assert loader.default_group == "Member"
        assert [r.id for r in loader.get_group("SquadAdmin").discord_roles] == ["1001", "1002"]
        assert loader.get_group("Missing") is None

    def test_repository_config_parses(self, monkeypatch):
        monkeypatch.delenv("SQUAD_GROUPS_CONFIG", raising=False)
        loader = get_squad_groups_loader()
        names = [g.name for g in loader.get_groups()]
        assert "Member" in names
        assert loader.default_group == "Member"
