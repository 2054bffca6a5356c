"""
Tests for the database bootstrap scripts.
"""

import pytest
from sqlalchemy import inspect

from scripts.init_db import get_database_url, init_database
from scripts.seed_role_configs import seed_role_configs
from whitelist_engine.config.squad_groups import reset_squad_groups_loader
from whitelist_engine.database.session import build_engine

CONFIG = {
    "default_group": "Member",
    "groups": {
        "SquadAdmin": {
            "permissions": "reserve,kick",
            "discord_roles": [{"id": "1001", "name": "Squad Admin", "position": 200}],
        },
        "Member": {
            "permissions": "reserve",
            "discord_roles": [{"id": "2001", "name": "Member", "position": 10}],
        },
    },
}


@pytest.fixture(autouse=True)
def _reset_loader():
    reset_squad_groups_loader()
    yield
    reset_squad_groups_loader()


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'whitelist.db'}"


class TestInitDb:

    def test_creates_tables(self, database_url):
        init_database(database_url)

        tables = set(inspect(build_engine(database_url)).get_table_names())
        assert {"whitelist_grants", "account_links", "potential_links", "role_configs", "audit_logs"} <= tables

    def test_database_url_normalized(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db:5432/whitelist")
        assert get_database_url() == "postgresql://u:p@db:5432/whitelist"

    def test_database_url_required(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValueError):
            get_database_url()


class TestSeedRoleConfigs:

    def test_dry_run_then_seed(self, database_url, make_yaml_config):
        init_database(database_url)
        path = make_yaml_config("squad_groups.yml", CONFIG)

        assert seed_role_configs(database_url, config_path=str(path), dry_run=True) == 2
        assert seed_role_configs(database_url, config_path=str(path)) == 2
        assert seed_role_configs(database_url, config_path=str(path)) == 0
