"""
Root test configuration and fixtures.

Provides:
- db_engine / db_session: in-memory SQLite with SAVEPOINT support, one
  fresh database per test (the code under test commits)
- cache: a fresh EntitlementCache
- gateway: FakeGateway, an in-memory GuildGateway
- make_grant / make_role_config / make_link: row factories
- temp_config_dir / make_yaml_config: YAML config files
"""

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Generator, Iterable, List, Optional

import pytest
import yaml
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from whitelist_engine.database.session import build_engine
from whitelist_engine.db_base import Base
from whitelist_engine.entitlements.cache import EntitlementCache
from whitelist_engine.integrations.discord.exceptions import GatewayError, MemberNotFoundError
from whitelist_engine.integrations.discord.models import GuildSnapshot, MemberSnapshot
from whitelist_engine.models.account_link import AccountLink, PotentialLink
from whitelist_engine.models.grant import Grant
from whitelist_engine.models.role_config import RoleConfig

# Set test environment
os.environ.setdefault("ENV", "test")


@pytest.fixture(scope="session", autouse=True)
def _httpx_app_kwarg_patch():
    """
    Compatibility patch for httpx>=0.28 where Client(app=...) is not supported.

    Starlette's TestClient (used by FastAPI) passes app= into httpx.Client
    on older Starlette releases.
    """
    import httpx

    original_init = httpx.Client.__init__

    def patched_init(self, *args, **kwargs):
        kwargs.pop("app", None)
        return original_init(self, *args, **kwargs)

    httpx.Client.__init__ = patched_init
    try:
        yield
    finally:
        httpx.Client.__init__ = original_init


@pytest.fixture
def db_engine():
    """SQLite in-memory engine with every table created."""
    from whitelist_engine import models  # noqa: F401 - register models
    from whitelist_engine.platform import audit  # noqa: F401 - Audit log model

    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def cache() -> EntitlementCache:
    return EntitlementCache(ttl_seconds=300, default_group="Member")


# =============================================================================
# Fake Discord gateway
# =============================================================================


class FakeGateway:
    """
    In-memory GuildGateway.

    Members are MemberSnapshots keyed by user id. Set fail_members or
    fail_member_ids to simulate Discord failures.
    """

    def __init__(self, members: Iterable[MemberSnapshot] = ()):
        self.members: Dict[str, MemberSnapshot] = {m.user_id: m for m in members}
        self.fail_members = False
        self.fail_member_ids: set = set()
        self.fetch_members_calls = 0
        self.fetch_member_calls: List[str] = []

    def add(self, user_id: str, role_ids: Iterable[str] = (), is_bot: bool = False, username: Optional[str] = None):
        member = MemberSnapshot(
            user_id=str(user_id),
            role_ids=frozenset(str(r) for r in role_ids),
            is_bot=is_bot,
            display_name=username,
            username=username,
        )
        self.members[member.user_id] = member
        return member

    async def fetch_guild(self) -> GuildSnapshot:
        return GuildSnapshot(guild_id="1", name="Test Guild")

    async def fetch_members(self) -> List[MemberSnapshot]:
        self.fetch_members_calls += 1
        if self.fail_members:
            raise GatewayError("Discord unavailable", status_code=503)
        return list(self.members.values())

    async def fetch_member(self, user_id: str) -> MemberSnapshot:
        self.fetch_member_calls.append(str(user_id))
        if str(user_id) in self.fail_member_ids:
            raise GatewayError(f"Failed to fetch member {user_id}", status_code=503)
        member = self.members.get(str(user_id))
        if member is None:
            raise MemberNotFoundError(user_id)
        return member


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


# =============================================================================
# Row factories
# =============================================================================


@pytest.fixture
def make_grant(db_session):
    """
    Insert a grant row directly (bypassing GrantStore).

    Usage:
        grant = make_grant(steam_id="7656...", duration_value=1, duration_type="months")
    """
    def _make(**kwargs) -> Grant:
        values = {
            "source": "manual",
            "kind": "whitelist",
            "approved": True,
            "revoked": False,
            "granted_at": datetime.now(timezone.utc),
        }
        values.update(kwargs)
        grant = Grant(**values)
        db_session.add(grant)
        db_session.commit()
        return grant
    return _make


@pytest.fixture
def make_role_config(db_session):
    def _make(discord_role_id: str, group_name: str, permissions: str = "reserve", position: int = 0, **kwargs) -> RoleConfig:
        config = RoleConfig(
            discord_role_id=str(discord_role_id),
            group_name=group_name,
            permissions=permissions,
            discord_position=position,
            **kwargs,
        )
        db_session.add(config)
        db_session.commit()
        return config
    return _make


@pytest.fixture
def make_link(db_session):
    """Create a verified AccountLink (score 1.0) or a PotentialLink (score < 1.0)."""
    def _make(discord_user_id: str, steam_id: str, score: float = 1.0, source: str = "admin", **kwargs):
        model = AccountLink if score >= 1.0 else PotentialLink
        link = model(
            discord_user_id=str(discord_user_id),
            steam_id=steam_id,
            confidence_score=score,
            link_source=source,
            **kwargs,
        )
        db_session.add(link)
        db_session.commit()
        return link
    return _make


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
    config.addinivalue_line("markers", "slow: mark test as slow-running")


# =============================================================================
# Shared Config Fixtures
# =============================================================================


@pytest.fixture
def temp_config_dir():
    """Create a temporary directory for YAML config files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_yaml_config(temp_config_dir):
    """
    Factory fixture that writes a YAML config file and returns its path.

    Usage:
        config_path = make_yaml_config("squad_groups.yml", {"groups": {...}})
    """
    def _make(filename: str, config: dict) -> Path:
        config_path = temp_config_dir / filename
        with open(config_path, "w") as f:
            yaml.dump(config, f)
        return config_path
    return _make
