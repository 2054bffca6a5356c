"""
Shared FastAPI dependencies.

Application-scoped objects (entitlement cache, Discord gateway, session
factory) live on app.state and are created in the lifespan; tests set
them directly.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session, sessionmaker

from whitelist_engine.config.settings import Settings, get_settings
from whitelist_engine.database.session import get_db_session, get_session_factory
from whitelist_engine.entitlements.cache import EntitlementCache
from whitelist_engine.entitlements.service import EntitlementService
from whitelist_engine.integrations.discord.gateway import GuildGateway
from whitelist_engine.services.confidence_service import ConfidenceService
from whitelist_engine.services.role_config_service import RoleConfigService
from whitelist_engine.services.role_sync import RoleSyncEngine
from whitelist_engine.services.whitelist_export import WhitelistExporter

logger = logging.getLogger(__name__)


def get_actor_id(x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id")) -> str:
    """Acting admin for audit records, taken from the X-Actor-Id header."""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header required",
        )
    return x_actor_id.strip()


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_entitlement_cache(request: Request) -> EntitlementCache:
    cache = getattr(request.app.state, "entitlement_cache", None)
    if cache is None:
        settings = get_app_settings(request)
        cache = EntitlementCache(
            ttl_seconds=settings.cache_ttl_seconds,
            default_group=settings.default_whitelist_group,
        )
        request.app.state.entitlement_cache = cache
    return cache


def get_guild_gateway(request: Request) -> Optional[GuildGateway]:
    return getattr(request.app.state, "guild_gateway", None)


def get_sync_session_factory(request: Request) -> sessionmaker:
    """Session factory for work that outlives the request (background tasks)."""
    return getattr(request.app.state, "session_factory", None) or get_session_factory()


def get_entitlement_service(
    db_session: Session = Depends(get_db_session),
    cache: EntitlementCache = Depends(get_entitlement_cache),
) -> EntitlementService:
    return EntitlementService(db_session, cache)


def get_role_config_service(db_session: Session = Depends(get_db_session)) -> RoleConfigService:
    return RoleConfigService(db_session)


def build_role_sync_engine(
    db_session: Session,
    gateway: Optional[GuildGateway],
    cache: Optional[EntitlementCache],
    settings: Settings,
) -> RoleSyncEngine:
    return RoleSyncEngine(
        db_session,
        gateway,
        cache=cache,
        member_groups=settings.member_groups,
        member_timeout_seconds=settings.member_timeout_seconds,
        confidence_threshold=settings.confidence_threshold,
    )


def get_role_sync_engine(
    request: Request,
    db_session: Session = Depends(get_db_session),
    cache: EntitlementCache = Depends(get_entitlement_cache),
) -> RoleSyncEngine:
    gateway = get_guild_gateway(request)
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Discord gateway not configured",
        )
    return build_role_sync_engine(db_session, gateway, cache, get_app_settings(request))


def get_confidence_service(
    request: Request,
    db_session: Session = Depends(get_db_session),
    cache: EntitlementCache = Depends(get_entitlement_cache),
) -> ConfidenceService:
    gateway = get_guild_gateway(request)
    engine = None
    if gateway is not None:
        engine = build_role_sync_engine(db_session, gateway, cache, get_app_settings(request))
    return ConfidenceService(db_session, sync_engine=engine, cache=cache)


def get_whitelist_exporter(
    request: Request,
    db_session: Session = Depends(get_db_session),
    cache: EntitlementCache = Depends(get_entitlement_cache),
) -> WhitelistExporter:
    settings = get_app_settings(request)
    return WhitelistExporter(
        db_session,
        cache,
        default_group=settings.default_whitelist_group,
        prefer_eos_id=settings.prefer_eos_id,
    )
