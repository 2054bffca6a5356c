"""
Admin role sync routes.

- POST /all: sync every guild member holding a tracked role
- POST /user/{discord_user_id}: sync one user
- POST /confidence/{discord_user_id}/upgrade: verify a link and upgrade
  the user's security-blocked role grant
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from whitelist_engine.api.dependencies.services import (
    get_actor_id,
    get_confidence_service,
    get_role_sync_engine,
)
from whitelist_engine.entitlements.errors import WhitelistEngineError
from whitelist_engine.integrations.discord.exceptions import GatewayError
from whitelist_engine.models.account_link import LinkSource
from whitelist_engine.services.confidence_service import ConfidenceService
from whitelist_engine.services.role_sync import RoleSyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/sync", tags=["admin-sync"])


class ConfidenceUpgradeRequest(BaseModel):
    steam_id: str = Field(..., description="SteamID64 to link", min_length=1, max_length=32)
    reason: Optional[str] = Field(None, max_length=1000)
    eos_id: Optional[str] = Field(None, max_length=64)
    username: Optional[str] = Field(None, max_length=255)


@router.post("/all")
async def sync_all(
    actor_id: str = Depends(get_actor_id),
    engine: RoleSyncEngine = Depends(get_role_sync_engine),
):
    """Full role sync; per-member failures are reported, not raised."""
    logger.info("Admin triggered full role sync", extra={"actor_id": actor_id})

    try:
        result = await engine.sync_all(actor_id=actor_id)
    except GatewayError as e:
        logger.error("Full role sync failed", extra={"error": e.message})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "gateway_error", "message": e.message},
        )
    return result.to_dict()


@router.post("/user/{discord_user_id}")
async def sync_user(
    discord_user_id: str,
    actor_id: str = Depends(get_actor_id),
    engine: RoleSyncEngine = Depends(get_role_sync_engine),
):
    """Sync one user; 404 when they are not in the guild, 502 on other Discord failures."""
    result = await engine.sync_user(discord_user_id, actor_id=actor_id)
    if result.error is not None:
        code = (
            status.HTTP_404_NOT_FOUND
            if result.status_code == 404
            else status.HTTP_502_BAD_GATEWAY
        )
        raise HTTPException(
            status_code=code,
            detail={"error": "gateway_error", "message": result.error},
        )
    return result.to_dict()


@router.post("/confidence/{discord_user_id}/upgrade")
async def upgrade_confidence(
    discord_user_id: str,
    upgrade_request: ConfidenceUpgradeRequest,
    actor_id: str = Depends(get_actor_id),
    service: ConfidenceService = Depends(get_confidence_service),
):
    """
    Set the user's link confidence to 1.0.

    The upgrade commits before the Discord re-sync runs; a failed re-sync
    is reported in sync_error.
    """
    logger.info("Admin upgrading link confidence", extra={
        "actor_id": actor_id,
        "discord_user_id": discord_user_id,
        "steam_id": upgrade_request.steam_id,
    })

    try:
        result = await service.upgrade_confidence(
            discord_user_id,
            upgrade_request.steam_id,
            actor_id=actor_id,
            reason=upgrade_request.reason,
            link_source=LinkSource.ADMIN.value,
            eos_id=upgrade_request.eos_id,
            username=upgrade_request.username,
        )
    except WhitelistEngineError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
    return result.to_dict()
