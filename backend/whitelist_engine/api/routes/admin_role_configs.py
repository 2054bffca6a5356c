"""
Admin role configuration routes.

Create, update and delete schedule a background sync of the members
holding the affected Discord role. The background task opens its own
session; the request session is closed once the response is sent.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, field_validator

from whitelist_engine.api.dependencies.services import (
    build_role_sync_engine,
    get_actor_id,
    get_app_settings,
    get_entitlement_cache,
    get_guild_gateway,
    get_role_config_service,
    get_sync_session_factory,
)
from whitelist_engine.entitlements.errors import WhitelistEngineError
from whitelist_engine.models.role_config import RoleConfig
from whitelist_engine.services.role_config_service import RoleConfigService
from whitelist_engine.integrations.discord.exceptions import GatewayError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/role-configs", tags=["admin-role-configs"])


# Request/Response models

class CreateRoleConfigRequest(BaseModel):
    """Request to track a Discord role."""
    discord_role_id: str = Field(..., description="Discord role snowflake", min_length=1, max_length=32)
    group_name: str = Field(..., description="Game-server group (e.g. 'SquadAdmin')", min_length=1, max_length=100)
    permissions: List[str] = Field(default_factory=list, description="Permission tokens")
    role_name: Optional[str] = Field(None, description="Discord role display name", max_length=100)
    discord_position: int = Field(0, description="Discord role hierarchy position", ge=0)

    @field_validator("discord_role_id")
    @classmethod
    def validate_role_id(cls, v: str) -> str:
        if not v.isdigit():
            raise ValueError("discord_role_id must be numeric")
        return v


class UpdateRoleConfigRequest(BaseModel):
    group_name: Optional[str] = Field(None, min_length=1, max_length=100)
    permissions: Optional[List[str]] = None
    role_name: Optional[str] = Field(None, max_length=100)
    discord_position: Optional[int] = Field(None, ge=0)


class RoleConfigResponse(BaseModel):
    id: str
    discord_role_id: str
    role_name: Optional[str]
    group_name: str
    permissions: List[str]
    discord_position: int
    created_by: Optional[str]
    updated_by: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]


class RoleConfigListResponse(BaseModel):
    role_configs: List[RoleConfigResponse]
    total: int


def _config_response(config: RoleConfig) -> RoleConfigResponse:
    return RoleConfigResponse(
        id=config.id,
        discord_role_id=config.discord_role_id,
        role_name=config.role_name,
        group_name=config.group_name,
        permissions=config.permission_list,
        discord_position=config.discord_position,
        created_by=config.created_by,
        updated_by=config.updated_by,
        created_at=config.created_at.isoformat() if config.created_at else None,
        updated_at=config.updated_at.isoformat() if config.updated_at else None,
    )


async def run_role_sync(request: Request, discord_role_id: str, actor_id: str) -> None:
    """Background task: re-sync members holding the role."""
    gateway = get_guild_gateway(request)
    if gateway is None:
        logger.warning(
            "Skipping role sync, Discord gateway not configured",
            extra={"discord_role_id": discord_role_id},
        )
        return

    session = get_sync_session_factory(request)()
    try:
        engine = build_role_sync_engine(
            session,
            gateway,
            get_entitlement_cache(request),
            get_app_settings(request),
        )
        result = await engine.sync_role(discord_role_id, actor_id=actor_id)
        logger.info(
            "Role config sync complete",
            extra={"discord_role_id": discord_role_id, **result.to_dict()},
        )
    except GatewayError as e:
        logger.error(
            "Role config sync failed",
            extra={"discord_role_id": discord_role_id, "error": e.message},
        )
    finally:
        session.close()


# Routes

@router.get("", response_model=RoleConfigListResponse)
async def list_role_configs(service: RoleConfigService = Depends(get_role_config_service)):
    configs = service.list()
    return RoleConfigListResponse(
        role_configs=[_config_response(c) for c in configs],
        total=len(configs),
    )


@router.get("/{discord_role_id}", response_model=RoleConfigResponse)
async def get_role_config(
    discord_role_id: str,
    service: RoleConfigService = Depends(get_role_config_service),
):
    try:
        return _config_response(service.get(discord_role_id))
    except WhitelistEngineError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("", response_model=RoleConfigResponse, status_code=status.HTTP_201_CREATED)
async def create_role_config(
    request: Request,
    config_request: CreateRoleConfigRequest,
    background_tasks: BackgroundTasks,
    actor_id: str = Depends(get_actor_id),
    service: RoleConfigService = Depends(get_role_config_service),
):
    """
    Track a Discord role.

    Members holding the role are synced in the background.
    """
    logger.info("Admin creating role config", extra={
        "actor_id": actor_id,
        "discord_role_id": config_request.discord_role_id,
        "group_name": config_request.group_name,
    })

    try:
        config = service.create(
            discord_role_id=config_request.discord_role_id,
            group_name=config_request.group_name,
            permissions=config_request.permissions,
            role_name=config_request.role_name,
            discord_position=config_request.discord_position,
            actor_id=actor_id,
        )
    except WhitelistEngineError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())

    background_tasks.add_task(run_role_sync, request, config.discord_role_id, actor_id)
    return _config_response(config)


@router.put("/{discord_role_id}", response_model=RoleConfigResponse)
async def update_role_config(
    request: Request,
    discord_role_id: str,
    config_request: UpdateRoleConfigRequest,
    background_tasks: BackgroundTasks,
    actor_id: str = Depends(get_actor_id),
    service: RoleConfigService = Depends(get_role_config_service),
):
    try:
        config = service.update(
            discord_role_id,
            group_name=config_request.group_name,
            permissions=config_request.permissions,
            role_name=config_request.role_name,
            discord_position=config_request.discord_position,
            actor_id=actor_id,
        )
    except WhitelistEngineError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())

    background_tasks.add_task(run_role_sync, request, config.discord_role_id, actor_id)
    return _config_response(config)


@router.delete("/{discord_role_id}")
async def delete_role_config(
    request: Request,
    discord_role_id: str,
    background_tasks: BackgroundTasks,
    actor_id: str = Depends(get_actor_id),
    service: RoleConfigService = Depends(get_role_config_service),
):
    """
    Stop tracking a role.

    Grants are not revoked; members are re-resolved against the remaining
    tracked roles.
    """
    try:
        deleted_id = service.delete(discord_role_id, actor_id=actor_id)
    except WhitelistEngineError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())

    background_tasks.add_task(run_role_sync, request, deleted_id, actor_id)
    return {"deleted": True, "discord_role_id": deleted_id}
