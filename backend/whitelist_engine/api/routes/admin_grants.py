"""
Admin grant routes.

Manual grants, revocation, extension, status lookup and purge. The acting
admin is taken from the X-Actor-Id header and recorded in the audit log.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from whitelist_engine.api.dependencies.services import get_actor_id, get_entitlement_service
from whitelist_engine.entitlements.errors import WhitelistEngineError
from whitelist_engine.entitlements.metadata import ManualMetadata
from whitelist_engine.entitlements.service import EntitlementService
from whitelist_engine.models.grant import DurationType, GrantKind, GrantSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/grants", tags=["admin-grants"])


# Request/Response models

class CreateGrantRequest(BaseModel):
    """Request to grant whitelist or staff access."""
    steam_id: str = Field(..., description="SteamID64", min_length=1, max_length=32)
    kind: str = Field(GrantKind.WHITELIST.value, description="whitelist or staff")
    source: str = Field(GrantSource.MANUAL.value, description="manual, donation or import")
    duration_value: Optional[int] = Field(None, description="Duration amount; omit for permanent", ge=0)
    duration_type: Optional[str] = Field(None, description="days or months; omit for permanent")
    discord_user_id: Optional[str] = Field(None, max_length=32)
    eos_id: Optional[str] = Field(None, max_length=64)
    username: Optional[str] = Field(None, max_length=255)
    discord_username: Optional[str] = Field(None, max_length=255)
    reason: Optional[str] = Field(None, max_length=1000)
    note: Optional[str] = Field(None, max_length=4000)

    @field_validator("steam_id")
    @classmethod
    def validate_steam_id(cls, v: str) -> str:
        v = v.strip()
        if not v.isdigit():
            raise ValueError("steam_id must be numeric")
        return v

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str) -> str:
        if v == GrantSource.ROLE.value:
            raise ValueError("Role grants are managed by role synchronization")
        return v

    @model_validator(mode="after")
    def validate_duration_pair(self):
        if (self.duration_value is None) != (self.duration_type is None):
            raise ValueError("duration_value and duration_type must be given together")
        return self


class RevokeRequest(BaseModel):
    """Revoke by steam id (non-role grants) or discord user id (role grant)."""
    steam_id: Optional[str] = Field(None, max_length=32)
    discord_user_id: Optional[str] = Field(None, max_length=32)
    reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def validate_subject(self):
        if not self.steam_id and not self.discord_user_id:
            raise ValueError("steam_id or discord_user_id is required")
        return self


class ExtendRequest(BaseModel):
    steam_id: str = Field(..., min_length=1, max_length=32)
    duration_value: int = Field(..., gt=0)
    duration_type: str = Field(DurationType.MONTHS.value)
    reason: Optional[str] = Field(None, max_length=1000)


class GrantResponse(BaseModel):
    id: str
    steam_id: Optional[str]
    discord_user_id: Optional[str]
    source: str
    kind: str
    duration_value: Optional[int]
    duration_type: Optional[str]
    granted_at: Optional[str]
    granted_by: Optional[str]
    approved: bool
    revoked: bool
    revoked_reason: Optional[str] = None
    role_name: Optional[str] = None


class RevokeResponse(BaseModel):
    revoked: int
    grant_ids: List[str]


def _grant_response(grant) -> GrantResponse:
    return GrantResponse(
        id=grant.id,
        steam_id=grant.steam_id,
        discord_user_id=grant.discord_user_id,
        source=grant.source,
        kind=grant.kind,
        duration_value=grant.duration_value,
        duration_type=grant.duration_type,
        granted_at=grant.granted_at.isoformat() if grant.granted_at else None,
        granted_by=grant.granted_by,
        approved=grant.approved,
        revoked=grant.revoked,
        revoked_reason=grant.revoked_reason,
        role_name=grant.role_name,
    )


def _http_error(e: WhitelistEngineError) -> HTTPException:
    return HTTPException(status_code=e.http_status, detail=e.to_dict())


# Routes

@router.post("", response_model=GrantResponse, status_code=status.HTTP_201_CREATED)
async def create_grant(
    grant_request: CreateGrantRequest,
    actor_id: str = Depends(get_actor_id),
    service: EntitlementService = Depends(get_entitlement_service),
):
    """Create a manual (or donation/import) grant."""
    logger.info("Admin creating grant", extra={
        "actor_id": actor_id,
        "steam_id": grant_request.steam_id,
        "kind": grant_request.kind,
    })

    try:
        grant = service.grant(
            steam_id=grant_request.steam_id,
            actor_id=actor_id,
            source=grant_request.source,
            kind=grant_request.kind,
            duration_value=grant_request.duration_value,
            duration_type=grant_request.duration_type,
            discord_user_id=grant_request.discord_user_id,
            eos_id=grant_request.eos_id,
            username=grant_request.username,
            discord_username=grant_request.discord_username,
            metadata=ManualMetadata(reason=grant_request.reason, note=grant_request.note),
        )
    except WhitelistEngineError as e:
        raise _http_error(e)

    return _grant_response(grant)


@router.post("/revoke", response_model=RevokeResponse)
async def revoke_grants(
    revoke_request: RevokeRequest,
    actor_id: str = Depends(get_actor_id),
    service: EntitlementService = Depends(get_entitlement_service),
):
    """
    Revoke access.

    With steam_id, every active non-role grant of that player is revoked.
    With discord_user_id, the user's active role grant is revoked.
    """
    logger.info("Admin revoking grants", extra={
        "actor_id": actor_id,
        "steam_id": revoke_request.steam_id,
        "discord_user_id": revoke_request.discord_user_id,
    })

    try:
        if revoke_request.steam_id:
            revoked = service.revoke(revoke_request.steam_id, actor_id, revoke_request.reason)
        else:
            revoked = [service.revoke_role_grant(
                revoke_request.discord_user_id, actor_id, revoke_request.reason
            )]
    except WhitelistEngineError as e:
        raise _http_error(e)

    return RevokeResponse(revoked=len(revoked), grant_ids=[g.id for g in revoked])


@router.post("/extend", response_model=GrantResponse, status_code=status.HTTP_201_CREATED)
async def extend_grant(
    extend_request: ExtendRequest,
    actor_id: str = Depends(get_actor_id),
    service: EntitlementService = Depends(get_entitlement_service),
):
    try:
        grant = service.extend(
            extend_request.steam_id,
            extend_request.duration_value,
            extend_request.duration_type,
            actor_id,
            extend_request.reason,
        )
    except WhitelistEngineError as e:
        raise _http_error(e)

    return _grant_response(grant)


@router.get("/status")
async def grant_status(
    steam_id: Optional[str] = Query(None, description="SteamID64"),
    discord_user_id: Optional[str] = Query(None, description="Discord user id"),
    service: EntitlementService = Depends(get_entitlement_service),
) -> Dict[str, Any]:
    """Resolved whitelist status with the grants it was computed from."""
    try:
        subject = service.get_status(steam_id=steam_id, discord_user_id=discord_user_id)
    except WhitelistEngineError as e:
        raise _http_error(e)
    return subject.to_dict()


@router.delete("/{grant_id}")
async def purge_grant(
    grant_id: str,
    actor_id: str = Depends(get_actor_id),
    service: EntitlementService = Depends(get_entitlement_service),
) -> Dict[str, Any]:
    """Permanently delete a grant row (audited)."""
    logger.warning("Admin purging grant", extra={"actor_id": actor_id, "grant_id": grant_id})

    try:
        snapshot = service.purge(grant_id, actor_id)
    except WhitelistEngineError as e:
        raise _http_error(e)
    return {"deleted": True, **snapshot}
