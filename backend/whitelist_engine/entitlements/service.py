"""
Entitlement service - grant/revoke/extend contract for non-role sources.

Manual admin grants, donation webhooks and bulk imports all go through
this service; role-derived grants are written only by the role sync
engine (services.role_sync).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from dateutil.parser import isoparse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whitelist_engine.entitlements.cache import EntitlementCache
from whitelist_engine.entitlements.errors import (
    GrantNotFoundError,
    InvalidDurationError,
    InvalidGrantError,
    WhitelistEngineError,
)
from whitelist_engine.entitlements.metadata import (
    DonationMetadata,
    ExtensionMetadata,
    ImportMetadata,
    ManualMetadata,
    parse_metadata,
)
from whitelist_engine.entitlements.status import (
    WhitelistStatus,
    individual_expiration,
    resolve_status,
)
from whitelist_engine.entitlements.store import GrantStore
from whitelist_engine.models.grant import Grant, GrantKind, GrantSource
from whitelist_engine.services import audit_logger

logger = logging.getLogger(__name__)

DONATION_ACTOR = "DONATION_WEBHOOK"


@dataclass
class SubjectStatus:
    """Resolved status plus the grants it was computed from."""

    status: WhitelistStatus
    grants: List[Grant]

    def to_dict(self) -> dict:
        return {
            **self.status.to_dict(),
            "grants": [_grant_summary(g) for g in self.grants],
        }


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def _grant_summary(grant: Grant) -> dict:
    try:
        expires = individual_expiration(grant)
    except ValueError:
        expires = None
    metadata = parse_metadata(grant.metadata_json)
    return {
        "id": grant.id,
        "source": grant.source,
        "kind": grant.kind,
        "steam_id": grant.steam_id,
        "discord_user_id": grant.discord_user_id,
        "role_name": grant.role_name,
        "duration_value": grant.duration_value,
        "duration_type": grant.duration_type,
        "granted_at": grant.granted_at.isoformat() if grant.granted_at else None,
        "granted_by": grant.granted_by,
        "approved": grant.approved,
        "revoked": grant.revoked,
        "revoked_reason": grant.revoked_reason,
        "individual_expires_at": expires.isoformat() if expires else None,
        "metadata": metadata.model_dump(mode="json") if metadata else None,
    }


def parse_granted_at(value: Any) -> Optional[datetime]:
    """
    Accept a datetime or an ISO 8601 string; naive values are taken as UTC.

    Raises:
        InvalidGrantError: Anything else, or an unparseable string
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = isoparse(value.strip())
        except ValueError:
            raise InvalidGrantError(f"Invalid granted_at: {value!r}")
    if not isinstance(value, datetime):
        raise InvalidGrantError(f"Invalid granted_at: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class EntitlementService:
    """
    Grant lifecycle for manual, donation and import sources.

    Single-subject operations raise on failure; bulk import aggregates
    per-row failures into an ImportResult.
    """

    def __init__(
        self,
        db_session: Session,
        cache: Optional[EntitlementCache] = None,
        store: Optional[GrantStore] = None,
    ):
        self.db = db_session
        self.store = store or GrantStore(db_session, cache)

    def grant(
        self,
        *,
        steam_id: str,
        actor_id: Optional[str],
        source: str = GrantSource.MANUAL.value,
        kind: str = GrantKind.WHITELIST.value,
        duration_value: Optional[int] = None,
        duration_type: Optional[str] = None,
        discord_user_id: Optional[str] = None,
        eos_id: Optional[str] = None,
        username: Optional[str] = None,
        discord_username: Optional[str] = None,
        granted_at: Optional[datetime] = None,
        metadata=None,
    ) -> Grant:
        """
        Create a non-role grant.

        Raises:
            InvalidGrantError: Role source or missing steam id
            InvalidDurationError: Malformed duration
            MetadataTooLargeError: Metadata over the size limit
        """
        if source == GrantSource.ROLE.value:
            raise InvalidGrantError("Role grants are managed by role synchronization")
        if not steam_id:
            raise InvalidGrantError("steam_id is required")

        grant = self.store.create_grant(
            source=source,
            kind=kind,
            steam_id=steam_id,
            discord_user_id=discord_user_id,
            eos_id=eos_id,
            username=username,
            discord_username=discord_username,
            duration_value=duration_value,
            duration_type=duration_type,
            granted_by=actor_id,
            granted_at=granted_at,
            metadata=metadata if metadata is not None else ManualMetadata(),
        )
        audit_logger.emit_grant_created(self.db, grant, actor_id)
        return grant

    def revoke(self, steam_id: str, actor_id: str, reason: Optional[str] = None) -> List[Grant]:
        """
        Revoke every active non-role grant of a steam id.

        Role grants are revoked through revoke_role_grant.

        Raises:
            GrantNotFoundError: Nothing to revoke
        """
        grants = (
            self.db.query(Grant)
            .filter(
                Grant.steam_id == steam_id,
                Grant.source != GrantSource.ROLE.value,
                Grant.approved.is_(True),
                Grant.revoked.is_(False),
            )
            .all()
        )
        if not grants:
            raise GrantNotFoundError(f"No active grants to revoke for {steam_id}")

        revoked = self.store.revoke(grants, revoked_by=actor_id, reason=reason)
        audit_logger.emit_grant_revoked(self.db, revoked, actor_id, reason)
        return revoked

    def revoke_role_grant(self, discord_user_id: str, actor_id: str, reason: Optional[str] = None) -> Grant:
        """
        Explicitly revoke a user's active role grant.

        Losing a Discord role never revokes access by itself; this is the
        only way a role grant is taken away.
        """
        grant = self.store.get_active_role_grant(discord_user_id)
        if grant is None:
            raise GrantNotFoundError(f"No active role grant for Discord user {discord_user_id}")
        self.store.revoke([grant], revoked_by=actor_id, reason=reason)
        audit_logger.emit_grant_revoked(self.db, [grant], actor_id, reason)
        return grant

    def extend(
        self,
        steam_id: str,
        duration_value: int,
        duration_type: str,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> Grant:
        """
        Extend a subject's whitelist by appending a stacked grant.

        Raises:
            GrantNotFoundError: The subject has no grant to extend
            InvalidDurationError: Non-positive or malformed duration
        """
        if isinstance(duration_value, bool) or not isinstance(duration_value, int) or duration_value <= 0:
            raise InvalidDurationError("Extension duration must be a positive integer")

        existing = (
            self.db.query(Grant)
            .filter(
                Grant.steam_id == steam_id,
                Grant.approved.is_(True),
                Grant.revoked.is_(False),
            )
            .order_by(Grant.granted_at.desc())
            .first()
        )
        if existing is None:
            raise GrantNotFoundError(f"No whitelist found to extend for {steam_id}")

        grant = self.store.create_grant(
            source=GrantSource.MANUAL.value,
            kind=GrantKind.WHITELIST.value,
            steam_id=steam_id,
            discord_user_id=existing.discord_user_id,
            eos_id=existing.eos_id,
            username=existing.username,
            discord_username=existing.discord_username,
            duration_value=duration_value,
            duration_type=duration_type,
            granted_by=actor_id,
            metadata=ExtensionMetadata(reason=reason),
        )
        audit_logger.emit_grant_extended(self.db, grant, actor_id, reason)
        return grant

    def get_status(
        self,
        steam_id: Optional[str] = None,
        discord_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SubjectStatus:
        grants = self.store.list_for_subject(steam_id=steam_id, discord_user_id=discord_user_id)
        return SubjectStatus(status=resolve_status(grants, now=now), grants=grants)

    def record_donation(
        self,
        *,
        steam_id: str,
        transaction_id: str,
        duration_value: int,
        duration_type: str,
        platform: Optional[str] = None,
        amount: Optional[float] = None,
        currency: Optional[str] = None,
        username: Optional[str] = None,
        discord_user_id: Optional[str] = None,
    ) -> Grant:
        return self.grant(
            steam_id=steam_id,
            actor_id=DONATION_ACTOR,
            source=GrantSource.DONATION.value,
            duration_value=duration_value,
            duration_type=duration_type,
            username=username,
            discord_user_id=discord_user_id,
            metadata=DonationMetadata(
                transaction_id=transaction_id,
                platform=platform,
                amount=amount,
                currency=currency,
            ),
        )

    def import_grants(
        self,
        rows: Iterable[Dict[str, Any]],
        actor_id: str,
        batch_id: str,
        original_source: Optional[str] = None,
    ) -> ImportResult:
        """
        Bulk import whitelist rows.

        Each row needs steam_id and may carry username, eos_id,
        duration_value, duration_type and granted_at (a datetime or an ISO 8601
        string). Rows already imported
        (same steam id and granted_at) are skipped; invalid rows are
        reported in the result rather than raised.
        """
        result = ImportResult()

        with self.store.batch(reason=f"import:{batch_id}"):
            for row_number, row in enumerate(rows, start=1):
                steam_id = (row.get("steam_id") or "").strip()
                if not steam_id:
                    result.errors.append({"row": row_number, "error": "steam_id is required"})
                    continue

                try:
                    granted_at = parse_granted_at(row.get("granted_at"))
                except InvalidGrantError as e:
                    result.errors.append({"row": row_number, "steam_id": steam_id, "error": e.message})
                    continue

                if granted_at is not None and self._already_imported(steam_id, granted_at):
                    result.skipped += 1
                    continue

                try:
                    grant = self.store.create_grant(
                        source=GrantSource.IMPORT.value,
                        kind=row.get("kind") or GrantKind.WHITELIST.value,
                        steam_id=steam_id,
                        eos_id=row.get("eos_id"),
                        username=row.get("username"),
                        discord_user_id=row.get("discord_user_id"),
                        duration_value=row.get("duration_value"),
                        duration_type=row.get("duration_type"),
                        granted_at=granted_at,
                        granted_by=actor_id,
                        metadata=ImportMetadata(
                            import_batch=batch_id,
                            original_source=original_source,
                            row_number=row_number,
                        ),
                    )
                except WhitelistEngineError as e:
                    result.errors.append({"row": row_number, "steam_id": steam_id, "error": e.message})
                    continue
                except SQLAlchemyError as e:
                    self.db.rollback()
                    logger.warning(
                        "Import row rejected by database",
                        extra={"batch_id": batch_id, "row": row_number, "error": str(e)},
                    )
                    result.errors.append({"row": row_number, "steam_id": steam_id, "error": "Database rejected row"})
                    continue

                audit_logger.emit_grant_created(self.db, grant, actor_id)
                result.imported += 1

        logger.info(
            "Whitelist import complete",
            extra={"batch_id": batch_id, **result.to_dict(), "errors": len(result.errors)},
        )
        return result

    def _already_imported(self, steam_id: str, granted_at: datetime) -> bool:
        return (
            self.db.query(Grant.id)
            .filter(
                Grant.steam_id == steam_id,
                Grant.source == GrantSource.IMPORT.value,
                Grant.granted_at == granted_at,
            )
            .first()
            is not None
        )

    def purge(self, grant_id: str, actor_id: str) -> dict:
        grant = self.store.get(grant_id)
        snapshot = self.store.purge(grant)
        audit_logger.emit_grant_purged(self.db, snapshot, actor_id)
        return snapshot
