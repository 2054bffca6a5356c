"""
Grant store - the only component that writes grant rows.

Owns the grant lifecycle:
- create (with duration and metadata validation)
- revoke (single UPDATE per row)
- role grant correction (role_name/kind in place)
- security-block upgrade flip
- administrative purge

Every write invalidates the entitlement cache before returning, unless
the caller opened a batch() in which case the cache is invalidated once
when the outermost batch closes.

Role grant inserts run inside a SAVEPOINT; the partial unique index turns a
concurrent duplicate into GrantConflictError without disturbing the rest
of the caller's transaction.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whitelist_engine.entitlements.cache import EntitlementCache
from whitelist_engine.entitlements.errors import (
    GrantConflictError,
    GrantNotFoundError,
    InvalidDurationError,
    InvalidGrantError,
)
from whitelist_engine.entitlements.metadata import serialize_metadata
from whitelist_engine.models.base import utcnow
from whitelist_engine.models.grant import (
    SECURITY_SYSTEM_ACTOR,
    DurationType,
    Grant,
    GrantKind,
    GrantSource,
)

logger = logging.getLogger(__name__)

_VALID_SOURCES = {s.value for s in GrantSource}
_VALID_KINDS = {k.value for k in GrantKind}
_VALID_DURATION_TYPES = {d.value for d in DurationType}


def validate_duration(duration_value: Optional[int], duration_type: Optional[str]) -> None:
    """
    Reject malformed duration pairs.

    Both None means permanent; otherwise the value must be a non-negative
    integer and the unit days or months.
    """
    if duration_value is None and duration_type is None:
        return
    if duration_value is None or duration_type is None:
        raise InvalidDurationError(
            "duration_value and duration_type must both be set or both be empty"
        )
    if isinstance(duration_value, bool) or not isinstance(duration_value, int) or duration_value < 0:
        raise InvalidDurationError(
            f"duration_value must be a non-negative integer, got {duration_value!r}"
        )
    if duration_type not in _VALID_DURATION_TYPES:
        raise InvalidDurationError(
            f"duration_type must be one of {sorted(_VALID_DURATION_TYPES)}, got {duration_type!r}"
        )


class GrantStore:
    """Repository for grant rows with cache invalidation on every write."""

    def __init__(self, db_session: Session, cache: Optional[EntitlementCache] = None):
        self.db = db_session
        self.cache = cache
        self._batch_depth = 0
        self._batch_dirty = False
        self._batch_reason: Optional[str] = None

    # ------------------------------------------------------------------
    # Cache invalidation
    # ------------------------------------------------------------------

    def _invalidate(self, reason: str) -> None:
        if self.cache is None:
            return
        if self._batch_depth:
            self._batch_dirty = True
            return
        self.cache.invalidate(reason=reason)

    @contextmanager
    def batch(self, reason: str) -> Iterator[None]:
        """Collapse invalidations inside the block into one at the end."""
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._batch_dirty:
                self._batch_dirty = False
                if self.cache is not None:
                    self.cache.invalidate(reason=reason)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, grant_id: str) -> Grant:
        grant = self.db.query(Grant).filter(Grant.id == grant_id).first()
        if grant is None:
            raise GrantNotFoundError(f"Grant {grant_id} not found")
        return grant

    def list_for_subject(
        self,
        steam_id: Optional[str] = None,
        discord_user_id: Optional[str] = None,
    ) -> List[Grant]:
        if not steam_id and not discord_user_id:
            raise InvalidGrantError("steam_id or discord_user_id is required")
        query = self.db.query(Grant)
        if steam_id:
            query = query.filter(Grant.steam_id == steam_id)
        if discord_user_id:
            query = query.filter(Grant.discord_user_id == str(discord_user_id))
        return query.order_by(Grant.granted_at.asc()).all()

    def get_active_role_grant(self, discord_user_id: str) -> Optional[Grant]:
        return (
            self.db.query(Grant)
            .filter(
                Grant.discord_user_id == str(discord_user_id),
                Grant.source == GrantSource.ROLE.value,
                Grant.revoked.is_(False),
            )
            .first()
        )

    def get_security_blocked_role_grants(self, discord_user_id: str) -> List[Grant]:
        """Security-blocked role grants for a user, newest first."""
        return (
            self.db.query(Grant)
            .filter(
                Grant.discord_user_id == str(discord_user_id),
                Grant.source == GrantSource.ROLE.value,
                Grant.approved.is_(False),
                Grant.revoked.is_(True),
                Grant.revoked_by == SECURITY_SYSTEM_ACTOR,
            )
            .order_by(Grant.granted_at.desc(), Grant.created_at.desc())
            .all()
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_grant(
        self,
        *,
        source: str,
        kind: str,
        steam_id: Optional[str] = None,
        discord_user_id: Optional[str] = None,
        eos_id: Optional[str] = None,
        username: Optional[str] = None,
        discord_username: Optional[str] = None,
        duration_value: Optional[int] = None,
        duration_type: Optional[str] = None,
        granted_by: Optional[str] = None,
        granted_at: Optional[datetime] = None,
        approved: bool = True,
        revoked: bool = False,
        revoked_by: Optional[str] = None,
        revoked_reason: Optional[str] = None,
        role_name: Optional[str] = None,
        metadata=None,
        commit: bool = True,
    ) -> Grant:
        """
        Insert a grant row.

        Raises:
            InvalidGrantError: Unknown source/kind or no subject identifier
            InvalidDurationError: Malformed duration pair
            MetadataTooLargeError: Serialized metadata over the size limit
            GrantConflictError: An active role grant already exists for the user
        """
        if source not in _VALID_SOURCES:
            raise InvalidGrantError(f"Unknown grant source: {source!r}")
        if kind not in _VALID_KINDS:
            raise InvalidGrantError(f"Unknown grant kind: {kind!r}")
        if not steam_id and not discord_user_id:
            raise InvalidGrantError("A grant needs a steam_id or discord_user_id")
        if source == GrantSource.ROLE.value and not discord_user_id:
            raise InvalidGrantError("Role grants need a discord_user_id")
        validate_duration(duration_value, duration_type)

        now = utcnow()
        grant = Grant(
            source=source,
            kind=kind,
            steam_id=steam_id,
            discord_user_id=str(discord_user_id) if discord_user_id else None,
            eos_id=eos_id,
            username=username,
            discord_username=discord_username,
            duration_value=duration_value,
            duration_type=duration_type,
            granted_by=granted_by,
            granted_at=granted_at or now,
            approved=approved,
            revoked=revoked,
            revoked_by=revoked_by,
            revoked_reason=revoked_reason,
            revoked_at=now if revoked else None,
            role_name=role_name,
            metadata_json=serialize_metadata(metadata),
        )

        try:
            with self.db.begin_nested():
                self.db.add(grant)
        except IntegrityError:
            logger.info(
                "Grant insert rejected by unique constraint",
                extra={"discord_user_id": discord_user_id, "source": source},
            )
            raise GrantConflictError(str(discord_user_id))

        if commit:
            self.db.commit()

        logger.info(
            "Grant created",
            extra={
                "grant_id": grant.id,
                "source": source,
                "kind": kind,
                "steam_id": steam_id,
                "discord_user_id": discord_user_id,
                "approved": approved,
                "revoked": revoked,
            },
        )
        self._invalidate(f"grant_created:{grant.id}")
        return grant

    def revoke(
        self,
        grants: List[Grant],
        revoked_by: str,
        reason: Optional[str] = None,
        commit: bool = True,
    ) -> List[Grant]:
        """Revoke the given grants; already revoked rows are skipped."""
        now = utcnow()
        changed = []
        for grant in grants:
            if grant.revoked:
                continue
            grant.revoked = True
            grant.revoked_by = revoked_by
            grant.revoked_reason = reason
            grant.revoked_at = now
            changed.append(grant)

        if not changed:
            return changed

        self.db.flush()
        if commit:
            self.db.commit()

        logger.info(
            "Grants revoked",
            extra={"grant_ids": [g.id for g in changed], "revoked_by": revoked_by},
        )
        self._invalidate("grants_revoked")
        return changed

    def update_role_grant(
        self,
        grant: Grant,
        *,
        role_name: str,
        kind: str,
        metadata=None,
        commit: bool = True,
    ) -> Grant:
        """Correct the group (and kind) of a role grant in place."""
        if kind not in _VALID_KINDS:
            raise InvalidGrantError(f"Unknown grant kind: {kind!r}")
        metadata_json = serialize_metadata(metadata) if metadata is not None else grant.metadata_json

        grant.role_name = role_name
        grant.kind = kind
        grant.metadata_json = metadata_json
        self.db.flush()
        if commit:
            self.db.commit()

        self._invalidate(f"role_grant_updated:{grant.id}")
        return grant

    def approve_blocked(
        self,
        grant: Grant,
        *,
        steam_id: Optional[str],
        metadata=None,
        eos_id: Optional[str] = None,
        username: Optional[str] = None,
        commit: bool = True,
    ) -> Grant:
        """
        Flip a security-blocked role grant to approved/non-revoked.

        No-op for grants that are not security-blocked.

        Raises:
            GrantConflictError: Another active role grant already exists
        """
        if not grant.is_security_blocked:
            return grant

        metadata_json = serialize_metadata(metadata) if metadata is not None else grant.metadata_json
        try:
            with self.db.begin_nested():
                grant.approved = True
                grant.revoked = False
                grant.revoked_by = None
                grant.revoked_reason = None
                grant.revoked_at = None
                if steam_id:
                    grant.steam_id = steam_id
                if eos_id and not grant.eos_id:
                    grant.eos_id = eos_id
                if username and not grant.username:
                    grant.username = username
                grant.metadata_json = metadata_json
        except IntegrityError:
            raise GrantConflictError(grant.discord_user_id)

        if commit:
            self.db.commit()

        self._invalidate(f"grant_upgraded:{grant.id}")
        return grant

    def purge(self, grant: Grant, commit: bool = True) -> dict:
        """Hard-delete a grant. Returns a snapshot of the deleted row."""
        snapshot = {
            "grant_id": grant.id,
            "source": grant.source,
            "kind": grant.kind,
            "steam_id": grant.steam_id,
            "discord_user_id": grant.discord_user_id,
            "role_name": grant.role_name,
            "approved": grant.approved,
            "revoked": grant.revoked,
        }
        self.db.delete(grant)
        self.db.flush()
        if commit:
            self.db.commit()

        logger.warning("Grant purged", extra=snapshot)
        self._invalidate(f"grant_purged:{snapshot['grant_id']}")
        return snapshot
