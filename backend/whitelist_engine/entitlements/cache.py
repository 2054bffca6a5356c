"""
Entitlement Cache - process-local cache of the active entitlement set.

Provides:
- ActiveEntitlement: immutable snapshot of one exportable subject
- EntitlementCache: per-kind cache with explicit invalidation
- compute_active_entitlements: the derived view the cache stores

The cache is a derived view, never a source of truth: every miss
recomputes from the grant table via resolve_status. Every write path
that changes approval, revocation or role name MUST call invalidate()
before reporting success. A bounded TTL is kept as a safety net for
writes made by other processes (e.g. the role sync worker).
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from whitelist_engine.entitlements.status import resolve_status
from whitelist_engine.models.base import ensure_tz_aware
from whitelist_engine.models.grant import Grant, GrantSource

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300  # 5 minutes


@dataclass(frozen=True)
class ActiveEntitlement:
    """One subject currently entitled to a game-server group."""

    steam_id: str
    group_name: str
    kind: str
    source: str
    permanent: bool
    expires_at: Optional[datetime] = None
    eos_id: Optional[str] = None
    username: Optional[str] = None
    discord_username: Optional[str] = None
    discord_user_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat() if self.expires_at else None
        return data


def _representative(grants: List[Grant]) -> Grant:
    """Pick the grant that names the subject's group: role grants first, then newest."""
    role_grants = [g for g in grants if g.source == GrantSource.ROLE.value and g.role_name]
    if role_grants:
        return role_grants[0]
    return max(grants, key=lambda g: (ensure_tz_aware(g.granted_at), g.id))


def compute_active_entitlements(
    db: Session,
    kind: str,
    default_group: str = "Member",
    now: Optional[datetime] = None,
) -> List[ActiveEntitlement]:
    """
    Recompute the active entitlement set for one kind.

    Grants are grouped by steam id; grants without one cannot be exported
    and are skipped.
    """
    grants = (
        db.query(Grant)
        .filter(
            Grant.kind == kind,
            Grant.revoked.is_(False),
            Grant.approved.is_(True),
            Grant.steam_id.isnot(None),
        )
        .order_by(Grant.granted_at.asc())
        .all()
    )

    by_subject: Dict[str, List[Grant]] = defaultdict(list)
    for grant in grants:
        by_subject[grant.steam_id].append(grant)

    active: List[ActiveEntitlement] = []
    for steam_id, subject_grants in by_subject.items():
        status = resolve_status(subject_grants, now=now)
        if not status.active:
            continue
        rep = _representative(subject_grants)
        active.append(ActiveEntitlement(
            steam_id=steam_id,
            group_name=rep.role_name if rep.source == GrantSource.ROLE.value and rep.role_name else default_group,
            kind=kind,
            source=rep.source,
            permanent=status.permanent,
            expires_at=status.expires_at,
            eos_id=next((g.eos_id for g in subject_grants if g.eos_id), None),
            username=next((g.username for g in reversed(subject_grants) if g.username), None),
            discord_username=next(
                (g.discord_username for g in reversed(subject_grants) if g.discord_username), None
            ),
            discord_user_id=next((g.discord_user_id for g in subject_grants if g.discord_user_id), None),
        ))

    active.sort(key=lambda e: (e.group_name, e.steam_id))
    return active


class EntitlementCache:
    """
    Caching layer for the active entitlement set.

    Usage:
        cache = EntitlementCache()

        entries = cache.get_active_entitlements(db, "staff")

        # After any grant write
        cache.invalidate(reason="grant_revoked")
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        default_group: str = "Member",
    ):
        self._ttl_seconds = ttl_seconds
        self._default_group = default_group
        self._entries: Dict[str, Tuple[List[ActiveEntitlement], datetime]] = {}
        self._lock = Lock()
        self._invalidations = 0

    @property
    def invalidation_count(self) -> int:
        return self._invalidations

    def _is_fresh(self, cached_at: datetime) -> bool:
        if self._ttl_seconds <= 0:
            return True
        age = (datetime.now(timezone.utc) - cached_at).total_seconds()
        return age <= self._ttl_seconds

    def get_active_entitlements(self, db: Session, kind: str) -> List[ActiveEntitlement]:
        """
        Get the active entitlements of a kind, recomputing on a miss.

        Args:
            db: Database session used for recomputation
            kind: Grant kind ("staff" or "whitelist")
        """
        with self._lock:
            hit = self._entries.get(kind)
            if hit is not None and self._is_fresh(hit[1]):
                logger.debug("Entitlement cache hit", extra={"kind": kind})
                return list(hit[0])

        entries = compute_active_entitlements(db, kind, default_group=self._default_group)

        with self._lock:
            self._entries[kind] = (entries, datetime.now(timezone.utc))

        logger.debug(
            "Entitlement cache recomputed",
            extra={"kind": kind, "count": len(entries)},
        )
        return list(entries)

    def invalidate(self, reason: Optional[str] = None) -> int:
        """
        Drop every cached kind.

        Must be called synchronously after every entitlement write.

        Returns:
            Number of cached kinds dropped
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._invalidations += 1

        logger.info(
            "Invalidated entitlement cache",
            extra={"reason": reason, "entries": count},
        )
        return count
