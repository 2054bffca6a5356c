"""
Duration stacking and status resolution.

Pure functions over a subject's grants; no database access.

Resolution:
1. Any approved, non-revoked permanent grant -> permanent (the earliest
   such grant is the canonical record).
2. Approved, non-revoked grants with a positive duration are ordered by
   granted_at and walked into stack chains. A grant joins the running chain
   when it was granted before the chain's stacked expiration; otherwise the
   chain had lapsed and a new chain starts at that grant. A lapsed grant can
   therefore never resurrect access, while a grant that was still running
   when the next one arrived keeps stacking even after its own individual
   expiration has passed.
3. A chain's stacked expiration is its earliest granted_at plus the summed
   months, then the summed days (calendar-relative month arithmetic).
4. The subject is active while the last chain's stacked expiration lies in
   the future.

Zero-duration grants never participate; revoked or unapproved grants never
participate.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, List, Optional

from dateutil.relativedelta import relativedelta

from whitelist_engine.models.base import ensure_tz_aware, utcnow
from whitelist_engine.models.grant import DurationType

logger = logging.getLogger(__name__)


class StatusState(str, Enum):
    NONE = "none"
    REVOKED = "revoked"
    PERMANENT = "permanent"
    ACTIVE = "active"
    EXPIRED = "expired"


@dataclass(frozen=True)
class WhitelistStatus:
    """Current access status for one subject."""

    active: bool
    permanent: bool
    expires_at: Optional[datetime]
    state: StatusState
    grant_count: int = 0
    canonical_grant_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "permanent": self.permanent,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "state": self.state.value,
            "grant_count": self.grant_count,
            "canonical_grant_id": self.canonical_grant_id,
        }


def add_duration(start: datetime, months: int = 0, days: int = 0) -> datetime:
    """Add months first, then days."""
    result = ensure_tz_aware(start)
    if months:
        result = result + relativedelta(months=months)
    if days:
        result = result + timedelta(days=days)
    return result


def individual_expiration(grant: Any) -> Optional[datetime]:
    """
    Expiration of a single grant, ignoring stacking.

    Returns None for permanent grants.
    """
    if grant.duration_value is None:
        return None
    if grant.duration_type == DurationType.MONTHS.value:
        return add_duration(grant.granted_at, months=grant.duration_value)
    if grant.duration_type == DurationType.DAYS.value:
        return add_duration(grant.granted_at, days=grant.duration_value)
    raise ValueError(f"Unknown duration type: {grant.duration_type!r}")


@dataclass
class StackChain:
    """A run of grants whose durations stack from the earliest one."""

    started_at: datetime
    months: int = 0
    days: int = 0
    grant_ids: List[str] = field(default_factory=list)

    @property
    def expires_at(self) -> datetime:
        return add_duration(self.started_at, months=self.months, days=self.days)

    def add(self, grant: Any) -> None:
        if grant.duration_type == DurationType.MONTHS.value:
            self.months += grant.duration_value
        else:
            self.days += grant.duration_value
        self.grant_ids.append(grant.id)


def _participates(grant: Any) -> bool:
    return bool(grant.approved) and not grant.revoked


def build_stack_chains(grants: Iterable[Any]) -> List[StackChain]:
    """Group timed grants into stack chains, oldest first."""
    timed = []
    for grant in grants:
        if not _participates(grant):
            continue
        if grant.duration_value is None or grant.duration_value <= 0:
            continue
        if grant.duration_type not in (DurationType.DAYS.value, DurationType.MONTHS.value):
            logger.warning(
                "Skipping grant with unknown duration type",
                extra={"grant_id": grant.id, "duration_type": grant.duration_type},
            )
            continue
        timed.append(grant)

    timed.sort(key=lambda g: (ensure_tz_aware(g.granted_at), g.id or ""))

    chains: List[StackChain] = []
    current: Optional[StackChain] = None
    for grant in timed:
        granted_at = ensure_tz_aware(grant.granted_at)
        if current is None or granted_at >= current.expires_at:
            current = StackChain(started_at=granted_at)
            chains.append(current)
        current.add(grant)
    return chains


def resolve_status(grants: Iterable[Any], now: Optional[datetime] = None) -> WhitelistStatus:
    """
    Resolve the current access status of one subject from its grants.

    Args:
        grants: Every grant of the subject (any state)
        now: Evaluation time, defaults to the current UTC time

    Returns:
        WhitelistStatus
    """
    now = ensure_tz_aware(now) if now else utcnow()
    grants = list(grants)

    if not grants:
        return WhitelistStatus(active=False, permanent=False, expires_at=None, state=StatusState.NONE)

    eligible = [g for g in grants if _participates(g)]
    if not eligible:
        return WhitelistStatus(
            active=False, permanent=False, expires_at=None, state=StatusState.REVOKED
        )

    permanent = [g for g in eligible if g.duration_value is None]
    if permanent:
        canonical = min(permanent, key=lambda g: (ensure_tz_aware(g.granted_at), g.id or ""))
        return WhitelistStatus(
            active=True,
            permanent=True,
            expires_at=None,
            state=StatusState.PERMANENT,
            grant_count=len(permanent),
            canonical_grant_id=canonical.id,
        )

    chains = build_stack_chains(eligible)
    if not chains:
        # Only zero-duration grants remain
        return WhitelistStatus(
            active=False, permanent=False, expires_at=None, state=StatusState.EXPIRED
        )

    last = chains[-1]
    expires_at = last.expires_at
    if expires_at > now:
        return WhitelistStatus(
            active=True,
            permanent=False,
            expires_at=expires_at,
            state=StatusState.ACTIVE,
            grant_count=len(last.grant_ids),
            canonical_grant_id=last.grant_ids[0],
        )

    # Nothing active: show the most recent individual expiration
    timed = [g for g in eligible if g.duration_value and g.duration_value > 0]
    latest = max(timed, key=lambda g: (individual_expiration(g), g.id or ""))
    return WhitelistStatus(
        active=False,
        permanent=False,
        expires_at=individual_expiration(latest),
        state=StatusState.EXPIRED,
        grant_count=0,
        canonical_grant_id=latest.id,
    )
