"""
Confidence gate for role-derived grants.

A role grant is only usable when the Discord user has a verified account
link. Below the threshold the grant is still recorded, but as
approved=False/revoked=True with an explanatory reason, so that it can be
upgraded in place once the link is verified.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from whitelist_engine.models.account_link import AccountLink, PotentialLink, VERIFIED_CONFIDENCE

logger = logging.getLogger(__name__)


class GrantState(str, Enum):
    APPROVED = "approved"
    SECURITY_BLOCKED = "security_blocked"


@dataclass(frozen=True)
class LinkConfidence:
    """Highest-confidence link known for a Discord user."""

    score: float
    source: Optional[str] = None
    steam_id: Optional[str] = None
    eos_id: Optional[str] = None
    username: Optional[str] = None

    @property
    def is_verified(self) -> bool:
        return self.score >= VERIFIED_CONFIDENCE


NO_LINK = LinkConfidence(score=0.0)


@dataclass(frozen=True)
class GateDecision:
    state: GrantState
    confidence: LinkConfidence
    group_name: Optional[str] = None
    reason: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.state == GrantState.APPROVED


def security_block_reason(score: float, threshold: float = VERIFIED_CONFIDENCE) -> str:
    return f"Security block: insufficient link confidence ({score:.1f}/{threshold:.1f})"


class ConfidenceGate:
    """Decides whether a role-derived grant may be approved."""

    def __init__(self, db_session: Session, threshold: float = VERIFIED_CONFIDENCE):
        self.db = db_session
        self.threshold = threshold

    def get_highest_confidence(self, discord_user_id: str) -> LinkConfidence:
        """
        Return the highest-confidence link for a Discord user.

        A verified link always wins; potential links only count when no
        verified link exists.
        """
        link = (
            self.db.query(AccountLink)
            .filter(AccountLink.discord_user_id == str(discord_user_id))
            .first()
        )
        if link is not None:
            return LinkConfidence(
                score=float(link.confidence_score),
                source=link.link_source,
                steam_id=link.steam_id,
                eos_id=link.eos_id,
                username=link.username,
            )

        potential = (
            self.db.query(PotentialLink)
            .filter(PotentialLink.discord_user_id == str(discord_user_id))
            .order_by(PotentialLink.confidence_score.desc(), PotentialLink.created_at.asc())
            .first()
        )
        if potential is not None:
            return LinkConfidence(
                score=float(potential.confidence_score),
                source=potential.link_source,
                steam_id=potential.steam_id,
                eos_id=potential.eos_id,
                username=potential.username,
            )

        return NO_LINK

    def gate_grant(self, discord_user_id: str, proposed_group: Optional[str]) -> GateDecision:
        confidence = self.get_highest_confidence(discord_user_id)
        if confidence.score >= self.threshold:
            return GateDecision(
                state=GrantState.APPROVED,
                confidence=confidence,
                group_name=proposed_group,
            )

        reason = security_block_reason(confidence.score, self.threshold)
        logger.info(
            "Role grant security blocked",
            extra={
                "discord_user_id": discord_user_id,
                "group_name": proposed_group,
                "confidence": confidence.score,
                "link_source": confidence.source,
            },
        )
        return GateDecision(
            state=GrantState.SECURITY_BLOCKED,
            confidence=confidence,
            group_name=proposed_group,
            reason=reason,
        )
