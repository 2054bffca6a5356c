"""
Potential (unverified) account links.

Candidates come from support tickets, whitelist imports and admin notes;
each source carries a default confidence below 1.0. Verified links are
written by ConfidenceService only.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from whitelist_engine.entitlements.errors import InvalidGrantError
from whitelist_engine.models.account_link import (
    DEFAULT_SOURCE_CONFIDENCE,
    VERIFIED_CONFIDENCE,
    AccountLink,
    PotentialLink,
)
from whitelist_engine.services import audit_logger

logger = logging.getLogger(__name__)

# "manual" is accepted as an alias of the admin source
_SOURCE_ALIASES = {"manual": "admin"}


class LinkService:
    def __init__(self, db_session: Session):
        self.db = db_session

    def add_potential_link(
        self,
        discord_user_id: str,
        steam_id: str,
        link_source: str,
        actor_id: Optional[str] = None,
        confidence: Optional[float] = None,
        eos_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Optional[PotentialLink]:
        """
        Record or raise a potential link.

        An existing candidate for the same pair keeps the higher score.
        Returns None when the user already has a verified link.

        Raises:
            InvalidGrantError: Unknown source or out-of-range confidence
        """
        if not discord_user_id or not steam_id:
            raise InvalidGrantError("discord_user_id and steam_id are required")
        discord_user_id = str(discord_user_id)
        link_source = _SOURCE_ALIASES.get(link_source, link_source)
        if link_source not in DEFAULT_SOURCE_CONFIDENCE:
            raise InvalidGrantError(
                f"Unknown link source {link_source!r}; expected one of {sorted(DEFAULT_SOURCE_CONFIDENCE)}"
            )

        score = DEFAULT_SOURCE_CONFIDENCE[link_source] if confidence is None else float(confidence)
        if not 0 <= score < VERIFIED_CONFIDENCE:
            raise InvalidGrantError("Potential link confidence must be in [0, 1.0)")

        verified = (
            self.db.query(AccountLink.id)
            .filter(AccountLink.discord_user_id == discord_user_id)
            .first()
        )
        if verified is not None:
            logger.info(
                "Verified link exists, potential link ignored",
                extra={"discord_user_id": discord_user_id},
            )
            return None

        link = (
            self.db.query(PotentialLink)
            .filter(
                PotentialLink.discord_user_id == discord_user_id,
                PotentialLink.steam_id == steam_id,
            )
            .first()
        )
        if link is None:
            link = PotentialLink(
                discord_user_id=discord_user_id,
                steam_id=steam_id,
                confidence_score=score,
                link_source=link_source,
            )
            self.db.add(link)
        elif score > link.confidence_score:
            link.confidence_score = score
            link.link_source = link_source
        else:
            return link

        link.linked_by = actor_id
        if eos_id:
            link.eos_id = eos_id
        if username:
            link.username = username
        self.db.commit()

        audit_logger.emit_confidence_change(
            self.db, discord_user_id, steam_id, link.confidence_score, link.link_source, actor_id
        )
        logger.info(
            "Potential link recorded",
            extra={
                "discord_user_id": discord_user_id,
                "steam_id": steam_id,
                "confidence": link.confidence_score,
                "link_source": link.link_source,
            },
        )
        return link
