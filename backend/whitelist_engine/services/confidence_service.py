"""
Confidence upgrade service.

Raises a Discord user's link to verified (1.0) and upgrades any
security-blocked role grant they hold. The link upsert, grant flip and
audit records commit in one transaction; the Discord-dependent re-sync
runs afterwards and is best-effort.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from whitelist_engine.entitlements.cache import EntitlementCache
from whitelist_engine.entitlements.confidence import ConfidenceGate, LinkConfidence
from whitelist_engine.entitlements.errors import InvalidGrantError
from whitelist_engine.entitlements.store import GrantStore
from whitelist_engine.entitlements.upgrade import upgrade_security_blocked
from whitelist_engine.models.account_link import (
    VERIFIED_CONFIDENCE,
    AccountLink,
    LinkSource,
    PotentialLink,
)
from whitelist_engine.services import audit_logger

logger = logging.getLogger(__name__)


@dataclass
class ConfidenceUpgradeResult:
    discord_user_id: str
    steam_id: str
    previous_confidence: float
    upgraded_grant_ids: List[str] = field(default_factory=list)
    synced: bool = False
    sync_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "discord_user_id": self.discord_user_id,
            "steam_id": self.steam_id,
            "previous_confidence": self.previous_confidence,
            "new_confidence": VERIFIED_CONFIDENCE,
            "upgraded_grants": len(self.upgraded_grant_ids),
            "upgraded_grant_ids": self.upgraded_grant_ids,
            "synced": self.synced,
            "sync_error": self.sync_error,
        }


class ConfidenceService:
    """
    Verified-link upgrades.

    Args:
        db_session: Database session
        sync_engine: RoleSyncEngine used for the post-commit re-sync;
            None skips the re-sync
        cache: Entitlement cache invalidated after the commit
    """

    def __init__(self, db_session: Session, sync_engine=None, cache: Optional[EntitlementCache] = None):
        self.db = db_session
        self.sync_engine = sync_engine
        self.cache = cache
        self.store = GrantStore(db_session, cache)
        self.gate = ConfidenceGate(db_session)

    def _upsert_verified_link(
        self,
        discord_user_id: str,
        steam_id: str,
        actor_id: Optional[str],
        link_source: str,
        eos_id: Optional[str],
        username: Optional[str],
    ) -> AccountLink:
        link = (
            self.db.query(AccountLink)
            .filter(AccountLink.discord_user_id == discord_user_id)
            .first()
        )
        if link is None:
            link = AccountLink(discord_user_id=discord_user_id)
            self.db.add(link)

        link.steam_id = steam_id
        link.confidence_score = VERIFIED_CONFIDENCE
        link.link_source = link_source
        link.linked_by = actor_id
        if eos_id:
            link.eos_id = eos_id
        if username:
            link.username = username

        self.db.query(PotentialLink).filter(
            PotentialLink.discord_user_id == discord_user_id
        ).delete(synchronize_session=False)
        self.db.flush()
        return link

    async def upgrade_confidence(
        self,
        discord_user_id: str,
        steam_id: str,
        actor_id: Optional[str],
        reason: Optional[str] = None,
        link_source: str = LinkSource.ADMIN.value,
        eos_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> ConfidenceUpgradeResult:
        """
        Verify a user's link and upgrade their blocked role grant.

        Raises:
            InvalidGrantError: Missing discord user id or steam id
        """
        if not discord_user_id or not steam_id:
            raise InvalidGrantError("discord_user_id and steam_id are required")
        discord_user_id = str(discord_user_id)

        previous = self.gate.get_highest_confidence(discord_user_id)

        try:
            link = self._upsert_verified_link(
                discord_user_id, steam_id, actor_id, link_source, eos_id, username
            )
            flipped = upgrade_security_blocked(
                self.store,
                discord_user_id,
                LinkConfidence(
                    score=VERIFIED_CONFIDENCE,
                    source=link.link_source,
                    steam_id=link.steam_id,
                    eos_id=link.eos_id,
                    username=link.username,
                ),
                actor_id=actor_id,
                upgrade_source=link_source,
                previous_confidence=previous.score,
                commit=False,
            )
            audit_logger.emit_link_upgraded(
                self.db,
                discord_user_id,
                steam_id,
                previous.score,
                link_source,
                reason,
                actor_id,
                commit=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(
                "Confidence upgrade failed",
                extra={"discord_user_id": discord_user_id, "steam_id": steam_id},
                exc_info=True,
            )
            raise

        if self.cache is not None:
            self.cache.invalidate(reason=f"confidence_upgrade:{discord_user_id}")

        result = ConfidenceUpgradeResult(
            discord_user_id=discord_user_id,
            steam_id=steam_id,
            previous_confidence=previous.score,
            upgraded_grant_ids=[g.id for g in flipped],
        )

        logger.info(
            "Link confidence upgraded",
            extra={
                "discord_user_id": discord_user_id,
                "previous_confidence": previous.score,
                "upgraded_grants": len(flipped),
            },
        )

        if self.sync_engine is not None:
            try:
                sync = await self.sync_engine.sync_user(discord_user_id, actor_id=actor_id)
            except Exception as e:
                self.db.rollback()
                logger.warning(
                    "Post-upgrade role sync failed",
                    extra={"discord_user_id": discord_user_id},
                    exc_info=True,
                )
                result.sync_error = str(e)
            else:
                result.synced = sync.synced
                result.sync_error = sync.error

        return result

    async def record_verified_link(
        self,
        discord_user_id: str,
        steam_id: str,
        eos_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> ConfidenceUpgradeResult:
        """Self-verification entry point (e.g. in-game code confirmation)."""
        return await self.upgrade_confidence(
            discord_user_id,
            steam_id,
            actor_id=str(discord_user_id),
            reason="Self-verified link",
            link_source=LinkSource.SELF_VERIFIED.value,
            eos_id=eos_id,
            username=username,
        )
