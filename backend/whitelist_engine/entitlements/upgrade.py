"""
Security-block upgrade transition.

When a Discord user's link confidence reaches the verification threshold,
their security-blocked role grant becomes usable: approved=True,
revoked=False, metadata tagged as upgraded from security_blocked.

Only the most recent blocked row is flipped, and nothing is flipped while
an active role grant already exists, so the one-active-role-grant rule
holds. Running the transition again finds no blocked row and is a no-op.
"""

import logging
from typing import List, Optional

from whitelist_engine.entitlements.confidence import LinkConfidence
from whitelist_engine.entitlements.errors import GrantConflictError
from whitelist_engine.entitlements.metadata import RoleUpgradeMetadata
from whitelist_engine.entitlements.store import GrantStore
from whitelist_engine.models.grant import Grant
from whitelist_engine.services import audit_logger

logger = logging.getLogger(__name__)


def upgrade_security_blocked(
    store: GrantStore,
    discord_user_id: str,
    link: LinkConfidence,
    *,
    actor_id: Optional[str],
    upgrade_source: str,
    previous_confidence: Optional[float] = None,
    commit: bool = True,
) -> List[Grant]:
    """
    Flip the subject's latest security-blocked role grant.

    Args:
        store: Grant store bound to the caller's session
        discord_user_id: Subject whose confidence reached the threshold
        link: The verified link (supplies steam/eos ids)
        actor_id: Who triggered the upgrade
        upgrade_source: e.g. "self_verified", "admin", "role_sync"
        previous_confidence: Score before the upgrade, for the audit trail
        commit: Commit the flip and audit write; pass False to leave both
            in the caller's transaction

    Returns:
        The grants that were flipped (empty when nothing was blocked)
    """
    if store.get_active_role_grant(discord_user_id) is not None:
        logger.info(
            "Active role grant already present, no upgrade needed",
            extra={"discord_user_id": discord_user_id},
        )
        return []

    blocked = store.get_security_blocked_role_grants(discord_user_id)
    if not blocked:
        return []

    latest = blocked[0]
    try:
        store.approve_blocked(
            latest,
            steam_id=link.steam_id,
            eos_id=link.eos_id,
            username=link.username,
            metadata=RoleUpgradeMetadata(
                group_name=latest.role_name,
                upgrade_source=upgrade_source,
                previous_confidence=previous_confidence,
            ),
            commit=False,
        )
    except GrantConflictError:
        logger.info(
            "Concurrent writer created the active role grant first",
            extra={"discord_user_id": discord_user_id},
        )
        return []

    audit_logger.emit_security_upgrade(
        store.db,
        discord_user_id,
        [latest.id],
        previous_confidence if previous_confidence is not None else 0.0,
        actor_id,
        commit=False,
    )
    if commit:
        store.db.commit()

    logger.info(
        "Security-blocked role grant upgraded",
        extra={
            "discord_user_id": discord_user_id,
            "grant_id": latest.id,
            "upgrade_source": upgrade_source,
            "skipped_older_blocked": len(blocked) - 1,
        },
    )
    return [latest]
