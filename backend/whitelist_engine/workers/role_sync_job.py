"""
Role Sync Worker.

Background job that periodically reconciles role-derived grants against
the Discord guild:
1. Fetch every guild member
2. Resolve each member's highest tracked role to a group
3. Create, correct or security-block their role grant

Run as: python -m whitelist_engine.workers.role_sync_job

Configuration:
- ROLE_SYNC_INTERVAL: Seconds between cycles (default: 3600)
- ROLE_SYNC_MEMBER_TIMEOUT_SECONDS: Per-member timeout (default: 10)
- DISCORD_BOT_TOKEN / DISCORD_GUILD_ID: Discord access

The worker owns its own EntitlementCache; API processes pick up its writes
when their cache TTL lapses.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from whitelist_engine.config.settings import Settings, get_settings
from whitelist_engine.database.session import get_db_session_sync
from whitelist_engine.entitlements.cache import EntitlementCache
from whitelist_engine.integrations.discord.exceptions import GatewayError
from whitelist_engine.integrations.discord.gateway import (
    DiscordGuildGateway,
    GuildGateway,
    build_client,
)
from whitelist_engine.services.role_sync import RoleSyncEngine

logger = logging.getLogger(__name__)

WORKER_ACTOR = "ROLE_SYNC_WORKER"

_shutdown = False


def _handle_signal(signum, frame):
    global _shutdown
    logger.info("Shutdown signal received", extra={"signal": signum})
    _shutdown = True


@dataclass
class RoleSyncJobStats:
    """Track role sync run statistics."""

    checked: int = 0
    updated: int = 0
    skipped_bots: int = 0
    errors: int = 0
    failed: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "checked": self.checked,
            "updated": self.updated,
            "skipped_bots": self.skipped_bots,
            "errors": self.errors,
            "failed": self.failed,
            "duration_seconds": round(duration, 2),
        }


async def run_cycle(
    gateway: GuildGateway,
    cache: Optional[EntitlementCache] = None,
    settings: Optional[Settings] = None,
    db=None,
) -> RoleSyncJobStats:
    """
    Run one full role sync cycle.

    Args:
        gateway: Discord guild access
        cache: Entitlement cache to invalidate
        settings: Runtime settings (defaults to the environment)
        db: Session to use; a new one is opened (and closed) when omitted
    """
    settings = settings or get_settings()
    stats = RoleSyncJobStats()

    db_gen = None
    if db is None:
        db_gen = get_db_session_sync()
        db = next(db_gen)

    try:
        engine = RoleSyncEngine(
            db,
            gateway,
            cache=cache,
            member_groups=settings.member_groups,
            member_timeout_seconds=settings.member_timeout_seconds,
            confidence_threshold=settings.confidence_threshold,
        )
        result = await engine.sync_all(actor_id=WORKER_ACTOR)

        stats.checked = result.checked
        stats.updated = result.updated
        stats.skipped_bots = result.skipped_bots
        stats.errors = len(result.errors)

        logger.info("Role sync cycle complete", extra=stats.to_dict())
        return stats

    except GatewayError as e:
        logger.error("Role sync cycle failed: guild unavailable", extra={"error": e.message})
        stats.failed = True
        stats.errors += 1
        return stats
    except Exception:
        logger.error("Role sync cycle failed", exc_info=True)
        db.rollback()
        stats.failed = True
        stats.errors += 1
        return stats
    finally:
        if db_gen is not None:
            db.close()


async def _run(settings: Settings) -> None:
    client = build_client()
    await client.login(settings.discord_bot_token)
    gateway = DiscordGuildGateway(client, settings.discord_guild_id)
    cache = EntitlementCache(
        ttl_seconds=settings.cache_ttl_seconds,
        default_group=settings.default_whitelist_group,
    )

    try:
        while not _shutdown:
            await run_cycle(gateway, cache=cache, settings=settings)
            # Sleep in 1-second increments for responsive shutdown
            for _ in range(settings.sync_interval_seconds):
                if _shutdown:
                    break
                await asyncio.sleep(1)
    finally:
        await client.close()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    settings = get_settings()
    if not settings.discord_bot_token or not settings.discord_guild_id:
        logger.error("DISCORD_BOT_TOKEN and DISCORD_GUILD_ID are required")
        raise SystemExit(1)

    logger.info(
        "Role sync worker started",
        extra={
            "sync_interval": settings.sync_interval_seconds,
            "guild_id": settings.discord_guild_id,
        },
    )
    asyncio.run(_run(settings))
    logger.info("Role sync worker stopped")


if __name__ == "__main__":
    main()
