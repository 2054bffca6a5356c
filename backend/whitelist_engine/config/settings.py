"""
Runtime settings read from the environment.

Usage:
    from whitelist_engine.config.settings import get_settings

    settings = get_settings()
    settings.member_groups  # ("Member",)

Environment variables:
- DISCORD_BOT_TOKEN, DISCORD_GUILD_ID: Discord gateway
- WHITELIST_MEMBER_GROUPS: comma list of groups exported as plain whitelist
- WHITELIST_DEFAULT_GROUP: group used for manual/donation/import grants
- WHITELIST_PREFER_EOS_ID: export EOS ids instead of steam ids when known
- ENTITLEMENT_CACHE_TTL: cache safety-net TTL in seconds (default 300)
- ROLE_SYNC_MEMBER_TIMEOUT_SECONDS: per-member sync timeout (default 10)
- ROLE_SYNC_INTERVAL: seconds between worker cycles (default 3600)
- CONFIDENCE_THRESHOLD: minimum link confidence for approved role grants
"""

import os
from dataclasses import dataclass
from threading import Lock
from typing import Optional, Tuple

_TRUTHY = {"1", "true", "yes", "on"}


def _split_csv(value: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    discord_bot_token: Optional[str] = None
    discord_guild_id: Optional[int] = None
    member_groups: Tuple[str, ...] = ("Member",)
    default_whitelist_group: str = "Member"
    prefer_eos_id: bool = False
    cache_ttl_seconds: int = 300
    member_timeout_seconds: float = 10.0
    sync_interval_seconds: int = 3600
    confidence_threshold: float = 1.0

    @classmethod
    def from_env(cls) -> "Settings":
        guild_id = os.getenv("DISCORD_GUILD_ID")
        return cls(
            discord_bot_token=os.getenv("DISCORD_BOT_TOKEN"),
            discord_guild_id=int(guild_id) if guild_id else None,
            member_groups=_split_csv(os.getenv("WHITELIST_MEMBER_GROUPS", "Member")),
            default_whitelist_group=os.getenv("WHITELIST_DEFAULT_GROUP", "Member"),
            prefer_eos_id=os.getenv("WHITELIST_PREFER_EOS_ID", "false").lower() in _TRUTHY,
            cache_ttl_seconds=int(os.getenv("ENTITLEMENT_CACHE_TTL", "300")),
            member_timeout_seconds=float(os.getenv("ROLE_SYNC_MEMBER_TIMEOUT_SECONDS", "10")),
            sync_interval_seconds=int(os.getenv("ROLE_SYNC_INTERVAL", "3600")),
            confidence_threshold=float(os.getenv("CONFIDENCE_THRESHOLD", "1.0")),
        )


_settings: Optional[Settings] = None
_settings_lock = Lock()


def get_settings() -> Settings:
    """Get the process-wide Settings, reading the environment once."""
    global _settings
    if _settings is None:
        with _settings_lock:
            if _settings is None:
                _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (tests, config reloads)."""
    global _settings
    with _settings_lock:
        _settings = None
