"""
Discord guild access for role synchronization.
"""

from whitelist_engine.integrations.discord.exceptions import (
    GatewayError,
    GuildUnavailableError,
    MemberNotFoundError,
)
from whitelist_engine.integrations.discord.models import GuildSnapshot, MemberSnapshot
from whitelist_engine.integrations.discord.gateway import (
    DiscordGuildGateway,
    GuildGateway,
    build_client,
)

__all__ = [
    "GatewayError",
    "GuildUnavailableError",
    "MemberNotFoundError",
    "GuildSnapshot",
    "MemberSnapshot",
    "DiscordGuildGateway",
    "GuildGateway",
    "build_client",
]
