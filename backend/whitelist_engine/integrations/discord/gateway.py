"""
Guild gateway - the role sync engine's only view of Discord.

GuildGateway is the protocol the engine depends on; DiscordGuildGateway
implements it on top of discord.py using HTTP fetches (no cached gateway
state is required, so a logged-in client without a websocket works).
"""

import logging
from typing import List, Optional, Protocol

import discord

from whitelist_engine.integrations.discord.exceptions import (
    GatewayError,
    GuildUnavailableError,
    MemberNotFoundError,
)
from whitelist_engine.integrations.discord.models import GuildSnapshot, MemberSnapshot

logger = logging.getLogger(__name__)


class GuildGateway(Protocol):
    async def fetch_guild(self) -> GuildSnapshot: ...

    async def fetch_members(self) -> List[MemberSnapshot]: ...

    async def fetch_member(self, user_id: str) -> MemberSnapshot: ...


def snapshot_member(member: "discord.Member") -> MemberSnapshot:
    return MemberSnapshot(
        user_id=str(member.id),
        role_ids=frozenset(str(r.id) for r in member.roles),
        role_positions={str(r.id): r.position for r in member.roles},
        is_bot=bool(member.bot),
        display_name=member.display_name,
        username=member.name,
    )


def build_client(intents: Optional[discord.Intents] = None) -> discord.Client:
    """Client with the members intent needed to list guild members."""
    intents = intents or discord.Intents.default()
    intents.members = True
    return discord.Client(intents=intents)


class DiscordGuildGateway:
    """
    discord.py-backed GuildGateway for one guild.

    Usage:
        client = build_client()
        await client.login(token)
        gateway = DiscordGuildGateway(client, guild_id)
        members = await gateway.fetch_members()
    """

    def __init__(self, client: discord.Client, guild_id: int):
        self.client = client
        self.guild_id = int(guild_id)
        self._guild: Optional[discord.Guild] = None

    async def _get_guild(self) -> discord.Guild:
        if self._guild is not None:
            return self._guild
        guild = self.client.get_guild(self.guild_id)
        if guild is None:
            try:
                guild = await self.client.fetch_guild(self.guild_id)
            except discord.NotFound:
                raise GuildUnavailableError(self.guild_id, status_code=404)
            except discord.HTTPException as e:
                raise GuildUnavailableError(
                    self.guild_id,
                    message=f"Failed to fetch guild {self.guild_id}: {e}",
                    status_code=getattr(e, "status", None),
                )
        self._guild = guild
        return guild

    async def fetch_guild(self) -> GuildSnapshot:
        guild = await self._get_guild()
        return GuildSnapshot(
            guild_id=str(guild.id),
            name=guild.name,
            role_positions={str(r.id): r.position for r in guild.roles},
        )

    async def fetch_members(self) -> List[MemberSnapshot]:
        guild = await self._get_guild()
        try:
            members = [m async for m in guild.fetch_members(limit=None)]
        except discord.HTTPException as e:
            raise GatewayError(
                f"Failed to list members of guild {self.guild_id}: {e}",
                status_code=getattr(e, "status", None),
            )
        logger.info(
            "Fetched guild members",
            extra={"guild_id": self.guild_id, "count": len(members)},
        )
        return [snapshot_member(m) for m in members]

    async def fetch_member(self, user_id: str) -> MemberSnapshot:
        guild = await self._get_guild()
        member = guild.get_member(int(user_id))
        if member is None:
            try:
                member = await guild.fetch_member(int(user_id))
            except discord.NotFound:
                raise MemberNotFoundError(user_id)
            except discord.HTTPException as e:
                raise GatewayError(
                    f"Failed to fetch member {user_id}: {e}",
                    status_code=getattr(e, "status", None),
                )
        return snapshot_member(member)
