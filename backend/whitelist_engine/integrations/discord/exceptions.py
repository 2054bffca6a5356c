"""
Discord gateway exceptions.
"""

from typing import Optional


class GatewayError(Exception):
    """Base exception for Discord guild access failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, status_code={self.status_code})"


class GuildUnavailableError(GatewayError):
    """Raised when the configured guild cannot be fetched."""

    def __init__(self, guild_id, message: Optional[str] = None, **kwargs):
        super().__init__(message or f"Guild {guild_id} is unavailable", **kwargs)
        self.guild_id = guild_id


class MemberNotFoundError(GatewayError):
    """Raised when a user is not a member of the guild (404)."""

    def __init__(self, user_id, message: Optional[str] = None):
        super().__init__(message or f"Member {user_id} not found in guild", status_code=404)
        self.user_id = user_id
