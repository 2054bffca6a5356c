"""
Structured error classes for the entitlement engine.

Taxonomy:
- ConfigurationError: invalid or duplicate RoleConfig, no partial write
- GrantConflictError: unique-constraint race on role-grant creation
- MetadataTooLargeError / InvalidDurationError / InvalidGrantError: rejected
  at write time
- GrantNotFoundError / RoleConfigNotFoundError: unknown identifiers

A security block is not an error; see entitlements.confidence.GateDecision.
"""

from typing import Optional

from fastapi import status


class WhitelistEngineError(Exception):
    """Base exception for entitlement engine errors."""

    code = "whitelist_engine_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {"error": self.code, "message": self.message}


class ConfigurationError(WhitelistEngineError):
    """Invalid role configuration."""

    code = "configuration_error"


class DuplicateRoleConfigError(ConfigurationError):
    """A RoleConfig already exists for the Discord role."""

    code = "duplicate_role_config"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, discord_role_id: str, existing_group: Optional[str] = None):
        self.discord_role_id = discord_role_id
        self.existing_group = existing_group
        message = f"Role {discord_role_id} is already configured"
        if existing_group:
            message += f" (mapped to group '{existing_group}')"
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "discord_role_id": self.discord_role_id,
            "existing_group": self.existing_group,
        }


class RoleConfigNotFoundError(WhitelistEngineError):
    code = "role_config_not_found"
    http_status = status.HTTP_404_NOT_FOUND


class GrantConflictError(WhitelistEngineError):
    """
    Another writer already holds the active role grant for this user.

    Raised by the store when the partial unique index rejects an insert.
    Callers on the reconciliation path re-read and compare instead of failing.
    """

    code = "grant_conflict"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, discord_user_id: str):
        self.discord_user_id = discord_user_id
        super().__init__(
            f"An active role grant already exists for Discord user {discord_user_id}"
        )


class MetadataTooLargeError(WhitelistEngineError):
    code = "metadata_too_large"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Serialized metadata is {size} bytes, exceeding the {limit} byte limit"
        )

    def to_dict(self) -> dict:
        return {**super().to_dict(), "size": self.size, "limit": self.limit}


class InvalidDurationError(WhitelistEngineError):
    code = "invalid_duration"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class GrantNotFoundError(WhitelistEngineError):
    code = "grant_not_found"
    http_status = status.HTTP_404_NOT_FOUND


class InvalidGrantError(WhitelistEngineError):
    """Unknown source/kind or missing subject identifiers."""

    code = "invalid_grant"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
