"""
Database models for grants, account links and role configuration.
"""

from whitelist_engine.models.base import TimestampMixin
from whitelist_engine.models.grant import Grant, GrantSource, GrantKind, DurationType
from whitelist_engine.models.account_link import (
    AccountLink,
    PotentialLink,
    LinkSource,
    VERIFIED_CONFIDENCE,
)
from whitelist_engine.models.role_config import RoleConfig

__all__ = [
    "TimestampMixin",
    "Grant",
    "GrantSource",
    "GrantKind",
    "DurationType",
    "AccountLink",
    "PotentialLink",
    "LinkSource",
    "VERIFIED_CONFIDENCE",
    "RoleConfig",
]
