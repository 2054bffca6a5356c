"""
Whitelist entitlement core.

This package provides:
- status: duration stacking and status resolution
- priority: highest-role group resolution
- confidence: link confidence gate for role grants
- store: GrantStore, the only writer of grant rows
- cache: EntitlementCache of the active entitlement set
- service: EntitlementService for manual, donation and import grants
- upgrade: security-block upgrade transition

Resolution: permanent grant -> stacked chains -> expired/none
"""

from whitelist_engine.entitlements.errors import (
    WhitelistEngineError,
    ConfigurationError,
    DuplicateRoleConfigError,
    RoleConfigNotFoundError,
    GrantConflictError,
    MetadataTooLargeError,
    InvalidDurationError,
    GrantNotFoundError,
    InvalidGrantError,
)
from whitelist_engine.entitlements.status import (
    StatusState,
    WhitelistStatus,
    resolve_status,
)
from whitelist_engine.entitlements.cache import (
    ActiveEntitlement,
    EntitlementCache,
)
from whitelist_engine.entitlements.store import GrantStore
from whitelist_engine.entitlements.service import EntitlementService

__all__ = [
    "WhitelistEngineError",
    "ConfigurationError",
    "DuplicateRoleConfigError",
    "RoleConfigNotFoundError",
    "GrantConflictError",
    "MetadataTooLargeError",
    "InvalidDurationError",
    "GrantNotFoundError",
    "InvalidGrantError",
    "StatusState",
    "WhitelistStatus",
    "resolve_status",
    "ActiveEntitlement",
    "EntitlementCache",
    "GrantStore",
    "EntitlementService",
]
