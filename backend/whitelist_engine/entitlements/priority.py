"""
Role priority resolution.

A member may hold several tracked Discord roles; the one highest in the
Discord hierarchy wins, mirroring Discord's own "highest role wins" rule.
Ties on position go to the configuration created first, then to id, so the
result never depends on input ordering.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from whitelist_engine.models.base import ensure_tz_aware
from whitelist_engine.models.grant import GrantKind

DEFAULT_MEMBER_GROUPS = ("Member",)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _priority_key(config: Any):
    created_at = ensure_tz_aware(config.created_at) or _EPOCH
    # Highest position first, then oldest config, then id
    return (-int(config.discord_position or 0), created_at, str(config.id or ""))


def resolve_group(member_role_ids: Iterable[Any], configs: Sequence[Any]) -> Optional[Any]:
    """
    Return the winning RoleConfig for a member, or None if untracked.

    Args:
        member_role_ids: Discord role ids held by the member
        configs: All RoleConfig rows
    """
    held = {str(role_id) for role_id in member_role_ids}
    matches = [c for c in configs if str(c.discord_role_id) in held]
    if not matches:
        return None
    return min(matches, key=_priority_key)


def resolve_group_name(member_role_ids: Iterable[Any], configs: Sequence[Any]) -> Optional[str]:
    config = resolve_group(member_role_ids, configs)
    return config.group_name if config is not None else None


def kind_for_group(
    group_name: str,
    member_groups: Sequence[str] = DEFAULT_MEMBER_GROUPS,
) -> str:
    """Member groups export as plain whitelist; every other group is staff."""
    if group_name in member_groups:
        return GrantKind.WHITELIST.value
    return GrantKind.STAFF.value
