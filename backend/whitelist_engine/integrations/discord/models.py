"""
Plain snapshots of Discord guild data used by the role sync engine.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional


@dataclass(frozen=True)
class MemberSnapshot:
    """A guild member's identity and role set at fetch time."""

    user_id: str
    role_ids: FrozenSet[str] = frozenset()
    role_positions: Dict[str, int] = field(default_factory=dict)
    is_bot: bool = False
    display_name: Optional[str] = None
    username: Optional[str] = None

    def has_role(self, role_id) -> bool:
        return str(role_id) in self.role_ids


@dataclass(frozen=True)
class GuildSnapshot:
    guild_id: str
    name: Optional[str] = None
    role_positions: Dict[str, int] = field(default_factory=dict)
