"""
RoleConfig model - maps a Discord role to a game-server group.

Several Discord roles may map to the same group; they then share one
permission set. Only one RoleConfig may exist per Discord role.
"""

from typing import List

from sqlalchemy import Column, Integer, String, Text

from whitelist_engine.db_base import Base
from whitelist_engine.models.base import TimestampMixin, generate_uuid


class RoleConfig(Base, TimestampMixin):
    """Tracked Discord role."""

    __tablename__ = "role_configs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    discord_role_id = Column(String(32), nullable=False, unique=True)
    role_name = Column(String(100), nullable=True, comment="Discord display name")
    group_name = Column(String(100), nullable=False, index=True)
    permissions = Column(Text, nullable=False, default="")
    discord_position = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Discord role hierarchy position, higher wins",
    )
    created_by = Column(String(255), nullable=True)
    updated_by = Column(String(255), nullable=True)

    @property
    def permission_list(self) -> List[str]:
        return [p for p in (self.permissions or "").split(",") if p]

    def __repr__(self) -> str:
        return (
            f"<RoleConfig {self.discord_role_id} group={self.group_name} "
            f"position={self.discord_position}>"
        )
