"""
Grant model - one row per entitlement event.

A grant gives a subject (steam id / discord user) whitelist or staff access
from one source. Rows are immutable once created except for:
- revocation fields (revoke)
- approved/revoked flip (security-block upgrade)
- role_name/kind correction (role sync)
- metadata stamping alongside those mutations

Durations:
- duration_value/duration_type both NULL -> permanent
- duration_value == 0 -> already expired, kept for audit
- otherwise granted_at + duration (days or calendar months)

At most one non-revoked role grant may exist per discord user; this is
enforced by a partial unique index so concurrent reconciliations collide
in the database rather than creating duplicates.
"""

import enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    and_,
    false,
)

from whitelist_engine.db_base import Base
from whitelist_engine.models.base import TimestampMixin, generate_uuid, utcnow

SECURITY_SYSTEM_ACTOR = "SECURITY_SYSTEM"


class GrantSource(str, enum.Enum):
    ROLE = "role"
    MANUAL = "manual"
    DONATION = "donation"
    IMPORT = "import"


class GrantKind(str, enum.Enum):
    STAFF = "staff"
    WHITELIST = "whitelist"


class DurationType(str, enum.Enum):
    DAYS = "days"
    MONTHS = "months"


_ACTIVE_ROLE_GRANT = and_(
    Column("source") == GrantSource.ROLE.value,
    Column("revoked") == false(),
)


class Grant(Base, TimestampMixin):
    """Entitlement ledger row."""

    __tablename__ = "whitelist_grants"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    # Subject
    steam_id = Column(String(32), nullable=True, index=True)
    discord_user_id = Column(String(32), nullable=True, index=True)
    eos_id = Column(String(64), nullable=True)
    username = Column(String(255), nullable=True)
    discord_username = Column(String(255), nullable=True)

    source = Column(String(20), nullable=False, index=True)
    kind = Column(String(20), nullable=False, default=GrantKind.WHITELIST.value)

    duration_value = Column(Integer, nullable=True)
    duration_type = Column(String(10), nullable=True)

    granted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    granted_by = Column(String(255), nullable=True)

    approved = Column(Boolean, nullable=False, default=True)
    revoked = Column(Boolean, nullable=False, default=False)
    revoked_by = Column(String(255), nullable=True)
    revoked_reason = Column(Text, nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    role_name = Column(
        String(100),
        nullable=True,
        comment="Game-server group name, only for source=role",
    )

    metadata_json = Column(
        "metadata",
        Text,
        nullable=True,
        comment="Serialized versioned metadata record, at most 10KB",
    )

    __table_args__ = (
        Index(
            "uq_whitelist_grants_active_role",
            "discord_user_id",
            "source",
            unique=True,
            postgresql_where=_ACTIVE_ROLE_GRANT,
            sqlite_where=_ACTIVE_ROLE_GRANT,
        ),
        Index("ix_whitelist_grants_kind_active", "kind", "revoked", "approved"),
    )

    @property
    def is_permanent(self) -> bool:
        return self.duration_value is None

    @property
    def is_security_blocked(self) -> bool:
        return (
            not self.approved
            and self.revoked
            and self.revoked_by == SECURITY_SYSTEM_ACTOR
        )

    @property
    def subject_key(self) -> Optional[str]:
        return self.steam_id or self.discord_user_id

    def __repr__(self) -> str:
        return (
            f"<Grant {self.id} source={self.source} kind={self.kind} "
            f"steam_id={self.steam_id} discord={self.discord_user_id} "
            f"approved={self.approved} revoked={self.revoked}>"
        )
