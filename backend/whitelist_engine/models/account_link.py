"""
Discord <-> Steam account links.

AccountLink holds verified links only (confidence exactly 1.0, one per
discord user). PotentialLink holds unverified candidates (confidence below
1.0); a subject may have several.
"""

import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    Float,
    String,
    Text,
    UniqueConstraint,
)

from whitelist_engine.db_base import Base
from whitelist_engine.models.base import TimestampMixin, generate_uuid

VERIFIED_CONFIDENCE = 1.0


class LinkSource(str, enum.Enum):
    SELF_VERIFIED = "self_verified"
    ADMIN = "admin"
    WHITELIST = "whitelist"
    TICKET = "ticket"


# Default confidence assigned to potential links by source
DEFAULT_SOURCE_CONFIDENCE = {
    LinkSource.TICKET.value: 0.3,
    LinkSource.WHITELIST.value: 0.5,
    LinkSource.ADMIN.value: 0.7,
}


class AccountLink(Base, TimestampMixin):
    """Verified discord/steam link."""

    __tablename__ = "account_links"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    discord_user_id = Column(String(32), nullable=False, unique=True)
    steam_id = Column(String(32), nullable=False, index=True)
    eos_id = Column(String(64), nullable=True)
    username = Column(String(255), nullable=True)
    confidence_score = Column(Float, nullable=False, default=VERIFIED_CONFIDENCE)
    link_source = Column(String(20), nullable=False)
    linked_by = Column(String(255), nullable=True)
    metadata_json = Column("metadata", Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "confidence_score = 1.0",
            name="ck_account_links_verified_confidence",
        ),
    )


class PotentialLink(Base, TimestampMixin):
    """Unverified discord/steam link candidate."""

    __tablename__ = "potential_links"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    discord_user_id = Column(String(32), nullable=False, index=True)
    steam_id = Column(String(32), nullable=False)
    eos_id = Column(String(64), nullable=True)
    username = Column(String(255), nullable=True)
    confidence_score = Column(Float, nullable=False)
    link_source = Column(String(20), nullable=False)
    linked_by = Column(String(255), nullable=True)
    metadata_json = Column("metadata", Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "discord_user_id",
            "steam_id",
            name="uq_potential_links_discord_steam",
        ),
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score < 1.0",
            name="ck_potential_links_unverified_confidence",
        ),
    )
