"""
Versioned metadata records attached to grants.

Each grant source has a closed record type; records are serialized to JSON
for storage and rejected at write time when the serialized form exceeds
METADATA_MAX_BYTES.
"""

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from whitelist_engine.entitlements.errors import MetadataTooLargeError

METADATA_MAX_BYTES = 10 * 1024
METADATA_VERSION = 1


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _MetadataRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int = METADATA_VERSION


class RoleSyncMetadata(_MetadataRecord):
    """Written by role sync on create and on in-place group changes."""

    type: Literal["role_sync"] = "role_sync"
    group_name: str
    discord_role_id: Optional[str] = None
    previous_role: Optional[str] = None
    previous_kind: Optional[str] = None
    updated_at: Optional[datetime] = None


class SecurityBlockMetadata(_MetadataRecord):
    type: Literal["security_block"] = "security_block"
    group_name: str
    confidence_score: float
    link_source: Optional[str] = None
    blocked_at: datetime = Field(default_factory=_now)


class RoleUpgradeMetadata(_MetadataRecord):
    type: Literal["role_upgrade"] = "role_upgrade"
    group_name: Optional[str] = None
    upgraded: bool = True
    upgraded_at: datetime = Field(default_factory=_now)
    upgraded_from: Literal["security_blocked"] = "security_blocked"
    upgrade_source: str
    previous_confidence: Optional[float] = None


class DonationMetadata(_MetadataRecord):
    type: Literal["donation"] = "donation"
    transaction_id: str
    platform: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None


class ImportMetadata(_MetadataRecord):
    type: Literal["import"] = "import"
    import_batch: str
    original_source: Optional[str] = None
    row_number: Optional[int] = None


class ManualMetadata(_MetadataRecord):
    type: Literal["manual"] = "manual"
    reason: Optional[str] = None
    note: Optional[str] = None


class ExtensionMetadata(_MetadataRecord):
    type: Literal["extension"] = "extension"
    reason: Optional[str] = None
    extended_at: datetime = Field(default_factory=_now)


GrantMetadata = Annotated[
    Union[
        RoleSyncMetadata,
        SecurityBlockMetadata,
        RoleUpgradeMetadata,
        DonationMetadata,
        ImportMetadata,
        ManualMetadata,
        ExtensionMetadata,
    ],
    Field(discriminator="type"),
]

_metadata_adapter: TypeAdapter = TypeAdapter(GrantMetadata)


def serialize_metadata(record: Optional[_MetadataRecord]) -> Optional[str]:
    """
    Serialize a metadata record for storage.

    Raises:
        MetadataTooLargeError: If the serialized record exceeds METADATA_MAX_BYTES
    """
    if record is None:
        return None
    payload = record.model_dump_json()
    size = len(payload.encode("utf-8"))
    if size > METADATA_MAX_BYTES:
        raise MetadataTooLargeError(size=size, limit=METADATA_MAX_BYTES)
    return payload


def parse_metadata(raw: Optional[str]) -> Optional[_MetadataRecord]:
    """Parse a stored metadata blob back into its record type."""
    if not raw:
        return None
    return _metadata_adapter.validate_json(raw)
