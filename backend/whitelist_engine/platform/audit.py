"""
Audit logging for the whitelist engine.

Requirements:
- Audit logs are append-only (no UPDATE/DELETE)
- Every grant creation, revocation, extension, upgrade and role-config
  change writes an audit event
- Events carry action_type, actor_id, target_id, description, details,
  severity and timestamp
- Failed logging attempts fall back to a secondary logger and never break
  the calling operation
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import Boolean, Column, DateTime, Index, JSON, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session

from whitelist_engine.db_base import Base

# Use JSON with PostgreSQL variant for JSONB - allows SQLite in tests
JSONType = JSON().with_variant(JSONB(), "postgresql")

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("audit.fallback")

SYSTEM_ACTOR = "system"


class AuditAction(str, Enum):
    """
    Enumeration of all auditable actions.
    """
    # Role synchronization
    ROLE_SYNC = "ROLE_SYNC"
    ROLE_SYNC_ERROR = "ROLE_SYNC_ERROR"
    BULK_ROLE_SYNC = "BULK_ROLE_SYNC"

    # Grant lifecycle
    WHITELIST_GRANT = "WHITELIST_GRANT"
    WHITELIST_EXTEND = "WHITELIST_EXTEND"
    WHITELIST_REVOKE = "WHITELIST_REVOKE"
    WHITELIST_PURGE = "WHITELIST_PURGE"
    WHITELIST_IMPORT = "WHITELIST_IMPORT"
    DONATION_GRANT = "DONATION_GRANT"

    # Confidence gate
    SECURITY_BLOCK = "SECURITY_BLOCK"
    SECURITY_UPGRADE = "SECURITY_UPGRADE"
    LINK_UPGRADED = "LINK_UPGRADED"
    CONFIDENCE_CHANGE = "confidence_change"

    # Role configuration
    CONFIG_UPDATE = "CONFIG_UPDATE"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditLog(Base):
    """
    Audit log database model.

    This table is append-only.
    """
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    action_type = Column(String(50), nullable=False, index=True)
    actor_id = Column(String(255), nullable=True, index=True)
    target_type = Column(String(50), nullable=True)
    target_id = Column(String(255), nullable=True, index=True)
    description = Column(Text, nullable=False, default="")
    details = Column(JSONType, nullable=False, default=dict)
    severity = Column(String(20), nullable=False, default=AuditSeverity.INFO.value)
    success = Column(Boolean, nullable=False, default=True)
    timestamp = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_audit_logs_target_timestamp", "target_id", "timestamp"),
        Index("ix_audit_logs_action_timestamp", "action_type", "timestamp"),
    )


@dataclass
class AuditEvent:
    """
    Immutable audit event data structure.

    Use this to construct audit events before writing to the database.
    """
    action_type: AuditAction
    actor_id: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    description: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    severity: AuditSeverity = AuditSeverity.INFO
    success: bool = True
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for database insertion."""
        return {
            "action_type": (
                self.action_type.value
                if isinstance(self.action_type, AuditAction)
                else self.action_type
            ),
            "actor_id": self.actor_id or SYSTEM_ACTOR,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "description": self.description,
            "details": self.details,
            "severity": (
                self.severity.value
                if isinstance(self.severity, AuditSeverity)
                else self.severity
            ),
            "success": self.success,
            "timestamp": self.timestamp,
        }


def write_audit_log_sync(
    db: Session,
    event: AuditEvent,
    commit: bool = True,
) -> Optional[AuditLog]:
    """
    Write an audit event to the database.

    On failure, writes to the fallback logger and returns None (never
    crashes the calling flow).

    Args:
        db: SQLAlchemy Session
        event: The audit event to write
        commit: Commit immediately. Pass False to join the caller's
            transaction; the insert then runs inside a SAVEPOINT so a
            failed audit write does not roll back the caller's work.

    Returns:
        The created AuditLog record, or None if fallback was used
    """
    audit_log = AuditLog(id=str(uuid.uuid4()), **event.to_dict())
    try:
        if commit:
            db.add(audit_log)
            db.commit()
        else:
            with db.begin_nested():
                db.add(audit_log)

        logger.info(
            "Audit event recorded",
            extra={
                "audit_id": audit_log.id,
                "action_type": audit_log.action_type,
                "actor_id": audit_log.actor_id,
                "target_id": audit_log.target_id,
                "severity": audit_log.severity,
            }
        )
        return audit_log

    except Exception as e:
        if commit:
            try:
                db.rollback()
            except Exception:
                logger.debug("Rollback after failed audit write also failed", exc_info=True)

        fallback_logger.error(
            "AUDIT_FALLBACK: Failed to write audit log to database",
            extra={
                "error": str(e),
                "event": {
                    **event.to_dict(),
                    "timestamp": event.timestamp.isoformat(),
                },
            }
        )
        return None
