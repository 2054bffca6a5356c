"""
Platform-level modules shared across the engine.

- audit: append-only audit log model and sync writer
"""

from whitelist_engine.platform.audit import (
    AuditAction,
    AuditEvent,
    AuditLog,
    AuditSeverity,
    write_audit_log_sync,
)

__all__ = [
    "AuditAction",
    "AuditEvent",
    "AuditLog",
    "AuditSeverity",
    "write_audit_log_sync",
]
