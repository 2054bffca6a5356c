"""
Audit event emitters for the grant lifecycle, role sync, confidence
changes and role configuration.

Each function builds the event details and delegates to
write_audit_log_sync. All calls are wrapped in try/except so audit
failures never crash the caller.

Pass commit=False to record the event inside the caller's transaction
(e.g. the confidence upgrade, where row flips and audit commit together).
"""

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _emit(
    db: Session,
    action_type,
    *,
    actor_id: Optional[str],
    target_type: str,
    target_id: Optional[str],
    description: str,
    details: dict[str, Any],
    severity=None,
    success: bool = True,
    commit: bool = True,
) -> None:
    try:
        from whitelist_engine.platform.audit import (
            AuditEvent,
            AuditSeverity,
            write_audit_log_sync,
        )

        write_audit_log_sync(
            db,
            AuditEvent(
                action_type=action_type,
                actor_id=actor_id,
                target_type=target_type,
                target_id=target_id,
                description=description,
                details=details,
                severity=severity or AuditSeverity.INFO,
                success=success,
            ),
            commit=commit,
        )
    except Exception:
        logger.warning(
            "audit_logger.emit_failed",
            extra={"action_type": str(action_type), "target_id": target_id},
            exc_info=True,
        )


def _grant_details(grant) -> dict[str, Any]:
    return {
        "grant_id": grant.id,
        "source": grant.source,
        "kind": grant.kind,
        "steam_id": grant.steam_id,
        "discord_user_id": grant.discord_user_id,
        "role_name": grant.role_name,
        "duration_value": grant.duration_value,
        "duration_type": grant.duration_type,
        "approved": grant.approved,
        "revoked": grant.revoked,
    }


def emit_grant_created(db: Session, grant, actor_id: Optional[str], *, commit: bool = True) -> None:
    """WHITELIST_GRANT, DONATION_GRANT or ROLE_SYNC (create) depending on source."""
    from whitelist_engine.platform.audit import AuditAction

    action = {
        "donation": AuditAction.DONATION_GRANT,
        "import": AuditAction.WHITELIST_IMPORT,
        "role": AuditAction.ROLE_SYNC,
    }.get(grant.source, AuditAction.WHITELIST_GRANT)

    if grant.duration_value is None:
        duration = "permanent"
    else:
        duration = f"{grant.duration_value} {grant.duration_type}"

    _emit(
        db,
        action,
        actor_id=actor_id,
        target_type="grant",
        target_id=grant.steam_id or grant.discord_user_id,
        description=f"Granted {grant.kind} access ({grant.source}, {duration})",
        details={**_grant_details(grant), "operation": "create"},
        commit=commit,
    )


def emit_grant_revoked(db: Session, grants: list, actor_id: Optional[str], reason: Optional[str]) -> None:
    from whitelist_engine.platform.audit import AuditAction

    if not grants:
        return
    first = grants[0]
    _emit(
        db,
        AuditAction.WHITELIST_REVOKE,
        actor_id=actor_id,
        target_type="grant",
        target_id=first.steam_id or first.discord_user_id,
        description=f"Revoked {len(grants)} grant(s)",
        details={
            "grant_ids": [g.id for g in grants],
            "reason": reason,
        },
    )


def emit_grant_extended(db: Session, grant, actor_id: Optional[str], reason: Optional[str]) -> None:
    from whitelist_engine.platform.audit import AuditAction

    _emit(
        db,
        AuditAction.WHITELIST_EXTEND,
        actor_id=actor_id,
        target_type="grant",
        target_id=grant.steam_id,
        description=f"Extended whitelist by {grant.duration_value} {grant.duration_type}",
        details={**_grant_details(grant), "reason": reason},
    )


def emit_grant_purged(db: Session, grant_snapshot: dict, actor_id: Optional[str]) -> None:
    from whitelist_engine.platform.audit import AuditAction, AuditSeverity

    _emit(
        db,
        AuditAction.WHITELIST_PURGE,
        actor_id=actor_id,
        target_type="grant",
        target_id=grant_snapshot.get("steam_id") or grant_snapshot.get("discord_user_id"),
        description="Grant permanently deleted",
        details=grant_snapshot,
        severity=AuditSeverity.WARNING,
    )


def emit_role_grant_updated(
    db: Session,
    grant,
    previous_role: Optional[str],
    previous_kind: Optional[str],
    actor_id: Optional[str],
) -> None:
    from whitelist_engine.platform.audit import AuditAction

    _emit(
        db,
        AuditAction.ROLE_SYNC,
        actor_id=actor_id,
        target_type="grant",
        target_id=grant.discord_user_id,
        description=f"Role group changed from {previous_role} to {grant.role_name}",
        details={
            **_grant_details(grant),
            "operation": "update",
            "previous_role": previous_role,
            "previous_kind": previous_kind,
        },
    )


def emit_security_block(db: Session, grant, confidence: float, reason: str, actor_id: Optional[str]) -> None:
    from whitelist_engine.platform.audit import AuditAction, AuditSeverity

    _emit(
        db,
        AuditAction.SECURITY_BLOCK,
        actor_id=actor_id,
        target_type="grant",
        target_id=grant.discord_user_id,
        description=reason,
        details={**_grant_details(grant), "confidence": confidence},
        severity=AuditSeverity.WARNING,
    )


def emit_role_sync_error(db: Session, discord_user_id: str, error: str, actor_id: Optional[str]) -> None:
    from whitelist_engine.platform.audit import AuditAction, AuditSeverity

    _emit(
        db,
        AuditAction.ROLE_SYNC_ERROR,
        actor_id=actor_id,
        target_type="discord_user",
        target_id=discord_user_id,
        description="Role sync failed for member",
        details={"error": error},
        severity=AuditSeverity.ERROR,
        success=False,
    )


def emit_bulk_sync(db: Session, summary: dict[str, Any], actor_id: Optional[str], scope: str) -> None:
    from whitelist_engine.platform.audit import AuditAction, AuditSeverity

    _emit(
        db,
        AuditAction.BULK_ROLE_SYNC,
        actor_id=actor_id,
        target_type="guild",
        target_id=scope,
        description=(
            f"Role sync checked {summary.get('checked', 0)}, "
            f"updated {summary.get('updated', 0)}, errors {summary.get('errors', 0)}"
        ),
        details=summary,
        severity=AuditSeverity.WARNING if summary.get("errors") else AuditSeverity.INFO,
    )


def emit_security_upgrade(
    db: Session,
    discord_user_id: str,
    grant_ids: list,
    previous_confidence: float,
    actor_id: Optional[str],
    *,
    commit: bool = True,
) -> None:
    from whitelist_engine.platform.audit import AuditAction

    _emit(
        db,
        AuditAction.SECURITY_UPGRADE,
        actor_id=actor_id,
        target_type="discord_user",
        target_id=discord_user_id,
        description=f"Upgraded {len(grant_ids)} security-blocked role grant(s)",
        details={
            "grant_ids": grant_ids,
            "previous_confidence": previous_confidence,
            "upgraded_from": "security_blocked",
        },
        commit=commit,
    )


def emit_link_upgraded(
    db: Session,
    discord_user_id: str,
    steam_id: str,
    previous_confidence: float,
    link_source: str,
    reason: Optional[str],
    actor_id: Optional[str],
    *,
    commit: bool = True,
) -> None:
    from whitelist_engine.platform.audit import AuditAction

    _emit(
        db,
        AuditAction.LINK_UPGRADED,
        actor_id=actor_id,
        target_type="discord_user",
        target_id=discord_user_id,
        description=f"Link confidence raised from {previous_confidence:.1f} to 1.0",
        details={
            "steam_id": steam_id,
            "previous_confidence": previous_confidence,
            "new_confidence": 1.0,
            "link_source": link_source,
            "reason": reason,
        },
        commit=commit,
    )


def emit_confidence_change(
    db: Session,
    discord_user_id: str,
    steam_id: str,
    confidence: float,
    link_source: str,
    actor_id: Optional[str],
) -> None:
    from whitelist_engine.platform.audit import AuditAction

    _emit(
        db,
        AuditAction.CONFIDENCE_CHANGE,
        actor_id=actor_id,
        target_type="discord_user",
        target_id=discord_user_id,
        description=f"Potential link recorded at confidence {confidence:.1f}",
        details={"steam_id": steam_id, "confidence": confidence, "link_source": link_source},
    )


def emit_config_update(
    db: Session,
    operation: str,
    discord_role_id: str,
    details: dict[str, Any],
    actor_id: Optional[str],
) -> None:
    from whitelist_engine.platform.audit import AuditAction

    _emit(
        db,
        AuditAction.CONFIG_UPDATE,
        actor_id=actor_id,
        target_type="role_config",
        target_id=discord_role_id,
        description=f"Role config {operation}: {discord_role_id}",
        details={"operation": operation, **details},
    )
