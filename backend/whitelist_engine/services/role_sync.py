"""
Role synchronization engine.

Keeps exactly one role-derived grant per Discord user consistent with live
guild membership:
- resolves each member's highest tracked role to a game-server group
- passes new grants through the confidence gate
- corrects an existing grant's group in place instead of inserting
- never revokes on role loss (revocation is an explicit admin action)

Triggers:
- role config created/updated/deleted -> sync_role (members holding it)
- manual full sync -> sync_all
- confidence upgrade -> sync_user

Batch runs process members sequentially, give each member a timeout,
capture per-member failures as values and invalidate the entitlement
cache once per batch.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from whitelist_engine.entitlements.cache import EntitlementCache
from whitelist_engine.entitlements.confidence import ConfidenceGate, GateDecision
from whitelist_engine.entitlements.errors import GrantConflictError
from whitelist_engine.entitlements.metadata import (
    RoleSyncMetadata,
    SecurityBlockMetadata,
)
from whitelist_engine.entitlements.priority import (
    DEFAULT_MEMBER_GROUPS,
    kind_for_group,
    resolve_group,
)
from whitelist_engine.entitlements.store import GrantStore
from whitelist_engine.entitlements.upgrade import upgrade_security_blocked
from whitelist_engine.integrations.discord.exceptions import GatewayError
from whitelist_engine.integrations.discord.gateway import GuildGateway
from whitelist_engine.integrations.discord.models import MemberSnapshot
from whitelist_engine.models.account_link import VERIFIED_CONFIDENCE
from whitelist_engine.models.base import utcnow
from whitelist_engine.models.grant import SECURITY_SYSTEM_ACTOR, Grant, GrantSource
from whitelist_engine.models.role_config import RoleConfig
from whitelist_engine.services import audit_logger

logger = logging.getLogger(__name__)

ROLE_SYNC_ACTOR = "ROLE_SYNC"
DEFAULT_MEMBER_TIMEOUT_SECONDS = 10.0


class SyncAction:
    UNTRACKED = "untracked"
    UNCHANGED = "unchanged"
    CREATED = "created"
    UPDATED = "updated"
    SECURITY_BLOCKED = "security_blocked"
    BLOCK_UPDATED = "block_updated"
    UPGRADED = "upgraded"


@dataclass
class MemberSyncResult:
    """Outcome of syncing one member."""

    discord_user_id: str
    changed: bool
    action: str
    grant_id: Optional[str] = None
    group_name: Optional[str] = None
    security_blocked: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "discord_user_id": self.discord_user_id,
            "changed": self.changed,
            "action": self.action,
            "grant_id": self.grant_id,
            "group_name": self.group_name,
            "security_blocked": self.security_blocked,
            "reason": self.reason,
        }


@dataclass
class MemberSyncError:
    discord_user_id: str
    error: str
    error_type: str

    def to_dict(self) -> dict:
        return {
            "discord_user_id": self.discord_user_id,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class BatchSyncResult:
    """Aggregated outcome of a batch sync."""

    checked: int = 0
    updated: int = 0
    skipped_bots: int = 0
    errors: List[MemberSyncError] = field(default_factory=list)
    results: List[MemberSyncResult] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "checked": self.checked,
            "updated": self.updated,
            "errors": len(self.errors),
            "skipped_bots": self.skipped_bots,
            "error_details": [e.to_dict() for e in self.errors],
            "duration_seconds": round(duration, 2),
        }


@dataclass
class UserSyncResult:
    """Outcome of syncing a single user on demand."""

    discord_user_id: str
    synced: bool
    result: Optional[MemberSyncResult] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    status_code: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "discord_user_id": self.discord_user_id,
            "synced": self.synced,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "reason": self.reason,
        }


class RoleSyncEngine:
    """
    Reconciles role-derived grants against guild membership.

    The engine is the only writer of source=role grants.
    """

    def __init__(
        self,
        db_session: Session,
        gateway: Optional[GuildGateway],
        cache: Optional[EntitlementCache] = None,
        store: Optional[GrantStore] = None,
        gate: Optional[ConfidenceGate] = None,
        member_groups: Sequence[str] = DEFAULT_MEMBER_GROUPS,
        member_timeout_seconds: float = DEFAULT_MEMBER_TIMEOUT_SECONDS,
        confidence_threshold: float = VERIFIED_CONFIDENCE,
    ):
        self.db = db_session
        self.gateway = gateway
        self.store = store or GrantStore(db_session, cache)
        self.gate = gate or ConfidenceGate(db_session, threshold=confidence_threshold)
        self.member_groups = tuple(member_groups)
        self.member_timeout_seconds = member_timeout_seconds

    def _require_gateway(self) -> GuildGateway:
        if self.gateway is None:
            raise GatewayError("Discord gateway is not configured")
        return self.gateway

    def _load_configs(self) -> List[RoleConfig]:
        return self.db.query(RoleConfig).all()

    # ------------------------------------------------------------------
    # Single member
    # ------------------------------------------------------------------

    async def sync_member(
        self,
        discord_user_id: str,
        target_group: Optional[str],
        *,
        kind: Optional[str] = None,
        actor_id: Optional[str] = None,
        member: Optional[MemberSnapshot] = None,
        discord_role_id: Optional[str] = None,
    ) -> MemberSyncResult:
        """
        Bring one user's role grant in line with their resolved group.

        Args:
            discord_user_id: Discord user id
            target_group: Resolved group, or None when the user holds no
                tracked role (existing grants are left untouched)
            kind: Grant kind; derived from the group when omitted
            actor_id: Who triggered the sync
            member: Member snapshot, used for the display name
            discord_role_id: The winning Discord role, for metadata
        """
        discord_user_id = str(discord_user_id)
        actor_id = actor_id or ROLE_SYNC_ACTOR

        if target_group is None:
            return MemberSyncResult(discord_user_id, changed=False, action=SyncAction.UNTRACKED)

        kind = kind or kind_for_group(target_group, self.member_groups)

        active = self.store.get_active_role_grant(discord_user_id)
        if active is not None:
            return self._reconcile_existing(active, target_group, kind, actor_id, discord_role_id)

        decision = self.gate.gate_grant(discord_user_id, target_group)

        blocked = self.store.get_security_blocked_role_grants(discord_user_id)
        if blocked:
            return self._reconcile_blocked(
                blocked[0], decision, target_group, kind, actor_id, discord_role_id
            )

        return self._create(
            discord_user_id, decision, target_group, kind, actor_id, member, discord_role_id
        )

    def _reconcile_existing(
        self,
        grant: Grant,
        target_group: str,
        kind: str,
        actor_id: str,
        discord_role_id: Optional[str],
    ) -> MemberSyncResult:
        if grant.role_name == target_group and grant.kind == kind:
            return MemberSyncResult(
                grant.discord_user_id,
                changed=False,
                action=SyncAction.UNCHANGED,
                grant_id=grant.id,
                group_name=target_group,
            )

        previous_role, previous_kind = grant.role_name, grant.kind
        self.store.update_role_grant(
            grant,
            role_name=target_group,
            kind=kind,
            metadata=RoleSyncMetadata(
                group_name=target_group,
                discord_role_id=discord_role_id,
                previous_role=previous_role,
                previous_kind=previous_kind,
                updated_at=utcnow(),
            ),
        )
        audit_logger.emit_role_grant_updated(self.db, grant, previous_role, previous_kind, actor_id)

        logger.info(
            "Role grant group updated",
            extra={
                "discord_user_id": grant.discord_user_id,
                "previous_role": previous_role,
                "group_name": target_group,
            },
        )
        return MemberSyncResult(
            grant.discord_user_id,
            changed=True,
            action=SyncAction.UPDATED,
            grant_id=grant.id,
            group_name=target_group,
        )

    def _reconcile_blocked(
        self,
        grant: Grant,
        decision: GateDecision,
        target_group: str,
        kind: str,
        actor_id: str,
        discord_role_id: Optional[str],
    ) -> MemberSyncResult:
        discord_user_id = grant.discord_user_id

        if decision.approved:
            flipped = upgrade_security_blocked(
                self.store,
                discord_user_id,
                decision.confidence,
                actor_id=actor_id,
                upgrade_source="role_sync",
            )
            active = self.store.get_active_role_grant(discord_user_id)
            if active is None:
                raise GrantConflictError(discord_user_id)
            result = self._reconcile_existing(active, target_group, kind, actor_id, discord_role_id)
            if flipped:
                result.changed = True
                result.action = SyncAction.UPGRADED
            return result

        if grant.role_name == target_group and grant.kind == kind:
            return MemberSyncResult(
                discord_user_id,
                changed=False,
                action=SyncAction.SECURITY_BLOCKED,
                grant_id=grant.id,
                group_name=target_group,
                security_blocked=True,
                reason=decision.reason,
            )

        self.store.update_role_grant(
            grant,
            role_name=target_group,
            kind=kind,
            metadata=SecurityBlockMetadata(
                group_name=target_group,
                confidence_score=decision.confidence.score,
                link_source=decision.confidence.source,
            ),
        )
        return MemberSyncResult(
            discord_user_id,
            changed=True,
            action=SyncAction.BLOCK_UPDATED,
            grant_id=grant.id,
            group_name=target_group,
            security_blocked=True,
            reason=decision.reason,
        )

    def _create(
        self,
        discord_user_id: str,
        decision: GateDecision,
        target_group: str,
        kind: str,
        actor_id: str,
        member: Optional[MemberSnapshot],
        discord_role_id: Optional[str],
    ) -> MemberSyncResult:
        link = decision.confidence
        common = dict(
            source=GrantSource.ROLE.value,
            kind=kind,
            discord_user_id=discord_user_id,
            steam_id=link.steam_id,
            eos_id=link.eos_id,
            username=link.username,
            discord_username=member.username if member else None,
            granted_by=actor_id,
            role_name=target_group,
        )

        try:
            if decision.approved:
                grant = self.store.create_grant(
                    **common,
                    metadata=RoleSyncMetadata(group_name=target_group, discord_role_id=discord_role_id),
                )
                audit_logger.emit_grant_created(self.db, grant, actor_id)
                return MemberSyncResult(
                    discord_user_id,
                    changed=True,
                    action=SyncAction.CREATED,
                    grant_id=grant.id,
                    group_name=target_group,
                )

            grant = self.store.create_grant(
                **common,
                approved=False,
                revoked=True,
                revoked_by=SECURITY_SYSTEM_ACTOR,
                revoked_reason=decision.reason,
                metadata=SecurityBlockMetadata(
                    group_name=target_group,
                    confidence_score=link.score,
                    link_source=link.source,
                ),
            )
        except GrantConflictError:
            # Another writer won the race for the active role grant
            winner = self.store.get_active_role_grant(discord_user_id)
            if winner is None:
                raise
            logger.info(
                "Role grant created concurrently, reconciling with winner",
                extra={"discord_user_id": discord_user_id, "grant_id": winner.id},
            )
            return self._reconcile_existing(winner, target_group, kind, actor_id, discord_role_id)

        audit_logger.emit_security_block(self.db, grant, link.score, decision.reason, actor_id)
        return MemberSyncResult(
            discord_user_id,
            changed=True,
            action=SyncAction.SECURITY_BLOCKED,
            grant_id=grant.id,
            group_name=target_group,
            security_blocked=True,
            reason=decision.reason,
        )

    async def sync_snapshot(
        self,
        member: MemberSnapshot,
        configs: Sequence[RoleConfig],
        actor_id: Optional[str] = None,
    ) -> MemberSyncResult:
        config = resolve_group(member.role_ids, configs)
        return await self.sync_member(
            member.user_id,
            config.group_name if config is not None else None,
            actor_id=actor_id,
            member=member,
            discord_role_id=config.discord_role_id if config is not None else None,
        )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def _run_batch(
        self,
        members: Iterable[MemberSnapshot],
        actor_id: Optional[str],
        reason: str,
        include=None,
    ) -> BatchSyncResult:
        result = BatchSyncResult()
        configs = self._load_configs()
        tracked = {c.discord_role_id for c in configs}
        include = include or (lambda m: bool(m.role_ids & tracked))

        with self.store.batch(reason=reason):
            for member in members:
                if member.is_bot:
                    result.skipped_bots += 1
                    continue
                if not include(member):
                    continue

                result.checked += 1
                try:
                    outcome = await asyncio.wait_for(
                        self.sync_snapshot(member, configs, actor_id),
                        timeout=self.member_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    self.db.rollback()
                    logger.warning(
                        "Member sync timed out",
                        extra={"discord_user_id": member.user_id},
                    )
                    result.errors.append(
                        MemberSyncError(member.user_id, "Member sync timed out", "TimeoutError")
                    )
                    continue
                except Exception as e:
                    self.db.rollback()
                    logger.error(
                        "Member sync failed",
                        extra={"discord_user_id": member.user_id},
                        exc_info=True,
                    )
                    result.errors.append(MemberSyncError(member.user_id, str(e), type(e).__name__))
                    audit_logger.emit_role_sync_error(self.db, member.user_id, str(e), actor_id)
                    continue

                result.results.append(outcome)
                if outcome.changed:
                    result.updated += 1

                # Let concurrent requests interleave between members
                await asyncio.sleep(0)

        logger.info("Role sync batch complete", extra={"reason": reason, **result.to_dict()})
        return result

    async def sync_all(self, actor_id: Optional[str] = None) -> BatchSyncResult:
        """
        Sync every non-bot guild member holding a tracked role.

        Raises:
            GatewayError: The member list itself could not be fetched
        """
        members = await self._require_gateway().fetch_members()
        result = await self._run_batch(members, actor_id, reason="role_sync_all")
        audit_logger.emit_bulk_sync(self.db, result.to_dict(), actor_id, scope="all")
        return result

    async def sync_role(self, discord_role_id: str, actor_id: Optional[str] = None) -> BatchSyncResult:
        """
        Sync only the members holding one Discord role.

        Used after that role's configuration is created, updated or
        deleted; members are re-resolved against all remaining configs.
        """
        discord_role_id = str(discord_role_id)
        members = await self._require_gateway().fetch_members()
        result = await self._run_batch(
            members,
            actor_id,
            reason=f"role_sync_role:{discord_role_id}",
            include=lambda m: m.has_role(discord_role_id),
        )
        audit_logger.emit_bulk_sync(self.db, result.to_dict(), actor_id, scope=f"role:{discord_role_id}")
        return result

    async def sync_user(self, discord_user_id: str, actor_id: Optional[str] = None) -> UserSyncResult:
        """
        Sync a single user on demand.

        Discord failures are returned in the result rather than raised so
        callers (e.g. the confidence upgrade) can treat the sync as
        best-effort.
        """
        discord_user_id = str(discord_user_id)
        try:
            member = await asyncio.wait_for(
                self._require_gateway().fetch_member(discord_user_id),
                timeout=self.member_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Member fetch timed out", extra={"discord_user_id": discord_user_id})
            return UserSyncResult(discord_user_id, synced=False, error="Member fetch timed out")
        except GatewayError as e:
            logger.warning(
                "Member fetch failed",
                extra={"discord_user_id": discord_user_id, "error": e.message},
            )
            return UserSyncResult(
                discord_user_id, synced=False, error=e.message, status_code=e.status_code
            )

        configs = self._load_configs()
        config = resolve_group(member.role_ids, configs)
        if config is None:
            return UserSyncResult(
                discord_user_id,
                synced=False,
                reason="User holds no tracked role",
            )

        outcome = await self.sync_member(
            discord_user_id,
            config.group_name,
            actor_id=actor_id,
            member=member,
            discord_role_id=config.discord_role_id,
        )
        return UserSyncResult(discord_user_id, synced=True, result=outcome)
