"""
Role configuration management.

Maps Discord roles to game-server groups and their permission sets.
Roles that map to the same group share permissions: updating one
propagates to its siblings.

Every mutation returns the affected Discord role id so the caller can
schedule RoleSyncEngine.sync_role for the members holding it.
"""

import logging
import re
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whitelist_engine.config.squad_groups import SquadGroupsLoader
from whitelist_engine.entitlements.errors import (
    ConfigurationError,
    DuplicateRoleConfigError,
    RoleConfigNotFoundError,
)
from whitelist_engine.models.role_config import RoleConfig
from whitelist_engine.services import audit_logger

logger = logging.getLogger(__name__)

VALID_PERMISSIONS = frozenset({
    "balance",
    "ban",
    "cameraman",
    "canseeadminchat",
    "changemap",
    "chat",
    "config",
    "forceteamchange",
    "immune",
    "kick",
    "manageserver",
    "reserve",
    "startvote",
    "teamchange",
})

_GROUP_NAME_RE = re.compile(r"^[A-Za-z0-9_]{1,100}$")


def normalize_permissions(permissions: Iterable[str]) -> List[str]:
    """
    Validate permission tokens; returns them de-duplicated and sorted.

    Raises:
        ConfigurationError: Unknown permission token
    """
    tokens = {p.strip().lower() for p in permissions if p and p.strip()}
    unknown = sorted(tokens - VALID_PERMISSIONS)
    if unknown:
        raise ConfigurationError(f"Unknown permissions: {', '.join(unknown)}")
    return sorted(tokens)


def validate_group_name(group_name: Optional[str]) -> str:
    if not group_name or not _GROUP_NAME_RE.match(group_name):
        raise ConfigurationError(
            f"Invalid group name {group_name!r}: use letters, digits and underscores"
        )
    return group_name


def _split(permissions) -> List[str]:
    if isinstance(permissions, str):
        return permissions.split(",")
    return list(permissions or [])


class RoleConfigService:
    """CRUD for tracked Discord roles."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def list(self) -> List[RoleConfig]:
        return (
            self.db.query(RoleConfig)
            .order_by(RoleConfig.discord_position.desc(), RoleConfig.discord_role_id.asc())
            .all()
        )

    def get(self, discord_role_id: str) -> RoleConfig:
        config = (
            self.db.query(RoleConfig)
            .filter(RoleConfig.discord_role_id == str(discord_role_id))
            .first()
        )
        if config is None:
            raise RoleConfigNotFoundError(f"Role config for Discord role {discord_role_id} not found")
        return config

    def _siblings(self, group_name: str, exclude_id: Optional[str] = None) -> List[RoleConfig]:
        query = self.db.query(RoleConfig).filter(RoleConfig.group_name == group_name)
        if exclude_id is not None:
            query = query.filter(RoleConfig.id != exclude_id)
        return query.all()

    def create(
        self,
        *,
        discord_role_id: str,
        group_name: str,
        permissions: Sequence[str] = (),
        role_name: Optional[str] = None,
        discord_position: int = 0,
        actor_id: Optional[str] = None,
    ) -> RoleConfig:
        """
        Track a Discord role.

        When the group already exists and no permissions are given, the
        new role inherits the group's permissions; otherwise the given set
        becomes the group's shared set.

        Raises:
            ConfigurationError: Invalid group name or permissions
            DuplicateRoleConfigError: The role is already configured
        """
        discord_role_id = str(discord_role_id)
        group_name = validate_group_name(group_name)
        perms = normalize_permissions(_split(permissions))

        existing = (
            self.db.query(RoleConfig)
            .filter(RoleConfig.discord_role_id == discord_role_id)
            .first()
        )
        if existing is not None:
            raise DuplicateRoleConfigError(discord_role_id, existing.group_name)

        siblings = self._siblings(group_name)
        if siblings and not perms:
            perms = siblings[0].permission_list
        permission_str = ",".join(perms)

        config = RoleConfig(
            discord_role_id=discord_role_id,
            role_name=role_name,
            group_name=group_name,
            permissions=permission_str,
            discord_position=int(discord_position or 0),
            created_by=actor_id,
            updated_by=actor_id,
        )
        self.db.add(config)
        for sibling in siblings:
            sibling.permissions = permission_str
            sibling.updated_by = actor_id

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateRoleConfigError(discord_role_id, group_name)

        audit_logger.emit_config_update(
            self.db,
            "create",
            discord_role_id,
            {"group_name": group_name, "permissions": permission_str, "discord_position": config.discord_position},
            actor_id,
        )
        logger.info(
            "Role config created",
            extra={"discord_role_id": discord_role_id, "group_name": group_name},
        )
        return config

    def update(
        self,
        discord_role_id: str,
        *,
        group_name: Optional[str] = None,
        permissions: Optional[Sequence[str]] = None,
        role_name: Optional[str] = None,
        discord_position: Optional[int] = None,
        actor_id: Optional[str] = None,
    ) -> RoleConfig:
        """
        Update a tracked role; permission changes apply to the whole group.

        Raises:
            RoleConfigNotFoundError: Unknown role
            ConfigurationError: Invalid group name or permissions
        """
        config = self.get(discord_role_id)
        previous = {
            "group_name": config.group_name,
            "permissions": config.permissions,
            "discord_position": config.discord_position,
        }

        # Validate everything before touching the row
        if group_name is not None:
            validate_group_name(group_name)
        permission_str = None
        if permissions is not None:
            permission_str = ",".join(normalize_permissions(_split(permissions)))

        if group_name is not None:
            config.group_name = group_name
        if permission_str is None:
            if group_name is not None and group_name != previous["group_name"]:
                # Moving into an existing group adopts its permission set
                siblings = self._siblings(config.group_name, exclude_id=config.id)
                permission_str = siblings[0].permissions if siblings else config.permissions
            else:
                permission_str = config.permissions

        config.permissions = permission_str
        if role_name is not None:
            config.role_name = role_name
        if discord_position is not None:
            config.discord_position = int(discord_position)
        config.updated_by = actor_id

        for sibling in self._siblings(config.group_name, exclude_id=config.id):
            if sibling.permissions != permission_str:
                sibling.permissions = permission_str
                sibling.updated_by = actor_id

        self.db.commit()

        audit_logger.emit_config_update(
            self.db,
            "update",
            config.discord_role_id,
            {
                "previous": previous,
                "group_name": config.group_name,
                "permissions": config.permissions,
                "discord_position": config.discord_position,
            },
            actor_id,
        )
        logger.info(
            "Role config updated",
            extra={"discord_role_id": config.discord_role_id, "group_name": config.group_name},
        )
        return config

    def delete(self, discord_role_id: str, actor_id: Optional[str] = None) -> str:
        """
        Stop tracking a role. Existing grants are left in place; the
        follow-up sync_role re-resolves members against remaining roles.
        """
        config = self.get(discord_role_id)
        snapshot = {"group_name": config.group_name, "permissions": config.permissions}
        self.db.delete(config)
        self.db.commit()

        audit_logger.emit_config_update(self.db, "delete", str(discord_role_id), snapshot, actor_id)
        logger.info("Role config deleted", extra={"discord_role_id": str(discord_role_id)})
        return str(discord_role_id)

    def group_permissions(self) -> List[tuple]:
        """
        (group_name, permissions) pairs ordered by each group's highest
        Discord position.
        """
        best = {}
        for config in self.list():
            current = best.get(config.group_name)
            if current is None or config.discord_position > current[0]:
                best[config.group_name] = (config.discord_position, config.permissions)
        ordered = sorted(best.items(), key=lambda item: (-item[1][0], item[0]))
        return [(name, perms) for name, (_, perms) in ordered]

    def seed_from_config(
        self,
        loader: Optional[SquadGroupsLoader] = None,
        actor_id: Optional[str] = "SYSTEM",
    ) -> List[str]:
        """
        Insert role configs from squad_groups.yml that are not yet present.

        Returns:
            The Discord role ids that were created
        """
        loader = loader or SquadGroupsLoader()
        created = []
        for group in loader.get_groups():
            for role in group.discord_roles:
                exists = (
                    self.db.query(RoleConfig.id)
                    .filter(RoleConfig.discord_role_id == role.id)
                    .first()
                )
                if exists is not None:
                    continue
                self.create(
                    discord_role_id=role.id,
                    group_name=group.name,
                    permissions=_split(group.permissions),
                    role_name=role.name,
                    discord_position=role.position,
                    actor_id=actor_id,
                )
                created.append(role.id)

        logger.info("Seeded role configs", extra={"created_count": len(created)})
        return created
