"""
Game-server whitelist export.

Renders the active entitlement set in the Squad admin-file format:

    Group=<name>:<permissions>
    Admin=<steam_id>:<group> // <username> <discord_username>

Sections:
- staff: kind=staff entitlements
- members: role-derived whitelist entitlements
- general: every other whitelist entitlement (manual, donation, import),
  excluding subjects already listed in a role section

The combined file concatenates group definitions and the three sections
between a header and footer. All reads go through the EntitlementCache.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from whitelist_engine.entitlements.cache import ActiveEntitlement, EntitlementCache
from whitelist_engine.models.grant import GrantKind, GrantSource
from whitelist_engine.services.role_config_service import RoleConfigService

logger = logging.getLogger(__name__)

NO_ENTRIES = (
    "/////////////////////////////////\n"
    "////// No entries \n"
    "/////////////////////////////////\n"
)
_RULE = "//////////////////////////////////\n"
DEFAULT_GROUP_PERMISSIONS = "reserve"


@dataclass
class WhitelistSections:
    staff: List[ActiveEntitlement]
    members: List[ActiveEntitlement]
    general: List[ActiveEntitlement]


def format_admin_line(entry: ActiveEntitlement, group_name: str, prefer_eos_id: bool = False) -> str:
    identifier = entry.eos_id if prefer_eos_id and entry.eos_id else entry.steam_id
    line = f"Admin={identifier}:{group_name}"
    if entry.username or entry.discord_username:
        line += f" // {entry.username or ''}"
        if entry.discord_username:
            line += f" {entry.discord_username}"
    return line + "\n"


class WhitelistExporter:
    """
    Usage:
        exporter = WhitelistExporter(db, cache, default_group="Member")
        text = exporter.render_combined()
    """

    def __init__(
        self,
        db_session: Session,
        cache: EntitlementCache,
        default_group: str = "Member",
        prefer_eos_id: bool = False,
    ):
        self.db = db_session
        self.cache = cache
        self.default_group = default_group
        self.prefer_eos_id = prefer_eos_id

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def sections(self) -> WhitelistSections:
        staff = self.cache.get_active_entitlements(self.db, GrantKind.STAFF.value)
        whitelist = self.cache.get_active_entitlements(self.db, GrantKind.WHITELIST.value)

        members = [e for e in whitelist if e.source == GrantSource.ROLE.value]
        listed: Set[str] = {e.steam_id for e in staff} | {e.steam_id for e in members}
        general = [
            e for e in whitelist
            if e.source != GrantSource.ROLE.value and e.steam_id not in listed
        ]
        return WhitelistSections(staff=staff, members=members, general=general)

    def group_definitions(self) -> Dict[str, str]:
        """Group name -> permissions, highest Discord position first."""
        groups = dict(RoleConfigService(self.db).group_permissions())
        if self.default_group not in groups:
            groups[self.default_group] = DEFAULT_GROUP_PERMISSIONS
        return groups

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render_entries(self, entries: Iterable[ActiveEntitlement], group_override: Optional[str] = None) -> str:
        return "".join(
            format_admin_line(e, group_override or e.group_name, self.prefer_eos_id)
            for e in entries
        )

    def _render_standalone(self, entries: List[ActiveEntitlement], group_override: Optional[str] = None) -> str:
        if not entries:
            return NO_ENTRIES
        definitions = self.group_definitions()
        used = []
        for e in entries:
            name = group_override or e.group_name
            if name not in used:
                used.append(name)
        content = "".join(f"Group={name}:{definitions.get(name, '')}\n" for name in used)
        return content + self._render_entries(entries, group_override)

    def render_staff(self) -> str:
        return self._render_standalone(self.sections().staff)

    def render_members(self) -> str:
        return self._render_standalone(self.sections().members)

    def render_general(self) -> str:
        return self._render_standalone(self.sections().general, group_override=self.default_group)

    def render_combined(self, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        sections = self.sections()

        parts = [
            _RULE,
            "// Comprehensive Squad Whitelist\n",
            f"// Generated: {now.isoformat()}\n",
            _RULE,
            "\n",
            "// Group Definitions\n",
        ]
        parts.extend(f"Group={name}:{perms}\n" for name, perms in self.group_definitions().items())
        parts.append("\n")

        parts.append("// Staff (Role-based + Database)\n")
        parts.append(self._render_entries(sections.staff))
        parts.append("\n")

        parts.append("// Members (Role-based)\n")
        parts.append(self._render_entries(sections.members))
        parts.append("\n")

        parts.append("// General Whitelist (Database)\n")
        parts.append(self._render_entries(sections.general, group_override=self.default_group))

        parts.append("\n")
        parts.append(_RULE)
        parts.append("// End of Whitelist\n")
        parts.append(_RULE)

        logger.info(
            "Rendered combined whitelist",
            extra={
                "staff": len(sections.staff),
                "members": len(sections.members),
                "general": len(sections.general),
            },
        )
        return "".join(parts)
