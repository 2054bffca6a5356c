"""
Squad group configuration loader.

Loads the default group -> Discord role mapping from config/squad_groups.yml.
The database (role_configs) is authoritative at runtime; this file only
seeds it.

Usage:
    from whitelist_engine.config.squad_groups import get_squad_groups_loader

    loader = get_squad_groups_loader()
    for group in loader.get_groups():
        print(group.name, group.permissions, group.discord_roles)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_FILE = "squad_groups.yml"


@dataclass(frozen=True)
class SquadRole:
    id: str
    name: Optional[str] = None
    position: int = 0


@dataclass(frozen=True)
class SquadGroup:
    name: str
    permissions: str = ""
    discord_roles: List[SquadRole] = field(default_factory=list)


class SquadGroupsLoader:
    """
    Thread-safe singleton loader for config/squad_groups.yml.
    """

    _instance: Optional["SquadGroupsLoader"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path
        self._raw: Dict[str, Any] = {}
        self._groups: List[SquadGroup] = []
        self._default_group: str = "Member"
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    # ------------------------------------------------------------------
    # Config resolution
    # ------------------------------------------------------------------

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        env_path = os.getenv("SQUAD_GROUPS_CONFIG")
        if env_path:
            return Path(env_path)

        candidates = [
            # Repository root, relative to backend/whitelist_engine/config/
            Path(__file__).parent.parent.parent.parent / "config" / _CONFIG_FILE,
            Path(os.getcwd()) / "config" / _CONFIG_FILE,
            Path(os.getcwd()) / ".." / "config" / _CONFIG_FILE,
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"{_CONFIG_FILE} not found in: {[str(p) for p in candidates]}"
        )

    def _load(self) -> None:
        with self._load_lock:
            path = self._resolve_path()
            logger.info("Loading squad groups config from %s", path)

            with open(path, "r") as f:
                self._raw = yaml.safe_load(f) or {}

            self._default_group = self._raw.get("default_group", "Member")
            groups = []
            for name, data in (self._raw.get("groups") or {}).items():
                data = data or {}
                roles = [
                    SquadRole(
                        id=str(role["id"]),
                        name=role.get("name"),
                        position=int(role.get("position", 0)),
                    )
                    for role in data.get("discord_roles") or []
                ]
                groups.append(
                    SquadGroup(
                        name=name,
                        permissions=data.get("permissions") or "",
                        discord_roles=roles,
                    )
                )
            self._groups = groups

            logger.info("Loaded %d squad groups", len(self._groups))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Re-read the YAML from disk."""
        self._load()

    @property
    def default_group(self) -> str:
        return self._default_group

    def get_groups(self) -> List[SquadGroup]:
        return list(self._groups)

    def get_group(self, name: str) -> Optional[SquadGroup]:
        for group in self._groups:
            if group.name == name:
                return group
        return None


def get_squad_groups_loader(config_path: Optional[str] = None) -> SquadGroupsLoader:
    return SquadGroupsLoader(config_path)


def reset_squad_groups_loader() -> None:
    """Drop the singleton so the next call re-reads (tests)."""
    with SquadGroupsLoader._lock:
        SquadGroupsLoader._instance = None
