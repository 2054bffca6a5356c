"""
Role config seed script.

Inserts the Discord role -> group mappings from config/squad_groups.yml
that are not yet in role_configs. Existing rows are left untouched.

Usage:
    python -m scripts.seed_role_configs
    python -m scripts.seed_role_configs --config path/to/squad_groups.yml
    python -m scripts.seed_role_configs --dry-run

Environment variables:
    DATABASE_URL: Database connection string (required)
"""

import argparse
import sys
import logging
from pathlib import Path

# Add backend directory to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from sqlalchemy.orm import sessionmaker

from whitelist_engine.config.squad_groups import SquadGroupsLoader
from whitelist_engine.database.session import build_engine
from whitelist_engine.models.role_config import RoleConfig
from whitelist_engine.services.role_config_service import RoleConfigService

from scripts.init_db import get_database_url

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SEED_ACTOR = "SEED_SCRIPT"


def seed_role_configs(database_url: str, config_path=None, dry_run: bool = False) -> int:
    """Seed missing role configs. Returns the number created (or pending on dry run)."""
    loader = SquadGroupsLoader(config_path)
    engine = build_engine(database_url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = SessionLocal()
    try:
        if dry_run:
            existing = {row.discord_role_id for row in session.query(RoleConfig.discord_role_id)}
            pending = 0
            for group in loader.get_groups():
                for role in group.discord_roles:
                    marker = "exists" if role.id in existing else "NEW"
                    if role.id not in existing:
                        pending += 1
                    logger.info(f"  {group.name:<12} {role.id:<22} {role.name or '':<20} {marker}")
            logger.info(f"Dry run: {pending} role config(s) would be created")
            return pending

        created = RoleConfigService(session).seed_from_config(loader, actor_id=SEED_ACTOR)
        logger.info(f"Created {len(created)} role config(s)")
        return len(created)
    finally:
        session.close()


def main():
    parser = argparse.ArgumentParser(description="Seed role configs from squad_groups.yml")
    parser.add_argument("--config", help="Path to squad_groups.yml")
    parser.add_argument("--dry-run", action="store_true", help="Preview without saving")
    args = parser.parse_args()

    try:
        seed_role_configs(get_database_url(), config_path=args.config, dry_run=args.dry_run)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
