"""
Upgrade a RoboPrep SQLite database in place to the target schema version.

  python scripts/upgrade_db.py --check   # exit 1 when an upgrade is pending
  python scripts/upgrade_db.py           # upgrade when needed
  python scripts/upgrade_db.py --force   # re-run even when current

A backup copy of the database file is written before any versioned upgrade.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from roboprep.config import get_settings
from roboprep.db import create_db_engine
from roboprep.upgrade import (
    UpgradeError,
    check_upgrade_needed,
    get_database_version,
    upgrade_database,
)

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Upgrade the RoboPrep database schema")
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="SQLAlchemy URL of the database (defaults to DATABASE_URL)",
    )
    parser.add_argument(
        "--target-version",
        default=settings.database_target_version,
        help="Version to upgrade to",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only report whether an upgrade is needed",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Run the upgrade even when the database is current",
    )
    parser.add_argument(
        "--backup-dir",
        default=settings.backup_dir,
        help="Directory for the pre-upgrade backup (defaults to the database's directory)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )
    if not args.database_url:
        logger.error("No database configured; set DATABASE_URL or pass --database-url")
        return 1

    engine = create_db_engine(args.database_url)
    info = check_upgrade_needed(engine, args.target_version)
    logger.info(
        "Current version: %s, target version: %s, status: %s",
        info.current_version or "none",
        info.target_version,
        info.upgrade_type,
    )

    if args.check:
        return 1 if info.needs_upgrade else 0
    if not info.needs_upgrade and not args.force:
        logger.info("Database is up to date")
        return 0

    try:
        result = upgrade_database(
            engine,
            info.current_version,
            args.target_version,
            database_url=args.database_url,
            backup_dir=args.backup_dir,
            init_version=settings.database_init_version,
        )
    except UpgradeError as e:
        logger.error("Upgrade failed: %s", e)
        return 1

    version = get_database_version(engine)
    if version != args.target_version:
        logger.error(
            "Verification failed: expected version %s, found %s",
            args.target_version,
            version,
        )
        return 1
    if result.backup_path:
        logger.info("Backup written to %s", result.backup_path)
    logger.info("Upgrade complete, database is at version %s", version)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
