"""
Create the RoboPrep schema and seed default categories, prompts, settings
and the bootstrap admin account.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from roboprep.auth import initialize_default_admin
from roboprep.config import get_settings
from roboprep.db import Base, SqlDbClient
from roboprep.seed import initialize_database

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Initialize the RoboPrep database")
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="SQLAlchemy URL of the database (defaults to DATABASE_URL)",
    )
    parser.add_argument(
        "--reset",
        "-r",
        action="store_true",
        help="Drop every table before initializing",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )
    if not args.database_url:
        logger.error("No database configured; set DATABASE_URL or pass --database-url")
        return 1

    db = SqlDbClient(args.database_url)
    if args.reset:
        logger.info("Resetting database")
        Base.metadata.drop_all(db.engine)
        Base.metadata.create_all(db.engine)

    if initialize_database(db, settings.database_target_version):
        logger.info("Database initialized")
    else:
        logger.info("Database already initialized at version %s", db.get_database_version())
    if initialize_default_admin(db, settings):
        logger.info("Default admin account created (%s)", settings.default_admin_email)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
