"""
Versioned in-place upgrade of the SQLite database.

The version lives in row 1 of "DatabaseInfo". Upgrades are explicit
(from, to) steps; there is exactly one today, 2.0.0 -> 2.1.0, which adds
"User"."isApproved" and approves every existing account.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy import inspect, insert, select, text, update
from sqlalchemy.engine import Connection, Engine, make_url

from roboprep.db import DatabaseInfoRow

logger = logging.getLogger(__name__)

TARGET_VERSION = "2.1.0"
INIT_VERSION = "2.0.0"

_info = DatabaseInfoRow.__table__


class UpgradeError(Exception):
    pass


@dataclass
class UpgradeInfo:
    needs_upgrade: bool
    current_version: Optional[str]
    target_version: str
    upgrade_type: str

    def as_dict(self) -> dict:
        return {
            "needs_upgrade": self.needs_upgrade,
            "current_version": self.current_version,
            "target_version": self.target_version,
            "upgrade_type": self.upgrade_type,
        }


@dataclass
class UpgradeResult:
    from_version: Optional[str]
    to_version: str
    backup_path: Optional[Path] = None
    steps: list[str] = field(default_factory=list)


def get_database_version(engine: Engine) -> Optional[str]:
    with engine.connect() as conn:
        if not inspect(conn).has_table(_info.name):
            return None
        row = conn.execute(select(_info.c.version).where(_info.c.id == 1)).first()
        return row[0] if row else None


def check_upgrade_needed(engine: Engine, target_version: str = TARGET_VERSION) -> UpgradeInfo:
    current = get_database_version(engine)
    if current is None:
        return UpgradeInfo(True, None, target_version, "initialization")
    needs_upgrade = current != target_version
    return UpgradeInfo(
        needs_upgrade, current, target_version, "upgrade" if needs_upgrade else "current"
    )


def sqlite_file_path(database_url: str) -> Optional[Path]:
    """Filesystem path of a file-backed SQLite URL, else None."""
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite"):
        return None
    if not url.database or url.database == ":memory:":
        return None
    return Path(url.database)


def create_backup(
    database_url: str,
    from_version: str,
    to_version: str,
    backup_dir: Optional[str] = None,
) -> Optional[Path]:
    source = sqlite_file_path(database_url)
    if source is None:
        logger.info("Database is not file-backed, skipping backup")
        return None
    if not source.exists():
        logger.warning("Source database not found at %s, skipping backup", source)
        return None

    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    name = f"roboprep-backup-v{from_version}-to-v{to_version}-{timestamp}.db"
    target_dir = Path(backup_dir) if backup_dir else source.resolve().parent
    target_dir.mkdir(parents=True, exist_ok=True)
    backup_path = target_dir / name
    shutil.copy2(source, backup_path)
    logger.info("Backup created: %s", backup_path)
    return backup_path


def set_database_version(conn: Connection, version: str) -> None:
    _info.create(conn, checkfirst=True)
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    result = conn.execute(
        update(_info)
        .where(_info.c.id == 1)
        .values({DatabaseInfoRow.version: version, DatabaseInfoRow.updated_at: now})
    )
    if not result.rowcount:
        conn.execute(
            insert(_info).values(
                {
                    DatabaseInfoRow.id: 1,
                    DatabaseInfoRow.version: version,
                    DatabaseInfoRow.updated_at: now,
                }
            )
        )


def upgrade_2_0_0_to_2_1_0(conn: Connection) -> None:
    columns = {column["name"] for column in inspect(conn).get_columns("User")}
    if "isApproved" not in columns:
        logger.info('Adding "isApproved" column to "User"')
        conn.execute(text('ALTER TABLE "User" ADD COLUMN "isApproved" BOOLEAN DEFAULT 0'))
    else:
        logger.info('"User"."isApproved" already exists')
    result = conn.execute(text('UPDATE "User" SET "isApproved" = 1'))
    logger.info("Approved %d existing user(s)", result.rowcount or 0)


UPGRADE_STEPS: dict[tuple[str, str], Callable[[Connection], None]] = {
    ("2.0.0", "2.1.0"): upgrade_2_0_0_to_2_1_0,
}


def upgrade_database(
    engine: Engine,
    from_version: Optional[str],
    to_version: str = TARGET_VERSION,
    *,
    database_url: Optional[str] = None,
    backup_dir: Optional[str] = None,
    init_version: str = INIT_VERSION,
) -> UpgradeResult:
    """
    Bring the database from ``from_version`` to ``to_version``.

    A database with no version is stamped ``init_version`` first. The steps
    and the final version write share one ``engine.begin()`` block; the
    backup, taken beforehand when a version exists, is the recovery path.
    """
    result = UpgradeResult(from_version=from_version, to_version=to_version)
    if from_version and database_url:
        result.backup_path = create_backup(database_url, from_version, to_version, backup_dir)

    with engine.begin() as conn:
        if not from_version:
            logger.info("Database has no version, initializing to %s", init_version)
            set_database_version(conn, init_version)
            from_version = init_version

        if from_version == to_version:
            logger.info("Database already at version %s, nothing to do", to_version)
        else:
            step = UPGRADE_STEPS.get((from_version, to_version))
            if step is None:
                raise UpgradeError(
                    f"No upgrade path defined from {from_version} to {to_version}"
                )
            logger.info("Upgrading database from %s to %s", from_version, to_version)
            step(conn)
            result.steps.append(f"{from_version}->{to_version}")

        set_database_version(conn, to_version)
    logger.info("Database version is now %s", to_version)
    return result


def upgrade_if_needed(
    engine: Engine,
    database_url: Optional[str] = None,
    target_version: str = TARGET_VERSION,
    *,
    force: bool = False,
    backup_dir: Optional[str] = None,
    init_version: str = INIT_VERSION,
) -> Optional[UpgradeResult]:
    """Run the upgrade when one is pending (or always with ``force``); None otherwise."""
    info = check_upgrade_needed(engine, target_version)
    if not info.needs_upgrade and not force:
        logger.info("Database is up to date (%s)", info.current_version)
        return None
    return upgrade_database(
        engine,
        info.current_version,
        target_version,
        database_url=database_url,
        backup_dir=backup_dir,
        init_version=init_version,
    )
