import importlib.util
import re
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from sqlalchemy import inspect, text

from roboprep.db import SqlDbClient, create_db_engine
from roboprep.upgrade import (
    UpgradeError,
    check_upgrade_needed,
    create_backup,
    get_database_version,
    upgrade_database,
    upgrade_if_needed,
)

SCRIPTS_DIR = Path(__file__).resolve().parents[2] / "scripts"

LEGACY_USER_TABLE = """
CREATE TABLE "User" (
    "id" TEXT NOT NULL PRIMARY KEY,
    "email" TEXT NOT NULL,
    "password" TEXT NOT NULL,
    "firstName" TEXT,
    "lastName" TEXT,
    "isAdmin" BOOLEAN NOT NULL DEFAULT false,
    "createdAt" DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updatedAt" DATETIME NOT NULL
)
"""

DATABASE_INFO_TABLE = """
CREATE TABLE "DatabaseInfo" (
    "id" INTEGER NOT NULL PRIMARY KEY DEFAULT 1,
    "version" TEXT NOT NULL,
    "updatedAt" DATETIME NOT NULL
)
"""


class LegacyDatabaseTestCase(unittest.TestCase):
    """
    Builds a database shaped like a 2.0.0 install in a temporary file.
    """

    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.db_path = self.tmpdir / "roboprep.db"
        self.database_url = f"sqlite:///{self.db_path}"
        self.engine = create_db_engine(self.database_url)

    def tearDown(self):
        self.engine.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def make_legacy_database(self, version="2.0.0"):
        with self.engine.begin() as conn:
            conn.execute(text(LEGACY_USER_TABLE))
            conn.execute(
                text(
                    'INSERT INTO "User" ("id", "email", "password", "isAdmin", "updatedAt") '
                    "VALUES (:id, :email, 'hash', :admin, '2025-05-20 10:00:00')"
                ),
                [
                    {"id": "u1", "email": "admin@example.com", "admin": 1},
                    {"id": "u2", "email": "dj@example.com", "admin": 0},
                ],
            )
            if version is not None:
                conn.execute(text(DATABASE_INFO_TABLE))
                conn.execute(
                    text(
                        'INSERT INTO "DatabaseInfo" ("id", "version", "updatedAt") '
                        "VALUES (1, :version, '2025-05-20 10:00:00')"
                    ),
                    {"version": version},
                )

    def user_columns(self):
        return {column["name"] for column in inspect(self.engine).get_columns("User")}

    def approvals(self):
        with self.engine.connect() as conn:
            rows = conn.execute(text('SELECT "id", "isApproved" FROM "User" ORDER BY "id"'))
            return {row[0]: bool(row[1]) for row in rows}


class UpgradeTests(LegacyDatabaseTestCase):
    def test_check_upgrade_needed(self):
        info = check_upgrade_needed(self.engine, "2.1.0")
        self.assertTrue(info.needs_upgrade)
        self.assertIsNone(info.current_version)
        self.assertEqual(info.upgrade_type, "initialization")

        self.make_legacy_database("2.0.0")
        info = check_upgrade_needed(self.engine, "2.1.0")
        self.assertEqual(info.upgrade_type, "upgrade")
        self.assertEqual(info.current_version, "2.0.0")

        info = check_upgrade_needed(self.engine, "2.0.0")
        self.assertFalse(info.needs_upgrade)
        self.assertEqual(info.upgrade_type, "current")

    def test_upgrade_adds_column_and_approves_users(self):
        self.make_legacy_database("2.0.0")
        self.assertNotIn("isApproved", self.user_columns())

        result = upgrade_if_needed(
            self.engine, self.database_url, "2.1.0", backup_dir=str(self.tmpdir / "backups")
        )

        self.assertIsNotNone(result)
        self.assertEqual(result.steps, ["2.0.0->2.1.0"])
        self.assertIn("isApproved", self.user_columns())
        self.assertEqual(self.approvals(), {"u1": True, "u2": True})
        self.assertEqual(get_database_version(self.engine), "2.1.0")

        self.assertTrue(result.backup_path.exists())
        self.assertRegex(
            result.backup_path.name,
            r"^roboprep-backup-v2\.0\.0-to-v2\.1\.0-.+\.db$",
        )

        self.assertIsNone(upgrade_if_needed(self.engine, self.database_url, "2.1.0"))

    def test_upgraded_database_opens_with_orm(self):
        self.make_legacy_database("2.0.0")
        upgrade_if_needed(self.engine, self.database_url, "2.1.0")
        self.engine.dispose()

        db = SqlDbClient(self.database_url)
        user = db.get_user_by_email("dj@example.com")
        self.assertTrue(user.is_approved)
        self.assertFalse(user.is_admin)
        self.assertEqual(db.get_database_version(), "2.1.0")
        db.engine.dispose()

    def test_unversioned_database_is_initialized_then_upgraded(self):
        self.make_legacy_database(version=None)
        result = upgrade_database(
            self.engine, None, "2.1.0", database_url=self.database_url
        )
        self.assertIsNone(result.backup_path)
        self.assertEqual(result.steps, ["2.0.0->2.1.0"])
        self.assertEqual(get_database_version(self.engine), "2.1.0")
        self.assertEqual(self.approvals(), {"u1": True, "u2": True})

    def test_step_is_idempotent_when_column_exists(self):
        self.make_legacy_database("2.0.0")
        with self.engine.begin() as conn:
            conn.execute(text('ALTER TABLE "User" ADD COLUMN "isApproved" BOOLEAN DEFAULT 0'))
        upgrade_database(self.engine, "2.0.0", "2.1.0")
        self.assertEqual(self.approvals(), {"u1": True, "u2": True})

    def test_same_version_is_a_no_op(self):
        self.make_legacy_database("2.0.0")
        result = upgrade_database(self.engine, "2.0.0", "2.0.0")
        self.assertEqual(result.steps, [])
        self.assertNotIn("isApproved", self.user_columns())
        self.assertEqual(get_database_version(self.engine), "2.0.0")

    def test_unknown_upgrade_path(self):
        self.make_legacy_database("1.0.0")
        with self.assertRaises(UpgradeError) as ctx:
            upgrade_database(self.engine, "1.0.0", "2.1.0")
        self.assertEqual(str(ctx.exception), "No upgrade path defined from 1.0.0 to 2.1.0")
        self.assertEqual(get_database_version(self.engine), "1.0.0")

    def test_backup_skipped_without_database_file(self):
        self.assertIsNone(create_backup("sqlite+pysqlite:///:memory:", "2.0.0", "2.1.0"))
        missing = f"sqlite:///{self.tmpdir / 'missing.db'}"
        self.assertIsNone(create_backup(missing, "2.0.0", "2.1.0"))

    def test_backup_defaults_to_database_directory(self):
        self.make_legacy_database("2.0.0")
        backup = create_backup(self.database_url, "2.0.0", "2.1.0")
        self.assertEqual(backup.parent, self.db_path.resolve().parent)
        self.assertTrue(re.match(r"roboprep-backup-v2\.0\.0-to-v2\.1\.0-", backup.name))


def _load_script(name):
    spec = importlib.util.spec_from_file_location(name, SCRIPTS_DIR / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class UpgradeScriptTests(LegacyDatabaseTestCase):
    """Runs scripts/upgrade_db.py main() against a temporary database file."""

    def setUp(self):
        super().setUp()
        self.script = _load_script("upgrade_db")

    def run_main(self, *args):
        argv = [
            "upgrade_db.py",
            "--database-url",
            self.database_url,
            "--target-version",
            "2.1.0",
            "--backup-dir",
            str(self.tmpdir / "backups"),
            *args,
        ]
        with patch("sys.argv", argv):
            return self.script.main()

    def test_check_reports_pending_upgrade(self):
        self.make_legacy_database("2.0.0")
        self.assertEqual(self.run_main("--check"), 1)
        self.assertEqual(get_database_version(self.engine), "2.0.0")
        self.assertNotIn("isApproved", self.user_columns())

    def test_upgrade_then_check_is_current(self):
        self.make_legacy_database("2.0.0")
        self.assertEqual(self.run_main(), 0)
        self.assertEqual(get_database_version(self.engine), "2.1.0")
        self.assertEqual(self.approvals(), {"u1": True, "u2": True})
        backups = list((self.tmpdir / "backups").glob("roboprep-backup-v2.0.0-to-v2.1.0-*.db"))
        self.assertEqual(len(backups), 1)

        self.assertEqual(self.run_main("--check"), 0)
        self.assertEqual(self.run_main(), 0)

    def test_verification_failure_returns_error(self):
        self.make_legacy_database("2.0.0")
        with patch.object(self.script, "get_database_version", return_value="2.0.0"):
            self.assertEqual(self.run_main(), 1)

    def test_unknown_upgrade_path_returns_error(self):
        self.make_legacy_database("1.0.0")
        self.assertEqual(self.run_main(), 1)
        self.assertEqual(get_database_version(self.engine), "1.0.0")


if __name__ == "__main__":
    unittest.main()
