"""Numbered schema migrations for the shared sessions database.

Files in migrations/ are named ``NNNN_description.py`` and expose ``up(conn)``.
Applied names are recorded in ``_migrations``. Changes stay additive (nullable
columns, indexes) since older clients open the same file.

    python -m vibesync.database.migrate [DB_PATH]
    python -m vibesync.database.migrate --test [DB_PATH]
    python -m vibesync.database.migrate --validate
"""

from __future__ import annotations

import importlib.util
import logging
import shutil
import sqlite3
import sys
import tempfile
from pathlib import Path
from typing import NamedTuple

from vibesync.constants import SQLITE_BUSY_TIMEOUT_MS
from vibesync.datetime_utils import now_iso

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


class Migration(NamedTuple):
    name: str
    path: Path

    @property
    def number(self) -> str:
        return self.name.partition("_")[0]


def discover_migrations() -> list[Migration]:
    """Migration files in apply order."""
    return [Migration(path.stem, path) for path in sorted(MIGRATIONS_DIR.glob("[0-9]*.py"))]


def validate_migrations() -> None:
    """Raise ValueError when two migration files share a number."""
    owners: dict[str, str] = {}
    migrations = discover_migrations()
    for migration in migrations:
        previous = owners.setdefault(migration.number, migration.name)
        if previous != migration.name:
            raise ValueError(
                f"Migration number conflict: {previous} and {migration.name} "
                f"both use {migration.number}"
            )
    logger.debug("%d migration(s) validated", len(migrations))


def _apply(conn: sqlite3.Connection, migration: Migration) -> bool:
    """Run one migration inside a write transaction. False if it has no up()."""
    module_spec = importlib.util.spec_from_file_location(migration.name, migration.path)
    if module_spec is None or module_spec.loader is None:
        raise ImportError(f"Cannot load migration {migration.path}")
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)

    up = getattr(module, "up", None)
    if up is None:
        logger.warning("Migration %s defines no up(), skipping", migration.name)
        return False

    conn.execute("BEGIN IMMEDIATE")
    try:
        up(conn)
        # A concurrent process may have recorded it while we waited for the lock
        conn.execute(
            "INSERT OR IGNORE INTO _migrations (name, applied_at) VALUES (?, ?)",
            (migration.name, now_iso()),
        )
        conn.commit()
    except Exception:
        conn.rollback()
        logger.exception("Migration %s failed", migration.name)
        raise
    return True


def migrate(db_path: str) -> int:
    """Apply pending migrations to db_path and return how many ran.

    A missing file is left alone; the schema is created on first open.
    """
    if not Path(db_path).exists():
        logger.info("No database at %s yet, nothing to migrate", db_path)
        return 0

    validate_migrations()

    conn = sqlite3.connect(db_path, timeout=SQLITE_BUSY_TIMEOUT_MS / 1000)
    try:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS _migrations "
            "(name TEXT PRIMARY KEY, applied_at TEXT NOT NULL)"
        )
        conn.commit()
        done = {row[0] for row in conn.execute("SELECT name FROM _migrations")}

        applied = 0
        for migration in discover_migrations():
            if migration.name in done:
                continue
            if _apply(conn, migration):
                applied += 1
                logger.info("Applied migration %s", migration.name)
        return applied
    finally:
        conn.close()


def migrate_test(db_path: str) -> bool:
    """Dry-run migrations against a throwaway copy of db_path.

    When db_path does not exist a fresh database with the current schema is
    used instead.
    """
    workdir = Path(tempfile.mkdtemp(prefix="vibesync-migrate-"))
    scratch = workdir / "sessions.db"
    try:
        if Path(db_path).exists():
            shutil.copy2(db_path, scratch)
        else:
            from sqlmodel import SQLModel, create_engine

            import vibesync.database.models  # noqa: F401

            engine = create_engine(f"sqlite:///{scratch}")
            SQLModel.metadata.create_all(engine)
            engine.dispose()

        count = migrate(str(scratch))
        logger.info("Migration test passed (%d applied)", count)
        return True
    except Exception:
        logger.exception("Migration test failed for %s", db_path)
        return False
    finally:
        shutil.rmtree(workdir, ignore_errors=True)


def main(argv: list[str]) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    if "--validate" in argv:
        try:
            validate_migrations()
        except ValueError as e:
            logger.error("%s", e)
            return 1
        logger.info("Migrations valid")
        return 0

    dry_run = "--test" in argv
    paths = [arg for arg in argv if not arg.startswith("--")]
    if paths:
        db_path = paths[0]
    else:
        from vibesync.config import Config

        db_path = Config.load().db_path

    if dry_run:
        return 0 if migrate_test(db_path) else 1

    logger.info("%d migration(s) applied", migrate(db_path))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
