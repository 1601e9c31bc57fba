"""Tests for the database migration system."""

import sqlite3
from pathlib import Path

import pytest

from vibesync.database import open_database
from vibesync.database import migrate as migrate_module
from vibesync.database.migrate import (
    Migration,
    discover_migrations,
    main,
    migrate,
    migrate_test,
    validate_migrations,
)

ALL_MIGRATIONS = {
    "0001_add_message_payload",
    "0002_add_message_retry_count",
    "0003_add_session_parent_id",
}


def _columns(db_path: str, table: str) -> set[str]:
    conn = sqlite3.connect(db_path)
    try:
        return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    finally:
        conn.close()


def _create_legacy_schema(db_path: str) -> None:
    """Tables as written by clients that predate payloads, retries and resume chains."""
    conn = sqlite3.connect(db_path)
    conn.execute(
        """CREATE TABLE messages (
            local_id TEXT PRIMARY KEY,
            server_id TEXT,
            thread_id TEXT,
            from_handle TEXT NOT NULL,
            to_handle TEXT NOT NULL,
            content TEXT NOT NULL,
            created_at TEXT NOT NULL,
            status TEXT NOT NULL,
            sent_at TEXT,
            delivered_at TEXT,
            read_at TEXT,
            synced_at TEXT
        )"""
    )
    conn.execute(
        """CREATE TABLE sessions (
            session_id TEXT PRIMARY KEY,
            handle TEXT,
            machine_id TEXT,
            started_at TEXT NOT NULL,
            ended_at TEXT,
            git_repo TEXT,
            git_branch TEXT,
            summary TEXT
        )"""
    )
    conn.execute(
        "INSERT INTO messages (local_id, from_handle, to_handle, content, created_at, status) "
        "VALUES ('m1', 'alice', 'bob', 'old row', '2025-01-01T00:00:00.000Z', 'sent')"
    )
    conn.commit()
    conn.close()


class TestDiscovery:
    """Tests for migration file discovery."""

    def test_discover_finds_migrations(self):
        migrations = discover_migrations()
        assert {m.name for m in migrations} == ALL_MIGRATIONS
        assert migrations[0].name == "0001_add_message_payload"

    def test_discover_returns_sorted(self):
        names = [m.name for m in discover_migrations()]
        assert names == sorted(names)

    def test_number_prefix(self):
        assert Migration("0001_add_fields", Path("x.py")).number == "0001"
        assert Migration("0042_something", Path("y.py")).number == "0042"


class TestValidation:
    """Tests for migration number validation."""

    def test_validate_passes_with_no_duplicates(self):
        validate_migrations()

    def test_validate_detects_duplicates(self, tmp_path, monkeypatch):
        migrations_dir = tmp_path / "migrations"
        migrations_dir.mkdir()
        (migrations_dir / "0001_first.py").write_text(
            "import sqlite3\ndef up(conn: sqlite3.Connection) -> None: pass\n"
        )
        (migrations_dir / "0001_second.py").write_text(
            "import sqlite3\ndef up(conn: sqlite3.Connection) -> None: pass\n"
        )

        monkeypatch.setattr(migrate_module, "MIGRATIONS_DIR", migrations_dir)

        with pytest.raises(ValueError, match="Migration number conflict"):
            validate_migrations()


class TestMigrate:
    """Tests for the migration runner."""

    def test_skips_if_db_does_not_exist(self, tmp_path):
        db_path = str(tmp_path / "nonexistent.db")
        assert migrate(db_path) == 0
        assert not Path(db_path).exists()

    def test_upgrades_legacy_schema(self, tmp_path):
        db_path = str(tmp_path / "sessions.db")
        _create_legacy_schema(db_path)

        assert migrate(db_path) == 3

        assert {"payload", "retry_count"} <= _columns(db_path, "messages")
        assert "parent_id" in _columns(db_path, "sessions")

        conn = sqlite3.connect(db_path)
        retry_count = conn.execute(
            "SELECT retry_count FROM messages WHERE local_id = 'm1'"
        ).fetchone()[0]
        has_index = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type='index' AND name='idx_sessions_parent'"
        ).fetchone()
        conn.close()
        assert retry_count == 0
        assert has_index is not None

    def test_idempotent(self, tmp_path):
        db_path = str(tmp_path / "sessions.db")
        _create_legacy_schema(db_path)

        assert migrate(db_path) == 3
        assert migrate(db_path) == 0

    def test_tracks_in_migrations_table(self, tmp_path):
        db_path = str(tmp_path / "sessions.db")
        _create_legacy_schema(db_path)

        migrate(db_path)

        conn = sqlite3.connect(db_path)
        applied = {row[0] for row in conn.execute("SELECT name FROM _migrations").fetchall()}
        conn.close()
        assert applied == ALL_MIGRATIONS

    def test_skips_already_applied(self, tmp_path):
        db_path = str(tmp_path / "sessions.db")
        _create_legacy_schema(db_path)
        conn = sqlite3.connect(db_path)
        conn.execute("CREATE TABLE _migrations (name TEXT PRIMARY KEY, applied_at TEXT NOT NULL)")
        conn.execute(
            "INSERT INTO _migrations (name, applied_at) VALUES (?, ?)",
            ("0001_add_message_payload", "2025-01-01T00:00:00.000Z"),
        )
        conn.commit()
        conn.close()

        assert migrate(db_path) == 2
        assert "payload" not in _columns(db_path, "messages")

    def test_missing_tables_are_tolerated(self, tmp_path):
        db_path = str(tmp_path / "sessions.db")
        sqlite3.connect(db_path).close()

        assert migrate(db_path) == 3

    def test_fresh_database_records_all_migrations(self, tmp_path):
        db_path = str(tmp_path / "sessions.db")
        db = open_database(db_path)
        db.close()

        conn = sqlite3.connect(db_path)
        applied = {row[0] for row in conn.execute("SELECT name FROM _migrations").fetchall()}
        conn.close()
        assert applied == ALL_MIGRATIONS


class TestMigrateTest:
    def test_runs_against_copy(self, tmp_path):
        db_path = str(tmp_path / "sessions.db")
        _create_legacy_schema(db_path)

        assert migrate_test(db_path) is True
        # The original is untouched
        assert "payload" not in _columns(db_path, "messages")

    def test_fresh_schema_when_missing(self, tmp_path):
        assert migrate_test(str(tmp_path / "missing.db")) is True


class TestCommandLine:
    def test_validate_flag(self):
        assert main(["--validate"]) == 0

    def test_applies_to_given_path(self, tmp_path):
        db_path = str(tmp_path / "sessions.db")
        _create_legacy_schema(db_path)

        assert main([db_path]) == 0
        assert "payload" in _columns(db_path, "messages")

    def test_dry_run_leaves_database_alone(self, tmp_path):
        db_path = str(tmp_path / "sessions.db")
        _create_legacy_schema(db_path)

        assert main(["--test", db_path]) == 0
        assert "payload" not in _columns(db_path, "messages")
