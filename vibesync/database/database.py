"""Database connection and store wiring."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

from vibesync.constants import SQLITE_BUSY_TIMEOUT_MS
from vibesync.database.message_store import BaseMessageStore, MessageStore, NullMessageStore
from vibesync.database.migrate import migrate
from vibesync.database.session_store import (
    BaseSessionJournal,
    NullSessionJournal,
    SessionJournal,
)

logger = logging.getLogger(__name__)

# Applied on every new DB-API connection; the file is shared with other processes
_CONNECTION_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
)


class Database:
    """Local message cache and session journal backed by a shared SQLite file."""

    is_null = False

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

        # Owner-only access: the file holds message bodies and session history
        directory = Path(db_path).parent
        if not directory.exists():
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            os.chmod(directory, 0o700)

        # The sqlite3 driver's own busy wait, on top of the busy_timeout pragma
        self.engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"timeout": SQLITE_BUSY_TIMEOUT_MS / 1000},
        )

        @event.listens_for(self.engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            for pragma in _CONNECTION_PRAGMAS:
                cursor.execute(pragma)
            cursor.close()

        self.messages: BaseMessageStore = MessageStore(self.engine)
        self.sessions: BaseSessionJournal = SessionJournal(self.engine)

        logger.info("Database initialized: %s", db_path)

    def create_tables(self) -> None:
        """Create all tables and indexes if they don't exist."""
        SQLModel.metadata.create_all(self.engine)
        logger.info("Database tables created")

    def migrate(self) -> int:
        """Apply pending additive migrations. Returns the number applied."""
        return migrate(self.db_path)

    def get_session(self) -> Session:
        """Get a database session."""
        return Session(self.engine)

    def close(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()
        logger.info("Database closed: %s", self.db_path)


class NullDatabase:
    """Stand-in used when the local database cannot be opened.

    Reads return empty results and writes are dropped, so callers keep
    working against the remote API alone.
    """

    is_null = True

    def __init__(self, db_path: str | None = None, reason: str | None = None):
        self.db_path = db_path
        self.reason = reason
        self.messages: BaseMessageStore = NullMessageStore()
        self.sessions: BaseSessionJournal = NullSessionJournal()

    def create_tables(self) -> None:
        pass

    def migrate(self) -> int:
        return 0

    def close(self) -> None:
        pass


def open_database(db_path: str) -> Database | NullDatabase:
    """
    Open the local database, falling back to a no-op stand-in on any failure.

    Args:
        db_path: Path to SQLite database file

    Returns:
        A ready Database, or a NullDatabase if construction, schema creation
        or migration failed
    """
    db: Database | None = None
    try:
        db = Database(db_path)
        db.create_tables()
        db.migrate()
        return db
    except Exception as e:
        logger.error("Local database unavailable at %s, running without cache: %s", db_path, e)
        if db is not None:
            db.close()
        return NullDatabase(db_path, reason=str(e))
