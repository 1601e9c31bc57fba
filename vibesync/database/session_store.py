"""Session journal: one record per process lifetime plus its event log."""

from __future__ import annotations

import json
import logging
import socket
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy import literal_column
from sqlmodel import Session, col, select

from vibesync.constants import (
    JOURNAL_LIMIT,
    RECENT_SESSIONS_LIMIT,
    SESSION_CHAIN_LIMIT,
    JournalEventType,
    MessageDirection,
)
from vibesync.database.models import JournalEntry, SessionRecord
from vibesync.datetime_utils import now_iso
from vibesync.handles import normalize_handle

logger = logging.getLogger(__name__)

# Restarting a known id updates the row in place; journal rows reference it
_START_SESSION_SQL = """
INSERT INTO sessions (session_id, handle, machine_id, started_at, git_repo, git_branch, parent_id)
VALUES (:session_id, :handle, :machine_id, :started_at, :git_repo, :git_branch, :parent_id)
ON CONFLICT(session_id) DO UPDATE SET
    handle = excluded.handle,
    machine_id = excluded.machine_id,
    started_at = excluded.started_at,
    ended_at = NULL,
    git_repo = excluded.git_repo,
    git_branch = excluded.git_branch,
    parent_id = COALESCE(excluded.parent_id, sessions.parent_id)
"""


class BaseSessionJournal(ABC):
    """Interface shared by the SQLite journal and its no-op stand-in."""

    @abstractmethod
    def start_session(
        self,
        session_id: str,
        handle: str | None,
        repo: str | None = None,
        branch: str | None = None,
        machine_id: str | None = None,
        parent_id: str | None = None,
    ) -> None: ...

    @abstractmethod
    def end_session(self, session_id: str, summary: str | None = None) -> None: ...

    @abstractmethod
    def log_tool_call(
        self,
        session_id: str,
        tool_name: str,
        target: str | None = None,
        summary: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    @abstractmethod
    def log_message(
        self, session_id: str, direction: str, peer: str, preview: str | None = None
    ) -> None: ...

    @abstractmethod
    def log_note(self, session_id: str, note: str) -> None: ...

    @abstractmethod
    def set_parent(self, session_id: str, parent_id: str) -> None: ...

    @abstractmethod
    def get_session(self, session_id: str) -> SessionRecord | None: ...

    @abstractmethod
    def get_recent_sessions(
        self, handle: str, limit: int = RECENT_SESSIONS_LIMIT, repo: str | None = None
    ) -> list[SessionRecord]: ...

    @abstractmethod
    def get_session_journal(
        self, session_id: str, limit: int = JOURNAL_LIMIT
    ) -> list[JournalEntry]: ...

    @abstractmethod
    def get_last_session(self, handle: str, repo: str | None = None) -> SessionRecord | None: ...

    @abstractmethod
    def get_session_chain(
        self, session_id: str, limit: int = SESSION_CHAIN_LIMIT
    ) -> list[SessionRecord]: ...


class SessionJournal(BaseSessionJournal):
    """Manages SessionRecord and JournalEntry records.

    Writes are best effort: a failure is logged and the call returns normally.
    """

    def __init__(self, engine):
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine)

    # --- Sessions ---

    def start_session(
        self,
        session_id: str,
        handle: str | None,
        repo: str | None = None,
        branch: str | None = None,
        machine_id: str | None = None,
        parent_id: str | None = None,
    ) -> None:
        """Record the start of a session, reopening it if the id already exists."""
        from sqlalchemy import text

        try:
            with self._session() as session:
                session.exec(
                    text(_START_SESSION_SQL),
                    params={
                        "session_id": session_id,
                        "handle": normalize_handle(handle) or None,
                        "machine_id": machine_id or socket.gethostname(),
                        "started_at": now_iso(),
                        "git_repo": repo,
                        "git_branch": branch,
                        "parent_id": parent_id,
                    },
                )
                session.commit()
                logger.debug("Started session %s", session_id)
        except Exception as e:
            logger.error("Failed to start session: %s", e)

    def end_session(self, session_id: str, summary: str | None = None) -> None:
        """Stamp ended_at (and an optional summary) on a session."""
        try:
            with self._session() as session:
                record = session.get(SessionRecord, session_id)
                if not record:
                    logger.debug("Cannot end unknown session %s", session_id)
                    return
                record.ended_at = now_iso()
                if summary is not None:
                    record.summary = summary
                session.add(record)
                session.commit()
                logger.debug("Ended session %s", session_id)
        except Exception as e:
            logger.error("Failed to end session: %s", e)

    def set_parent(self, session_id: str, parent_id: str) -> None:
        """Link a session to the one it resumes."""
        if session_id == parent_id:
            logger.warning("Refusing to make session %s its own parent", session_id)
            return
        try:
            with self._session() as session:
                record = session.get(SessionRecord, session_id)
                if not record:
                    return
                record.parent_id = parent_id
                session.add(record)
                session.commit()
        except Exception as e:
            logger.error("Failed to set session parent: %s", e)

    # --- Journal ---

    def _append(
        self,
        session_id: str,
        event_type: JournalEventType,
        tool_name: str | None = None,
        target: str | None = None,
        summary: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            with self._session() as session:
                entry = JournalEntry(
                    session_id=session_id,
                    timestamp=now_iso(),
                    event_type=str(event_type),
                    tool_name=tool_name,
                    target=target,
                    summary=summary,
                    metadata_json=json.dumps(metadata) if metadata else None,
                )
                session.add(entry)
                session.commit()
        except Exception as e:
            logger.error("Failed to write journal entry (%s): %s", event_type, e)

    def log_tool_call(
        self,
        session_id: str,
        tool_name: str,
        target: str | None = None,
        summary: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._append(
            session_id,
            JournalEventType.TOOL_CALL,
            tool_name=tool_name,
            target=target,
            summary=summary,
            metadata=metadata,
        )

    def log_message(
        self, session_id: str, direction: str, peer: str, preview: str | None = None
    ) -> None:
        """Record a sent or received message; direction is 'sent' or 'received'."""
        event_type = (
            JournalEventType.MESSAGE_SENT
            if direction == MessageDirection.SENT
            else JournalEventType.MESSAGE_RECEIVED
        )
        self._append(session_id, event_type, target=normalize_handle(peer), summary=preview)

    def log_note(self, session_id: str, note: str) -> None:
        self._append(session_id, JournalEventType.NOTE, summary=note)

    # --- Reads ---

    def get_session(self, session_id: str) -> SessionRecord | None:
        with self._session() as session:
            return session.get(SessionRecord, session_id)

    def get_recent_sessions(
        self, handle: str, limit: int = RECENT_SESSIONS_LIMIT, repo: str | None = None
    ) -> list[SessionRecord]:
        """Sessions for a handle (optionally one repo), newest first."""
        with self._session() as session:
            query = select(SessionRecord).where(SessionRecord.handle == normalize_handle(handle))
            if repo:
                query = query.where(SessionRecord.git_repo == repo)
            query = query.order_by(
                col(SessionRecord.started_at).desc(), literal_column("rowid").desc()
            ).limit(limit)
            return list(session.exec(query).all())

    def get_session_journal(
        self, session_id: str, limit: int = JOURNAL_LIMIT
    ) -> list[JournalEntry]:
        """Journal entries for a session in the order they were written."""
        with self._session() as session:
            return list(
                session.exec(
                    select(JournalEntry)
                    .where(JournalEntry.session_id == session_id)
                    .order_by(col(JournalEntry.timestamp).asc(), col(JournalEntry.id).asc())
                    .limit(limit)
                ).all()
            )

    def get_last_session(self, handle: str, repo: str | None = None) -> SessionRecord | None:
        """Most recent session for a handle that has ended."""
        with self._session() as session:
            query = select(SessionRecord).where(
                SessionRecord.handle == normalize_handle(handle),
                col(SessionRecord.ended_at).is_not(None),
            )
            if repo:
                query = query.where(SessionRecord.git_repo == repo)
            query = query.order_by(
                col(SessionRecord.started_at).desc(), literal_column("rowid").desc()
            ).limit(1)
            return session.exec(query).first()

    def get_session_chain(
        self, session_id: str, limit: int = SESSION_CHAIN_LIMIT
    ) -> list[SessionRecord]:
        """Follow parent_id links from a session, newest first."""
        chain: list[SessionRecord] = []
        seen: set[str] = set()
        current: str | None = session_id
        while current and current not in seen and len(chain) < limit:
            seen.add(current)
            record = self.get_session(current)
            if record is None:
                break
            chain.append(record)
            current = record.parent_id
        return chain


class NullSessionJournal(BaseSessionJournal):
    """No-op journal: reads are empty, writes are dropped."""

    def start_session(
        self,
        session_id: str,
        handle: str | None,
        repo: str | None = None,
        branch: str | None = None,
        machine_id: str | None = None,
        parent_id: str | None = None,
    ) -> None:
        pass

    def end_session(self, session_id: str, summary: str | None = None) -> None:
        pass

    def log_tool_call(
        self,
        session_id: str,
        tool_name: str,
        target: str | None = None,
        summary: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        pass

    def log_message(
        self, session_id: str, direction: str, peer: str, preview: str | None = None
    ) -> None:
        pass

    def log_note(self, session_id: str, note: str) -> None:
        pass

    def set_parent(self, session_id: str, parent_id: str) -> None:
        pass

    def get_session(self, session_id: str) -> SessionRecord | None:
        return None

    def get_recent_sessions(
        self, handle: str, limit: int = RECENT_SESSIONS_LIMIT, repo: str | None = None
    ) -> list[SessionRecord]:
        return []

    def get_session_journal(
        self, session_id: str, limit: int = JOURNAL_LIMIT
    ) -> list[JournalEntry]:
        return []

    def get_last_session(self, handle: str, repo: str | None = None) -> SessionRecord | None:
        return None

    def get_session_chain(
        self, session_id: str, limit: int = SESSION_CHAIN_LIMIT
    ) -> list[SessionRecord]:
        return []
