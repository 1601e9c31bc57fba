"""SQLModel models for the local message cache and session journal.

The table layout is shared with other local clients of sessions.db, so
timestamps are ISO-8601 TEXT columns and index names are fixed.
"""

import json
from typing import Any

from pydantic import BaseModel
from sqlalchemy import CheckConstraint, Column, Index, Text
from sqlmodel import Field, SQLModel

from vibesync.constants import MessageStatus


class Message(SQLModel, table=True):
    """A direct message between two handles."""

    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'sent', 'delivered', 'read', 'failed')",
            name="ck_messages_status",
        ),
        Index("idx_messages_thread", "from_handle", "to_handle", "created_at"),
        Index("idx_messages_thread_id", "thread_id"),
        Index("idx_messages_server_id", "server_id"),
        Index("idx_messages_status", "status"),
        Index("idx_messages_synced", "synced_at"),
    )

    local_id: str = Field(primary_key=True)  # UUID assigned at optimistic insert
    server_id: str | None = None  # Assigned by the server on acknowledgement
    thread_id: str | None = None  # Server-side grouping, never synthesized locally
    from_handle: str
    to_handle: str
    content: str
    created_at: str  # ISO-8601, client-local at insert
    status: str = Field(default=MessageStatus.PENDING)
    sent_at: str | None = None
    delivered_at: str | None = None
    read_at: str | None = None
    synced_at: str | None = None
    retry_count: int = Field(default=0)
    payload: str | None = None  # JSON-serialized structured payload (e.g., game moves)

    def get_payload(self) -> dict[str, Any] | None:
        return json.loads(self.payload) if self.payload else None

    @property
    def message_status(self) -> MessageStatus:
        return MessageStatus(self.status)


class SessionRecord(SQLModel, table=True):
    """One MCP process lifetime."""

    __tablename__ = "sessions"
    __table_args__ = (
        Index("idx_sessions_handle", "handle", "started_at"),
        Index("idx_sessions_repo", "git_repo", "started_at"),
    )

    session_id: str = Field(primary_key=True)  # "sess_..." or server-issued
    handle: str | None = None
    machine_id: str | None = None
    started_at: str
    ended_at: str | None = None
    git_repo: str | None = None
    git_branch: str | None = None
    summary: str | None = None
    parent_id: str | None = None  # Previous session in a resume chain


class JournalEntry(SQLModel, table=True):
    """Append-only record of something that happened during a session."""

    __tablename__ = "session_journal"
    __table_args__ = (
        Index("idx_journal_session", "session_id", "timestamp"),
        Index("idx_journal_event_type", "event_type"),
    )

    id: int | None = Field(default=None, primary_key=True)
    session_id: str = Field(foreign_key="sessions.session_id")
    timestamp: str
    event_type: str  # JournalEventType enum value
    tool_name: str | None = None
    target: str | None = None  # Handle or resource
    summary: str | None = None
    metadata_json: str | None = Field(
        default=None, sa_column=Column("metadata", Text, nullable=True)
    )

    def get_metadata(self) -> dict[str, Any] | None:
        return json.loads(self.metadata_json) if self.metadata_json else None


class InboxThread(BaseModel):
    """Latest message and unread count for one conversation partner."""

    partner: str
    latest_message: Message
    unread_count: int = 0
