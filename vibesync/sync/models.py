"""Result types returned by the sync engine."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from vibesync.constants import MessageDirection, MessageStatus
from vibesync.database.models import InboxThread, Message
from vibesync.exceptions import ErrorKind
from vibesync.handles import normalize_handle


class SendResult(BaseModel):
    """Outcome of a send or a retry of a send."""

    local_id: str
    from_handle: str
    to_handle: str
    content: str
    status: MessageStatus
    server_id: str | None = None
    thread_id: str | None = None
    error: ErrorKind | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class InboxEntry(BaseModel):
    """One conversation in the inbox."""

    handle: str
    unread: int = 0
    last_message: str | None = None
    last_from: str | None = None
    last_timestamp: str | None = None
    thread_id: str | None = None

    @classmethod
    def from_local(cls, thread: InboxThread) -> InboxEntry:
        latest = thread.latest_message
        return cls(
            handle=thread.partner,
            unread=thread.unread_count,
            last_message=latest.content,
            last_from=latest.from_handle,
            last_timestamp=latest.created_at,
            thread_id=latest.thread_id,
        )

    @classmethod
    def from_server(cls, thread: dict[str, Any]) -> InboxEntry:
        last = thread.get("last_message") or {}
        return cls(
            handle=normalize_handle(thread.get("with")),
            unread=_as_count(thread.get("unread")),
            last_message=last.get("body") or last.get("text"),
            last_from=normalize_handle(last.get("from")) or None,
            last_timestamp=last.get("created_at") or last.get("createdAt"),
            thread_id=_opt_str(thread.get("id")),
        )


class ThreadMessage(BaseModel):
    """A message as shown in a conversation view."""

    local_id: str | None = None
    server_id: str | None = None
    from_handle: str
    to_handle: str
    body: str
    created_at: str | None = None
    status: str | None = None
    direction: MessageDirection
    payload: dict[str, Any] | None = None
    is_agent: bool = False

    @classmethod
    def from_local(cls, message: Message, me: str) -> ThreadMessage:
        return cls(
            local_id=message.local_id,
            server_id=message.server_id,
            from_handle=message.from_handle,
            to_handle=message.to_handle,
            body=message.content,
            created_at=message.created_at,
            status=message.status,
            direction=_direction(message.from_handle, me),
            payload=message.get_payload(),
        )

    @classmethod
    def from_server(cls, data: dict[str, Any], me: str, peer: str) -> ThreadMessage:
        sender = normalize_handle(data.get("from"))
        recipient = normalize_handle(data.get("to")) or (peer if sender == me else me)
        payload = data.get("payload")
        return cls(
            server_id=_opt_str(data.get("id") or data.get("messageId")),
            from_handle=sender,
            to_handle=recipient,
            body=data.get("body") or data.get("text") or data.get("content") or "",
            created_at=data.get("created_at") or data.get("createdAt"),
            status=data.get("status"),
            direction=_direction(sender, me),
            payload=payload if isinstance(payload, dict) else None,
            is_agent=bool(data.get("isAgent") or data.get("is_agent")),
        )


class SweepReport(BaseModel):
    """What one pass of the pending sweep did."""

    attempted: int = 0
    sent: int = 0
    failed: int = 0
    skipped_in_flight: int = 0
    exhausted: int = 0
    results: list[SendResult] = Field(default_factory=list)


def _direction(sender: str, me: str) -> MessageDirection:
    return MessageDirection.SENT if sender == me else MessageDirection.RECEIVED


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _as_count(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0
