"""Message store: optimistic inserts, status transitions, threads and inbox."""

from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import func, literal_column
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlmodel import Session, and_, col, or_, select

from vibesync.constants import RETRYABLE_STATUSES, THREAD_FETCH_LIMIT, MessageStatus
from vibesync.database.models import InboxThread, Message
from vibesync.datetime_utils import now_iso
from vibesync.exceptions import ErrorKind, InvalidTransitionError, LocalStoreError
from vibesync.handles import normalize_handle

logger = logging.getLogger(__name__)

_MESSAGE_COLUMNS = (
    "local_id",
    "server_id",
    "thread_id",
    "from_handle",
    "to_handle",
    "content",
    "created_at",
    "status",
    "sent_at",
    "delivered_at",
    "read_at",
    "synced_at",
    "retry_count",
    "payload",
)

# Latest message per partner plus the count of unread messages addressed to me
_INBOX_SQL = """
WITH latest AS (
    SELECT
        CASE WHEN from_handle = :me THEN to_handle ELSE from_handle END AS partner,
        messages.*,
        ROW_NUMBER() OVER (
            PARTITION BY CASE WHEN from_handle = :me THEN to_handle ELSE from_handle END
            ORDER BY created_at DESC, rowid DESC
        ) AS rn
    FROM messages
    WHERE from_handle = :me OR to_handle = :me
),
unread AS (
    SELECT from_handle AS partner, COUNT(*) AS unread_count
    FROM messages
    WHERE to_handle = :me AND status IN ('sent', 'delivered')
    GROUP BY from_handle
)
SELECT latest.*, COALESCE(unread.unread_count, 0) AS unread_count
FROM latest
LEFT JOIN unread ON unread.partner = latest.partner
WHERE latest.rn = 1
ORDER BY latest.created_at DESC
"""

_MERGE_SQL = """
INSERT OR IGNORE INTO messages (
    local_id, server_id, thread_id, from_handle, to_handle, content, created_at,
    status, sent_at, delivered_at, read_at, synced_at, retry_count, payload
)
SELECT
    :local_id, :server_id, :thread_id, :from_handle, :to_handle, :content, :created_at,
    :status, :sent_at, :delivered_at, :read_at, :synced_at, 0, :payload
WHERE NOT EXISTS (SELECT 1 FROM messages WHERE server_id = :server_id)
"""

_MARK_READ_SQL = """
UPDATE messages
SET status = 'read',
    read_at = COALESCE(read_at, :now),
    delivered_at = COALESCE(delivered_at, :now),
    sent_at = COALESCE(sent_at, :now)
WHERE from_handle = :peer AND to_handle = :me AND status IN ('sent', 'delivered')
"""


def _is_busy(error: Exception) -> bool:
    if not isinstance(error, OperationalError):
        return False
    text = str(error).lower()
    return "locked" in text or "busy" in text


def _store_error(action: str, error: Exception) -> LocalStoreError:
    """Wrap a SQLAlchemy error, classifying busy/locked databases as transient."""
    kind = ErrorKind.TRANSIENT if _is_busy(error) else ErrorKind.PERSISTENT_LOCAL
    return LocalStoreError(f"Failed to {action}: {error}", kind=kind)


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-empty value among several field aliases."""
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _server_row(data: Mapping[str, Any], synced_at: str) -> dict[str, Any] | None:
    """Map a server message (any of its field spellings) onto local columns."""
    server_id = _first(data, "server_id", "id", "messageId")
    if server_id is None:
        return None
    from_handle = normalize_handle(_first(data, "from_handle", "from"))
    to_handle = normalize_handle(_first(data, "to_handle", "to"))
    if not from_handle or not to_handle or from_handle == to_handle:
        return None

    try:
        status = MessageStatus(data.get("status") or MessageStatus.DELIVERED)
    except ValueError:
        status = MessageStatus.DELIVERED
    if status in (MessageStatus.PENDING, MessageStatus.FAILED):
        status = MessageStatus.DELIVERED

    created_at = _first(data, "created_at", "createdAt") or synced_at
    sent_at = _first(data, "sent_at", "sentAt") or created_at
    delivered_at = _first(data, "delivered_at", "deliveredAt")
    if delivered_at is None and status in (MessageStatus.DELIVERED, MessageStatus.READ):
        delivered_at = created_at
    read_at = _first(data, "read_at", "readAt")
    if read_at is None and status == MessageStatus.READ:
        read_at = delivered_at

    payload = data.get("payload")
    if payload is not None and not isinstance(payload, str):
        payload = json.dumps(payload)

    return {
        "local_id": str(server_id),
        "server_id": str(server_id),
        "thread_id": _first(data, "thread_id", "threadId"),
        "from_handle": from_handle,
        "to_handle": to_handle,
        "content": _first(data, "content", "body", "text") or "",
        "created_at": created_at,
        "status": str(status),
        "sent_at": sent_at,
        "delivered_at": delivered_at,
        "read_at": read_at,
        "synced_at": synced_at,
        "payload": payload,
    }


def new_local_id() -> str:
    """Fresh opaque id for an optimistic insert."""
    return str(uuid.uuid4())


class BaseMessageStore(ABC):
    """Interface shared by the SQLite store and its no-op stand-in."""

    @abstractmethod
    def insert_message(self, message: Message) -> Message: ...

    @abstractmethod
    def update_status(
        self,
        local_id: str,
        status: MessageStatus | str,
        server_id: str | None = None,
        thread_id: str | None = None,
    ) -> Message | None: ...

    @abstractmethod
    def increment_retry_count(self, local_id: str) -> int: ...

    @abstractmethod
    def get_message(self, local_id: str) -> Message | None: ...

    @abstractmethod
    def get_thread(self, a: str, b: str, limit: int = THREAD_FETCH_LIMIT) -> list[Message]: ...

    @abstractmethod
    def get_inbox_threads(self, me: str) -> list[InboxThread]: ...

    @abstractmethod
    def merge_server_messages(self, batch: Iterable[Mapping[str, Any]]) -> int: ...

    @abstractmethod
    def mark_thread_read(self, me: str, peer: str) -> int: ...

    @abstractmethod
    def get_pending_messages(self, from_handle: str | None = None) -> list[Message]: ...

    @abstractmethod
    def count(self) -> int: ...


class MessageStore(BaseMessageStore):
    """Manages Message records in the shared SQLite file."""

    def __init__(self, engine):
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine)

    # --- Writes ---

    def insert_message(self, message: Message) -> Message:
        """Insert or replace a message by local_id. Used for the optimistic send."""
        try:
            with self._session() as session:
                merged = session.merge(message)
                session.commit()
                session.refresh(merged)
                logger.debug("Stored message %s (%s)", merged.local_id, merged.status)
                return merged
        except SQLAlchemyError as e:
            raise _store_error("insert message", e) from e

    def update_status(
        self,
        local_id: str,
        status: MessageStatus | str,
        server_id: str | None = None,
        thread_id: str | None = None,
    ) -> Message | None:
        """
        Move a message forward in its lifecycle.

        Ids are only filled in, never cleared. Timestamps are stamped the
        first time the matching status is reached.

        Returns:
            The updated message, or None if local_id is unknown

        Raises:
            InvalidTransitionError: the move would go backwards, or would
                acknowledge a message without any server id
        """
        target = MessageStatus(status)
        try:
            with self._session() as session:
                msg = session.get(Message, local_id)
                if msg is None:
                    return None

                current = msg.message_status
                if not current.can_advance_to(target):
                    raise InvalidTransitionError(local_id, current, target)
                if target.is_acknowledged and not (msg.server_id or server_id):
                    raise InvalidTransitionError(
                        local_id, current, target, reason="no server id"
                    )

                if server_id and msg.server_id is None:
                    target = self._fold_server_copy(session, msg, server_id, target)

                now = now_iso()
                msg.server_id = msg.server_id or server_id
                msg.thread_id = msg.thread_id or thread_id
                msg.status = str(target)
                if target.is_acknowledged:
                    msg.sent_at = msg.sent_at or now
                    msg.synced_at = msg.synced_at or now
                if target in (MessageStatus.DELIVERED, MessageStatus.READ):
                    msg.delivered_at = msg.delivered_at or now
                if target == MessageStatus.READ:
                    msg.read_at = msg.read_at or now

                session.add(msg)
                session.commit()
                session.refresh(msg)
                logger.debug("Message %s: %s -> %s", local_id, current, target)
                return msg
        except SQLAlchemyError as e:
            raise _store_error("update message status", e) from e

    def _fold_server_copy(
        self, session: Session, msg: Message, server_id: str, target: MessageStatus
    ) -> MessageStatus:
        """Absorb a row merged from the server before msg learned its server id.

        Returns the status msg should move to, which is the copy's when the
        copy is further along.
        """
        copy = session.exec(
            select(Message).where(
                col(Message.server_id) == server_id,
                col(Message.local_id) == server_id,
                col(Message.local_id) != msg.local_id,
            )
        ).first()
        if copy is None:
            return target

        msg.thread_id = msg.thread_id or copy.thread_id
        msg.sent_at = msg.sent_at or copy.sent_at
        msg.delivered_at = msg.delivered_at or copy.delivered_at
        msg.read_at = msg.read_at or copy.read_at
        msg.synced_at = msg.synced_at or copy.synced_at
        session.delete(copy)
        logger.debug("Folded server copy %s into %s", server_id, msg.local_id)

        copy_status = copy.message_status
        if copy_status != target and target.can_advance_to(copy_status):
            return copy_status
        return target

    def increment_retry_count(self, local_id: str) -> int:
        """Bump retry_count and return the new value (0 if the message is unknown)."""
        try:
            with self._session() as session:
                msg = session.get(Message, local_id)
                if msg is None:
                    return 0
                msg.retry_count += 1
                session.add(msg)
                session.commit()
                return msg.retry_count
        except SQLAlchemyError as e:
            raise _store_error("increment retry count", e) from e

    def merge_server_messages(self, batch: Iterable[Mapping[str, Any]]) -> int:
        """
        Insert server messages that are not cached yet, in one transaction.

        Rows already present (matched by server_id) are left untouched, and
        entries without a server id are skipped.

        Returns:
            Number of rows inserted
        """
        from sqlalchemy import text

        synced_at = now_iso()
        rows = [row for row in (_server_row(m, synced_at) for m in batch) if row]
        if not rows:
            return 0

        inserted = 0
        try:
            with self._session() as session:
                for row in rows:
                    result = session.exec(text(_MERGE_SQL), params=row)
                    inserted += max(result.rowcount, 0)
                session.commit()
        except SQLAlchemyError as e:
            raise _store_error("merge server messages", e) from e

        if inserted:
            logger.debug("Merged %d of %d server message(s)", inserted, len(rows))
        return inserted

    def mark_thread_read(self, me: str, peer: str) -> int:
        """Mark every unread message from peer to me as read. Returns rows changed."""
        from sqlalchemy import text

        try:
            with self._session() as session:
                result = session.exec(
                    text(_MARK_READ_SQL),
                    params={
                        "me": normalize_handle(me),
                        "peer": normalize_handle(peer),
                        "now": now_iso(),
                    },
                )
                session.commit()
                return max(result.rowcount, 0)
        except SQLAlchemyError as e:
            raise _store_error("mark thread read", e) from e

    # --- Reads ---

    def get_message(self, local_id: str) -> Message | None:
        with self._session() as session:
            return session.get(Message, local_id)

    def get_thread(self, a: str, b: str, limit: int = THREAD_FETCH_LIMIT) -> list[Message]:
        """Most recent messages between two handles, oldest first."""
        a, b = normalize_handle(a), normalize_handle(b)
        with self._session() as session:
            messages = list(
                session.exec(
                    select(Message)
                    .where(
                        or_(
                            and_(Message.from_handle == a, Message.to_handle == b),
                            and_(Message.from_handle == b, Message.to_handle == a),
                        )
                    )
                    .order_by(col(Message.created_at).desc(), col(Message.local_id).desc())
                    .limit(limit)
                ).all()
            )
        messages.reverse()
        return messages

    def get_inbox_threads(self, me: str) -> list[InboxThread]:
        """One entry per conversation partner, newest conversation first."""
        from sqlalchemy import text

        with self._session() as session:
            rows = session.exec(
                text(_INBOX_SQL), params={"me": normalize_handle(me)}
            ).mappings().all()

        return [
            InboxThread(
                partner=row["partner"],
                latest_message=Message(**{name: row[name] for name in _MESSAGE_COLUMNS}),
                unread_count=row["unread_count"],
            )
            for row in rows
        ]

    def get_pending_messages(self, from_handle: str | None = None) -> list[Message]:
        """Messages awaiting (re)delivery, oldest first."""
        with self._session() as session:
            query = select(Message).where(
                col(Message.status).in_([str(s) for s in RETRYABLE_STATUSES])
            )
            if from_handle:
                query = query.where(Message.from_handle == normalize_handle(from_handle))
            query = query.order_by(col(Message.created_at).asc(), literal_column("rowid").asc())
            return list(session.exec(query).all())

    def count(self) -> int:
        with self._session() as session:
            return session.exec(select(func.count()).select_from(Message)).one()


class NullMessageStore(BaseMessageStore):
    """No-op store: reads are empty, writes are dropped."""

    def insert_message(self, message: Message) -> Message:
        return message

    def update_status(
        self,
        local_id: str,
        status: MessageStatus | str,
        server_id: str | None = None,
        thread_id: str | None = None,
    ) -> Message | None:
        return None

    def increment_retry_count(self, local_id: str) -> int:
        return 0

    def get_message(self, local_id: str) -> Message | None:
        return None

    def get_thread(self, a: str, b: str, limit: int = THREAD_FETCH_LIMIT) -> list[Message]:
        return []

    def get_inbox_threads(self, me: str) -> list[InboxThread]:
        return []

    def merge_server_messages(self, batch: Iterable[Mapping[str, Any]]) -> int:
        return 0

    def mark_thread_read(self, me: str, peer: str) -> int:
        return 0

    def get_pending_messages(self, from_handle: str | None = None) -> list[Message]:
        return []

    def count(self) -> int:
        return 0
