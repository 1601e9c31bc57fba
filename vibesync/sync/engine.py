"""Sync engine: local-first messaging reconciled against the remote API."""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from vibesync.api import ActiveUser, ApiClient, TokenVerification
from vibesync.constants import (
    AUTH_ERROR_MARKER,
    DEFAULT_MESSAGE_TYPE,
    MAX_BODY_LENGTH,
    MAX_SEND_RETRIES,
    MESSAGE_PREVIEW_LENGTH,
    STORAGE_ERROR_CODE,
    THREAD_FETCH_LIMIT,
    MessageDirection,
    MessageStatus,
)
from vibesync.database.message_store import BaseMessageStore, new_local_id
from vibesync.database.models import Message
from vibesync.database.session_store import BaseSessionJournal
from vibesync.datetime_utils import now_iso
from vibesync.exceptions import BodyTooLongError, ErrorKind, SelfSendError, VibeSyncError
from vibesync.handles import normalize_handle, require_handle
from vibesync.identity import ConfigStore
from vibesync.sync.models import InboxEntry, SendResult, SweepReport, ThreadMessage

logger = logging.getLogger(__name__)


def truncate_body(body: str, limit: int = MAX_BODY_LENGTH) -> str:
    """Cut a message body down to the maximum length the server accepts."""
    if len(body) <= limit:
        return body
    logger.warning("Truncating message body from %d to %d characters", len(body), limit)
    return body[:limit]


def classify_send_failure(result: dict[str, Any]) -> ErrorKind | None:
    """Map a transport result for POST /api/messages onto an error kind.

    Returns None when the server accepted the message.
    """
    if result.get("success") is True or isinstance(result.get("message"), dict):
        return None
    error = str(result.get("error") or "")
    if AUTH_ERROR_MARKER in error:
        return ErrorKind.AUTH_FAILED
    if result.get("statusCode") == 401:
        return ErrorKind.AUTH_EXPIRED
    if error == STORAGE_ERROR_CODE:
        return ErrorKind.REMOTE_STORAGE
    if result.get("network") or result.get("timeout"):
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN


def extract_message_ids(result: dict[str, Any]) -> tuple[str | None, str | None]:
    """Pull (server_id, thread_id) from whichever fields the server supplied."""
    message = result.get("message")
    if not isinstance(message, dict):
        message = {}
    server_id = message.get("id") or result.get("messageId") or result.get("id")
    thread_id = message.get("thread_id") or result.get("thread_id")
    return (
        str(server_id) if server_id is not None else None,
        str(thread_id) if thread_id is not None else None,
    )


def _is_failure(result: dict[str, Any]) -> bool:
    return result.get("success") is False


class SyncEngine:
    """Reconciles the local message cache with the remote API.

    Reads answer from the local store and refresh it from the server when
    reachable. Sends are written locally before the network is touched, so a
    crash or an outage leaves a pending row for the sweep to retry.
    """

    def __init__(
        self,
        store: BaseMessageStore,
        api: ApiClient,
        config_store: ConfigStore,
        journal: BaseSessionJournal | None = None,
        max_retries: int = MAX_SEND_RETRIES,
    ):
        """
        Initialize the engine.

        Args:
            store: Local message store (or its no-op stand-in)
            api: Remote API client
            config_store: Identity source for the current session and sweep owner
            journal: Optional session journal for best-effort activity logging
            max_retries: Sweep retries per message before it is left failed
        """
        self._store = store
        self._api = api
        self._config_store = config_store
        self._journal = journal
        self.max_retries = max_retries
        # local_ids with a POST in progress in this process
        self._in_flight: set[str] = set()

    # --- Send ---

    async def send_message(
        self,
        from_handle: str,
        to_handle: str,
        body: str,
        type: str = DEFAULT_MESSAGE_TYPE,
        payload: dict[str, Any] | None = None,
    ) -> SendResult:
        """
        Send a direct message, recording it locally first.

        Raises:
            InvalidHandleError: either handle is empty after normalization
            SelfSendError: sender and recipient are the same handle
            BodyTooLongError: body is longer than the maximum (callers truncate)

        Returns:
            SendResult; remote failures are reported in ``error``, not raised
        """
        sender = require_handle(from_handle)
        recipient = require_handle(to_handle)
        if sender == recipient:
            raise SelfSendError(sender)
        if len(body) > MAX_BODY_LENGTH:
            raise BodyTooLongError(len(body), MAX_BODY_LENGTH)

        message = Message(
            local_id=new_local_id(),
            from_handle=sender,
            to_handle=recipient,
            content=body,
            created_at=now_iso(),
            status=MessageStatus.PENDING,
            payload=json.dumps(payload) if payload is not None else None,
        )
        try:
            self._store.insert_message(message)
        except VibeSyncError as e:
            # The server send proceeds without a local row
            logger.warning("Optimistic insert failed for message to @%s: %s", recipient, e)

        result = await self._deliver(message, payload)
        if result.ok:
            self._journal_sent(recipient, body, type)
        return result

    async def _deliver(self, message: Message, payload: dict[str, Any] | None) -> SendResult:
        """POST one stored message and advance its local status from the response."""
        self._in_flight.add(message.local_id)
        try:
            response = await self._api.post_message(message.to_handle, message.content, payload)
        finally:
            self._in_flight.discard(message.local_id)

        error = classify_send_failure(response)
        server_id, thread_id = extract_message_ids(response) if error is None else (None, None)
        if error is None and server_id is None:
            logger.warning("Server accepted message %s without an id", message.local_id)
            error = ErrorKind.UNKNOWN
            response = {"error": "Server response did not include a message id"}

        if error is not None:
            logger.info(
                "Send %s to @%s failed (%s): %s",
                message.local_id,
                message.to_handle,
                error,
                response.get("error"),
            )
            self._advance(message.local_id, MessageStatus.FAILED)
            return SendResult(
                local_id=message.local_id,
                from_handle=message.from_handle,
                to_handle=message.to_handle,
                content=message.content,
                status=MessageStatus.FAILED,
                error=error,
                error_message=response.get("message") or response.get("error"),
            )

        self._advance(message.local_id, MessageStatus.SENT, server_id, thread_id)
        logger.debug("Message %s sent as %s", message.local_id, server_id)
        return SendResult(
            local_id=message.local_id,
            from_handle=message.from_handle,
            to_handle=message.to_handle,
            content=message.content,
            status=MessageStatus.SENT,
            server_id=server_id,
            thread_id=thread_id,
        )

    def _advance(
        self,
        local_id: str,
        status: MessageStatus,
        server_id: str | None = None,
        thread_id: str | None = None,
    ) -> None:
        try:
            self._store.update_status(local_id, status, server_id=server_id, thread_id=thread_id)
        except VibeSyncError as e:
            logger.warning("Could not mark message %s %s: %s", local_id, status, e)

    def _journal_sent(self, recipient: str, body: str, message_type: str) -> None:
        if self._journal is None:
            return
        preview = body[:MESSAGE_PREVIEW_LENGTH]
        if message_type != DEFAULT_MESSAGE_TYPE:
            preview = f"[{message_type}] {preview}"
        self._journal.log_message(
            self._config_store.get_session_id(), MessageDirection.SENT, recipient, preview
        )

    # --- Reads ---

    async def get_inbox(self, me: str) -> list[InboxEntry]:
        """Inbox threads, newest first. Falls back to the local cache when offline."""
        me = require_handle(me)
        try:
            local = self._store.get_inbox_threads(me)
        except (VibeSyncError, SQLAlchemyError) as e:
            logger.warning("Local inbox read failed: %s", e)
            local = []

        result = await self._api.fetch_inbox(me)
        if _is_failure(result) or not isinstance(result.get("threads"), list):
            logger.debug("Serving inbox from local cache: %s", result.get("error"))
            return [InboxEntry.from_local(thread) for thread in local]

        threads = [t for t in result["threads"] if isinstance(t, dict)]
        batch = []
        for thread in threads:
            last = thread.get("last_message")
            if not isinstance(last, dict):
                continue
            sender = normalize_handle(last.get("from"))
            batch.append(
                {
                    **last,
                    "thread_id": thread.get("id"),
                    "from": sender,
                    "to": normalize_handle(thread.get("with")) if sender == me else me,
                    "status": MessageStatus.DELIVERED,
                }
            )
        self._merge(batch)
        return [InboxEntry.from_server(thread) for thread in threads]

    async def get_thread(
        self, me: str, peer: str, limit: int = THREAD_FETCH_LIMIT
    ) -> list[ThreadMessage]:
        """Messages between me and peer, oldest first, merged from server when reachable."""
        me = require_handle(me)
        peer = require_handle(peer)

        result = await self._api.fetch_thread(me, peer)
        server_messages: list[dict[str, Any]] | None = None
        if not _is_failure(result):
            raw = result.get("messages") or result.get("thread")
            if isinstance(raw, list):
                server_messages = [m for m in raw if isinstance(m, dict)]

        if server_messages is not None:
            batch = []
            for m in server_messages:
                sender = normalize_handle(m.get("from"))
                batch.append(
                    {
                        **m,
                        "from": sender,
                        "to": normalize_handle(m.get("to")) or (peer if sender == me else me),
                        "status": MessageStatus.DELIVERED,
                    }
                )
            self._merge(batch)
            # The server marks the thread read when it is fetched
            try:
                self._store.mark_thread_read(me, peer)
            except VibeSyncError as e:
                logger.warning("Could not mark thread @%s read locally: %s", peer, e)

        try:
            local = self._store.get_thread(me, peer, limit)
        except (VibeSyncError, SQLAlchemyError) as e:
            logger.warning("Local thread read failed: %s", e)
            local = []

        if local:
            return [ThreadMessage.from_local(m, me) for m in local]
        if server_messages:
            mapped = [ThreadMessage.from_server(m, me, peer) for m in server_messages]
            mapped.sort(key=lambda m: m.created_at or "")
            return mapped[-limit:]
        return []

    def mark_thread_read(self, me: str, peer: str) -> int:
        """Mark a thread read locally. The server marks on fetch, so nothing is sent."""
        return self._store.mark_thread_read(require_handle(me), require_handle(peer))

    def _merge(self, batch: list[dict[str, Any]]) -> int:
        if not batch:
            return 0
        try:
            return self._store.merge_server_messages(batch)
        except VibeSyncError as e:
            logger.warning("Failed to merge %d server message(s): %s", len(batch), e)
            return 0

    # --- Pending sweep ---

    async def retry_pending(self, handle: str | None = None) -> SweepReport:
        """
        Retry pending and failed messages sent by this user, oldest first.

        Messages already retried max_retries times are left failed. Messages
        with a send in progress in this process are skipped.
        """
        report = SweepReport()
        owner = normalize_handle(handle) or self._config_store.get_handle()
        if not owner:
            return report

        try:
            pending = self._store.get_pending_messages(from_handle=owner)
        except (VibeSyncError, SQLAlchemyError) as e:
            logger.warning("Pending sweep could not read local store: %s", e)
            return report

        for message in pending:
            if message.local_id in self._in_flight:
                report.skipped_in_flight += 1
                continue
            if message.retry_count >= self.max_retries:
                report.exhausted += 1
                continue

            try:
                self._store.increment_retry_count(message.local_id)
            except VibeSyncError as e:
                logger.warning("Could not count retry for %s: %s", message.local_id, e)
                continue

            report.attempted += 1
            result = await self._deliver(message, message.get_payload())
            report.results.append(result)
            if result.ok:
                report.sent += 1
                self._journal_sent(message.to_handle, message.content, DEFAULT_MESSAGE_TYPE)
            else:
                report.failed += 1

        if report.attempted:
            logger.info(
                "Pending sweep: %d attempted, %d sent, %d failed",
                report.attempted,
                report.sent,
                report.failed,
            )
        return report

    # --- Pass-through reads ---

    async def get_active_users(self) -> list[ActiveUser]:
        return await self._api.get_active_users()

    async def get_unread_count(self, me: str) -> int:
        result = await self._api.fetch_inbox(require_handle(me))
        if _is_failure(result):
            return 0
        try:
            return int(result.get("unread") or 0)
        except (TypeError, ValueError):
            return 0

    async def get_typing_users(self, me: str) -> list[str]:
        return await self._api.get_typing_users(require_handle(me))

    async def send_typing_indicator(self, me: str, to: str) -> bool:
        result = await self._api.send_typing_indicator(require_handle(me), require_handle(to))
        return not _is_failure(result)

    async def verify_token(self, token: str) -> TokenVerification:
        return await self._api.verify_token(token)
