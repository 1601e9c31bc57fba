"""Constants and enums shared across vibesync."""

from __future__ import annotations

from enum import StrEnum


class MessageStatus(StrEnum):
    """Lifecycle state of a direct message.

    Allowed moves: pending -> sent -> delivered -> read, and
    pending|sent -> failed. A failed message may still be confirmed by a
    later retry (failed -> sent). Staying in the same state is allowed so
    that id-only updates and repeated failures are idempotent.
    """

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def is_acknowledged(self) -> bool:
        """True once the server has accepted the message."""
        return self in (MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ)

    def can_advance_to(self, target: MessageStatus) -> bool:
        """Check whether moving from this status to target is a forward move."""
        if target == self:
            return True
        return target in _FORWARD_TRANSITIONS[self]


_FORWARD_TRANSITIONS: dict[MessageStatus, frozenset[MessageStatus]] = {
    MessageStatus.PENDING: frozenset(
        {MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ, MessageStatus.FAILED}
    ),
    MessageStatus.SENT: frozenset(
        {MessageStatus.DELIVERED, MessageStatus.READ, MessageStatus.FAILED}
    ),
    MessageStatus.DELIVERED: frozenset({MessageStatus.READ}),
    MessageStatus.READ: frozenset(),
    MessageStatus.FAILED: frozenset(
        {MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ}
    ),
}

# Statuses that count towards a thread's unread total
UNREAD_STATUSES = (MessageStatus.SENT, MessageStatus.DELIVERED)

# Statuses the pending sweep picks up
RETRYABLE_STATUSES = (MessageStatus.PENDING, MessageStatus.FAILED)


class MessageDirection(StrEnum):
    """Direction of a message relative to the current user."""

    SENT = "sent"
    RECEIVED = "received"


class JournalEventType(StrEnum):
    """Kinds of session journal entries."""

    TOOL_CALL = "tool_call"
    MESSAGE_SENT = "message_sent"
    MESSAGE_RECEIVED = "message_received"
    NOTE = "note"


class NotificationLevel(StrEnum):
    """Desktop/bell notification preference."""

    ALL = "all"
    MENTIONS = "mentions"
    OFF = "off"


class ActivityPrivacy(StrEnum):
    """How much coding activity is shared with others."""

    FULL = "full"
    STATUS_ONLY = "status_only"
    OFF = "off"


class PresenceState(StrEnum):
    """State machine for the presence heartbeat loop."""

    IDLE = "idle"
    REGISTERING = "registering"
    BEATING = "beating"
    STOPPED = "stopped"


# Remote API
DEFAULT_API_URL = "https://www.slashvibe.dev"
REQUEST_TIMEOUT = 10.0
USER_AGENT_PREFIX = "vibesync"

# Filesystem layout under $HOME
DATA_DIR_NAME = ".vibecodings"
LEGACY_DIR_NAME = ".vibe"
CONFIG_FILE_NAME = "config.json"
DB_FILE_NAME = "sessions.db"

# SQLite tuning shared with other local clients of the same file
SQLITE_BUSY_TIMEOUT_MS = 5000

# Messaging
MAX_BODY_LENGTH = 2000
THREAD_FETCH_LIMIT = 100
DEFAULT_MESSAGE_TYPE = "dm"
AUTH_ERROR_MARKER = "Authentication"
STORAGE_ERROR_CODE = "storage_error"

# Pending sweep: attempts after the first send before a message is left failed
MAX_SEND_RETRIES = 5

# Presence
HEARTBEAT_INTERVAL_SECONDS = 30.0
HEARTBEAT_SOURCE = "mcp"
GIT_COMMAND_TIMEOUT = 2.0

# Sessions
SESSION_ID_PREFIX = "sess_"
SESSION_ID_BITS = 128
RECENT_SESSIONS_LIMIT = 10
JOURNAL_LIMIT = 100
RESUME_JOURNAL_LIMIT = 10
SESSION_CHAIN_LIMIT = 20
SUMMARY_JOURNAL_LIMIT = 500
MESSAGE_PREVIEW_LENGTH = 80
TOOL_NAME_PREFIX = "vibe_"
DEFAULT_SESSION_VISIBILITY = "public"
