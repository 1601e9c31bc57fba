"""Error kinds and exceptions for vibesync."""

from enum import StrEnum


class ErrorKind(StrEnum):
    """Stable error identifiers surfaced to tool shells."""

    INVALID_PREFERENCE = "invalid_preference"
    SELF_SEND = "self_send"
    BODY_TOO_LONG = "body_too_long"
    INVALID_HANDLE = "invalid_handle"
    AUTH_EXPIRED = "auth_expired"
    AUTH_FAILED = "auth_failed"
    REMOTE_STORAGE = "remote_storage"
    TRANSIENT = "transient"
    PERSISTENT_LOCAL = "persistent_local"
    INVALID_TRANSITION = "invalid_transition"
    NOT_INITIALIZED = "not_initialized"
    UNKNOWN = "unknown"


class VibeSyncError(Exception):
    """Base class for all vibesync errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class InvalidPreferenceError(VibeSyncError, ValueError):
    """Raised when a preference setter receives an unknown token."""

    kind = ErrorKind.INVALID_PREFERENCE

    def __init__(self, name: str, value: str, allowed: list[str]):
        self.name = name
        self.value = value
        self.allowed = allowed
        super().__init__(f"Invalid {name} {value!r}. Use: {', '.join(allowed)}")


class SelfSendError(VibeSyncError):
    """Raised when a message would be sent to its own author."""

    kind = ErrorKind.SELF_SEND

    def __init__(self, handle: str):
        self.handle = handle
        super().__init__(f"Cannot send a message to yourself (@{handle})")


class BodyTooLongError(VibeSyncError):
    """Raised when a message body exceeds the maximum length."""

    kind = ErrorKind.BODY_TOO_LONG

    def __init__(self, length: int, limit: int):
        self.length = length
        self.limit = limit
        super().__init__(f"Message body is {length} characters (limit {limit})")


class InvalidHandleError(VibeSyncError, ValueError):
    """Raised when a handle is empty after normalization."""

    kind = ErrorKind.INVALID_HANDLE


class NotInitializedError(VibeSyncError):
    """Raised when an operation needs an identity and none is configured."""

    kind = ErrorKind.NOT_INITIALIZED


class InvalidTransitionError(VibeSyncError):
    """Raised when a message status update would move backwards."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, local_id: str, current: str, target: str, reason: str | None = None):
        self.local_id = local_id
        self.current = current
        self.target = target
        message = f"Cannot move message {local_id} from {current} to {target}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class LocalStoreError(VibeSyncError):
    """Raised when the local database cannot complete a write."""

    kind = ErrorKind.PERSISTENT_LOCAL
