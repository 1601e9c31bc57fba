"""Handle normalization."""

from vibesync.exceptions import InvalidHandleError


def normalize_handle(handle: str | None) -> str:
    """Lowercase a handle and strip whitespace and leading '@' characters.

    "@Alice ", "alice" and "ALICE" all normalize to "alice".
    Returns an empty string for None.
    """
    if not handle:
        return ""
    return handle.strip().lstrip("@").strip().lower()


def require_handle(handle: str | None) -> str:
    """Normalize a handle, raising InvalidHandleError if nothing is left."""
    normalized = normalize_handle(handle)
    if not normalized:
        raise InvalidHandleError(f"Invalid handle: {handle!r}")
    return normalized
