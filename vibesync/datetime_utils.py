"""Utility functions for date/time operations.

Timestamps are stored as ISO-8601 strings in UTC so that other local
clients of the shared database can read them without conversion.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

logger = logging.getLogger(__name__)


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 timestamp, accepting a trailing 'Z'.

    Args:
        value: Timestamp string (e.g., "2026-02-10T14:30:00.000Z")

    Returns:
        Timezone-aware datetime, or None if the value is missing or malformed
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable timestamp: %s", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_duration(start: str | None, end: str | None) -> str:
    """Format the span between two timestamps as "1h 5m" or "12m"."""
    start_dt = parse_iso(start)
    end_dt = parse_iso(end)
    if not start_dt or not end_dt:
        return "?"
    minutes = max(int((end_dt - start_dt).total_seconds() // 60), 0)
    hours, mins = divmod(minutes, 60)
    if hours:
        return f"{hours}h {mins}m"
    return f"{mins}m"


def format_time(value: str | None) -> str:
    """Format a timestamp as 24-hour HH:MM, or '?' if missing."""
    parsed = parse_iso(value)
    return parsed.strftime("%H:%M") if parsed else "?"


def format_date(value: str | None) -> str:
    """Format a timestamp as a short date like 'Feb 10'."""
    parsed = parse_iso(value)
    return f"{parsed.strftime('%b')} {parsed.day}" if parsed else "?"
