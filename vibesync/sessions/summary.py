"""Session summaries and publishing a session to the server."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from vibesync.api import ApiClient
from vibesync.constants import DEFAULT_SESSION_VISIBILITY, SUMMARY_JOURNAL_LIMIT
from vibesync.database.session_store import BaseSessionJournal
from vibesync.datetime_utils import format_time, now_iso
from vibesync.sessions.resume import aggregate_journal
from vibesync.sync.models import InboxEntry

logger = logging.getLogger(__name__)

MAX_TOOLS_SUMMARIZED = 5
SESSION_URL_TEMPLATE = "https://slashvibe.dev/sessions/{session_id}"


class SessionSummary(BaseModel):
    """Activity of the current session plus open conversations."""

    session_id: str | None = None
    started_at: str
    ended_at: str
    participants: list[str] = Field(default_factory=list)
    messages_sent: int = 0
    messages_received: int = 0
    tool_counts: dict[str, int] = Field(default_factory=dict)
    open_threads: dict[str, int] = Field(default_factory=dict)


class SavedSession(BaseModel):
    """A session published to the server."""

    success: bool
    session_id: str | None = None
    url: str | None = None
    title: str
    visibility: str = DEFAULT_SESSION_VISIBILITY
    error: str | None = None


def summarize_session(
    journal: BaseSessionJournal,
    session_id: str | None,
    inbox: list[InboxEntry],
) -> SessionSummary:
    """
    Summarize a session from its journal and the current inbox.

    Args:
        journal: Session journal to read from
        session_id: Session to summarize; None gives an inbox-only summary
        inbox: Current inbox, used for participants and unread threads

    Returns:
        SessionSummary covering the session start until now
    """
    now = now_iso()
    session = journal.get_session(session_id) if session_id else None
    entries = (
        journal.get_session_journal(session_id, limit=SUMMARY_JOURNAL_LIMIT) if session_id else []
    )
    tools, sent, received, participants = aggregate_journal(entries)

    for thread in inbox:
        if thread.handle and thread.handle not in participants:
            participants.append(thread.handle)

    return SessionSummary(
        session_id=session_id,
        started_at=session.started_at if session else now,
        ended_at=now,
        participants=participants,
        messages_sent=sent,
        messages_received=received,
        tool_counts=dict(tools.most_common()),
        open_threads={t.handle: t.unread for t in inbox if t.unread > 0},
    )


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'s' if count != 1 else ''}"


def format_summary(summary: SessionSummary) -> str:
    """Render a session summary as markdown."""
    participants = ", ".join(f"@{p}" for p in summary.participants) or "_none_"
    lines = [
        f"## Session Summary: {format_time(summary.started_at)}-{format_time(summary.ended_at)}",
        "",
        f"- Participants: {participants}",
    ]

    events = []
    if summary.messages_sent:
        events.append(f"Sent {_plural(summary.messages_sent, 'message')}")
    if summary.messages_received:
        events.append(f"Received {_plural(summary.messages_received, 'message')}")
    if summary.tool_counts:
        top = list(summary.tool_counts.items())[:MAX_TOOLS_SUMMARIZED]
        events.append("Tools: " + ", ".join(f"{tool} ({count}x)" for tool, count in top))
    if events:
        lines.append("- Events:")
        lines += [f"  - {event}" for event in events]

    if summary.open_threads:
        lines.append("- Open threads:")
        lines += [
            f"  - @{handle} ({count} unread)" for handle, count in summary.open_threads.items()
        ]

    lines += ["", "---", "_This summary is local. Copy it to share it._"]
    return "\n".join(lines)


async def save_session_remote(
    api: ApiClient,
    handle: str,
    title: str,
    description: str | None = None,
    visibility: str = DEFAULT_SESSION_VISIBILITY,
    from_broadcast: str | None = None,
) -> SavedSession:
    """Publish a session so others can replay, discover and fork it."""
    result = await api.save_session(
        handle,
        title,
        description=description,
        visibility=visibility,
        from_broadcast=from_broadcast,
    )
    if result.get("success") is False or result.get("error"):
        logger.warning("Session save failed: %s", result.get("error"))
        return SavedSession(
            success=False,
            title=title,
            visibility=visibility,
            error=str(result.get("error") or "Session save failed"),
        )

    session = result.get("session") if isinstance(result.get("session"), dict) else result
    session_id = session.get("id") or session.get("sessionId")
    session_id = str(session_id) if session_id is not None else None
    url = session.get("url") or (
        SESSION_URL_TEMPLATE.format(session_id=session_id) if session_id else None
    )
    return SavedSession(
        success=True, session_id=session_id, url=url, title=title, visibility=visibility
    )
