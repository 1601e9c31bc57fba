"""Resume context from a prior session in the local journal."""

from __future__ import annotations

import logging
from collections import Counter

from pydantic import BaseModel, Field

from vibesync.constants import (
    JOURNAL_LIMIT,
    RESUME_JOURNAL_LIMIT,
    TOOL_NAME_PREFIX,
    JournalEventType,
)
from vibesync.database.models import JournalEntry, SessionRecord
from vibesync.database.session_store import BaseSessionJournal
from vibesync.datetime_utils import format_date, format_duration, format_time

logger = logging.getLogger(__name__)

MAX_TOOLS_SHOWN = 8


class ResumeContext(BaseModel):
    """Aggregated view of one prior session."""

    session: SessionRecord
    tool_counts: dict[str, int] = Field(default_factory=dict)
    messages_sent: int = 0
    messages_received: int = 0
    participants: list[str] = Field(default_factory=list)
    recent_entries: list[JournalEntry] = Field(default_factory=list)
    linked_session_id: str | None = None


def tool_label(tool_name: str) -> str:
    """Short tool name for display: 'vibe_dm' -> 'dm'."""
    return tool_name.removeprefix(TOOL_NAME_PREFIX)


def aggregate_journal(
    journal: list[JournalEntry],
) -> tuple[Counter[str], int, int, list[str]]:
    """Count tool calls by short name, messages each way, and distinct peers."""
    tools: Counter[str] = Counter()
    sent = received = 0
    participants: dict[str, None] = {}
    for entry in journal:
        if entry.event_type == JournalEventType.TOOL_CALL and entry.tool_name:
            tools[tool_label(entry.tool_name)] += 1
        elif entry.event_type == JournalEventType.MESSAGE_SENT:
            sent += 1
            if entry.target:
                participants[entry.target] = None
        elif entry.event_type == JournalEventType.MESSAGE_RECEIVED:
            received += 1
            if entry.target:
                participants[entry.target] = None
    return tools, sent, received, list(participants)


def build_resume_context(
    journal: BaseSessionJournal,
    session_id: str | None = None,
    handle: str | None = None,
    repo: str | None = None,
    limit: int = RESUME_JOURNAL_LIMIT,
    current_session_id: str | None = None,
) -> ResumeContext | None:
    """
    Load a prior session and summarize what happened in it.

    Args:
        journal: Session journal to read from
        session_id: Specific session to load; otherwise the last ended one
        handle: Owner of the session when session_id is not given
        repo: Optional repository filter when session_id is not given
        limit: Number of most recent journal entries to keep
        current_session_id: When given, this session is linked to the loaded
            one through parent_id

    Returns:
        The resume context, or None if no matching session exists
    """
    if session_id:
        session = journal.get_session(session_id)
    elif handle:
        session = journal.get_last_session(handle, repo=repo)
    else:
        return None
    if session is None:
        return None

    entries = journal.get_session_journal(session.session_id, limit=JOURNAL_LIMIT)
    tools, sent, received, participants = aggregate_journal(entries)

    linked = None
    if current_session_id and current_session_id != session.session_id:
        journal.set_parent(current_session_id, session.session_id)
        linked = current_session_id
        logger.debug("Linked session %s to parent %s", current_session_id, session.session_id)

    return ResumeContext(
        session=session,
        tool_counts=dict(tools.most_common()),
        messages_sent=sent,
        messages_received=received,
        participants=participants,
        recent_entries=entries[-limit:] if limit > 0 else [],
        linked_session_id=linked,
    )


def format_resume(ctx: ResumeContext) -> str:
    """Render a resume context as markdown."""
    session = ctx.session
    lines = ["## Prior Session Context", ""]

    end = format_time(session.ended_at) if session.ended_at else "ongoing"
    duration = (
        f" ({format_duration(session.started_at, session.ended_at)})" if session.ended_at else ""
    )
    lines.append(
        f"**When:** {format_date(session.started_at)} "
        f"{format_time(session.started_at)}-{end}{duration}"
    )
    if session.machine_id:
        lines.append(f"**Machine:** {session.machine_id}")
    if session.git_repo:
        branch = f" ({session.git_branch})" if session.git_branch else ""
        lines.append(f"**Repo:** {session.git_repo.rstrip('/').rsplit('/', 1)[-1]}{branch}")
    if ctx.participants:
        lines.append(f"**Participants:** {', '.join(f'@{p}' for p in ctx.participants)}")
    if session.summary:
        lines += ["", f"**Summary:** {session.summary}"]

    if ctx.tool_counts or ctx.messages_sent or ctx.messages_received:
        lines += ["", "### Activity"]
        if ctx.messages_sent or ctx.messages_received:
            lines.append(
                f"- Messages: {ctx.messages_sent} sent, {ctx.messages_received} received"
            )
        for tool, count in list(ctx.tool_counts.items())[:MAX_TOOLS_SHOWN]:
            lines.append(f"- {tool}: {count}x")

    if ctx.recent_entries:
        lines += ["", f"### Last {len(ctx.recent_entries)} Events"]
        for entry in ctx.recent_entries:
            kind = entry.event_type.replace("_", " ")
            target = f" -> @{entry.target}" if entry.target else ""
            detail = entry.summary or entry.tool_name or ""
            lines.append(f"- `{format_time(entry.timestamp)}` {kind}{target} {detail}".rstrip())

    lines += [
        "",
        "---",
        f"_Session {session.session_id[:8]}... loaded. You're continuing where you left off._",
    ]
    return "\n".join(lines)
