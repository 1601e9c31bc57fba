"""Session context: resuming prior sessions, summaries and publishing."""

from vibesync.sessions.resume import ResumeContext, build_resume_context, format_resume
from vibesync.sessions.summary import (
    SavedSession,
    SessionSummary,
    format_summary,
    save_session_remote,
    summarize_session,
)

__all__ = [
    "ResumeContext",
    "SavedSession",
    "SessionSummary",
    "build_resume_context",
    "format_resume",
    "format_summary",
    "save_session_remote",
    "summarize_session",
]
