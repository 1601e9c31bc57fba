"""Presence heartbeats for the current process."""

from vibesync.presence.git import detect_git_context
from vibesync.presence.loop import HeartbeatResult, PresenceLoop

__all__ = [
    "HeartbeatResult",
    "PresenceLoop",
    "detect_git_context",
]
