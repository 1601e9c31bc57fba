"""Local-first message sync against the vibe backend."""

from vibesync.sync.engine import SyncEngine, truncate_body
from vibesync.sync.models import InboxEntry, SendResult, SweepReport, ThreadMessage

__all__ = [
    "InboxEntry",
    "SendResult",
    "SweepReport",
    "SyncEngine",
    "ThreadMessage",
    "truncate_body",
]
