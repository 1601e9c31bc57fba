"""Local persistence: shared SQLite cache of messages and the session journal."""

from vibesync.database.database import Database, NullDatabase, open_database
from vibesync.database.message_store import BaseMessageStore, MessageStore, NullMessageStore
from vibesync.database.models import InboxThread, JournalEntry, Message, SessionRecord
from vibesync.database.session_store import (
    BaseSessionJournal,
    NullSessionJournal,
    SessionJournal,
)

__all__ = [
    "BaseMessageStore",
    "BaseSessionJournal",
    "Database",
    "InboxThread",
    "JournalEntry",
    "Message",
    "MessageStore",
    "NullDatabase",
    "NullMessageStore",
    "NullSessionJournal",
    "SessionJournal",
    "SessionRecord",
    "open_database",
]
