"""Add payload column to messages.

Structured payloads (game moves, shared artifacts) ride along with a
message as an opaque JSON string. Databases created by older clients
predate the column.

Type: schema
"""

import sqlite3


def up(conn: sqlite3.Connection) -> None:
    """Runs inside the caller's transaction."""
    has_table = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name='messages'"
    ).fetchone()
    if not has_table:
        return
    has_col = conn.execute(
        "SELECT 1 FROM pragma_table_info('messages') WHERE name='payload'"
    ).fetchone()
    if not has_col:
        conn.execute("ALTER TABLE messages ADD COLUMN payload TEXT DEFAULT NULL")
