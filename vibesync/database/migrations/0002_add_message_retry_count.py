"""Add retry_count column to messages.

The pending sweep counts delivery attempts per message so it can give up
after a bounded number of retries.

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
        "SELECT 1 FROM pragma_table_info('messages') WHERE name='retry_count'"
    ).fetchone()
    if not has_col:
        conn.execute("ALTER TABLE messages ADD COLUMN retry_count INTEGER NOT NULL DEFAULT 0")
