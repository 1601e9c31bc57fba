"""Add parent_id column to sessions.

Links a session to the one it resumed, so a chain of sessions in the same
repo can be walked back.

Type: schema
"""

import sqlite3


def up(conn: sqlite3.Connection) -> None:
    """Runs inside the caller's transaction."""
    has_table = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name='sessions'"
    ).fetchone()
    if not has_table:
        return
    has_col = conn.execute(
        "SELECT 1 FROM pragma_table_info('sessions') WHERE name='parent_id'"
    ).fetchone()
    if not has_col:
        conn.execute("ALTER TABLE sessions ADD COLUMN parent_id TEXT DEFAULT NULL")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_parent ON sessions(parent_id)")
