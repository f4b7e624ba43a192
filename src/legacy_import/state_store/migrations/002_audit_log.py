"""
Migration 002: Add audit log table.

Records operator-visible actions (allocations, merges, snapshots, exports,
cleanups, failures) per session.
"""

import sqlite3

VERSION = 2
NAME = "audit_log"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the legacy_import_audit_log table."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS legacy_import_audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            user_id TEXT,  -- NULL for system actions
            action TEXT NOT NULL,
            details_json TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            FOREIGN KEY (session_id) REFERENCES import_sessions(id)
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_audit_log_session
        ON legacy_import_audit_log (session_id, created_at)
    """)


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the legacy_import_audit_log table."""
    conn.execute("DROP INDEX IF EXISTS idx_audit_log_session")
    conn.execute("DROP TABLE IF EXISTS legacy_import_audit_log")
