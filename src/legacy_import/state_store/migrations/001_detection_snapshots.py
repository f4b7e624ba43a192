"""
Migration 001: Add detection snapshot table.

Every verdict written by a detector leaves an immutable row with the raw
evidence behind it (scores, matched rules, fingerprint), so verdicts can be
audited and reverted per detector.
"""

import sqlite3

VERSION = 1
NAME = "detection_snapshots"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the detection_snapshots table."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS detection_snapshots (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            document_id TEXT NOT NULL,

            -- scanned, duplicate, administrative
            detector TEXT NOT NULL,
            -- Scanned, Duplicate, Administrative, Inconclusive, Reverted
            verdict TEXT NOT NULL,

            payload_json TEXT NOT NULL,
            created_at TEXT NOT NULL,

            FOREIGN KEY (session_id) REFERENCES import_sessions(id),
            FOREIGN KEY (document_id) REFERENCES extracted_documents(id)
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_detection_snapshots_document
        ON detection_snapshots (document_id)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_detection_snapshots_session_detector
        ON detection_snapshots (session_id, detector)
    """)


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the detection_snapshots table."""
    conn.execute("DROP INDEX IF EXISTS idx_detection_snapshots_session_detector")
    conn.execute("DROP INDEX IF EXISTS idx_detection_snapshots_document")
    conn.execute("DROP TABLE IF EXISTS detection_snapshots")
