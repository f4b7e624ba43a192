"""
State store for legacy import sessions.

Persists sessions, month batches, extracted documents, categories,
detection snapshots and the audit log in SQLite.
"""

from .sqlite_store import (
    UNDATED_MONTH,
    BatchRecord,
    CategoryRecord,
    DocumentRecord,
    DocumentStatus,
    ImportStore,
    SessionRecord,
    SessionStatus,
    SkipReason,
    category_name_key,
    document_id_for,
    parse_iso,
    to_iso,
    utcnow,
)

__all__ = [
    "UNDATED_MONTH",
    "BatchRecord",
    "CategoryRecord",
    "DocumentRecord",
    "DocumentStatus",
    "ImportStore",
    "SessionRecord",
    "SessionStatus",
    "SkipReason",
    "category_name_key",
    "document_id_for",
    "parse_iso",
    "to_iso",
    "utcnow",
]
