"""
SQLite-based state store implementation.

Tables:
- import_sessions: One row per uploaded archive (counters + extraction cursor)
- document_batches: Month-scoped units of categorization work
- extracted_documents: One row per extracted attachment
- import_categories: Per-session taxonomy (case-insensitive unique names)

Every write runs inside `BEGIN IMMEDIATE`, so concurrent processes serialize
on the database lock and the first committer wins. Counter rows carry a
`version` column that is bumped on every mutation.
"""

import json
import sqlite3
import unicodedata
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from ..errors import CategoryNotFound, DocumentNotFound, SessionNotFound

UNDATED_MONTH = "undated"

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    """Current time (UTC, timezone-aware)."""
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format a datetime as a fixed-width UTC timestamp (sortable as text)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def parse_iso(value: str) -> datetime:
    """Parse a stored timestamp back into an aware datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def category_name_key(name: str) -> str:
    """Uniqueness key for category names (trimmed, NFC, case-folded)."""
    return unicodedata.normalize("NFC", name.strip()).casefold()


def document_id_for(session_id: str, source_key: str) -> str:
    """Stable document id derived from the attachment's identity in the archive."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"legacy-import:{session_id}:{source_key}"))


class SessionStatus(str, Enum):
    """Lifecycle of an import session."""

    UPLOADING = "Uploading"
    EXTRACTING = "Extracting"
    IN_PROGRESS = "InProgress"
    READY_FOR_VALIDATION = "ReadyForValidation"
    COMPLETED = "Completed"
    FAILED = "Failed"


class DocumentStatus(str, Enum):
    """Categorization state of an extracted document."""

    UNCATEGORIZED = "Uncategorized"
    CATEGORIZED = "Categorized"
    SKIPPED = "Skipped"


class SkipReason(str, Enum):
    """Why a document was excluded from human categorization."""

    SCANNED = "Scanned"
    DUPLICATE = "Duplicate"
    ADMINISTRATIVE = "Administrative"
    MANUAL = "Manual"  # skipped by a categorizer


@dataclass
class SessionRecord:
    """Record of an import session."""

    id: str
    archive_path: str
    uploaded_by: str | None
    status: SessionStatus
    total_documents: int
    categorized_count: int
    skipped_count: int
    total_in_archive: int | None
    extracted_count: int
    extraction_complete: bool
    read_error_count: int
    categorizer_count: int
    allocation_chunk_size: int | None
    skip_reason_counts: dict[str, int]
    last_snapshot_at: str | None
    last_snapshot_key: str | None
    export_key: str | None
    exported_at: str | None
    cleanup_scheduled_at: str | None
    cleaned_up_at: str | None
    error_message: str | None
    version: int
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SessionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            archive_path=row["archive_path"],
            uploaded_by=row["uploaded_by"],
            status=SessionStatus(row["status"]),
            total_documents=row["total_documents"],
            categorized_count=row["categorized_count"],
            skipped_count=row["skipped_count"],
            total_in_archive=row["total_in_archive"],
            extracted_count=row["extracted_count"],
            extraction_complete=bool(row["extraction_complete"]),
            read_error_count=row["read_error_count"],
            categorizer_count=row["categorizer_count"],
            allocation_chunk_size=row["allocation_chunk_size"],
            skip_reason_counts=json.loads(row["skip_reason_counts"]) if row["skip_reason_counts"] else {},
            last_snapshot_at=row["last_snapshot_at"],
            last_snapshot_key=row["last_snapshot_key"],
            export_key=row["export_key"],
            exported_at=row["exported_at"],
            cleanup_scheduled_at=row["cleanup_scheduled_at"],
            cleaned_up_at=row["cleaned_up_at"],
            error_message=row["error_message"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class BatchRecord:
    """Record of a month-scoped document batch."""

    id: int
    session_id: str
    month_year: str
    document_count: int
    categorized_count: int
    skipped_count: int
    assigned_to: str | None
    assigned_at: str | None
    completed_at: str | None
    updated_at: str
    version: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "BatchRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            month_year=row["month_year"],
            document_count=row["document_count"],
            categorized_count=row["categorized_count"],
            skipped_count=row["skipped_count"],
            assigned_to=row["assigned_to"],
            assigned_at=row["assigned_at"],
            completed_at=row["completed_at"],
            updated_at=row["updated_at"],
            version=row["version"],
        )

    @property
    def processed_count(self) -> int:
        return self.categorized_count + self.skipped_count

    @property
    def is_complete(self) -> bool:
        """All documents in the batch are categorized or skipped."""
        return self.processed_count >= self.document_count


@dataclass
class DocumentRecord:
    """Record of an extracted attachment."""

    id: str
    session_id: str
    batch_id: int
    source_key: str
    ordinal: int
    file_name: str
    file_extension: str
    file_size: int | None
    storage_key: str
    folder_path: str
    message_subject: str | None
    sent_at: str | None
    is_sent: bool
    extracted_text: str | None  # None = not attempted, "" = attempted and failed
    text_error: str | None
    language: str | None
    content_fingerprint: str | None
    status: DocumentStatus
    skip_reason: SkipReason | None
    duplicate_of: str | None
    category_id: int | None
    categorized_by: str | None
    categorized_at: str | None
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DocumentRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            batch_id=row["batch_id"],
            source_key=row["source_key"],
            ordinal=row["ordinal"],
            file_name=row["file_name"],
            file_extension=row["file_extension"],
            file_size=row["file_size"],
            storage_key=row["storage_key"],
            folder_path=row["folder_path"],
            message_subject=row["message_subject"],
            sent_at=row["sent_at"],
            is_sent=bool(row["is_sent"]),
            extracted_text=row["extracted_text"],
            text_error=row["text_error"],
            language=row["language"],
            content_fingerprint=row["content_fingerprint"],
            status=DocumentStatus(row["status"]),
            skip_reason=SkipReason(row["skip_reason"]) if row["skip_reason"] else None,
            duplicate_of=row["duplicate_of"],
            category_id=row["category_id"],
            categorized_by=row["categorized_by"],
            categorized_at=row["categorized_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @property
    def text_failed(self) -> bool:
        """Text extraction was attempted and failed (never retried)."""
        return self.extracted_text is not None and self.text_error is not None


@dataclass
class CategoryRecord:
    """Record of a session category."""

    id: int
    session_id: str
    name: str
    name_key: str
    document_count: int
    created_by: str | None
    created_at: str
    updated_at: str
    merged_into: int | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CategoryRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            name=row["name"],
            name_key=row["name_key"],
            document_count=row["document_count"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            merged_into=row["merged_into"],
        )


# Columns callers may set through update_session()
_SESSION_UPDATABLE = {
    "status",
    "total_in_archive",
    "extracted_count",
    "extraction_complete",
    "categorizer_count",
    "allocation_chunk_size",
    "skip_reason_counts",
    "last_snapshot_at",
    "last_snapshot_key",
    "export_key",
    "exported_at",
    "cleanup_scheduled_at",
    "cleaned_up_at",
    "error_message",
}


class ImportStore:
    """
    SQLite-based state store for legacy import sessions.

    Provides persistent tracking of:
    - Import sessions and their extraction cursor
    - Month batches and their assignment
    - Extracted documents and their verdicts
    - Categories
    - Detection snapshots and the audit log (via migrations)

    Safe for multiple writer processes: writes use BEGIN IMMEDIATE.
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: Path | str,
        run_migrations: bool = True,
        busy_timeout: float = 30.0,
    ):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
            busy_timeout: Seconds to wait for the write lock
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout = busy_timeout
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory (autocommit, explicit BEGIN)."""
        conn = sqlite3.connect(
            str(self.db_path), timeout=self.busy_timeout, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout * 1000)}")
        return conn

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions.

        Args:
            immediate: Take the write lock up front (BEGIN IMMEDIATE). Read-only
                callers pass False.
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextmanager
    def _reading(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        """Reuse the caller's connection, or open a read transaction."""
        if conn is not None:
            yield conn
        else:
            with self.transaction(immediate=False) as own:
                yield own

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._get_connection()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
        finally:
            conn.close()

        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS import_sessions (
                    id TEXT PRIMARY KEY,
                    archive_path TEXT NOT NULL,
                    uploaded_by TEXT,
                    status TEXT NOT NULL,
                    total_documents INTEGER NOT NULL DEFAULT 0,
                    categorized_count INTEGER NOT NULL DEFAULT 0,
                    skipped_count INTEGER NOT NULL DEFAULT 0,
                    total_in_archive INTEGER,
                    extracted_count INTEGER NOT NULL DEFAULT 0,
                    extraction_complete INTEGER NOT NULL DEFAULT 0,
                    read_error_count INTEGER NOT NULL DEFAULT 0,
                    categorizer_count INTEGER NOT NULL DEFAULT 1,
                    allocation_chunk_size INTEGER,
                    skip_reason_counts TEXT,  -- JSON object
                    last_snapshot_at TEXT,
                    last_snapshot_key TEXT,
                    export_key TEXT,
                    exported_at TEXT,
                    cleanup_scheduled_at TEXT,
                    cleaned_up_at TEXT,
                    error_message TEXT,
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (categorized_count + skipped_count <= total_documents)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS document_batches (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    month_year TEXT NOT NULL,
                    document_count INTEGER NOT NULL DEFAULT 0,
                    categorized_count INTEGER NOT NULL DEFAULT 0,
                    skipped_count INTEGER NOT NULL DEFAULT 0,
                    assigned_to TEXT,
                    assigned_at TEXT,
                    completed_at TEXT,
                    updated_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    UNIQUE (session_id, month_year),
                    FOREIGN KEY (session_id) REFERENCES import_sessions(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS import_categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    name_key TEXT NOT NULL,
                    document_count INTEGER NOT NULL DEFAULT 0,
                    created_by TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    merged_into INTEGER,
                    UNIQUE (session_id, name_key),
                    FOREIGN KEY (session_id) REFERENCES import_sessions(id),
                    FOREIGN KEY (merged_into) REFERENCES import_categories(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS extracted_documents (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    batch_id INTEGER NOT NULL,
                    source_key TEXT NOT NULL,
                    ordinal INTEGER NOT NULL,
                    file_name TEXT NOT NULL,
                    file_extension TEXT NOT NULL,
                    file_size INTEGER,
                    storage_key TEXT NOT NULL,
                    folder_path TEXT NOT NULL,
                    message_subject TEXT,
                    sent_at TEXT,
                    is_sent INTEGER NOT NULL DEFAULT 0,
                    extracted_text TEXT,
                    text_error TEXT,
                    language TEXT,
                    content_fingerprint TEXT,
                    status TEXT NOT NULL,
                    skip_reason TEXT,
                    duplicate_of TEXT,
                    category_id INTEGER,
                    categorized_by TEXT,
                    categorized_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (session_id, source_key),
                    CHECK ((skip_reason IS NOT NULL) = (status = 'Skipped')),
                    CHECK ((duplicate_of IS NOT NULL) = (skip_reason IS 'Duplicate')),
                    FOREIGN KEY (session_id) REFERENCES import_sessions(id),
                    FOREIGN KEY (batch_id) REFERENCES document_batches(id),
                    FOREIGN KEY (duplicate_of) REFERENCES extracted_documents(id),
                    FOREIGN KEY (category_id) REFERENCES import_categories(id)
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_session_status "
                "ON extracted_documents(session_id, status)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_batch ON extracted_documents(batch_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_fingerprint "
                "ON extracted_documents(session_id, content_fingerprint)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_batches_assigned "
                "ON document_batches(session_id, assigned_to)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Session methods

    def create_session(
        self,
        archive_path: str,
        uploaded_by: str | None = None,
        categorizer_count: int = 1,
    ) -> SessionRecord:
        """Create a new import session in Uploading state."""
        session_id = uuid.uuid4().hex
        now = to_iso(utcnow())

        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO import_sessions
                (id, archive_path, uploaded_by, status, categorizer_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    session_id,
                    archive_path,
                    uploaded_by,
                    SessionStatus.UPLOADING.value,
                    categorizer_count,
                    now,
                    now,
                ),
            )
            return self.require_session(session_id, conn)

    def get_session(
        self, session_id: str, conn: sqlite3.Connection | None = None
    ) -> SessionRecord | None:
        """Get a session by ID."""
        with self._reading(conn) as c:
            row = c.execute("SELECT * FROM import_sessions WHERE id = ?", (session_id,)).fetchone()
            return SessionRecord.from_row(row) if row else None

    def require_session(
        self, session_id: str, conn: sqlite3.Connection | None = None
    ) -> SessionRecord:
        """Get a session by ID or raise SessionNotFound."""
        session = self.get_session(session_id, conn)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def list_sessions(self) -> list[SessionRecord]:
        """All sessions, newest first."""
        with self._reading(None) as conn:
            rows = conn.execute("SELECT * FROM import_sessions ORDER BY created_at DESC").fetchall()
            return [SessionRecord.from_row(r) for r in rows]

    def update_session(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        **fields: Any,
    ) -> None:
        """Update whitelisted session columns, bumping version and updated_at."""
        unknown = set(fields) - _SESSION_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update session columns: {sorted(unknown)}")

        updates = ["updated_at = ?", "version = version + 1"]
        params: list[Any] = [to_iso(utcnow())]
        for column, value in fields.items():
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, dict):
                value = json.dumps(value, sort_keys=True)
            elif isinstance(value, bool):
                value = int(value)
            updates.append(f"{column} = ?")
            params.append(value)
        params.append(session_id)

        cursor = conn.execute(
            f"UPDATE import_sessions SET {', '.join(updates)} WHERE id = ?",
            params,
        )
        if cursor.rowcount == 0:
            raise SessionNotFound(session_id)

    def bump_session_counters(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        total: int = 0,
        categorized: int = 0,
        skipped: int = 0,
        read_errors: int = 0,
    ) -> None:
        """Apply counter deltas to a session (inside the caller's transaction)."""
        if not (total or categorized or skipped or read_errors):
            return
        conn.execute(
            """
            UPDATE import_sessions
            SET total_documents = total_documents + ?,
                categorized_count = categorized_count + ?,
                skipped_count = skipped_count + ?,
                read_error_count = read_error_count + ?,
                version = version + 1,
                updated_at = ?
            WHERE id = ?
        """,
            (total, categorized, skipped, read_errors, to_iso(utcnow()), session_id),
        )

    def mark_session_failed(self, session_id: str, error_message: str) -> None:
        """Persist a fatal, human-readable failure on the session and audit it."""
        with self.transaction() as conn:
            self.update_session(
                conn, session_id, status=SessionStatus.FAILED, error_message=error_message
            )
            self.record_audit(conn, session_id, "session_failed", details={"error": error_message})

    # Batch methods

    def get_or_create_batch(
        self, conn: sqlite3.Connection, session_id: str, month_year: str
    ) -> int:
        """Return the batch id for a month, creating the batch lazily."""
        conn.execute(
            """
            INSERT OR IGNORE INTO document_batches (session_id, month_year, updated_at)
            VALUES (?, ?, ?)
        """,
            (session_id, month_year, to_iso(utcnow())),
        )
        row = conn.execute(
            "SELECT id FROM document_batches WHERE session_id = ? AND month_year = ?",
            (session_id, month_year),
        ).fetchone()
        return row["id"]

    def get_batch(self, batch_id: int, conn: sqlite3.Connection | None = None) -> BatchRecord | None:
        """Get a batch by ID."""
        with self._reading(conn) as c:
            row = c.execute("SELECT * FROM document_batches WHERE id = ?", (batch_id,)).fetchone()
            return BatchRecord.from_row(row) if row else None

    def list_batches(
        self,
        session_id: str,
        conn: sqlite3.Connection | None = None,
        assigned_to: str | None = None,
        unassigned_only: bool = False,
    ) -> list[BatchRecord]:
        """List batches oldest month first (ties broken by id)."""
        query = "SELECT * FROM document_batches WHERE session_id = ?"
        params: list[Any] = [session_id]
        if assigned_to is not None:
            query += " AND assigned_to = ?"
            params.append(assigned_to)
        if unassigned_only:
            query += " AND assigned_to IS NULL"
        query += " ORDER BY month_year ASC, id ASC"

        with self._reading(conn) as c:
            rows = c.execute(query, params).fetchall()
            return [BatchRecord.from_row(r) for r in rows]

    def bump_batch_counters(
        self,
        conn: sqlite3.Connection,
        batch_id: int,
        documents: int = 0,
        categorized: int = 0,
        skipped: int = 0,
        now: str | None = None,
    ) -> None:
        """Apply counter deltas to a batch and keep completed_at in sync."""
        now = now or to_iso(utcnow())
        conn.execute(
            """
            UPDATE document_batches
            SET document_count = document_count + ?,
                categorized_count = categorized_count + ?,
                skipped_count = skipped_count + ?,
                version = version + 1,
                updated_at = ?
            WHERE id = ?
        """,
            (documents, categorized, skipped, now, batch_id),
        )
        conn.execute(
            """
            UPDATE document_batches
            SET completed_at = CASE
                WHEN categorized_count + skipped_count >= document_count
                    THEN COALESCE(completed_at, ?)
                ELSE NULL
            END
            WHERE id = ?
        """,
            (now, batch_id),
        )

    def claim_batch(
        self, conn: sqlite3.Connection, batch_id: int, user_id: str, now: str | None = None
    ) -> bool:
        """Atomically assign an unassigned batch (compare-and-set on assigned_to)."""
        now = now or to_iso(utcnow())
        cursor = conn.execute(
            """
            UPDATE document_batches
            SET assigned_to = ?, assigned_at = ?, updated_at = ?, version = version + 1
            WHERE id = ? AND assigned_to IS NULL
        """,
            (user_id, now, now, batch_id),
        )
        return cursor.rowcount == 1

    def release_batch(
        self, conn: sqlite3.Connection, batch_id: int, expected_user: str
    ) -> bool:
        """Unassign a batch only if it is still held by expected_user."""
        cursor = conn.execute(
            """
            UPDATE document_batches
            SET assigned_to = NULL, assigned_at = NULL, updated_at = ?, version = version + 1
            WHERE id = ? AND assigned_to = ?
        """,
            (to_iso(utcnow()), batch_id, expected_user),
        )
        return cursor.rowcount == 1

    # Document methods

    def insert_document(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        batch_id: int,
        source_key: str,
        ordinal: int,
        file_name: str,
        file_extension: str,
        storage_key: str,
        folder_path: str,
        is_sent: bool,
        file_size: int | None = None,
        message_subject: str | None = None,
        sent_at: str | None = None,
        document_id: str | None = None,
    ) -> bool:
        """Insert a document row; returns False if it already existed."""
        now = to_iso(utcnow())
        document_id = document_id or document_id_for(session_id, source_key)
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO extracted_documents
            (id, session_id, batch_id, source_key, ordinal, file_name, file_extension,
             file_size, storage_key, folder_path, message_subject, sent_at, is_sent,
             status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                document_id,
                session_id,
                batch_id,
                source_key,
                ordinal,
                file_name,
                file_extension,
                file_size,
                storage_key,
                folder_path,
                message_subject,
                sent_at,
                int(is_sent),
                DocumentStatus.UNCATEGORIZED.value,
                now,
                now,
            ),
        )
        return cursor.rowcount == 1

    def get_document(
        self, document_id: str, conn: sqlite3.Connection | None = None
    ) -> DocumentRecord | None:
        """Get a document by ID."""
        with self._reading(conn) as c:
            row = c.execute(
                "SELECT * FROM extracted_documents WHERE id = ?", (document_id,)
            ).fetchone()
            return DocumentRecord.from_row(row) if row else None

    def require_document(
        self, document_id: str, conn: sqlite3.Connection | None = None
    ) -> DocumentRecord:
        """Get a document by ID or raise DocumentNotFound."""
        document = self.get_document(document_id, conn)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    def list_documents(
        self,
        session_id: str,
        status: DocumentStatus | None = None,
        batch_id: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[DocumentRecord]:
        """List documents in archive order."""
        query = "SELECT * FROM extracted_documents WHERE session_id = ?"
        params: list[Any] = [session_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if batch_id is not None:
            query += " AND batch_id = ?"
            params.append(batch_id)
        query += " ORDER BY ordinal ASC"

        with self._reading(conn) as c:
            rows = c.execute(query, params).fetchall()
            return [DocumentRecord.from_row(r) for r in rows]

    def documents_pending_text(self, session_id: str, limit: int) -> list[DocumentRecord]:
        """Documents whose text extraction has not been attempted yet."""
        with self._reading(None) as conn:
            rows = conn.execute(
                """
                SELECT * FROM extracted_documents
                WHERE session_id = ? AND extracted_text IS NULL
                ORDER BY ordinal ASC
                LIMIT ?
            """,
                (session_id, limit),
            ).fetchall()
            return [DocumentRecord.from_row(r) for r in rows]

    def documents_without_verdict(
        self,
        session_id: str,
        limit: int,
        after_ordinal: int = -1,
        extensions: list[str] | None = None,
    ) -> list[DocumentRecord]:
        """Uncategorized documents with attempted text and no skip reason."""
        query = """
            SELECT * FROM extracted_documents
            WHERE session_id = ?
              AND status = ?
              AND skip_reason IS NULL
              AND extracted_text IS NOT NULL
              AND ordinal > ?
        """
        params: list[Any] = [session_id, DocumentStatus.UNCATEGORIZED.value, after_ordinal]
        if extensions:
            query += f" AND file_extension IN ({', '.join('?' for _ in extensions)})"
            params.extend(extensions)
        query += " ORDER BY ordinal ASC LIMIT ?"
        params.append(limit)

        with self._reading(None) as conn:
            rows = conn.execute(query, params).fetchall()
            return [DocumentRecord.from_row(r) for r in rows]

    def set_document_text(
        self,
        conn: sqlite3.Connection,
        document_id: str,
        text: str,
        language: str | None = None,
        error: str | None = None,
    ) -> bool:
        """Record a text extraction outcome once (no-op if already attempted)."""
        cursor = conn.execute(
            """
            UPDATE extracted_documents
            SET extracted_text = ?, language = ?, text_error = ?, updated_at = ?
            WHERE id = ? AND extracted_text IS NULL
        """,
            (text, language, error, to_iso(utcnow()), document_id),
        )
        return cursor.rowcount == 1

    def set_fingerprint(self, conn: sqlite3.Connection, document_id: str, fingerprint: str) -> None:
        """Persist a document's content fingerprint."""
        conn.execute(
            "UPDATE extracted_documents SET content_fingerprint = ? WHERE id = ?",
            (fingerprint, document_id),
        )

    def set_skip_reason(
        self,
        conn: sqlite3.Connection,
        document_id: str,
        reason: SkipReason,
        duplicate_of: str | None = None,
    ) -> bool:
        """Mark an undecided document Skipped with an automatic reason.

        Idempotent: only documents that are still Uncategorized and have no
        verdict change. Batch and session skipped counters move in the same
        transaction.
        """
        now = to_iso(utcnow())
        cursor = conn.execute(
            """
            UPDATE extracted_documents
            SET status = ?, skip_reason = ?, duplicate_of = ?, updated_at = ?
            WHERE id = ? AND status = ? AND skip_reason IS NULL
        """,
            (
                DocumentStatus.SKIPPED.value,
                reason.value,
                duplicate_of if reason == SkipReason.DUPLICATE else None,
                now,
                document_id,
                DocumentStatus.UNCATEGORIZED.value,
            ),
        )
        if cursor.rowcount == 0:
            return False

        row = conn.execute(
            "SELECT session_id, batch_id FROM extracted_documents WHERE id = ?", (document_id,)
        ).fetchone()
        self.bump_batch_counters(conn, row["batch_id"], skipped=1, now=now)
        self.bump_session_counters(conn, row["session_id"], skipped=1)
        return True

    def update_document_decision(
        self,
        conn: sqlite3.Connection,
        document_id: str,
        status: DocumentStatus,
        category_id: int | None,
        skip_reason: SkipReason | None,
        categorized_by: str,
        categorized_at: str,
    ) -> None:
        """Record a human decision (clears any automatic duplicate link)."""
        conn.execute(
            """
            UPDATE extracted_documents
            SET status = ?, category_id = ?, skip_reason = ?, duplicate_of = NULL,
                categorized_by = ?, categorized_at = ?, updated_at = ?
            WHERE id = ?
        """,
            (
                status.value,
                category_id,
                skip_reason.value if skip_reason else None,
                categorized_by,
                categorized_at,
                categorized_at,
                document_id,
            ),
        )

    def clear_automatic_skip(self, conn: sqlite3.Connection, document_id: str) -> bool:
        """Undo an automatic verdict, returning the document to Uncategorized."""
        now = to_iso(utcnow())
        row = conn.execute(
            """
            SELECT session_id, batch_id FROM extracted_documents
            WHERE id = ? AND status = ? AND categorized_by IS NULL
        """,
            (document_id, DocumentStatus.SKIPPED.value),
        ).fetchone()
        if row is None:
            return False
        conn.execute(
            """
            UPDATE extracted_documents
            SET status = ?, skip_reason = NULL, duplicate_of = NULL, updated_at = ?
            WHERE id = ?
        """,
            (DocumentStatus.UNCATEGORIZED.value, now, document_id),
        )
        self.bump_batch_counters(conn, row["batch_id"], skipped=-1, now=now)
        self.bump_session_counters(conn, row["session_id"], skipped=-1)
        return True

    def count_pending_text(self, session_id: str) -> int:
        """Documents whose text extraction has not been attempted."""
        with self._reading(None) as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) FROM extracted_documents
                WHERE session_id = ? AND extracted_text IS NULL
            """,
                (session_id,),
            ).fetchone()
            return row[0]

    def documents_missing_fingerprint(self, session_id: str, limit: int) -> list[DocumentRecord]:
        """Documents with attempted text but no fingerprint yet ('' = inconclusive)."""
        with self._reading(None) as conn:
            rows = conn.execute(
                """
                SELECT * FROM extracted_documents
                WHERE session_id = ? AND extracted_text IS NOT NULL AND content_fingerprint IS NULL
                ORDER BY ordinal ASC
                LIMIT ?
            """,
                (session_id, limit),
            ).fetchall()
            return [DocumentRecord.from_row(r) for r in rows]

    def count_missing_fingerprints(self, session_id: str) -> int:
        with self._reading(None) as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) FROM extracted_documents
                WHERE session_id = ? AND content_fingerprint IS NULL
            """,
                (session_id,),
            ).fetchone()
            return row[0]

    def fingerprinted_documents(self, session_id: str) -> list[tuple[str, int, str]]:
        """(id, ordinal, fingerprint) for every document with a usable fingerprint."""
        with self._reading(None) as conn:
            rows = conn.execute(
                """
                SELECT id, ordinal, content_fingerprint FROM extracted_documents
                WHERE session_id = ? AND content_fingerprint IS NOT NULL AND content_fingerprint != ''
                ORDER BY ordinal ASC
            """,
                (session_id,),
            ).fetchall()
            return [(r["id"], r["ordinal"], r["content_fingerprint"]) for r in rows]

    def automatic_skip_ids(self, session_id: str, reason: SkipReason) -> list[str]:
        """Ids of documents skipped by a detector (not by a human) for reason."""
        with self._reading(None) as conn:
            rows = conn.execute(
                """
                SELECT id FROM extracted_documents
                WHERE session_id = ? AND status = ? AND skip_reason = ? AND categorized_by IS NULL
                ORDER BY ordinal ASC
            """,
                (session_id, DocumentStatus.SKIPPED.value, reason.value),
            ).fetchall()
            return [r["id"] for r in rows]

    def refresh_session_status(self, conn: sqlite3.Connection, session_id: str) -> SessionStatus:
        """Move between InProgress and ReadyForValidation as work completes or reopens."""
        session = self.require_session(session_id, conn)
        done = (
            session.extraction_complete
            and session.total_documents > 0
            and session.categorized_count + session.skipped_count >= session.total_documents
        )
        if session.status == SessionStatus.IN_PROGRESS and done:
            self.update_session(conn, session_id, status=SessionStatus.READY_FOR_VALIDATION)
            return SessionStatus.READY_FOR_VALIDATION
        if session.status == SessionStatus.READY_FOR_VALIDATION and not done:
            self.update_session(conn, session_id, status=SessionStatus.IN_PROGRESS)
            return SessionStatus.IN_PROGRESS
        return session.status

    def count_skip_reasons(
        self, session_id: str, conn: sqlite3.Connection | None = None
    ) -> dict[str, int]:
        """Count skipped documents by reason."""
        with self._reading(conn) as c:
            rows = c.execute(
                """
                SELECT skip_reason, COUNT(*) AS count FROM extracted_documents
                WHERE session_id = ? AND skip_reason IS NOT NULL
                GROUP BY skip_reason
            """,
                (session_id,),
            ).fetchall()
            return {row["skip_reason"]: row["count"] for row in rows}

    def count_documents_by_status(
        self, session_id: str, conn: sqlite3.Connection | None = None
    ) -> dict[str, int]:
        """Count documents by status."""
        with self._reading(conn) as c:
            rows = c.execute(
                """
                SELECT status, COUNT(*) AS count FROM extracted_documents
                WHERE session_id = ? GROUP BY status
            """,
                (session_id,),
            ).fetchall()
            counts = {status.value: 0 for status in DocumentStatus}
            counts.update({row["status"]: row["count"] for row in rows})
            return counts

    # Category methods

    def find_category_by_key(
        self, conn: sqlite3.Connection, session_id: str, name_key: str
    ) -> CategoryRecord | None:
        row = conn.execute(
            "SELECT * FROM import_categories WHERE session_id = ? AND name_key = ?",
            (session_id, name_key),
        ).fetchone()
        return CategoryRecord.from_row(row) if row else None

    def create_category_if_missing(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        name: str,
        created_by: str | None = None,
    ) -> CategoryRecord:
        """Return the session's category for `name`, creating it on first use.

        Concurrent creators of the same name converge on a single row: the
        unique (session_id, name_key) constraint turns the loser's insert into
        a no-op. A name that was merged away resolves to its merge target.
        """
        now = to_iso(utcnow())
        key = category_name_key(name)
        conn.execute(
            """
            INSERT OR IGNORE INTO import_categories
            (session_id, name, name_key, created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """,
            (session_id, unicodedata.normalize("NFC", name.strip()), key, created_by, now, now),
        )
        category = self.find_category_by_key(conn, session_id, key)
        seen = set()
        while category is not None and category.merged_into is not None:
            if category.id in seen:
                category = None
                break
            seen.add(category.id)
            category = self.get_category(category.merged_into, conn)
        if category is None:
            raise CategoryNotFound(
                f"Category {name!r} has no usable merge target in session {session_id}"
            )
        return category

    def get_category(
        self, category_id: int, conn: sqlite3.Connection | None = None
    ) -> CategoryRecord | None:
        """Get a category by ID."""
        with self._reading(conn) as c:
            row = c.execute(
                "SELECT * FROM import_categories WHERE id = ?", (category_id,)
            ).fetchone()
            return CategoryRecord.from_row(row) if row else None

    def list_categories(
        self,
        session_id: str,
        include_merged: bool = False,
        changed_since: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[CategoryRecord]:
        """List categories, most used first then by name."""
        query = "SELECT * FROM import_categories WHERE session_id = ?"
        params: list[Any] = [session_id]
        if not include_merged:
            query += " AND merged_into IS NULL"
        if changed_since is not None:
            query += " AND updated_at > ?"
            params.append(changed_since)
        query += " ORDER BY document_count DESC, name_key ASC"

        with self._reading(conn) as c:
            rows = c.execute(query, params).fetchall()
            return [CategoryRecord.from_row(r) for r in rows]

    def bump_category_count(self, conn: sqlite3.Connection, category_id: int, delta: int) -> None:
        conn.execute(
            """
            UPDATE import_categories
            SET document_count = document_count + ?, updated_at = ?
            WHERE id = ?
        """,
            (delta, to_iso(utcnow()), category_id),
        )

    def move_category_documents(
        self, conn: sqlite3.Connection, source_id: int, target_id: int
    ) -> int:
        """Point every document of source at target. Returns rows moved."""
        cursor = conn.execute(
            "UPDATE extracted_documents SET category_id = ?, updated_at = ? WHERE category_id = ?",
            (target_id, to_iso(utcnow()), source_id),
        )
        return cursor.rowcount

    def mark_category_merged(self, conn: sqlite3.Connection, source_id: int, target_id: int) -> None:
        """Retire source into target; categories already merged into source follow."""
        now = to_iso(utcnow())
        conn.execute(
            "UPDATE import_categories SET merged_into = ?, updated_at = ? WHERE merged_into = ?",
            (target_id, now, source_id),
        )
        conn.execute(
            """
            UPDATE import_categories
            SET merged_into = ?, document_count = 0, updated_at = ?
            WHERE id = ?
        """,
            (target_id, now, source_id),
        )

    def recount_category(self, conn: sqlite3.Connection, category_id: int) -> int:
        """Recompute a category's document count from its documents."""
        count = conn.execute(
            "SELECT COUNT(*) FROM extracted_documents WHERE category_id = ?", (category_id,)
        ).fetchone()[0]
        conn.execute(
            "UPDATE import_categories SET document_count = ?, updated_at = ? WHERE id = ?",
            (count, to_iso(utcnow()), category_id),
        )
        return count

    # Detection snapshots (migration 001)

    def record_detection(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        document_id: str,
        detector: str,
        verdict: str,
        payload: dict[str, Any],
    ) -> int:
        """Append an immutable detection artifact."""
        cursor = conn.execute(
            """
            INSERT INTO detection_snapshots
            (session_id, document_id, detector, verdict, payload_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """,
            (
                session_id,
                document_id,
                detector,
                verdict,
                json.dumps(payload, sort_keys=True, ensure_ascii=False),
                to_iso(utcnow()),
            ),
        )
        return cursor.lastrowid or 0

    def get_detections(self, document_id: str) -> list[dict[str, Any]]:
        """Detection artifacts for a document, oldest first."""
        with self._reading(None) as conn:
            rows = conn.execute(
                "SELECT * FROM detection_snapshots WHERE document_id = ? ORDER BY id ASC",
                (document_id,),
            ).fetchall()
            results = []
            for row in rows:
                item = dict(row)
                item["payload"] = json.loads(item.pop("payload_json"))
                results.append(item)
            return results

    # Audit log (migration 002)

    def record_audit(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        action: str,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        conn.execute(
            """
            INSERT INTO legacy_import_audit_log (session_id, user_id, action, details_json, created_at)
            VALUES (?, ?, ?, ?, ?)
        """,
            (
                session_id,
                user_id,
                action,
                json.dumps(details or {}, sort_keys=True, ensure_ascii=False),
                to_iso(utcnow()),
            ),
        )

    def get_audit_log(self, session_id: str) -> list[dict[str, Any]]:
        """Audit entries for a session, oldest first."""
        with self._reading(None) as conn:
            rows = conn.execute(
                "SELECT * FROM legacy_import_audit_log WHERE session_id = ? ORDER BY id ASC",
                (session_id,),
            ).fetchall()
            results = []
            for row in rows:
                item = dict(row)
                item["details"] = json.loads(item.pop("details_json"))
                results.append(item)
            return results
