"""
Batch extractor: resumable, bounded extraction of archive attachments.

Each call is a pure function of (session_id, cursor): it walks the archive,
skips qualifying attachments before the cursor without reading them,
materializes at most `take` attachments, and persists the new cursor.
Re-issuing a range never duplicates rows: documents are keyed by
(session_id, source_key) and counters only move on real inserts.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..archive import ArchiveReader, ArchiveScanner, QualifyingAttachment, is_sent_folder, open_archive
from ..config import Config
from ..errors import ArchiveOpenError, AttachmentReadError
from ..object_store import ObjectStore, document_key
from ..state_store import (
    UNDATED_MONTH,
    ImportStore,
    SessionRecord,
    SessionStatus,
    document_id_for,
    to_iso,
    utcnow,
)

logger = logging.getLogger(__name__)

# Statuses extraction is allowed to move forward from
_EXTRACTION_STATUSES = {SessionStatus.UPLOADING, SessionStatus.EXTRACTING}


@dataclass
class ExtractionProgress:
    """Extraction cursor state of a session."""

    total_in_archive: int
    extracted_count: int
    is_complete: bool

    @property
    def remaining_count(self) -> int:
        return max(self.total_in_archive - self.extracted_count, 0)

    @classmethod
    def from_session(cls, session: SessionRecord) -> "ExtractionProgress":
        return cls(
            total_in_archive=session.total_in_archive or 0,
            extracted_count=session.extracted_count,
            is_complete=session.extraction_complete,
        )

    def to_dict(self) -> dict:
        return {
            "totalInArchive": self.total_in_archive,
            "extractedCount": self.extracted_count,
            "isComplete": self.is_complete,
            "remainingCount": self.remaining_count,
        }


@dataclass
class ExtractionResult:
    """Result of one extract_batch call."""

    session_id: str
    skip: int
    take: int
    extracted: int = 0  # New document rows
    already_present: int = 0  # Rows from a previously extracted range
    read_errors: int = 0
    timed_out: bool = False
    next_cursor: int = 0
    progress: Optional[ExtractionProgress] = None
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Return True if no attachment failed to read."""
        return len(self.errors) == 0


def month_bucket(sent_at: Optional[datetime]) -> str:
    """Batch key for a message date ("YYYY-MM" or undated)."""
    if sent_at is None:
        return UNDATED_MONTH
    return sent_at.strftime("%Y-%m")


class BatchExtractor:
    """Counts and extracts qualifying attachments into a session."""

    def __init__(
        self,
        store: ImportStore,
        object_store: ObjectStore,
        config: Config,
        reader_factory: Callable[[str], ArchiveReader] = open_archive,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize extractor.

        Args:
            store: Import state store
            object_store: Destination for attachment bytes
            config: Application configuration
            reader_factory: Builds an (unopened) reader for an archive path
            monotonic: Clock for the per-call time budget
        """
        self.store = store
        self.object_store = object_store
        self.config = config
        self.reader_factory = reader_factory
        self.monotonic = monotonic
        self.scanner = ArchiveScanner(config.archive.supported_extensions)

    def _open(self, session: SessionRecord) -> ArchiveReader:
        try:
            reader = self.reader_factory(session.archive_path)
            reader.open()
        except ArchiveOpenError as e:
            self._fail_session(session.id, str(e))
            raise
        return reader

    def _fail_session(self, session_id: str, message: str) -> None:
        logger.error(f"Session {session_id} failed: {message}")
        self.store.mark_session_failed(session_id, message)

    def count_entries(self, session_id: str) -> ExtractionProgress:
        """
        Count qualifying attachments and seed the extraction cursor.

        Moves the session to Extracting (or straight to InProgress when the
        archive holds nothing to extract).

        Raises:
            ArchiveOpenError: Archive cannot be opened (session marked Failed)
        """
        session = self.store.require_session(session_id)
        reader = self._open(session)
        try:
            total = self.scanner.count_entries(reader)
        except ArchiveOpenError as e:
            self._fail_session(session_id, str(e))
            raise
        finally:
            reader.close()

        with self.store.transaction() as conn:
            current = self.store.require_session(session_id, conn)
            fields: dict = {"total_in_archive": total}
            if current.status in _EXTRACTION_STATUSES:
                complete = current.extracted_count >= total
                fields["extraction_complete"] = complete
                fields["status"] = SessionStatus.IN_PROGRESS if complete else SessionStatus.EXTRACTING
            self.store.update_session(conn, session_id, **fields)
            updated = self.store.require_session(session_id, conn)

        logger.info(f"Session {session_id}: {total} qualifying attachments in archive")
        return ExtractionProgress.from_session(updated)

    def extract_batch(
        self,
        session_id: str,
        skip: Optional[int] = None,
        take: Optional[int] = None,
    ) -> ExtractionResult:
        """
        Extract qualifying attachments in [skip, skip + take).

        Args:
            session_id: Session to extract into
            skip: Cursor (defaults to the session's extracted count)
            take: Batch size (defaults to extraction.batch_size)

        Returns:
            ExtractionResult with the new cursor and progress

        Raises:
            ArchiveOpenError: Archive cannot be opened (session marked Failed)
        """
        session = self.store.require_session(session_id)
        if session.total_in_archive is None:
            self.count_entries(session_id)
            session = self.store.require_session(session_id)

        skip = session.extracted_count if skip is None else max(skip, 0)
        take = self.config.extraction.batch_size if take is None else take
        budget = self.config.extraction.time_budget_seconds
        result = ExtractionResult(session_id=session_id, skip=skip, take=take, next_cursor=skip)

        started = self.monotonic()
        exhausted = True
        read_error_ordinals: list[int] = []

        reader = self._open(session)
        try:
            for entry in self.scanner.iter_qualifying(reader):
                if entry.ordinal < skip:
                    continue
                if entry.ordinal >= skip + take:
                    exhausted = False
                    break
                if (
                    budget is not None
                    and result.next_cursor > skip
                    and self.monotonic() - started >= budget
                ):
                    result.timed_out = True
                    exhausted = False
                    break

                try:
                    if self._materialize(session_id, entry):
                        result.extracted += 1
                    else:
                        result.already_present += 1
                except AttachmentReadError as e:
                    result.read_errors += 1
                    result.errors.append(f"#{entry.ordinal} {entry.attachment.file_name}: {e}")
                    logger.warning(f"Skipping unreadable attachment #{entry.ordinal}: {e}")
                    read_error_ordinals.append(entry.ordinal)

                result.next_cursor = entry.ordinal + 1
        except ArchiveOpenError as e:
            self._fail_session(session_id, str(e))
            raise
        finally:
            reader.close()

        result.progress = self._advance_cursor(
            session_id, skip, result.next_cursor, exhausted, read_error_ordinals
        )

        logger.info(
            f"Extracted {result.extracted} new, {result.already_present} existing, "
            f"{result.read_errors} unreadable (cursor {skip} -> {result.next_cursor}"
            f"{', timed out' if result.timed_out else ''})"
        )
        return result

    def _materialize(self, session_id: str, entry: QualifyingAttachment) -> bool:
        """Store bytes and insert the document row. Returns False if it already existed."""
        source_key = entry.source_key
        document_id = document_id_for(session_id, source_key)
        if self.store.get_document(document_id) is not None:
            return False

        attachment = entry.attachment
        message = entry.message
        data = attachment.read()
        extension = attachment.extension
        storage_key = document_key(session_id, document_id, extension)
        self.object_store.put(storage_key, data)

        with self.store.transaction() as conn:
            batch_id = self.store.get_or_create_batch(conn, session_id, month_bucket(message.sent_at))
            inserted = self.store.insert_document(
                conn,
                session_id=session_id,
                batch_id=batch_id,
                source_key=source_key,
                ordinal=entry.ordinal,
                file_name=attachment.file_name,
                file_extension=extension,
                storage_key=storage_key,
                folder_path=message.folder_path,
                is_sent=is_sent_folder(message.folder_path, self.config.archive.sent_folder_names),
                file_size=len(data),
                message_subject=message.subject,
                sent_at=to_iso(message.sent_at) if message.sent_at else None,
                document_id=document_id,
            )
            if inserted:
                self.store.bump_batch_counters(conn, batch_id, documents=1)
                self.store.bump_session_counters(conn, session_id, total=1)
        return inserted

    def _advance_cursor(
        self,
        session_id: str,
        skip: int,
        reached: int,
        exhausted: bool,
        read_error_ordinals: list[int],
    ) -> ExtractionProgress:
        with self.store.transaction() as conn:
            session = self.store.require_session(session_id, conn)

            # Only a contiguous range may move the cursor
            if skip > session.extracted_count:
                return ExtractionProgress.from_session(session)

            extracted = max(session.extracted_count, reached)
            # Errors are counted once, by whichever call moves the cursor past them
            new_read_errors = sum(
                1 for ordinal in read_error_ordinals if session.extracted_count <= ordinal < extracted
            )
            self.store.bump_session_counters(conn, session_id, read_errors=new_read_errors)
            total = session.total_in_archive or 0
            if exhausted and extracted != total:
                logger.warning(
                    f"Archive held {extracted} qualifying attachments, expected {total}; "
                    "using the observed count"
                )
                total = extracted
            complete = extracted >= total

            fields: dict = {
                "extracted_count": extracted,
                "total_in_archive": total,
                "extraction_complete": complete,
            }
            if session.status in _EXTRACTION_STATUSES:
                fields["status"] = SessionStatus.IN_PROGRESS if complete else SessionStatus.EXTRACTING
            self.store.update_session(conn, session_id, **fields)
            return ExtractionProgress.from_session(self.store.require_session(session_id, conn))

    def extract_all(self, session_id: str, take: Optional[int] = None) -> list[ExtractionResult]:
        """Driver loop: call extract_batch until the session is fully extracted."""
        results = []
        while True:
            result = self.extract_batch(session_id, take=take)
            results.append(result)
            progress = result.progress
            if progress is None or progress.is_complete:
                break
            if result.next_cursor == result.skip and not result.timed_out:
                logger.warning(f"Extraction made no progress at cursor {result.skip}; stopping")
                break
        return results
