"""
Error taxonomy for the legacy import pipeline.

Fatal errors abort a call and (for archive failures) mark the session Failed.
Per-item failures are counted in run results instead of being raised.
Recoverable errors tell the caller what to do next (re-snapshot, re-request).
"""


class LegacyImportError(Exception):
    """Base class for all legacy import errors."""

    pass


class SessionNotFound(LegacyImportError):
    """No import session with the given id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class DocumentNotFound(LegacyImportError):
    """No extracted document with the given id."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class CategoryNotFound(LegacyImportError):
    """Category does not exist in the session (or was merged away)."""

    pass


# Archive / extraction


class ArchiveOpenError(LegacyImportError):
    """The source archive could not be opened. Fatal for the session."""

    pass


class AttachmentReadError(LegacyImportError):
    """A single attachment could not be read. Counted and skipped."""

    pass


class TextExtractionFailure(LegacyImportError):
    """Format-specific text extraction failed for one document."""

    pass


# Allocation / ledger


class AllocationNotReady(LegacyImportError):
    """Batches cannot be allocated before extraction is complete."""

    pass


class BatchDoubleAssignment(LegacyImportError):
    """A batch claim lost a race against another assignee.

    The first committer wins; the caller should re-request its batches.
    """

    def __init__(self, batch_id: int):
        self.batch_id = batch_id
        super().__init__(f"Batch {batch_id} was claimed concurrently; re-request batches")


class InvalidDecision(LegacyImportError, ValueError):
    """A categorization decision is malformed (e.g. empty category name)."""

    pass


class DocumentNotAssigned(LegacyImportError):
    """The document's batch is held by another categorizer."""

    pass


# Snapshot guard


class SnapshotError(LegacyImportError):
    """Export is blocked until a fresh snapshot exists. Recoverable."""

    pass


class SnapshotRequired(SnapshotError):
    """No snapshot has been taken for the session."""

    pass


class SnapshotStale(SnapshotError):
    """The latest snapshot is older than the allowed age."""

    def __init__(self, age_minutes: float, max_age_minutes: int):
        self.age_minutes = age_minutes
        self.max_age_minutes = max_age_minutes
        super().__init__(
            f"Snapshot is {age_minutes:.0f} minutes old (max {max_age_minutes}); "
            "create a new snapshot and retry"
        )


class ExportRequired(LegacyImportError):
    """Cleanup requested for a session that has not been exported."""

    pass


class CleanupNotConfirmed(LegacyImportError):
    """Destructive cleanup needs explicit confirmation."""

    pass


class CleanupWindowOpen(LegacyImportError):
    """The post-export recovery window has not elapsed yet."""

    pass
