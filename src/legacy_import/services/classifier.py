"""
Content classifier service.

Three independent, resumable detectors over documents that have no verdict
yet (Uncategorized, no skip reason):

1. Scanned: near-empty PDF text layer
2. Duplicate: map (fingerprint) → barrier → reduce (group by fingerprint)
3. Administrative: weighted rule tables with a legal override

Verdicts go through the store's conditional skip update, so a detector can
never overwrite another detector's verdict or a human decision. Every
verdict leaves an immutable detection snapshot with its evidence.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..classification import (
    AdministrativeClassifier,
    FingerprintedDocument,
    Verdict,
    assess_scanned,
    content_fingerprint,
    group_duplicates,
)
from ..config import Config
from ..errors import InvalidDecision
from ..state_store import DocumentRecord, ImportStore, SkipReason

logger = logging.getLogger(__name__)

DETECTOR_SCANNED = "scanned"
DETECTOR_DUPLICATE = "duplicate"
DETECTOR_ADMINISTRATIVE = "administrative"

_DETECTOR_FOR_REASON = {
    SkipReason.SCANNED: DETECTOR_SCANNED,
    SkipReason.DUPLICATE: DETECTOR_DUPLICATE,
    SkipReason.ADMINISTRATIVE: DETECTOR_ADMINISTRATIVE,
}


@dataclass
class DetectionResult:
    """Result of one detector pass."""

    detector: str
    examined: int = 0
    flagged: int = 0
    cleared: int = 0
    inconclusive: int = 0
    fingerprinted: int = 0  # Duplicate map phase only
    barrier_pending: bool = False  # Duplicate reduce deferred
    extraction_pending: bool = False  # Deferred because extraction is unfinished
    pending_text: int = 0  # Documents still waiting for the text pass
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


class ContentClassifier:
    """Runs the scanned, duplicate and administrative detectors."""

    def __init__(
        self,
        store: ImportStore,
        config: Config,
        administrative: Optional[AdministrativeClassifier] = None,
    ):
        self.store = store
        self.config = config
        cls_config = config.classification
        self.administrative = administrative or AdministrativeClassifier(
            admin_threshold=cls_config.admin_threshold,
            legal_override_threshold=cls_config.legal_override_threshold,
        )

    def _pages(
        self, session_id: str, limit: Optional[int], extensions: Optional[list[str]] = None
    ):
        """Yield pages of verdict-less documents, at most `limit` documents overall."""
        page_size = self.config.classification.detection_batch_size
        after = -1
        seen = 0
        while limit is None or seen < limit:
            size = page_size if limit is None else min(page_size, limit - seen)
            page = self.store.documents_without_verdict(
                session_id, size, after_ordinal=after, extensions=extensions
            )
            if not page:
                return
            seen += len(page)
            after = page[-1].ordinal
            yield page

    def _flag(
        self,
        conn,
        document: DocumentRecord,
        reason: SkipReason,
        detector: str,
        payload: dict,
        duplicate_of: Optional[str] = None,
    ) -> bool:
        if not self.store.set_skip_reason(conn, document.id, reason, duplicate_of=duplicate_of):
            return False
        self.store.record_detection(
            conn, document.session_id, document.id, detector, reason.value, payload
        )
        return True

    def _finish(self, session_id: str, result: DetectionResult) -> DetectionResult:
        with self.store.transaction() as conn:
            counts = self.store.count_skip_reasons(session_id, conn)
            self.store.update_session(conn, session_id, skip_reason_counts=counts)
            self.store.refresh_session_status(conn, session_id)
        result.pending_text = self.store.count_pending_text(session_id)
        logger.info(
            f"{result.detector} detection: {result.examined} examined, {result.flagged} flagged, "
            f"{result.inconclusive} inconclusive"
            f"{', reduce deferred' if result.barrier_pending else ''}"
        )
        return result

    def run_scanned_detection(self, session_id: str, limit: Optional[int] = None) -> DetectionResult:
        """Flag PDFs whose text layer is too thin to be a real document."""
        self.store.require_session(session_id)
        cls_config = self.config.classification
        result = DetectionResult(detector=DETECTOR_SCANNED)

        for page in self._pages(session_id, limit, extensions=["pdf"]):
            with self.store.transaction() as conn:
                for document in page:
                    result.examined += 1
                    assessment = assess_scanned(
                        document.extracted_text,
                        document.file_extension,
                        text_failed=document.text_failed,
                        min_chars=cls_config.scanned_min_chars,
                        min_words=cls_config.scanned_min_words,
                    )
                    if assessment.verdict == Verdict.INCONCLUSIVE:
                        result.inconclusive += 1
                    elif assessment.verdict == Verdict.FLAGGED:
                        if self._flag(
                            conn, document, SkipReason.SCANNED, DETECTOR_SCANNED,
                            assessment.to_payload(),
                        ):
                            result.flagged += 1
                    else:
                        result.cleared += 1

        return self._finish(session_id, result)

    def run_duplicate_detection(self, session_id: str, limit: Optional[int] = None) -> DetectionResult:
        """
        Fingerprint documents, then group duplicates once every document has one.

        The reduce phase needs the whole session: while extraction is still
        running, or any document lacks text or a fingerprint, it is deferred
        (barrier_pending=True) and the caller re-invokes later.
        """
        self.store.require_session(session_id)
        result = DetectionResult(detector=DETECTOR_DUPLICATE)
        page_size = self.config.classification.detection_batch_size

        # Map
        while limit is None or result.fingerprinted < limit:
            size = page_size if limit is None else min(page_size, limit - result.fingerprinted)
            page = self.store.documents_missing_fingerprint(session_id, size)
            if not page:
                break
            with self.store.transaction() as conn:
                for document in page:
                    fingerprint = None if document.text_failed else content_fingerprint(document.extracted_text)
                    if fingerprint is None:
                        result.inconclusive += 1
                    # '' marks "nothing to fingerprint" so the barrier can close
                    self.store.set_fingerprint(conn, document.id, fingerprint or "")
                    result.fingerprinted += 1

        # Barrier
        # A later extraction call may still add a lower ordinal to any group
        result.extraction_pending = not self.store.require_session(session_id).extraction_complete
        if result.extraction_pending or self.store.count_missing_fingerprints(session_id) > 0:
            result.barrier_pending = True
            return self._finish(session_id, result)

        # Reduce
        fingerprinted = [
            FingerprintedDocument(document_id=doc_id, ordinal=ordinal, fingerprint=fp)
            for doc_id, ordinal, fp in self.store.fingerprinted_documents(session_id)
        ]
        groups = group_duplicates(fingerprinted)
        with self.store.transaction() as conn:
            for group in groups:
                for duplicate_id in group.duplicate_ids:
                    result.examined += 1
                    document = self.store.require_document(duplicate_id, conn)
                    payload = {"fingerprint": group.fingerprint, "canonical_id": group.canonical_id}
                    if self._flag(
                        conn, document, SkipReason.DUPLICATE, DETECTOR_DUPLICATE, payload,
                        duplicate_of=group.canonical_id,
                    ):
                        result.flagged += 1

        return self._finish(session_id, result)

    def run_administrative_detection(
        self, session_id: str, limit: Optional[int] = None
    ) -> DetectionResult:
        """Flag invoices, utility bills and similar non-legal paperwork."""
        self.store.require_session(session_id)
        result = DetectionResult(detector=DETECTOR_ADMINISTRATIVE)

        for page in self._pages(session_id, limit):
            with self.store.transaction() as conn:
                for document in page:
                    result.examined += 1
                    assessment = self.administrative.assess(
                        document.extracted_text, text_failed=document.text_failed
                    )
                    if assessment.verdict == Verdict.INCONCLUSIVE:
                        result.inconclusive += 1
                    elif assessment.verdict == Verdict.FLAGGED:
                        if self._flag(
                            conn, document, SkipReason.ADMINISTRATIVE, DETECTOR_ADMINISTRATIVE,
                            assessment.to_payload(),
                        ):
                            result.flagged += 1
                    else:
                        result.cleared += 1

        return self._finish(session_id, result)

    def run_all(self, session_id: str) -> list[DetectionResult]:
        """Run scanned, duplicate and administrative detection in order."""
        return [
            self.run_scanned_detection(session_id),
            self.run_duplicate_detection(session_id),
            self.run_administrative_detection(session_id),
        ]

    def revert_detector(
        self, session_id: str, reason: SkipReason, user_id: Optional[str] = None
    ) -> int:
        """
        Undo every automatic verdict of one kind.

        Human decisions are untouched. Returns the number of documents
        returned to Uncategorized.
        """
        detector = _DETECTOR_FOR_REASON.get(reason)
        if detector is None:
            raise InvalidDecision(f"{reason.value} verdicts are not produced by a detector")
        self.store.require_session(session_id)

        reverted = 0
        with self.store.transaction() as conn:
            for document_id in self.store.automatic_skip_ids(session_id, reason):
                if self.store.clear_automatic_skip(conn, document_id):
                    self.store.record_detection(
                        conn, session_id, document_id, detector, "Reverted", {"reason": reason.value}
                    )
                    reverted += 1
            counts = self.store.count_skip_reasons(session_id, conn)
            self.store.update_session(conn, session_id, skip_reason_counts=counts)
            self.store.refresh_session_status(conn, session_id)
            self.store.record_audit(
                conn, session_id, "detector_reverted", user_id,
                {"detector": detector, "documents": reverted},
            )

        logger.info(f"Reverted {reverted} {detector} verdicts in session {session_id}")
        return reverted
