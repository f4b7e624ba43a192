"""
Text extraction pre-pass.

Downloads each document whose text has not been attempted, extracts text
with the format router, and records the outcome exactly once. Failures
store an empty string plus the error message so they are never retried.
Documents are processed in parallel with no ordering guarantee.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional

from ..config import Config
from ..errors import TextExtractionFailure
from ..object_store import ObjectStore, ObjectStoreError
from ..state_store import DocumentRecord, ImportStore
from ..text import TextExtractorRouter

logger = logging.getLogger(__name__)


@dataclass
class TextPassResult:
    """Result of a text extraction pass."""

    attempted: int = 0
    extracted: int = 0
    failed: int = 0
    remaining: int = 0  # Still pending after this pass (0 = pass finished)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


@dataclass
class _Outcome:
    document_id: str
    text: str
    language: Optional[str] = None
    error: Optional[str] = None


class TextExtractionPass:
    """Runs bounded, parallel text extraction over a session."""

    def __init__(
        self,
        store: ImportStore,
        object_store: ObjectStore,
        config: Config,
        router: Optional[TextExtractorRouter] = None,
    ):
        self.store = store
        self.object_store = object_store
        self.config = config
        self.router = router or TextExtractorRouter()

    def _extract_one(self, document: DocumentRecord) -> _Outcome:
        try:
            data = self.object_store.get(document.storage_key)
            extracted = self.router.extract(data, document.file_extension)
        except (TextExtractionFailure, ObjectStoreError) as e:
            return _Outcome(document.id, "", error=str(e) or type(e).__name__)
        except Exception as e:
            logger.warning(f"Unexpected extractor error for {document.id}", exc_info=True)
            return _Outcome(document.id, "", error=str(e) or type(e).__name__)
        return _Outcome(document.id, extracted.text, language=extracted.language)

    def run_text_extraction_pass(self, session_id: str, limit: Optional[int] = None) -> TextPassResult:
        """
        Extract text for up to `limit` pending documents.

        Args:
            session_id: Session to process
            limit: Max documents this call (defaults to classification.text_batch_size)

        Returns:
            TextPassResult with per-pass counts
        """
        self.store.require_session(session_id)
        limit = limit or self.config.classification.text_batch_size
        pending = self.store.documents_pending_text(session_id, limit)
        result = TextPassResult(attempted=len(pending))

        workers = max(1, self.config.classification.text_workers)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self._extract_one, doc): doc for doc in pending}
            for future in as_completed(futures):
                outcome = future.result()
                self._record(outcome, result)

        result.remaining = len(self.store.documents_pending_text(session_id, 1))
        logger.info(
            f"Text pass: {result.extracted} extracted, {result.failed} failed "
            f"({result.attempted} attempted)"
        )
        return result

    def _record(self, outcome: _Outcome, result: TextPassResult) -> None:
        with self.store.transaction() as conn:
            written = self.store.set_document_text(
                conn, outcome.document_id, outcome.text, outcome.language, outcome.error
            )
        if not written:
            return
        if outcome.error is not None:
            result.failed += 1
            result.errors.append(f"{outcome.document_id}: {outcome.error}")
            logger.warning(f"Text extraction failed for {outcome.document_id}: {outcome.error}")
        else:
            result.extracted += 1

    def run_until_done(self, session_id: str, limit: Optional[int] = None) -> TextPassResult:
        """Repeat bounded passes until no document is pending."""
        total = TextPassResult()
        while True:
            result = self.run_text_extraction_pass(session_id, limit)
            total.attempted += result.attempted
            total.extracted += result.extracted
            total.failed += result.failed
            total.errors.extend(result.errors)
            total.remaining = result.remaining
            if result.remaining == 0 or result.attempted == 0:
                return total
