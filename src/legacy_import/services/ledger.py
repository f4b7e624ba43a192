"""
Categorization ledger: human decisions, categories and progress.

A decision touches the document, its batch, the session and up to two
categories; all of it happens in one write transaction, so either every
counter moves or none does.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ..config import Config
from ..errors import CategoryNotFound, DocumentNotAssigned, InvalidDecision
from ..state_store import (
    CategoryRecord,
    DocumentStatus,
    ImportStore,
    SessionStatus,
    SkipReason,
    to_iso,
    utcnow,
)

logger = logging.getLogger(__name__)

# Reasons a human may give when skipping
HUMAN_SKIP_REASONS = {SkipReason.MANUAL, SkipReason.SCANNED, SkipReason.ADMINISTRATIVE}


@dataclass(frozen=True)
class Decision:
    """Categorize into a named category, or skip."""

    category_name: Optional[str] = None
    skip_reason: Optional[SkipReason] = None

    @classmethod
    def categorize(cls, category_name: str) -> "Decision":
        return cls(category_name=category_name)

    @classmethod
    def skip(cls, reason: SkipReason = SkipReason.MANUAL) -> "Decision":
        return cls(skip_reason=reason)

    @property
    def is_skip(self) -> bool:
        return self.category_name is None

    def validate(self) -> None:
        if self.category_name is not None and self.skip_reason is not None:
            raise InvalidDecision("A decision either categorizes or skips, not both")
        if self.is_skip:
            if self.skip_reason is None:
                raise InvalidDecision("A decision needs a category name or a skip reason")
            if self.skip_reason not in HUMAN_SKIP_REASONS:
                raise InvalidDecision(f"Cannot skip manually as {self.skip_reason.value}")
        elif not self.category_name.strip():
            raise InvalidDecision("Category name must not be empty")


@dataclass
class DecisionResult:
    document_id: str
    status: DocumentStatus
    category: Optional[CategoryRecord]
    skip_reason: Optional[SkipReason]
    session_status: SessionStatus


@dataclass
class Progress:
    """Aggregated categorization progress."""

    total_documents: int = 0
    categorized_count: int = 0
    skipped_count: int = 0
    batch_count: int = 0
    completed_batches: int = 0
    skip_reason_counts: dict[str, int] = field(default_factory=dict)

    @property
    def processed_count(self) -> int:
        return self.categorized_count + self.skipped_count

    @property
    def remaining_count(self) -> int:
        return max(self.total_documents - self.processed_count, 0)

    @property
    def percentage(self) -> int:
        """Processed share, rounded half-up to a whole percent."""
        if self.total_documents == 0:
            return 0
        ratio = Decimal(self.processed_count) * 100 / Decimal(self.total_documents)
        return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def to_dict(self) -> dict:
        return {
            "totalDocuments": self.total_documents,
            "categorizedCount": self.categorized_count,
            "skippedCount": self.skipped_count,
            "remainingCount": self.remaining_count,
            "percentage": self.percentage,
            "skipReasonCounts": self.skip_reason_counts,
        }


@dataclass
class CategorySync:
    """Categories changed since a client's last poll."""

    categories: list[CategoryRecord]
    server_time: str
    poll_interval_seconds: int


@dataclass
class MergeResult:
    target: CategoryRecord
    merged_ids: list[int]
    moved_documents: int


class CategorizationLedger:
    """Applies decisions and serves categories and progress."""

    def __init__(
        self,
        store: ImportStore,
        config: Config,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config
        self.clock = clock

    def apply_decision(self, document_id: str, decision: Decision, user_id: str) -> DecisionResult:
        """
        Record a categorize/skip decision atomically.

        Raises:
            InvalidDecision: Malformed decision
            DocumentNotFound: Unknown document
            DocumentNotAssigned: Document's batch belongs to someone else
        """
        decision.validate()
        now = to_iso(self.clock())

        with self.store.transaction() as conn:
            document = self.store.require_document(document_id, conn)
            batch = self.store.get_batch(document.batch_id, conn)
            if batch.assigned_to not in (None, user_id):
                raise DocumentNotAssigned(
                    f"Document {document_id} is in batch {batch.id} assigned to another categorizer"
                )

            category = None
            if decision.is_skip:
                new_status = DocumentStatus.SKIPPED
            else:
                new_status = DocumentStatus.CATEGORIZED
                category = self.store.create_category_if_missing(
                    conn, document.session_id, decision.category_name, created_by=user_id
                )

            self.store.update_document_decision(
                conn,
                document_id,
                status=new_status,
                category_id=category.id if category else None,
                skip_reason=decision.skip_reason,
                categorized_by=user_id,
                categorized_at=now,
            )

            old_category_id = document.category_id
            new_category_id = category.id if category else None
            if old_category_id != new_category_id:
                if old_category_id is not None:
                    self.store.bump_category_count(conn, old_category_id, -1)
                if new_category_id is not None:
                    self.store.bump_category_count(conn, new_category_id, 1)

            categorized_delta = int(new_status == DocumentStatus.CATEGORIZED) - int(
                document.status == DocumentStatus.CATEGORIZED
            )
            skipped_delta = int(new_status == DocumentStatus.SKIPPED) - int(
                document.status == DocumentStatus.SKIPPED
            )
            self.store.bump_batch_counters(
                conn, batch.id, categorized=categorized_delta, skipped=skipped_delta, now=now
            )
            self.store.bump_session_counters(
                conn, document.session_id, categorized=categorized_delta, skipped=skipped_delta
            )

            if document.skip_reason != decision.skip_reason:
                counts = self.store.count_skip_reasons(document.session_id, conn)
                self.store.update_session(conn, document.session_id, skip_reason_counts=counts)
            session_status = self.store.refresh_session_status(conn, document.session_id)

            if category is not None:
                category = self.store.get_category(category.id, conn)

        logger.debug(f"{user_id} decided {document_id}: {new_status.value}")
        return DecisionResult(
            document_id=document_id,
            status=new_status,
            category=category,
            skip_reason=decision.skip_reason,
            session_status=session_status,
        )

    # Categories

    def create_category(
        self, session_id: str, name: str, user_id: Optional[str] = None
    ) -> CategoryRecord:
        """Create a category, or return the existing one with the same name."""
        if not name or not name.strip():
            raise InvalidDecision("Category name must not be empty")
        with self.store.transaction() as conn:
            self.store.require_session(session_id, conn)
            return self.store.create_category_if_missing(conn, session_id, name, created_by=user_id)

    def list_categories(self, session_id: str) -> list[CategoryRecord]:
        """Active categories, most used first."""
        self.store.require_session(session_id)
        return self.store.list_categories(session_id)

    def sync_categories(self, session_id: str, since: Optional[str] = None) -> CategorySync:
        """
        Categories changed after `since` (all active ones when since is None).

        Merged categories are included in incremental results so polling
        clients can drop them. Pass the returned server_time as the next
        `since`.
        """
        self.store.require_session(session_id)
        server_time = to_iso(utcnow())
        if since is None:
            categories = self.store.list_categories(session_id)
        else:
            categories = self.store.list_categories(
                session_id, include_merged=True, changed_since=since
            )
        return CategorySync(
            categories=categories,
            server_time=server_time,
            poll_interval_seconds=self.config.allocation.category_sync_interval_seconds,
        )

    def merge_categories(
        self,
        session_id: str,
        target_id: int,
        source_ids: list[int],
        user_id: Optional[str] = None,
    ) -> MergeResult:
        """
        Fold source categories into target.

        Raises:
            CategoryNotFound: Target or a source is missing, merged, or foreign
            InvalidDecision: Target listed among the sources
        """
        if target_id in source_ids:
            raise InvalidDecision("Cannot merge a category into itself")

        with self.store.transaction() as conn:
            self.store.require_session(session_id, conn)
            for category_id in [target_id, *source_ids]:
                category = self.store.get_category(category_id, conn)
                if category is None or category.session_id != session_id or category.merged_into:
                    raise CategoryNotFound(f"Category {category_id} not found in session {session_id}")

            moved = 0
            for source_id in source_ids:
                moved += self.store.move_category_documents(conn, source_id, target_id)
                self.store.mark_category_merged(conn, source_id, target_id)
            self.store.recount_category(conn, target_id)
            self.store.record_audit(
                conn, session_id, "categories_merged", user_id,
                {"target_id": target_id, "source_ids": list(source_ids), "moved_documents": moved},
            )
            target = self.store.get_category(target_id, conn)

        logger.info(f"Merged categories {source_ids} into {target_id} ({moved} documents)")
        return MergeResult(target=target, merged_ids=list(source_ids), moved_documents=moved)

    # Progress

    def get_user_progress(self, session_id: str, user_id: str) -> Progress:
        """Sum of the batches held by a user."""
        self.store.require_session(session_id)
        batches = self.store.list_batches(session_id, assigned_to=user_id)
        return Progress(
            total_documents=sum(b.document_count for b in batches),
            categorized_count=sum(b.categorized_count for b in batches),
            skipped_count=sum(b.skipped_count for b in batches),
            batch_count=len(batches),
            completed_batches=sum(1 for b in batches if b.is_complete),
        )

    def get_session_progress(self, session_id: str) -> Progress:
        """Sum of every batch in the session."""
        session = self.store.require_session(session_id)
        batches = self.store.list_batches(session_id)
        return Progress(
            total_documents=sum(b.document_count for b in batches),
            categorized_count=sum(b.categorized_count for b in batches),
            skipped_count=sum(b.skipped_count for b in batches),
            batch_count=len(batches),
            completed_batches=sum(1 for b in batches if b.is_complete),
            skip_reason_counts=session.skip_reason_counts,
        )
