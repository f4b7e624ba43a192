"""
Batch allocator: distributes month batches across categorizers.

Rules:
- Ordering: oldest month first, ties by batch id ("undated" sorts last)
- Fair partition: the first allocation fixes chunk = ceil(M / N) for M open
  batches and N expected categorizers; new users take contiguous chunks in
  request order
- Sticky: a user holding unfinished work gets the same batch set back
- Auto-reassignment: a user whose batches are all processed gets the next
  open batch(es) before users who never asked
- Claims are compare-and-set on assigned_to; a lost claim rolls back the
  whole allocation
"""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..config import Config
from ..errors import AllocationNotReady, BatchDoubleAssignment
from ..state_store import BatchRecord, ImportStore, parse_iso, to_iso, utcnow

logger = logging.getLogger(__name__)


@dataclass
class AllocationResult:
    """Batches held by a user after an allocation request."""

    user_id: str
    batches: list[BatchRecord]
    newly_assigned: list[int] = field(default_factory=list)

    @property
    def batch_ids(self) -> list[int]:
        return [b.id for b in self.batches]

    @property
    def document_count(self) -> int:
        return sum(b.document_count for b in self.batches)


@dataclass
class UserBatchSummary:
    user_id: str
    batch_count: int = 0
    completed_batches: int = 0
    document_count: int = 0
    categorized_count: int = 0
    skipped_count: int = 0


@dataclass
class BatchStatusReport:
    """All batches of a session with per-user totals."""

    batches: list[BatchRecord]
    users: dict[str, UserBatchSummary]
    unassigned_batches: int
    stalled_batch_ids: list[int]


class BatchAllocator:
    """Assigns month batches to categorizers."""

    def __init__(
        self,
        store: ImportStore,
        config: Config,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config
        self.clock = clock

    def _open_unassigned(self, conn, session_id: str) -> list[BatchRecord]:
        return [
            b
            for b in self.store.list_batches(session_id, conn, unassigned_only=True)
            if not b.is_complete
        ]

    def _claim(self, conn, batches: list[BatchRecord], user_id: str) -> list[int]:
        now = to_iso(self.clock())
        claimed = []
        for batch in batches:
            if not self.store.claim_batch(conn, batch.id, user_id, now=now):
                logger.warning(f"Lost claim on batch {batch.id} for {user_id}")
                raise BatchDoubleAssignment(batch.id)
            claimed.append(batch.id)
        return claimed

    def allocate_batches(self, session_id: str, user_id: str) -> AllocationResult:
        """
        Return the batches a user should work on, claiming new ones if needed.

        Raises:
            AllocationNotReady: Extraction has not finished
            BatchDoubleAssignment: A claim lost a race; nothing was committed
        """
        with self.store.transaction() as conn:
            session = self.store.require_session(session_id, conn)
            if not session.extraction_complete:
                raise AllocationNotReady(
                    f"Session {session_id} is still extracting "
                    f"({session.extracted_count}/{session.total_in_archive or 0})"
                )

            held = self.store.list_batches(session_id, conn, assigned_to=user_id)
            if any(not b.is_complete for b in held):
                return AllocationResult(user_id=user_id, batches=held)

            unassigned = self._open_unassigned(conn, session_id)
            if held:
                take = self.config.allocation.reassign_batch_count
            else:
                take = session.allocation_chunk_size
                if take is None:
                    categorizers = max(session.categorizer_count, 1)
                    take = max(math.ceil(len(unassigned) / categorizers), 1)
                    self.store.update_session(conn, session_id, allocation_chunk_size=take)
                    logger.info(
                        f"Session {session_id}: {len(unassigned)} batches over "
                        f"{categorizers} categorizers, chunk size {take}"
                    )

            newly = self._claim(conn, unassigned[:take], user_id)
            if newly:
                self.store.record_audit(
                    conn, session_id, "batches_allocated", user_id, {"batch_ids": newly}
                )
            batches = self.store.list_batches(session_id, conn, assigned_to=user_id)

        logger.info(f"Allocated {len(newly)} new batches to {user_id} ({len(batches)} held)")
        return AllocationResult(user_id=user_id, batches=batches, newly_assigned=newly)

    def auto_reassign_batches(self, session_id: str) -> dict[str, list[int]]:
        """Give every user who finished their batches the next open batch(es)."""
        assigned: dict[str, list[int]] = {}
        with self.store.transaction() as conn:
            session = self.store.require_session(session_id, conn)
            if not session.extraction_complete:
                raise AllocationNotReady(f"Session {session_id} is still extracting")

            holders: dict[str, list[BatchRecord]] = {}
            for batch in self.store.list_batches(session_id, conn):
                if batch.assigned_to:
                    holders.setdefault(batch.assigned_to, []).append(batch)

            for user_id in sorted(holders):
                if any(not b.is_complete for b in holders[user_id]):
                    continue
                unassigned = self._open_unassigned(conn, session_id)
                if not unassigned:
                    break
                take = self.config.allocation.reassign_batch_count
                newly = self._claim(conn, unassigned[:take], user_id)
                assigned[user_id] = newly
                self.store.record_audit(
                    conn, session_id, "batches_reassigned", user_id, {"batch_ids": newly}
                )

        if assigned:
            logger.info(f"Auto-reassigned batches: {assigned}")
        return assigned

    def find_stalled_batches(self, session_id: str) -> list[BatchRecord]:
        """Assigned, unfinished batches with no progress for stall_hours."""
        self.store.require_session(session_id)
        cutoff = self.clock() - timedelta(hours=self.config.allocation.stall_hours)
        return [
            b
            for b in self.store.list_batches(session_id)
            if b.assigned_to is not None and not b.is_complete and parse_iso(b.updated_at) < cutoff
        ]

    def release_batch(
        self,
        session_id: str,
        batch_id: int,
        expected_user: str,
        released_by: Optional[str] = None,
    ) -> bool:
        """Unassign a batch if it is still held by expected_user."""
        with self.store.transaction() as conn:
            batch = self.store.get_batch(batch_id, conn)
            if batch is None or batch.session_id != session_id:
                return False
            released = self.store.release_batch(conn, batch_id, expected_user)
            if released:
                self.store.record_audit(
                    conn, session_id, "batch_released", released_by,
                    {"batch_id": batch_id, "previous_holder": expected_user},
                )
        if released:
            logger.info(f"Released batch {batch_id} from {expected_user}")
        return released

    def get_all_batches_status(self, session_id: str) -> BatchStatusReport:
        """Every batch plus per-user totals and stall candidates."""
        batches = self.store.list_batches(session_id)
        users: dict[str, UserBatchSummary] = {}
        for batch in batches:
            if batch.assigned_to is None:
                continue
            summary = users.setdefault(batch.assigned_to, UserBatchSummary(batch.assigned_to))
            summary.batch_count += 1
            summary.completed_batches += int(batch.is_complete)
            summary.document_count += batch.document_count
            summary.categorized_count += batch.categorized_count
            summary.skipped_count += batch.skipped_count

        return BatchStatusReport(
            batches=batches,
            users=users,
            unassigned_batches=sum(1 for b in batches if b.assigned_to is None),
            stalled_batch_ids=[b.id for b in self.find_stalled_batches(session_id)],
        )
