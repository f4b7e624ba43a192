"""
Snapshot guard: no destructive step without a fresh backup.

States:
- NO_SNAPSHOT: nothing taken yet → export raises SnapshotRequired
- FRESH: latest snapshot at most max_age_minutes old → export allowed
- STALE: older than that → export raises SnapshotStale

Cleanup (deleting the extracted source copies) additionally needs an
export, explicit confirmation, an existing snapshot object and an elapsed
recovery window unless forced.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from ..config import Config
from ..errors import (
    CleanupNotConfirmed,
    CleanupWindowOpen,
    ExportRequired,
    SnapshotRequired,
    SnapshotStale,
)
from ..object_store import ObjectStore, documents_prefix, export_key, key_timestamp, snapshot_key
from ..state_store import DocumentStatus, ImportStore, SessionRecord, SessionStatus, parse_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT_VERSION = 1


class SnapshotState(str, Enum):
    NO_SNAPSHOT = "NoSnapshot"
    FRESH = "SnapshotFresh"
    STALE = "SnapshotStale"


@dataclass
class SnapshotStatus:
    state: SnapshotState
    taken_at: Optional[str] = None
    key: Optional[str] = None
    age_minutes: Optional[float] = None


@dataclass
class SnapshotInfo:
    key: str
    taken_at: str
    document_count: int
    category_count: int


@dataclass
class ExportResult:
    key: str
    exported_at: str
    cleanup_scheduled_at: str
    categorized_documents: int


@dataclass
class CleanupResult:
    deleted_objects: int
    cleaned_up_at: str
    forced: bool = False


def _to_json(payload: dict) -> bytes:
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False).encode("utf-8")


class SnapshotGuard:
    """Creates snapshots and gates export and cleanup on them."""

    def __init__(
        self,
        store: ImportStore,
        object_store: ObjectStore,
        config: Config,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.object_store = object_store
        self.config = config
        self.clock = clock

    def get_status(self, session: SessionRecord) -> SnapshotStatus:
        """Classify the session's latest snapshot by age."""
        if not session.last_snapshot_at:
            return SnapshotStatus(SnapshotState.NO_SNAPSHOT)

        age = self.clock() - parse_iso(session.last_snapshot_at)
        age_minutes = age.total_seconds() / 60
        state = (
            SnapshotState.STALE
            if age_minutes > self.config.snapshot.max_age_minutes
            else SnapshotState.FRESH
        )
        return SnapshotStatus(
            state=state,
            taken_at=session.last_snapshot_at,
            key=session.last_snapshot_key,
            age_minutes=age_minutes,
        )

    def snapshot_status(self, session_id: str) -> SnapshotStatus:
        return self.get_status(self.store.require_session(session_id))

    def _build_snapshot(self, session: SessionRecord, taken_at: str) -> dict:
        categories = self.store.list_categories(session.id, include_merged=True)
        batches = self.store.list_batches(session.id)
        documents = self.store.list_documents(session.id)
        return {
            "format_version": SNAPSHOT_FORMAT_VERSION,
            "taken_at": taken_at,
            "session": {
                "id": session.id,
                "archive_path": session.archive_path,
                "status": session.status.value,
                "total_documents": session.total_documents,
                "categorized_count": session.categorized_count,
                "skipped_count": session.skipped_count,
                "skip_reason_counts": session.skip_reason_counts,
                "total_in_archive": session.total_in_archive,
                "extracted_count": session.extracted_count,
                "read_error_count": session.read_error_count,
            },
            "categories": [
                {
                    "id": c.id,
                    "name": c.name,
                    "document_count": c.document_count,
                    "merged_into": c.merged_into,
                    "created_by": c.created_by,
                }
                for c in categories
            ],
            "batches": [
                {
                    "id": b.id,
                    "month_year": b.month_year,
                    "document_count": b.document_count,
                    "categorized_count": b.categorized_count,
                    "skipped_count": b.skipped_count,
                    "assigned_to": b.assigned_to,
                }
                for b in batches
            ],
            "documents": [
                {
                    "id": d.id,
                    "batch_id": d.batch_id,
                    "file_name": d.file_name,
                    "storage_key": d.storage_key,
                    "status": d.status.value,
                    "skip_reason": d.skip_reason.value if d.skip_reason else None,
                    "duplicate_of": d.duplicate_of,
                    "category_id": d.category_id,
                    "categorized_by": d.categorized_by,
                }
                for d in documents
            ],
        }

    def create_snapshot(self, session_id: str, user_id: Optional[str] = None) -> SnapshotInfo:
        """Write a JSON backup of the session state to the object store."""
        session = self.store.require_session(session_id)
        taken_at = to_iso(self.clock())
        payload = self._build_snapshot(session, taken_at)
        key = snapshot_key(session_id, key_timestamp(taken_at))

        self.object_store.put(key, _to_json(payload), content_type="application/json")

        with self.store.transaction() as conn:
            self.store.update_session(
                conn, session_id, last_snapshot_at=taken_at, last_snapshot_key=key
            )
            self.store.record_audit(
                conn, session_id, "snapshot_created", user_id,
                {"key": key, "documents": len(payload["documents"])},
            )

        logger.info(f"Snapshot {key} written ({len(payload['documents'])} documents)")
        return SnapshotInfo(
            key=key,
            taken_at=taken_at,
            document_count=len(payload["documents"]),
            category_count=len(payload["categories"]),
        )

    def require_fresh_snapshot(self, session: SessionRecord) -> SnapshotStatus:
        """
        Raises:
            SnapshotRequired: No snapshot exists
            SnapshotStale: Latest snapshot is too old
        """
        status = self.get_status(session)
        if status.state == SnapshotState.NO_SNAPSHOT:
            raise SnapshotRequired(f"Session {session.id} has no snapshot; create one before exporting")
        if status.state == SnapshotState.STALE:
            raise SnapshotStale(status.age_minutes, self.config.snapshot.max_age_minutes)
        return status

    def export(self, session_id: str, user_id: Optional[str] = None) -> ExportResult:
        """
        Write the categorized document manifest and schedule cleanup.

        Raises:
            SnapshotRequired / SnapshotStale: Take a new snapshot and retry
        """
        session = self.store.require_session(session_id)
        snapshot = self.require_fresh_snapshot(session)

        now = self.clock()
        exported_at = to_iso(now)
        cleanup_at = to_iso(now + timedelta(days=self.config.snapshot.cleanup_delay_days))

        categories = {c.id: c.name for c in self.store.list_categories(session_id, include_merged=True)}
        categorized = self.store.list_documents(session_id, status=DocumentStatus.CATEGORIZED)
        manifest: dict[str, list[dict]] = {}
        for document in categorized:
            manifest.setdefault(categories.get(document.category_id, "?"), []).append(
                {
                    "id": document.id,
                    "file_name": document.file_name,
                    "storage_key": document.storage_key,
                    "folder_path": document.folder_path,
                    "sent_at": document.sent_at,
                    "categorized_by": document.categorized_by,
                }
            )

        key = export_key(session_id, key_timestamp(exported_at))
        payload = {
            "session_id": session_id,
            "exported_at": exported_at,
            "snapshot_key": snapshot.key,
            "categories": manifest,
            "skip_reason_counts": session.skip_reason_counts,
        }
        self.object_store.put(key, _to_json(payload), content_type="application/json")

        with self.store.transaction() as conn:
            self.store.update_session(
                conn,
                session_id,
                status=SessionStatus.COMPLETED,
                export_key=key,
                exported_at=exported_at,
                cleanup_scheduled_at=cleanup_at,
            )
            self.store.record_audit(
                conn, session_id, "session_exported", user_id,
                {"key": key, "documents": len(categorized), "cleanup_scheduled_at": cleanup_at},
            )

        logger.info(f"Exported {len(categorized)} documents to {key}; cleanup after {cleanup_at}")
        return ExportResult(
            key=key,
            exported_at=exported_at,
            cleanup_scheduled_at=cleanup_at,
            categorized_documents=len(categorized),
        )

    def confirm_cleanup(
        self,
        session_id: str,
        confirm: bool = False,
        force: bool = False,
        user_id: Optional[str] = None,
    ) -> CleanupResult:
        """
        Delete the session's extracted attachment copies.

        Raises:
            CleanupNotConfirmed: confirm was not given
            ExportRequired: Session was never exported
            SnapshotRequired: The snapshot object is gone
            CleanupWindowOpen: Recovery window still open and force not given
        """
        if not confirm:
            raise CleanupNotConfirmed("Cleanup deletes source documents; pass confirm=True")

        session = self.store.require_session(session_id)
        if not session.exported_at:
            raise ExportRequired(f"Session {session_id} must be exported before cleanup")
        if session.cleaned_up_at:
            return CleanupResult(deleted_objects=0, cleaned_up_at=session.cleaned_up_at)
        if not session.last_snapshot_key or not self.object_store.exists(session.last_snapshot_key):
            raise SnapshotRequired(f"Snapshot for session {session_id} is missing; create one first")

        now = self.clock()
        if (
            not force
            and session.cleanup_scheduled_at
            and now < parse_iso(session.cleanup_scheduled_at)
        ):
            raise CleanupWindowOpen(
                f"Recovery window open until {session.cleanup_scheduled_at}; pass force=True to override"
            )

        deleted = self.object_store.delete_prefix(documents_prefix(session_id))
        cleaned_up_at = to_iso(now)
        with self.store.transaction() as conn:
            self.store.update_session(conn, session_id, cleaned_up_at=cleaned_up_at)
            self.store.record_audit(
                conn, session_id, "session_cleaned_up", user_id,
                {"deleted_objects": deleted, "forced": force},
            )

        logger.info(f"Cleanup deleted {deleted} objects for session {session_id}")
        return CleanupResult(deleted_objects=deleted, cleaned_up_at=cleaned_up_at, forced=force)
