"""Tests for the snapshot guard, export and cleanup."""

import json
from datetime import timedelta

import pytest

from legacy_import.errors import (
    CleanupNotConfirmed,
    CleanupWindowOpen,
    ExportRequired,
    SnapshotRequired,
    SnapshotStale,
)
from legacy_import.services import CategorizationLedger, Decision, SnapshotGuard, SnapshotState
from legacy_import.state_store import SessionStatus, parse_iso, to_iso

from .conftest import add_document, finish_extraction, utc


class MovableClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return MovableClock(utc(2024, 3, 1, 9, 0))


@pytest.fixture
def guard(store, object_store, config, clock):
    return SnapshotGuard(store, object_store, config, clock=clock)


@pytest.fixture
def categorized_session(store, object_store, config, session):
    ledger = CategorizationLedger(store, config)
    for ordinal in range(3):
        doc_id = add_document(store, session.id, ordinal)
        object_store.put(store.require_document(doc_id).storage_key, b"%PDF-1.4")
        decision = Decision.categorize("Succesiuni") if ordinal < 2 else Decision.skip()
        ledger.apply_decision(doc_id, decision, "ana")
    finish_extraction(store, session.id)
    return session


class TestSnapshotStatus:
    def test_no_snapshot(self, guard, session):
        assert guard.snapshot_status(session.id).state == SnapshotState.NO_SNAPSHOT

    def test_fresh_then_stale(self, guard, clock, session):
        guard.create_snapshot(session.id)

        clock.advance(minutes=60)
        assert guard.snapshot_status(session.id).state == SnapshotState.FRESH

        clock.advance(minutes=1)
        status = guard.snapshot_status(session.id)
        assert status.state == SnapshotState.STALE
        assert status.age_minutes == pytest.approx(61)


class TestCreateSnapshot:
    def test_writes_session_state(self, store, object_store, guard, categorized_session):
        info = guard.create_snapshot(categorized_session.id, user_id="admin")

        payload = json.loads(object_store.get(info.key))
        assert info.key.startswith(f"backups/{categorized_session.id}/snapshot-")
        assert info.document_count == 3
        assert info.category_count == 1
        assert payload["session"]["categorized_count"] == 2
        assert payload["categories"][0]["name"] == "Succesiuni"
        saved = store.require_session(categorized_session.id)
        assert saved.last_snapshot_key == info.key
        assert saved.last_snapshot_at == "2024-03-01T09:00:00.000000Z"
        assert store.get_audit_log(categorized_session.id)[-1]["action"] == "snapshot_created"


class TestExport:
    def test_requires_snapshot(self, store, guard, categorized_session):
        with pytest.raises(SnapshotRequired):
            guard.export(categorized_session.id)

        assert store.require_session(categorized_session.id).exported_at is None

    def test_rejects_stale_snapshot(self, store, guard, clock, categorized_session):
        guard.create_snapshot(categorized_session.id)
        clock.advance(minutes=61)

        with pytest.raises(SnapshotStale) as exc_info:
            guard.export(categorized_session.id)

        assert exc_info.value.max_age_minutes == 60
        assert store.require_session(categorized_session.id).status != SessionStatus.COMPLETED

    def test_exports_with_fresh_snapshot(self, store, object_store, guard, clock, categorized_session):
        guard.create_snapshot(categorized_session.id)
        clock.advance(minutes=59)

        result = guard.export(categorized_session.id, user_id="admin")

        assert result.categorized_documents == 2
        assert parse_iso(result.cleanup_scheduled_at) == clock.now + timedelta(days=7)
        manifest = json.loads(object_store.get(result.key))
        assert [d["file_name"] for d in manifest["categories"]["Succesiuni"]] == ["doc0.pdf", "doc1.pdf"]
        assert manifest["skip_reason_counts"] == {"Manual": 1}
        saved = store.require_session(categorized_session.id)
        assert saved.status == SessionStatus.COMPLETED
        assert saved.export_key == result.key

    def test_fresh_snapshot_after_stale(self, guard, clock, categorized_session):
        guard.create_snapshot(categorized_session.id)
        clock.advance(hours=3)
        guard.create_snapshot(categorized_session.id)

        assert guard.export(categorized_session.id).exported_at == to_iso(clock.now)


class TestCleanup:
    @pytest.fixture
    def exported(self, guard, clock, categorized_session):
        guard.create_snapshot(categorized_session.id)
        guard.export(categorized_session.id)
        return categorized_session

    def test_needs_confirmation(self, guard, exported):
        with pytest.raises(CleanupNotConfirmed):
            guard.confirm_cleanup(exported.id)

    def test_needs_export(self, guard, categorized_session):
        guard.create_snapshot(categorized_session.id)

        with pytest.raises(ExportRequired):
            guard.confirm_cleanup(categorized_session.id, confirm=True)

    def test_recovery_window(self, object_store, guard, clock, exported):
        with pytest.raises(CleanupWindowOpen):
            guard.confirm_cleanup(exported.id, confirm=True)

        clock.advance(days=7)
        result = guard.confirm_cleanup(exported.id, confirm=True)

        assert result.deleted_objects == 3
        assert object_store.list(f"documents/{exported.id}/") == []

    def test_force_skips_window(self, store, guard, exported):
        result = guard.confirm_cleanup(exported.id, confirm=True, force=True, user_id="admin")

        assert result.forced
        assert result.deleted_objects == 3
        assert store.require_session(exported.id).cleaned_up_at == result.cleaned_up_at
        assert store.get_audit_log(exported.id)[-1]["details"] == {"deleted_objects": 3, "forced": True}

    def test_keeps_snapshots_and_exports(self, store, object_store, guard, exported):
        guard.confirm_cleanup(exported.id, confirm=True, force=True)

        saved = store.require_session(exported.id)
        assert object_store.exists(saved.last_snapshot_key)
        assert object_store.exists(saved.export_key)

    def test_missing_snapshot_object(self, store, object_store, guard, exported):
        object_store.delete(store.require_session(exported.id).last_snapshot_key)

        with pytest.raises(SnapshotRequired):
            guard.confirm_cleanup(exported.id, confirm=True, force=True)

    def test_repeated_cleanup_is_a_no_op(self, guard, exported):
        first = guard.confirm_cleanup(exported.id, confirm=True, force=True)
        second = guard.confirm_cleanup(exported.id, confirm=True, force=True)

        assert second.deleted_objects == 0
        assert second.cleaned_up_at == first.cleaned_up_at
