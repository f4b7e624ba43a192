"""Tests for the SQLite import store."""

import sqlite3

import pytest

from legacy_import.errors import CategoryNotFound, SessionNotFound
from legacy_import.state_store import (
    DocumentStatus,
    ImportStore,
    SessionStatus,
    SkipReason,
    category_name_key,
    document_id_for,
    parse_iso,
    to_iso,
)
from legacy_import.state_store.migrations import MigrationRunner

from .conftest import add_document, utc


class TestHelpers:
    def test_document_id_is_stable(self):
        first = document_id_for("s1", "Inbox|42|0")
        assert first == document_id_for("s1", "Inbox|42|0")
        assert first != document_id_for("s2", "Inbox|42|0")
        assert first != document_id_for("s1", "Inbox|42|1")

    def test_category_name_key_folds_case_and_whitespace(self):
        assert category_name_key("  Drept Civil ") == category_name_key("drept civil")
        assert category_name_key("Succesiuni") == category_name_key("SUCCESIUNI")

    def test_timestamps_round_trip(self):
        moment = utc(2024, 5, 6, 7, 8)
        text = to_iso(moment)
        assert text == "2024-05-06T07:08:00.000000Z"
        assert parse_iso(text) == moment


class TestSchema:
    def test_tables_and_migrations(self, store, temp_db):
        conn = sqlite3.connect(temp_db)
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        versions = [r[0] for r in conn.execute("SELECT version FROM migrations ORDER BY version")]
        conn.close()

        assert {
            "import_sessions",
            "document_batches",
            "extracted_documents",
            "import_categories",
            "detection_snapshots",
            "legacy_import_audit_log",
        } <= tables
        assert versions == [1, 2]

    def test_migration_revert_and_reapply(self, store, temp_db):
        """Reverting the audit log migration drops its table; run_pending restores it."""
        conn = sqlite3.connect(temp_db, isolation_level=None)
        runner = MigrationRunner(conn)

        assert runner.revert_to(1) == [2]
        assert runner.applied_versions() == [1]
        assert runner.revert_to(1) == []
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert "legacy_import_audit_log" not in tables

        assert runner.run_pending() == [2]
        assert runner.run_pending() == []
        conn.close()

    def test_reopening_is_idempotent(self, store, temp_db):
        session = store.create_session("a.pst")

        reopened = ImportStore(temp_db)

        assert reopened.require_session(session.id).archive_path == "a.pst"

    def test_processed_never_exceeds_total(self, store, session):
        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction() as conn:
                store.bump_session_counters(conn, session.id, categorized=1)


class TestSessions:
    def test_create_and_get(self, store):
        session = store.create_session("/data/a.pst", uploaded_by="admin", categorizer_count=2)

        assert session.status == SessionStatus.UPLOADING
        assert session.total_in_archive is None
        assert session.categorizer_count == 2
        assert store.list_sessions()[0].id == session.id

    def test_require_missing(self, store):
        with pytest.raises(SessionNotFound):
            store.require_session("missing")

    def test_update_rejects_unknown_columns(self, store, session):
        with pytest.raises(ValueError):
            with store.transaction() as conn:
                store.update_session(conn, session.id, total_documents=5)

    def test_update_bumps_version(self, store, session):
        with store.transaction() as conn:
            store.update_session(conn, session.id, skip_reason_counts={"Manual": 1})

        updated = store.require_session(session.id)
        assert updated.version == session.version + 1
        assert updated.skip_reason_counts == {"Manual": 1}

    def test_mark_failed(self, store, session):
        store.mark_session_failed(session.id, "Corrupt archive")

        failed = store.require_session(session.id)
        assert failed.status == SessionStatus.FAILED
        assert failed.error_message == "Corrupt archive"
        assert store.get_audit_log(session.id)[-1]["action"] == "session_failed"


class TestBatches:
    def test_get_or_create_is_unique_per_month(self, store, session):
        with store.transaction() as conn:
            first = store.get_or_create_batch(conn, session.id, "2021-03")
            second = store.get_or_create_batch(conn, session.id, "2021-03")
            other = store.get_or_create_batch(conn, session.id, "2020-12")

        assert first == second
        assert [b.month_year for b in store.list_batches(session.id)] == ["2020-12", "2021-03"]
        assert other != first

    def test_undated_sorts_last(self, store, session):
        with store.transaction() as conn:
            for month in ("undated", "2022-01", "2019-07"):
                store.get_or_create_batch(conn, session.id, month)

        assert [b.month_year for b in store.list_batches(session.id)] == ["2019-07", "2022-01", "undated"]

    def test_claim_is_compare_and_set(self, store, session):
        with store.transaction() as conn:
            batch_id = store.get_or_create_batch(conn, session.id, "2021-03")
            assert store.claim_batch(conn, batch_id, "ana")
            assert not store.claim_batch(conn, batch_id, "ion")

        assert store.get_batch(batch_id).assigned_to == "ana"

    def test_release_requires_expected_holder(self, store, session):
        with store.transaction() as conn:
            batch_id = store.get_or_create_batch(conn, session.id, "2021-03")
            store.claim_batch(conn, batch_id, "ana")
            assert not store.release_batch(conn, batch_id, "ion")
            assert store.release_batch(conn, batch_id, "ana")

        assert store.get_batch(batch_id).assigned_to is None

    def test_completed_at_tracks_counters(self, store, session):
        add_document(store, session.id, 0)
        batch = store.list_batches(session.id)[0]
        assert batch.completed_at is None

        with store.transaction() as conn:
            store.bump_batch_counters(conn, batch.id, skipped=1)
        assert store.get_batch(batch.id).completed_at is not None

        with store.transaction() as conn:
            store.bump_batch_counters(conn, batch.id, skipped=-1)
        assert store.get_batch(batch.id).completed_at is None


class TestDocuments:
    def test_insert_is_idempotent(self, store, session):
        add_document(store, session.id, 0)

        with store.transaction() as conn:
            batch_id = store.get_or_create_batch(conn, session.id, "2021-03")
            inserted = store.insert_document(
                conn,
                session_id=session.id,
                batch_id=batch_id,
                source_key="Inbox|m0|0",
                ordinal=0,
                file_name="doc0.pdf",
                file_extension="pdf",
                storage_key="documents/x/y.pdf",
                folder_path="Inbox",
                is_sent=False,
            )

        assert not inserted
        assert len(store.list_documents(session.id)) == 1

    def test_text_is_recorded_once(self, store, session):
        doc_id = add_document(store, session.id, 0, text=None)

        with store.transaction() as conn:
            assert store.set_document_text(conn, doc_id, "", None, "parse failed")
            assert not store.set_document_text(conn, doc_id, "second try")

        document = store.require_document(doc_id)
        assert document.extracted_text == ""
        assert document.text_failed

    def test_skip_reason_is_conditional(self, store, session):
        doc_id = add_document(store, session.id, 0)

        with store.transaction() as conn:
            assert store.set_skip_reason(conn, doc_id, SkipReason.SCANNED)
            assert not store.set_skip_reason(conn, doc_id, SkipReason.ADMINISTRATIVE)

        document = store.require_document(doc_id)
        assert document.status == DocumentStatus.SKIPPED
        assert document.skip_reason == SkipReason.SCANNED
        assert store.require_session(session.id).skipped_count == 1
        assert store.list_batches(session.id)[0].skipped_count == 1

    def test_duplicate_requires_link(self, store, session):
        doc_id = add_document(store, session.id, 0)

        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction() as conn:
                store.set_skip_reason(conn, doc_id, SkipReason.DUPLICATE)

        assert store.require_document(doc_id).status == DocumentStatus.UNCATEGORIZED

    def test_clear_automatic_skip(self, store, session):
        doc_id = add_document(store, session.id, 0)
        with store.transaction() as conn:
            store.set_skip_reason(conn, doc_id, SkipReason.SCANNED)

        with store.transaction() as conn:
            assert store.clear_automatic_skip(conn, doc_id)

        assert store.require_document(doc_id).skip_reason is None
        assert store.require_session(session.id).skipped_count == 0

    def test_count_by_status(self, store, session):
        add_document(store, session.id, 0)
        skipped = add_document(store, session.id, 1)
        with store.transaction() as conn:
            store.set_skip_reason(conn, skipped, SkipReason.ADMINISTRATIVE)

        counts = store.count_documents_by_status(session.id)

        assert counts == {"Uncategorized": 1, "Categorized": 0, "Skipped": 1}
        assert store.count_skip_reasons(session.id) == {"Administrative": 1}


class TestCategories:
    def test_create_if_missing_dedupes_by_name_key(self, store, session):
        with store.transaction() as conn:
            first = store.create_category_if_missing(conn, session.id, "Succesiuni", "ana")
            second = store.create_category_if_missing(conn, session.id, "  succesiuni ", "ion")

        assert first.id == second.id
        assert second.name == "Succesiuni"
        assert second.created_by == "ana"

    def test_merged_name_resolves_to_target(self, store, session):
        with store.transaction() as conn:
            source = store.create_category_if_missing(conn, session.id, "Mostenire")
            target = store.create_category_if_missing(conn, session.id, "Succesiuni")
            store.mark_category_merged(conn, source.id, target.id)

        with store.transaction() as conn:
            resolved = store.create_category_if_missing(conn, session.id, "mostenire")

        assert resolved.id == target.id
        assert [c.name for c in store.list_categories(session.id)] == ["Succesiuni"]

    def test_merge_cycle_is_not_found(self, store, session):
        with store.transaction() as conn:
            first = store.create_category_if_missing(conn, session.id, "Mostenire")
            second = store.create_category_if_missing(conn, session.id, "Succesiuni")
            store.mark_category_merged(conn, first.id, second.id)
            store.mark_category_merged(conn, second.id, first.id)

        with pytest.raises(CategoryNotFound):
            with store.transaction() as conn:
                store.create_category_if_missing(conn, session.id, "mostenire")


class TestAuditAndDetections:
    def test_audit_log(self, store, session):
        with store.transaction() as conn:
            store.record_audit(conn, session.id, "snapshot_created", "admin", {"key": "k"})

        log = store.get_audit_log(session.id)
        assert log[0]["action"] == "snapshot_created"
        assert log[0]["details"] == {"key": "k"}

    def test_detections(self, store, session):
        doc_id = add_document(store, session.id, 0)
        with store.transaction() as conn:
            store.record_detection(conn, session.id, doc_id, "scanned", "Scanned", {"char_count": 3})

        detections = store.get_detections(doc_id)
        assert detections[0]["verdict"] == "Scanned"
        assert detections[0]["payload"] == {"char_count": 3}
