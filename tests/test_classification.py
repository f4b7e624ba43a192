"""Tests for the content classifier and its detectors."""

import pytest

from legacy_import.classification import (
    AdministrativeClassifier,
    FingerprintedDocument,
    Rule,
    Verdict,
    assess_scanned,
    content_fingerprint,
    group_duplicates,
)
from legacy_import.classification.rules import ADMIN_KEYWORDS, ADMIN_RULES
from legacy_import.errors import InvalidDecision
from legacy_import.services import ContentClassifier
from legacy_import.state_store import DocumentStatus, SessionStatus, SkipReason

from .conftest import (
    SAMPLE_COURT_INVOICE_TEXT,
    SAMPLE_INVOICE_TEXT,
    SAMPLE_LETTER_TEXT,
    add_document,
    finish_extraction,
)

# 10 words, 49 characters
FORTY_NINE_CHARS = " ".join(["abcd"] * 10)
# 10 words, 50 characters
FIFTY_CHARS = "abcde " + " ".join(["abcd"] * 9)


class TestScannedHeuristic:
    def test_boundary(self):
        assert len(FORTY_NINE_CHARS) == 49
        assert len(FIFTY_CHARS) == 50
        assert assess_scanned(FORTY_NINE_CHARS, "pdf").verdict == Verdict.FLAGGED
        assert assess_scanned(FIFTY_CHARS, "pdf").verdict == Verdict.CLEAR

    def test_word_count_boundary(self):
        nine_words = " ".join(["abcdefgh"] * 9)
        ten_words = " ".join(["abcdefgh"] * 10)

        assert assess_scanned(nine_words, "pdf").verdict == Verdict.FLAGGED
        assert assess_scanned(ten_words, "pdf").verdict == Verdict.CLEAR

    def test_whitespace_is_collapsed(self):
        padded = "\n\n   ".join(["abcd"] * 10)

        assessment = assess_scanned(padded, "pdf")

        assert assessment.char_count == 49
        assert assessment.verdict == Verdict.FLAGGED

    def test_only_pdfs(self):
        assert assess_scanned("", "docx").verdict == Verdict.NOT_APPLICABLE

    def test_failed_text_is_inconclusive(self):
        assert assess_scanned("", "pdf", text_failed=True).verdict == Verdict.INCONCLUSIVE
        assert assess_scanned(None, "pdf").verdict == Verdict.INCONCLUSIVE

    def test_empty_text_layer_is_scanned(self):
        assert assess_scanned("", "pdf").verdict == Verdict.FLAGGED


class TestFingerprints:
    def test_normalization(self):
        assert content_fingerprint("Hello,   World!") == content_fingerprint("hello world")
        assert content_fingerprint("hello world") != content_fingerprint("hello there")

    def test_nothing_to_fingerprint(self):
        assert content_fingerprint("") is None
        assert content_fingerprint(" ... !! ") is None

    def test_lowest_ordinal_is_canonical(self):
        docs = [
            FingerprintedDocument("c", 7, "fp"),
            FingerprintedDocument("a", 2, "fp"),
            FingerprintedDocument("b", 5, "fp"),
            FingerprintedDocument("solo", 1, "other"),
        ]

        groups = group_duplicates(docs)

        assert len(groups) == 1
        assert groups[0].canonical_id == "a"
        assert groups[0].duplicate_ids == ["b", "c"]


class TestAdministrativeClassifier:
    def test_invoice_is_administrative(self):
        assessment = AdministrativeClassifier().assess(SAMPLE_INVOICE_TEXT)

        assert assessment.verdict == Verdict.FLAGGED
        assert assessment.admin_score >= 5
        assert "invoice_header_ro" in assessment.matched_admin

    def test_legal_override(self):
        assessment = AdministrativeClassifier().assess(SAMPLE_COURT_INVOICE_TEXT)

        assert assessment.verdict == Verdict.CLEAR
        assert assessment.legal_override
        assert assessment.legal_score >= 2

    def test_letter_is_clear(self):
        assessment = AdministrativeClassifier().assess(SAMPLE_LETTER_TEXT)

        assert assessment.verdict == Verdict.CLEAR
        assert assessment.admin_score == 0

    def test_diacritics_are_folded(self):
        assessment = AdministrativeClassifier().assess("Factură fiscală. Termen de plată 30 zile. Cotă TVA.")

        assert "invoice_header_ro" in assessment.matched_admin
        assert "due_date" in assessment.matched_admin

    def test_each_rule_counts_once(self):
        once = AdministrativeClassifier().assess("tva")
        many = AdministrativeClassifier().assess("tva tva tva tva")

        assert once.admin_score == many.admin_score == 2

    def test_failed_text_is_inconclusive(self):
        assert AdministrativeClassifier().assess("", text_failed=True).verdict == Verdict.INCONCLUSIVE


@pytest.fixture
def classifier(store, config):
    return ContentClassifier(store, config)


class TestScannedDetection:
    def test_flags_thin_pdfs_only(self, store, classifier, session):
        scanned = add_document(store, session.id, 0, text="   ")
        letter = add_document(store, session.id, 1)
        word_doc = add_document(store, session.id, 2, text="", extension="docx")

        result = classifier.run_scanned_detection(session.id)

        assert result.flagged == 1
        assert store.require_document(scanned).skip_reason == SkipReason.SCANNED
        assert store.require_document(letter).status == DocumentStatus.UNCATEGORIZED
        assert store.require_document(word_doc).status == DocumentStatus.UNCATEGORIZED
        assert store.get_detections(scanned)[0]["payload"]["char_count"] == 0
        assert store.require_session(session.id).skip_reason_counts == {"Scanned": 1}

    def test_failed_extraction_is_not_flagged(self, store, classifier, session):
        doc_id = add_document(store, session.id, 0, text="", text_error="PDF parse failed")

        result = classifier.run_scanned_detection(session.id)

        assert result.inconclusive == 1
        assert store.require_document(doc_id).skip_reason is None

    def test_rerun_is_idempotent(self, store, classifier, session):
        add_document(store, session.id, 0, text="")

        classifier.run_scanned_detection(session.id)
        again = classifier.run_scanned_detection(session.id)

        assert again.examined == 0
        assert store.require_session(session.id).skipped_count == 1

    def test_limit_bounds_examined(self, store, classifier, session):
        for ordinal in range(4):
            add_document(store, session.id, ordinal, text="")

        first = classifier.run_scanned_detection(session.id, limit=3)
        second = classifier.run_scanned_detection(session.id, limit=3)

        assert (first.examined, second.examined) == (3, 1)


class TestDuplicateDetection:
    def test_three_copies_keep_one_canonical(self, store, classifier, session):
        texts = ["same text here", "Same  text, here.", "SAME text here!"]
        ids = [add_document(store, session.id, n, text=text) for n, text in enumerate(texts)]
        other = add_document(store, session.id, 3, text="Different letter")
        finish_extraction(store, session.id)

        result = classifier.run_duplicate_detection(session.id)

        assert not result.barrier_pending
        assert result.flagged == 2
        canonical = store.require_document(ids[0])
        assert canonical.status == DocumentStatus.UNCATEGORIZED
        for duplicate_id in ids[1:]:
            duplicate = store.require_document(duplicate_id)
            assert duplicate.skip_reason == SkipReason.DUPLICATE
            assert duplicate.duplicate_of == ids[0]
        assert store.require_document(other).status == DocumentStatus.UNCATEGORIZED

    def test_rerun_is_a_fixed_point(self, store, classifier, session):
        for n in range(3):
            add_document(store, session.id, n, text="same text")
        finish_extraction(store, session.id)

        classifier.run_duplicate_detection(session.id)
        again = classifier.run_duplicate_detection(session.id)

        assert again.flagged == 0
        assert again.fingerprinted == 0
        assert store.require_session(session.id).skipped_count == 2

    def test_barrier_waits_for_text(self, store, classifier, session):
        add_document(store, session.id, 0, text="same text")
        add_document(store, session.id, 1, text="same text")
        pending = add_document(store, session.id, 2, text=None)
        finish_extraction(store, session.id)

        result = classifier.run_duplicate_detection(session.id)

        assert result.barrier_pending
        assert result.fingerprinted == 2
        assert store.require_session(session.id).skipped_count == 0

        with store.transaction() as conn:
            store.set_document_text(conn, pending, "unique text")
        result = classifier.run_duplicate_detection(session.id)

        assert not result.barrier_pending
        assert result.flagged == 1

    def test_grouping_waits_for_extraction(self, store, classifier, session):
        """A lower ordinal extracted later still becomes the canonical copy."""
        late_a = add_document(store, session.id, 2, text="same text")
        late_b = add_document(store, session.id, 3, text="same text")

        result = classifier.run_duplicate_detection(session.id)

        assert result.barrier_pending
        assert result.extraction_pending
        assert result.fingerprinted == 2
        assert result.flagged == 0
        assert store.require_document(late_b).skip_reason is None

        early = add_document(store, session.id, 0, text="same text")
        finish_extraction(store, session.id)
        result = classifier.run_duplicate_detection(session.id)

        assert not result.barrier_pending
        assert result.flagged == 2
        assert store.require_document(early).skip_reason is None
        duplicates = [store.require_document(doc_id) for doc_id in (late_a, late_b)]
        assert {d.skip_reason for d in duplicates} == {SkipReason.DUPLICATE}
        assert {d.duplicate_of for d in duplicates} == {early}

    def test_empty_texts_are_never_duplicates(self, store, classifier, session):
        add_document(store, session.id, 0, text="")
        add_document(store, session.id, 1, text="")
        add_document(store, session.id, 2, text="", text_error="broken")
        finish_extraction(store, session.id)

        result = classifier.run_duplicate_detection(session.id)

        assert not result.barrier_pending
        assert result.inconclusive == 3
        assert result.flagged == 0

    def test_human_decision_is_never_overwritten(self, store, classifier, session):
        add_document(store, session.id, 0, text="same text")
        decided = add_document(store, session.id, 1, text="same text")
        with store.transaction() as conn:
            category = store.create_category_if_missing(conn, session.id, "Succesiuni", "ana")
            store.update_document_decision(
                conn, decided, DocumentStatus.CATEGORIZED, category.id, None, "ana", "2021-01-01T00:00:00.000000Z"
            )
        finish_extraction(store, session.id)

        result = classifier.run_duplicate_detection(session.id)

        assert result.flagged == 0
        assert store.require_document(decided).status == DocumentStatus.CATEGORIZED


class TestAdministrativeDetection:
    def test_flags_invoices_and_respects_override(self, store, classifier, session):
        invoice = add_document(store, session.id, 0, text=SAMPLE_INVOICE_TEXT)
        court = add_document(store, session.id, 1, text=SAMPLE_COURT_INVOICE_TEXT)
        letter = add_document(store, session.id, 2)

        result = classifier.run_administrative_detection(session.id)

        assert result.flagged == 1
        assert store.require_document(invoice).skip_reason == SkipReason.ADMINISTRATIVE
        assert store.require_document(court).skip_reason is None
        assert store.require_document(letter).skip_reason is None
        payload = store.get_detections(invoice)[0]["payload"]
        assert payload["admin_score"] >= 5

    def test_earlier_verdicts_win(self, store, classifier, session):
        # Thin invoice PDF: scanned first, so the administrative detector never sees it
        doc_id = add_document(store, session.id, 0, text="Factura fiscala TVA")

        classifier.run_scanned_detection(session.id)
        result = classifier.run_administrative_detection(session.id)

        assert result.examined == 0
        assert store.require_document(doc_id).skip_reason == SkipReason.SCANNED

    def test_extra_rule_does_not_change_other_verdicts(self, store, config, session):
        scanned = add_document(store, session.id, 0, text="")
        first = add_document(store, session.id, 1, text="same letter text " * 5)
        duplicate = add_document(store, session.id, 2, text="same letter text " * 5)
        extra_rules = ADMIN_RULES + [Rule("lease", r"\bcontract de inchiriere\b", 5, ADMIN_KEYWORDS)]
        classifier = ContentClassifier(
            store, config, administrative=AdministrativeClassifier(admin_rules=extra_rules)
        )
        finish_extraction(store, session.id)

        classifier.run_all(session.id)

        assert store.require_document(scanned).skip_reason == SkipReason.SCANNED
        assert store.require_document(first).skip_reason is None
        assert store.require_document(duplicate).skip_reason == SkipReason.DUPLICATE


class TestRunAllAndRevert:
    def test_completes_session_when_everything_is_skipped(self, store, classifier, session):
        add_document(store, session.id, 0, text="")
        add_document(store, session.id, 1, text=SAMPLE_INVOICE_TEXT)
        finish_extraction(store, session.id)

        results = classifier.run_all(session.id)

        assert [r.detector for r in results] == ["scanned", "duplicate", "administrative"]
        saved = store.require_session(session.id)
        assert saved.status == SessionStatus.READY_FOR_VALIDATION
        assert saved.skip_reason_counts == {"Administrative": 1, "Scanned": 1}

    def test_revert_restores_documents(self, store, classifier, session):
        doc_id = add_document(store, session.id, 0, text=SAMPLE_INVOICE_TEXT)
        finish_extraction(store, session.id)
        classifier.run_administrative_detection(session.id)

        reverted = classifier.revert_detector(session.id, SkipReason.ADMINISTRATIVE, user_id="admin")

        assert reverted == 1
        document = store.require_document(doc_id)
        assert document.status == DocumentStatus.UNCATEGORIZED
        assert document.skip_reason is None
        saved = store.require_session(session.id)
        assert saved.skipped_count == 0
        assert saved.status == SessionStatus.IN_PROGRESS
        assert store.get_detections(doc_id)[-1]["verdict"] == "Reverted"

    def test_revert_rejects_manual(self, classifier, session):
        with pytest.raises(InvalidDecision):
            classifier.revert_detector(session.id, SkipReason.MANUAL)
