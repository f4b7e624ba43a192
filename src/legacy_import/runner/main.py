"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..errors import LegacyImportError
from ..extraction import BatchExtractor, ExtractionProgress
from ..object_store import ObjectStore, build_object_store
from ..services import (
    BatchAllocator,
    CategorizationLedger,
    ContentClassifier,
    Decision,
    SnapshotGuard,
    TextExtractionPass,
)
from ..state_store import ImportStore, SkipReason

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@dataclass
class Services:
    """Everything a command needs, wired from config."""

    config: Config
    store: ImportStore
    object_store: ObjectStore

    @property
    def extractor(self) -> BatchExtractor:
        return BatchExtractor(self.store, self.object_store, self.config)

    @property
    def text_pass(self) -> TextExtractionPass:
        return TextExtractionPass(self.store, self.object_store, self.config)

    @property
    def classifier(self) -> ContentClassifier:
        return ContentClassifier(self.store, self.config)

    @property
    def allocator(self) -> BatchAllocator:
        return BatchAllocator(self.store, self.config)

    @property
    def ledger(self) -> CategorizationLedger:
        return CategorizationLedger(self.store, self.config)

    @property
    def snapshots(self) -> SnapshotGuard:
        return SnapshotGuard(self.store, self.object_store, self.config)


def build_services(config: Config) -> Services:
    return Services(
        config=config,
        store=ImportStore(config.state_db_path),
        object_store=build_object_store(config.object_store),
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="legacy-import",
        description="Import legacy mailbox archives for human categorization",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-config", help="Write a default config file")

    create_parser = subparsers.add_parser("create-session", help="Register an uploaded archive")
    create_parser.add_argument("archive", type=str, help="Path to .pst/.ost/.mbox or mbox directory")
    create_parser.add_argument("--user", type=str, help="Uploader user id")
    create_parser.add_argument(
        "--categorizers",
        type=int,
        help="Expected concurrent categorizers (default: allocation.expected_categorizers)",
    )

    count_parser = subparsers.add_parser("count", help="Count qualifying attachments")
    count_parser.add_argument("session", type=str, help="Session id")

    extract_parser = subparsers.add_parser("extract", help="Extract attachments (bounded)")
    extract_parser.add_argument("session", type=str, help="Session id")
    extract_parser.add_argument("--skip", type=int, help="Cursor (default: session progress)")
    extract_parser.add_argument("--take", type=int, help="Batch size (default: extraction.batch_size)")
    extract_parser.add_argument("--all", action="store_true", help="Repeat until fully extracted")

    text_parser = subparsers.add_parser("extract-text", help="Run the text extraction pass")
    text_parser.add_argument("session", type=str, help="Session id")
    text_parser.add_argument("--limit", type=int, help="Documents per pass")
    text_parser.add_argument("--all", action="store_true", help="Repeat until no document is pending")

    detect_parser = subparsers.add_parser("detect", help="Run one detector")
    detect_parser.add_argument("session", type=str, help="Session id")
    detect_parser.add_argument(
        "detector", choices=["scanned", "duplicate", "administrative"], help="Detector to run"
    )
    detect_parser.add_argument("--limit", type=int, help="Max documents examined")
    detect_parser.add_argument("--revert", action="store_true", help="Undo this detector's verdicts")

    classify_parser = subparsers.add_parser("classify", help="Text pass + all detectors")
    classify_parser.add_argument("session", type=str, help="Session id")

    allocate_parser = subparsers.add_parser("allocate", help="Get batches for a categorizer")
    allocate_parser.add_argument("session", type=str, help="Session id")
    allocate_parser.add_argument("user", type=str, help="Categorizer user id")

    reassign_parser = subparsers.add_parser("reassign", help="Give finished users their next batch")
    reassign_parser.add_argument("session", type=str, help="Session id")

    stalled_parser = subparsers.add_parser("stalled", help="Batch status and stalled batches")
    stalled_parser.add_argument("session", type=str, help="Session id")

    release_parser = subparsers.add_parser("release", help="Unassign a batch")
    release_parser.add_argument("session", type=str, help="Session id")
    release_parser.add_argument("batch", type=int, help="Batch id")
    release_parser.add_argument("holder", type=str, help="Current holder (compare-and-set)")
    release_parser.add_argument("--user", type=str, help="Operator user id")

    decide_parser = subparsers.add_parser("decide", help="Categorize or skip a document")
    decide_parser.add_argument("document", type=str, help="Document id")
    decide_parser.add_argument("user", type=str, help="Categorizer user id")
    decision_group = decide_parser.add_mutually_exclusive_group(required=True)
    decision_group.add_argument("--category", type=str, help="Category name")
    decision_group.add_argument(
        "--skip",
        nargs="?",
        const=SkipReason.MANUAL.value,
        choices=[SkipReason.MANUAL.value, SkipReason.SCANNED.value, SkipReason.ADMINISTRATIVE.value],
        help="Skip (optionally with a reason, default Manual)",
    )

    categories_parser = subparsers.add_parser("categories", help="List categories")
    categories_parser.add_argument("session", type=str, help="Session id")
    categories_parser.add_argument("--since", type=str, help="Only changes after this timestamp")

    merge_parser = subparsers.add_parser("merge-categories", help="Merge categories into a target")
    merge_parser.add_argument("session", type=str, help="Session id")
    merge_parser.add_argument("target", type=int, help="Target category id")
    merge_parser.add_argument("sources", type=int, nargs="+", help="Source category ids")
    merge_parser.add_argument("--user", type=str, help="Operator user id")

    progress_parser = subparsers.add_parser("progress", help="Categorization progress")
    progress_parser.add_argument("session", type=str, help="Session id")
    progress_parser.add_argument("--user", type=str, help="Only this categorizer's batches")

    status_parser = subparsers.add_parser("status", help="Show session status")
    status_parser.add_argument("session", type=str, nargs="?", help="Session id (default: all)")
    status_parser.add_argument("--json", action="store_true", help="Machine-readable output")

    snapshot_parser = subparsers.add_parser("snapshot", help="Create a backup snapshot")
    snapshot_parser.add_argument("session", type=str, help="Session id")
    snapshot_parser.add_argument("--user", type=str, help="Operator user id")

    export_parser = subparsers.add_parser("export", help="Export categorized documents")
    export_parser.add_argument("session", type=str, help="Session id")
    export_parser.add_argument("--user", type=str, help="Operator user id")

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete extracted source copies")
    cleanup_parser.add_argument("session", type=str, help="Session id")
    cleanup_parser.add_argument("--confirm", action="store_true", help="Required confirmation")
    cleanup_parser.add_argument("--force", action="store_true", help="Ignore the recovery window")
    cleanup_parser.add_argument("--user", type=str, help="Operator user id")

    return parser


def _print_progress(progress: ExtractionProgress) -> None:
    print(
        f"  Extracted {progress.extracted_count}/{progress.total_in_archive} "
        f"({progress.remaining_count} remaining){' ✓ complete' if progress.is_complete else ''}"
    )


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ {config_path} already exists")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def cmd_create_session(
    services: Services, archive: str, user: str | None, categorizers: int | None
) -> int:
    """Register an archive as a new import session."""
    session = services.store.create_session(
        archive_path=archive,
        uploaded_by=user,
        categorizer_count=categorizers or services.config.allocation.expected_categorizers,
    )
    print(f"✓ Created session {session.id}")
    return 0


def cmd_count(services: Services, session_id: str) -> int:
    """Count qualifying attachments."""
    print("🔍 Counting attachments...")
    progress = services.extractor.count_entries(session_id)
    print(f"✓ {progress.total_in_archive} qualifying attachment(s)")
    return 0


def cmd_extract(
    services: Services, session_id: str, skip: int | None, take: int | None, run_all: bool
) -> int:
    """Extract attachments into the session."""
    print("📦 Extracting attachments...")
    extractor = services.extractor
    if run_all:
        results = extractor.extract_all(session_id, take=take)
    else:
        results = [extractor.extract_batch(session_id, skip=skip, take=take)]

    read_errors = 0
    for result in results:
        read_errors += result.read_errors
        for error in result.errors:
            print(f"  ⚠ {error}")
        if result.timed_out:
            print(f"  ⏱ Time budget reached at cursor {result.next_cursor}")

    final = results[-1].progress
    if final is not None:
        _print_progress(final)
    extracted = sum(r.extracted for r in results)
    print(f"\n✓ Extracted: {extracted}, Unreadable: {read_errors}")
    return 0


def cmd_extract_text(services: Services, session_id: str, limit: int | None, run_all: bool) -> int:
    """Run the text extraction pre-pass."""
    print("📝 Extracting text...")
    text_pass = services.text_pass
    if run_all:
        result = text_pass.run_until_done(session_id, limit)
    else:
        result = text_pass.run_text_extraction_pass(session_id, limit)
    for error in result.errors:
        print(f"  ⚠ {error}")
    print(f"\n✓ Extracted: {result.extracted}, Failed: {result.failed}, Pending: {result.remaining}")
    return 0


def cmd_detect(
    services: Services, session_id: str, detector: str, limit: int | None, revert: bool
) -> int:
    """Run (or revert) a single detector."""
    classifier = services.classifier
    if revert:
        reason = {
            "scanned": SkipReason.SCANNED,
            "duplicate": SkipReason.DUPLICATE,
            "administrative": SkipReason.ADMINISTRATIVE,
        }[detector]
        reverted = classifier.revert_detector(session_id, reason)
        print(f"✓ Reverted {reverted} {detector} verdict(s)")
        return 0

    run = {
        "scanned": classifier.run_scanned_detection,
        "duplicate": classifier.run_duplicate_detection,
        "administrative": classifier.run_administrative_detection,
    }[detector]
    result = run(session_id, limit)
    print(
        f"✓ {detector}: {result.flagged} flagged, {result.cleared} clear, "
        f"{result.inconclusive} inconclusive ({result.examined} examined)"
    )
    if result.extraction_pending:
        print("  ℹ️  Grouping deferred: extraction is not complete")
    elif result.barrier_pending:
        print(f"  ℹ️  Grouping deferred: {result.pending_text} document(s) still need text")
    return 0


def cmd_classify(services: Services, session_id: str) -> int:
    """Text pass followed by every detector."""
    print("🧮 Classifying documents...")
    text_result = services.text_pass.run_until_done(session_id)
    print(f"  Text: {text_result.extracted} extracted, {text_result.failed} failed")
    for result in services.classifier.run_all(session_id):
        print(
            f"  {result.detector}: {result.flagged} flagged, {result.inconclusive} inconclusive"
        )
    session = services.store.require_session(session_id)
    print(f"\n✓ Skip reasons: {json.dumps(session.skip_reason_counts, sort_keys=True)}")
    return 0


def cmd_allocate(services: Services, session_id: str, user: str) -> int:
    """Allocate batches to a categorizer."""
    result = services.allocator.allocate_batches(session_id, user)
    for batch in result.batches:
        marker = "＋" if batch.id in result.newly_assigned else " "
        print(
            f"  {marker} [{batch.id}] {batch.month_year}: "
            f"{batch.categorized_count + batch.skipped_count}/{batch.document_count}"
        )
    print(f"\n✓ {user} holds {len(result.batches)} batch(es), {result.document_count} document(s)")
    return 0


def cmd_reassign(services: Services, session_id: str) -> int:
    """Auto-reassign open batches to users who finished theirs."""
    assigned = services.allocator.auto_reassign_batches(session_id)
    for user, batch_ids in assigned.items():
        print(f"  → {user}: {batch_ids}")
    print(f"\n✓ Reassigned to {len(assigned)} user(s)")
    return 0


def cmd_stalled(services: Services, session_id: str) -> int:
    """Per-user batch totals and batches with no progress for the stall window."""
    services.store.require_session(session_id)
    report = services.allocator.get_all_batches_status(session_id)
    for user, summary in sorted(report.users.items()):
        print(
            f"  {user}: {summary.completed_batches}/{summary.batch_count} batches, "
            f"{summary.categorized_count + summary.skipped_count}/{summary.document_count} documents"
        )
    print(f"  unassigned: {report.unassigned_batches}")

    stalled = set(report.stalled_batch_ids)
    for batch in report.batches:
        if batch.id in stalled:
            print(f"  ⏸ [{batch.id}] {batch.month_year} held by {batch.assigned_to} since {batch.updated_at}")
    print(f"\n{len(stalled)} stalled batch(es)")
    return 0


def cmd_release(
    services: Services, session_id: str, batch_id: int, holder: str, user: str | None
) -> int:
    """Release a batch from its holder."""
    if services.allocator.release_batch(session_id, batch_id, holder, released_by=user):
        print(f"✓ Released batch {batch_id}")
        return 0
    print(f"❌ Batch {batch_id} is not held by {holder}")
    return 1


def cmd_decide(
    services: Services, document_id: str, user: str, category: str | None, skip: str | None
) -> int:
    """Apply a categorization decision."""
    decision = Decision.categorize(category) if category is not None else Decision.skip(SkipReason(skip))
    result = services.ledger.apply_decision(document_id, decision, user)
    if result.category is not None:
        print(f"✓ {document_id} → {result.category.name}")
    else:
        print(f"✓ {document_id} skipped ({result.skip_reason.value})")
    return 0


def cmd_categories(services: Services, session_id: str, since: str | None) -> int:
    """List categories."""
    sync = services.ledger.sync_categories(session_id, since)
    for category in sync.categories:
        merged = f" (merged into {category.merged_into})" if category.merged_into else ""
        print(f"  [{category.id}] {category.name}: {category.document_count}{merged}")
    print(f"\nserver time: {sync.server_time} (poll every {sync.poll_interval_seconds}s)")
    return 0


def cmd_merge_categories(
    services: Services, session_id: str, target: int, sources: list[int], user: str | None
) -> int:
    """Merge categories."""
    result = services.ledger.merge_categories(session_id, target, sources, user)
    print(
        f"✓ Merged {len(result.merged_ids)} categor(ies) into {result.target.name} "
        f"({result.moved_documents} document(s) moved)"
    )
    return 0


def cmd_progress(services: Services, session_id: str, user: str | None) -> int:
    """Show categorization progress."""
    ledger = services.ledger
    progress = ledger.get_user_progress(session_id, user) if user else ledger.get_session_progress(session_id)
    print(json.dumps(progress.to_dict(), indent=2, sort_keys=True))
    return 0


def cmd_status(services: Services, session_id: str | None, as_json: bool) -> int:
    """Show session status."""
    sessions = (
        [services.store.require_session(session_id)] if session_id else services.store.list_sessions()
    )

    if as_json:
        payload = []
        for session in sessions:
            payload.append(
                {
                    "id": session.id,
                    "status": session.status.value,
                    "extraction": ExtractionProgress.from_session(session).to_dict(),
                    "totalDocuments": session.total_documents,
                    "categorizedCount": session.categorized_count,
                    "skippedCount": session.skipped_count,
                    "skipReasonCounts": session.skip_reason_counts,
                    "readErrorCount": session.read_error_count,
                }
            )
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    for session in sessions:
        snapshot = services.snapshots.get_status(session)
        print(f"\n📊 Session {session.id}")
        print("=" * 40)
        print(f"  Archive:               {session.archive_path}")
        print(f"  Status:                {session.status.value}")
        print(f"  Extracted:             {session.extracted_count}/{session.total_in_archive or 0}")
        print(f"  Unreadable:            {session.read_error_count}")
        print(f"  Documents:             {session.total_documents}")
        print(f"  Categorized:           {session.categorized_count}")
        print(f"  Skipped:               {session.skipped_count}")
        for reason, count in sorted(session.skip_reason_counts.items()):
            print(f"    {reason:<20} {count}")
        print(f"  Snapshot:              {snapshot.state.value}")
        if session.error_message:
            print(f"  Error:                 {session.error_message}")
    print()
    return 0


def cmd_snapshot(services: Services, session_id: str, user: str | None) -> int:
    """Create a backup snapshot."""
    info = services.snapshots.create_snapshot(session_id, user)
    print(f"✓ Snapshot {info.key} ({info.document_count} documents)")
    return 0


def cmd_export(services: Services, session_id: str, user: str | None) -> int:
    """Export categorized documents."""
    result = services.snapshots.export(session_id, user)
    print(f"✓ Exported {result.categorized_documents} document(s) to {result.key}")
    print(f"  Cleanup scheduled after {result.cleanup_scheduled_at}")
    return 0


def cmd_cleanup(
    services: Services, session_id: str, confirm: bool, force: bool, user: str | None
) -> int:
    """Delete the extracted attachment copies."""
    result = services.snapshots.confirm_cleanup(session_id, confirm=confirm, force=force, user_id=user)
    print(f"✓ Deleted {result.deleted_objects} object(s)")
    return 0


def dispatch(services: Services, parsed: argparse.Namespace) -> int:
    """Route a parsed command to its handler."""
    command = parsed.command
    if command == "create-session":
        return cmd_create_session(services, parsed.archive, parsed.user, parsed.categorizers)
    elif command == "count":
        return cmd_count(services, parsed.session)
    elif command == "extract":
        return cmd_extract(services, parsed.session, parsed.skip, parsed.take, parsed.all)
    elif command == "extract-text":
        return cmd_extract_text(services, parsed.session, parsed.limit, parsed.all)
    elif command == "detect":
        return cmd_detect(services, parsed.session, parsed.detector, parsed.limit, parsed.revert)
    elif command == "classify":
        return cmd_classify(services, parsed.session)
    elif command == "allocate":
        return cmd_allocate(services, parsed.session, parsed.user)
    elif command == "reassign":
        return cmd_reassign(services, parsed.session)
    elif command == "stalled":
        return cmd_stalled(services, parsed.session)
    elif command == "release":
        return cmd_release(services, parsed.session, parsed.batch, parsed.holder, parsed.user)
    elif command == "decide":
        return cmd_decide(services, parsed.document, parsed.user, parsed.category, parsed.skip)
    elif command == "categories":
        return cmd_categories(services, parsed.session, parsed.since)
    elif command == "merge-categories":
        return cmd_merge_categories(services, parsed.session, parsed.target, parsed.sources, parsed.user)
    elif command == "progress":
        return cmd_progress(services, parsed.session, parsed.user)
    elif command == "status":
        return cmd_status(services, parsed.session, parsed.json)
    elif command == "snapshot":
        return cmd_snapshot(services, parsed.session, parsed.user)
    elif command == "export":
        return cmd_export(services, parsed.session, parsed.user)
    elif command == "cleanup":
        return cmd_cleanup(services, parsed.session, parsed.confirm, parsed.force, parsed.user)
    return 1


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
        errors = config.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))
    except (ConfigValidationError, OSError, ValueError) as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    services = build_services(config)
    try:
        return dispatch(services, parsed)
    except LegacyImportError as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
