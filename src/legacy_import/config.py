"""
Configuration management (SSOT).

This module defines ALL configuration for the legacy import pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Thresholds used by the classifiers live here, never inline in detectors
- The object store backend is selected here; services only see ObjectStore
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


DEFAULT_SUPPORTED_EXTENSIONS = ["pdf", "docx", "doc"]

DEFAULT_SENT_FOLDER_NAMES = [
    "sent",
    "sent items",
    "sent mail",
    "sent messages",
    "trimise",
    "elemente trimise",
    "mesaje trimise",
]


@dataclass
class ObjectStoreConfig:
    """Object store configuration.

    backend:
    - "local": blobs under root (default, used for single-host deployments)
    - "http": blob API at base_url with bearer token
    """

    backend: str = "local"
    root: Path = field(default_factory=lambda: Path("data/objects"))
    base_url: str | None = None
    token: str | None = None
    timeout_seconds: int = 30
    max_retries: int = 3


@dataclass
class ArchiveConfig:
    """Archive traversal settings."""

    supported_extensions: list[str] = field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_EXTENSIONS)
    )
    sent_folder_names: list[str] = field(default_factory=lambda: list(DEFAULT_SENT_FOLDER_NAMES))


@dataclass
class ExtractionConfig:
    """Batch extractor settings."""

    # Attachments materialized per extract call
    batch_size: int = 100
    # Stop a call early after this many seconds (None = no budget)
    time_budget_seconds: float | None = 240.0


@dataclass
class ClassificationConfig:
    """Classifier thresholds and pass sizes."""

    # Text extraction pre-pass
    text_workers: int = 4
    text_batch_size: int = 200
    # Scanned heuristic (PDF only)
    scanned_min_chars: int = 50
    scanned_min_words: int = 10
    # Administrative scoring
    admin_threshold: int = 5
    legal_override_threshold: int = 2
    # Documents examined per detector call
    detection_batch_size: int = 1000


@dataclass
class AllocationConfig:
    """Batch allocation settings."""

    # N in the fair partition ceil(M / N)
    expected_categorizers: int = 3
    # Batches offered to a user who finished everything they held
    reassign_batch_count: int = 1
    # No progress for this long = stalled
    stall_hours: int = 24
    # Recommended polling interval for category lists
    category_sync_interval_seconds: int = 2


@dataclass
class SnapshotConfig:
    """Snapshot guard settings."""

    max_age_minutes: int = 60
    cleanup_delay_days: int = 7


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    object_store: ObjectStoreConfig = field(default_factory=ObjectStoreConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    allocation: AllocationConfig = field(default_factory=AllocationConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/legacy_import.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.object_store.backend not in ("local", "http"):
            errors.append(f"object_store.backend must be 'local' or 'http', got {self.object_store.backend!r}")
        if self.object_store.backend == "http" and not self.object_store.base_url:
            errors.append("object_store.base_url is required for the http backend")

        if not self.archive.supported_extensions:
            errors.append("archive.supported_extensions must not be empty")

        if self.extraction.batch_size < 1:
            errors.append("extraction.batch_size must be >= 1")

        if self.classification.text_workers < 1:
            errors.append("classification.text_workers must be >= 1")

        if self.allocation.expected_categorizers < 1:
            errors.append("allocation.expected_categorizers must be >= 1")
        if self.allocation.reassign_batch_count < 1:
            errors.append("allocation.reassign_batch_count must be >= 1")

        if self.snapshot.max_age_minutes < 1:
            errors.append("snapshot.max_age_minutes must be >= 1")

        return errors


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default  # Keep default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - LEGACY_IMPORT_DB (state database path)
    - OBJECT_STORE_BACKEND (local/http)
    - OBJECT_STORE_ROOT
    - OBJECT_STORE_URL
    - OBJECT_STORE_TOKEN
    - LEGACY_IMPORT_CATEGORIZERS (expected concurrent categorizers)
    - LEGACY_IMPORT_TEXT_WORKERS (text extraction threads)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    store_data = data.get("object_store", {})
    object_store = ObjectStoreConfig(
        backend=os.environ.get("OBJECT_STORE_BACKEND", store_data.get("backend", "local")),
        root=Path(os.environ.get("OBJECT_STORE_ROOT", store_data.get("root", "data/objects"))),
        base_url=os.environ.get("OBJECT_STORE_URL", store_data.get("base_url")),
        token=os.environ.get("OBJECT_STORE_TOKEN", store_data.get("token")),
        timeout_seconds=store_data.get("timeout_seconds", 30),
        max_retries=store_data.get("max_retries", 3),
    )

    archive_data = data.get("archive", {})
    archive = ArchiveConfig(
        supported_extensions=[
            ext.lower().lstrip(".")
            for ext in archive_data.get("supported_extensions", DEFAULT_SUPPORTED_EXTENSIONS)
        ],
        sent_folder_names=archive_data.get("sent_folder_names", DEFAULT_SENT_FOLDER_NAMES),
    )

    extraction_data = data.get("extraction", {})
    extraction = ExtractionConfig(
        batch_size=extraction_data.get("batch_size", 100),
        time_budget_seconds=extraction_data.get("time_budget_seconds", 240.0),
    )

    cls_data = data.get("classification", {})
    classification = ClassificationConfig(
        text_workers=_env_int("LEGACY_IMPORT_TEXT_WORKERS", cls_data.get("text_workers", 4)),
        text_batch_size=cls_data.get("text_batch_size", 200),
        scanned_min_chars=cls_data.get("scanned_min_chars", 50),
        scanned_min_words=cls_data.get("scanned_min_words", 10),
        admin_threshold=cls_data.get("admin_threshold", 5),
        legal_override_threshold=cls_data.get("legal_override_threshold", 2),
        detection_batch_size=cls_data.get("detection_batch_size", 1000),
    )

    alloc_data = data.get("allocation", {})
    allocation = AllocationConfig(
        expected_categorizers=_env_int(
            "LEGACY_IMPORT_CATEGORIZERS", alloc_data.get("expected_categorizers", 3)
        ),
        reassign_batch_count=alloc_data.get("reassign_batch_count", 1),
        stall_hours=alloc_data.get("stall_hours", 24),
        category_sync_interval_seconds=alloc_data.get("category_sync_interval_seconds", 2),
    )

    snap_data = data.get("snapshot", {})
    snapshot = SnapshotConfig(
        max_age_minutes=snap_data.get("max_age_minutes", 60),
        cleanup_delay_days=snap_data.get("cleanup_delay_days", 7),
    )

    state_db = os.environ.get(
        "LEGACY_IMPORT_DB", data.get("state_db_path", "data/legacy_import.db")
    )

    return Config(
        object_store=object_store,
        archive=archive,
        extraction=extraction,
        classification=classification,
        allocation=allocation,
        snapshot=snapshot,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Legacy mailbox import configuration
#
# Object store:
# - backend "local" keeps blobs under `root`
# - backend "http" talks to a blob API at `base_url` (bearer token)

object_store:
  backend: "local"
  root: "data/objects"
  base_url: null
  token: null
  timeout_seconds: 30
  max_retries: 3

archive:
  supported_extensions: ["pdf", "docx", "doc"]
  sent_folder_names:                       # Matched case-insensitively per path segment
    - "sent"
    - "sent items"
    - "sent mail"
    - "sent messages"
    - "trimise"
    - "elemente trimise"
    - "mesaje trimise"

extraction:
  batch_size: 100                          # Attachments per extract call
  time_budget_seconds: 240                 # Stop early and resume on the next call

classification:
  text_workers: 4                          # Parallel text extraction threads
  text_batch_size: 200
  scanned_min_chars: 50                    # PDFs below this are Scanned
  scanned_min_words: 10
  admin_threshold: 5                       # adminScore >= this is Administrative
  legal_override_threshold: 2              # legalScore >= this is never Administrative
  detection_batch_size: 1000

allocation:
  expected_categorizers: 3                 # Fair partition: ceil(batches / categorizers)
  reassign_batch_count: 1                  # Offered to users who finished their batches
  stall_hours: 24
  category_sync_interval_seconds: 2

snapshot:
  max_age_minutes: 60                      # Export needs a snapshot younger than this
  cleanup_delay_days: 7                    # Recovery window before source copies are deleted

# State database path
state_db_path: "data/legacy_import.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
