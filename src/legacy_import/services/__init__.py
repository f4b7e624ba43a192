"""Legacy import services: text pass, detectors, allocation, ledger, snapshots."""

from legacy_import.services.allocation import AllocationResult, BatchAllocator, BatchStatusReport
from legacy_import.services.classifier import ContentClassifier, DetectionResult
from legacy_import.services.ledger import CategorizationLedger, Decision, DecisionResult, Progress
from legacy_import.services.snapshot import SnapshotGuard, SnapshotState
from legacy_import.services.text_pass import TextExtractionPass, TextPassResult

__all__ = [
    "AllocationResult",
    "BatchAllocator",
    "BatchStatusReport",
    "CategorizationLedger",
    "ContentClassifier",
    "Decision",
    "DecisionResult",
    "DetectionResult",
    "Progress",
    "SnapshotGuard",
    "SnapshotState",
    "TextExtractionPass",
    "TextPassResult",
]
