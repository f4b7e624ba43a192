"""
CLI runner module.

Provides commands:
- count / extract: Resumable attachment extraction
- extract-text / detect / classify: Content classification
- allocate / reassign / stalled / release: Batch allocation
- decide / categories / merge-categories / progress: Categorization ledger
- snapshot / export / cleanup: Snapshot-guarded export
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
