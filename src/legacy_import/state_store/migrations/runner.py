"""
Versioned schema changes for the import store.

Each `NNN_name.py` module in this package defines VERSION, NAME,
upgrade(conn) and optionally downgrade(conn). Applied versions are
recorded in the `migrations` table.

Store connections are autocommit, so every step takes the write lock with
BEGIN IMMEDIATE. When two processes open a fresh database together the
second one finds the version already recorded and moves on.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATION_GLOB = "[0-9][0-9][0-9]_*.py"


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None = None

    @property
    def label(self) -> str:
        return f"{self.version:03d}_{self.name}"


def get_all_migrations() -> list[Migration]:
    """Load every migration module in this package, ordered by version."""
    found = []
    for path in Path(__file__).parent.glob(MIGRATION_GLOB):
        module = importlib.import_module(f"{__package__}.{path.stem}")
        found.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        )
    return sorted(found, key=lambda m: m.version)


class MigrationRunner:
    """Applies and reverts store migrations on one autocommit connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            )
        """
        )

    @contextmanager
    def _write_lock(self) -> Iterator[None]:
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except Exception:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")

    def _is_applied(self, version: int) -> bool:
        row = self.conn.execute("SELECT 1 FROM migrations WHERE version = ?", (version,)).fetchone()
        return row is not None

    def applied_versions(self) -> list[int]:
        return [row[0] for row in self.conn.execute("SELECT version FROM migrations ORDER BY version")]

    def apply(self, migration: Migration) -> bool:
        """Apply one migration; False when it was already recorded."""
        with self._write_lock():
            if self._is_applied(migration.version):
                return False
            logger.info(f"Applying store migration {migration.label}")
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name) VALUES (?, ?)",
                (migration.version, migration.name),
            )
        return True

    def revert(self, migration: Migration) -> bool:
        """Undo one migration; False when it was not applied."""
        if migration.downgrade is None:
            raise NotImplementedError(f"Migration {migration.label} cannot be reverted")
        with self._write_lock():
            if not self._is_applied(migration.version):
                return False
            logger.info(f"Reverting store migration {migration.label}")
            migration.downgrade(self.conn)
            self.conn.execute("DELETE FROM migrations WHERE version = ?", (migration.version,))
        return True

    def run_pending(self) -> list[int]:
        """Apply every migration not yet recorded. Returns the versions applied."""
        done = set(self.applied_versions())
        applied = [m.version for m in get_all_migrations() if m.version not in done and self.apply(m)]
        if applied:
            logger.info(f"Store schema migrated: {applied}")
        return applied

    def revert_to(self, target_version: int) -> list[int]:
        """Revert applied migrations newer than target_version, newest first."""
        reverted = []
        for migration in reversed(get_all_migrations()):
            if migration.version > target_version and self.revert(migration):
                reverted.append(migration.version)
        return reverted
