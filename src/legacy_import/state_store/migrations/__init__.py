"""
Database migrations module.

Versioned, ordered schema changes for the import store, tracked in a
`migrations` table.
"""

from .runner import MigrationRunner, get_all_migrations

__all__ = ["MigrationRunner", "get_all_migrations"]
