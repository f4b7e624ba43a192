"""
Object store interface and key helpers.

Keys are "/"-separated and session-scoped:
- documents/{session_id}/{document_id}.{ext}   extracted attachment bytes
- backups/{session_id}/snapshot-{timestamp}.json
- exports/{session_id}/export-{timestamp}.json
"""

from abc import ABC, abstractmethod


class ObjectStoreError(Exception):
    """Base exception for object store errors."""

    pass


class ObjectNotFound(ObjectStoreError):
    """No object exists under the requested key."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Object not found: {key}")


def document_key(session_id: str, document_id: str, extension: str) -> str:
    return f"documents/{session_id}/{document_id}.{extension.lower().lstrip('.')}"


def documents_prefix(session_id: str) -> str:
    return f"documents/{session_id}/"


def snapshot_key(session_id: str, timestamp: str) -> str:
    return f"backups/{session_id}/snapshot-{timestamp}.json"


def export_key(session_id: str, timestamp: str) -> str:
    return f"exports/{session_id}/export-{timestamp}.json"


def key_timestamp(value: str) -> str:
    """Make a stored timestamp safe for use inside an object key."""
    return value.replace(":", "-").replace(".", "-")


class ObjectStore(ABC):
    """Minimal blob store used for attachment bytes, snapshots and exports."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        """Store bytes under key (overwrites)."""
        pass

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Fetch bytes. Raises ObjectNotFound if missing."""
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def list(self, prefix: str) -> list[str]:
        """Keys starting with prefix, sorted."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a key (missing keys are ignored)."""
        pass

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key under prefix. Returns the number deleted."""
        keys = self.list(prefix)
        for key in keys:
            self.delete(key)
        return len(keys)
