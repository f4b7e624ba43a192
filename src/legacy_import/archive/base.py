"""
Archive reader interface and common types.

Readers walk a mailbox container sequentially (folder → message →
attachment). Attachment metadata is available during traversal; bytes are
only materialized when `AttachmentRef.read()` is called.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath
from typing import Optional

from ..errors import AttachmentReadError


@dataclass
class AttachmentRef:
    """An attachment as seen during traversal (content not yet read)."""

    file_name: str
    index: int
    size: Optional[int] = None
    loader: Optional[Callable[[], bytes]] = field(default=None, repr=False)

    @property
    def extension(self) -> str:
        """Lowercase extension without the dot ("" if none)."""
        return PurePosixPath(self.file_name).suffix.lower().lstrip(".")

    def read(self) -> bytes:
        """Materialize attachment bytes.

        Raises:
            AttachmentReadError: If the container cannot produce the bytes
        """
        if self.loader is None:
            raise AttachmentReadError(f"No content available for {self.file_name!r}")
        try:
            data = self.loader()
        except AttachmentReadError:
            raise
        except Exception as e:
            raise AttachmentReadError(f"Failed to read {self.file_name!r}: {e}") from e
        if data is None:
            raise AttachmentReadError(f"Empty payload for {self.file_name!r}")
        return data


@dataclass
class ArchiveMessage:
    """A message inside the archive with its attachment references."""

    message_key: str
    folder_path: str  # "/"-joined folder names from the archive root
    subject: Optional[str] = None
    sent_at: Optional[datetime] = None
    attachments: list[AttachmentRef] = field(default_factory=list)

    def source_key(self, attachment: AttachmentRef) -> str:
        """Stable identity of an attachment inside the archive."""
        return f"{self.folder_path}|{self.message_key}|{attachment.index}"


class ArchiveReader(ABC):
    """
    Base class for mailbox container readers.

    Usage:
        with open_archive(path) as reader:
            for message in reader.iter_messages():
                ...

    Traversal order must be deterministic for a given container so that
    ordinal positions are stable across calls.
    """

    def __init__(self, path: str):
        self.path = path

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Container format name for logging."""
        pass

    @abstractmethod
    def open(self) -> None:
        """Open the container.

        Raises:
            ArchiveOpenError: If the container is missing or unreadable
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the container."""
        pass

    @abstractmethod
    def iter_messages(self) -> Iterator[ArchiveMessage]:
        """Yield messages in deterministic folder order."""
        pass

    def __enter__(self) -> "ArchiveReader":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
