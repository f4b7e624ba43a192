"""
Archive scanner: opens containers and enumerates qualifying attachments.

A qualifying attachment has an extension in the configured supported set.
Enumeration never reads attachment bytes; the position of each qualifying
attachment in traversal order is its ordinal.
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from ..config import DEFAULT_SENT_FOLDER_NAMES, DEFAULT_SUPPORTED_EXTENSIONS
from ..errors import ArchiveOpenError
from .base import ArchiveMessage, ArchiveReader, AttachmentRef
from .mbox_reader import MboxArchiveReader
from .pst_reader import PstArchiveReader

logger = logging.getLogger(__name__)

PST_SUFFIXES = {".pst", ".ost"}


def open_archive(path: str) -> ArchiveReader:
    """Pick a reader for the container at `path` (not yet opened)."""
    suffix = Path(path).suffix.lower()
    if suffix in PST_SUFFIXES:
        return PstArchiveReader(path)
    if suffix == ".mbox" or Path(path).is_dir():
        return MboxArchiveReader(path)
    raise ArchiveOpenError(f"Unsupported archive format: {path}")


def is_sent_folder(folder_path: str, sent_folder_names: Iterable[str] = DEFAULT_SENT_FOLDER_NAMES) -> bool:
    """True if any folder path segment names a sent-items folder."""
    names = {name.strip().casefold() for name in sent_folder_names}
    return any(segment.strip().casefold() in names for segment in folder_path.split("/"))


@dataclass
class QualifyingAttachment:
    """A supported attachment with its traversal position."""

    ordinal: int
    message: ArchiveMessage
    attachment: AttachmentRef

    @property
    def source_key(self) -> str:
        return self.message.source_key(self.attachment)


class ArchiveScanner:
    """Enumerates supported attachments of an opened archive."""

    def __init__(self, supported_extensions: Iterable[str] = DEFAULT_SUPPORTED_EXTENSIONS):
        self.supported_extensions = {ext.lower().lstrip(".") for ext in supported_extensions}

    def is_supported(self, attachment: AttachmentRef) -> bool:
        return attachment.extension in self.supported_extensions

    def iter_qualifying(self, reader: ArchiveReader) -> Iterator[QualifyingAttachment]:
        """Yield qualifying attachments in traversal order with their ordinal."""
        ordinal = 0
        for message in reader.iter_messages():
            for attachment in message.attachments:
                if not self.is_supported(attachment):
                    continue
                yield QualifyingAttachment(ordinal=ordinal, message=message, attachment=attachment)
                ordinal += 1

    def count_entries(self, reader: ArchiveReader) -> int:
        """Count qualifying attachments without reading their content."""
        total = sum(1 for _ in self.iter_qualifying(reader))
        logger.info(f"Counted {total} qualifying attachments in {reader.format_name} archive")
        return total
