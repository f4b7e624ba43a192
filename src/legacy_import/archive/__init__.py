"""
Mailbox archive access.

Provides:
- ArchiveReader: sequential folder/message/attachment traversal
- MboxArchiveReader / PstArchiveReader: container formats
- ArchiveScanner: qualifying-attachment enumeration and counting
"""

from .base import ArchiveMessage, ArchiveReader, AttachmentRef
from .mbox_reader import MboxArchiveReader
from .pst_reader import PstArchiveReader
from .scanner import ArchiveScanner, QualifyingAttachment, is_sent_folder, open_archive

__all__ = [
    "ArchiveMessage",
    "ArchiveReader",
    "ArchiveScanner",
    "AttachmentRef",
    "MboxArchiveReader",
    "PstArchiveReader",
    "QualifyingAttachment",
    "is_sent_folder",
    "open_archive",
]
