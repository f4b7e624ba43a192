"""
Outlook PST/OST archive reader (libpff-python, imported as `pypff`).

Installed with the `pst` extra. The module is imported lazily on `open()`
so mbox-only deployments do not need libpff.
"""

import logging
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any, Optional

from ..errors import ArchiveOpenError
from .base import ArchiveMessage, ArchiveReader, AttachmentRef

logger = logging.getLogger(__name__)

# MAPI property tags carrying attachment file names
PR_ATTACH_LONG_FILENAME = 0x3707
PR_ATTACH_FILENAME = 0x3704


def _attachment_name(attachment: Any, index: int) -> str:
    """Best-effort attachment file name from the attachment's record sets."""
    names: dict[int, str] = {}
    for set_index in range(getattr(attachment, "number_of_record_sets", 0)):
        record_set = attachment.get_record_set(set_index)
        for entry_index in range(record_set.number_of_entries):
            entry = record_set.get_entry(entry_index)
            if entry.entry_type in (PR_ATTACH_LONG_FILENAME, PR_ATTACH_FILENAME):
                try:
                    value = entry.get_data_as_string()
                except (OSError, ValueError):
                    continue
                if value:
                    names[entry.entry_type] = value
    return names.get(PR_ATTACH_LONG_FILENAME) or names.get(PR_ATTACH_FILENAME) or f"attachment-{index}"


def _attachment_loader(attachment: Any, size: int):
    def load() -> bytes:
        return attachment.read_buffer(size)

    return load


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PstArchiveReader(ArchiveReader):
    """Reads Outlook PST/OST containers via pypff."""

    def __init__(self, path: str):
        super().__init__(path)
        self._file: Any = None

    @property
    def format_name(self) -> str:
        return "pst"

    def open(self) -> None:
        try:
            import pypff
        except ImportError as e:
            raise ArchiveOpenError(
                "PST support requires libpff-python (pip install legacy-import[pst])"
            ) from e

        pst = pypff.file()
        try:
            pst.open(self.path)
        except OSError as e:
            raise ArchiveOpenError(f"Cannot open PST {self.path}: {e}") from e
        self._file = pst
        logger.debug(f"Opened PST archive {self.path}")

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def iter_messages(self) -> Iterator[ArchiveMessage]:
        if self._file is None:
            raise ArchiveOpenError("Archive is not open")
        root = self._file.get_root_folder()
        yield from self._walk_folder(root, [])

    def _walk_folder(self, folder: Any, path: list[str]) -> Iterator[ArchiveMessage]:
        folder_path = "/".join(path)

        for message_index in range(folder.number_of_sub_messages):
            message = folder.get_sub_message(message_index)
            yield self._to_archive_message(message, folder_path, message_index)

        for folder_index in range(folder.number_of_sub_folders):
            sub_folder = folder.get_sub_folder(folder_index)
            name = sub_folder.name or f"folder-{folder_index}"
            yield from self._walk_folder(sub_folder, path + [name])

    def _to_archive_message(self, message: Any, folder_path: str, index: int) -> ArchiveMessage:
        attachments = []
        for attachment_index in range(message.number_of_attachments):
            attachment = message.get_attachment(attachment_index)
            size = attachment.get_size()
            attachments.append(
                AttachmentRef(
                    file_name=_attachment_name(attachment, attachment_index),
                    index=attachment_index,
                    size=size,
                    loader=_attachment_loader(attachment, size),
                )
            )

        identifier = getattr(message, "identifier", None)
        sent_at = message.delivery_time or message.client_submit_time
        return ArchiveMessage(
            message_key=str(identifier if identifier is not None else index),
            folder_path=folder_path,
            subject=message.subject,
            sent_at=_as_utc(sent_at),
            attachments=attachments,
        )
