"""
mbox archive reader.

Accepts either a single `.mbox` file (its stem becomes the folder name) or a
directory tree of `.mbox` files, where each file's relative path without the
suffix is its folder path (e.g. `Inbox/Clients.mbox` → `Inbox/Clients`).
"""

import email
import logging
import mailbox
from collections.abc import Iterator
from datetime import datetime, timezone
from email import policy
from email.message import Message
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Optional

from ..errors import ArchiveOpenError
from .base import ArchiveMessage, ArchiveReader, AttachmentRef

logger = logging.getLogger(__name__)


def _message_factory(fp) -> Message:
    return email.message_from_binary_file(fp, policy=policy.default)


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _payload_loader(part: Message):
    def load() -> bytes:
        return part.get_payload(decode=True)

    return load


class MboxArchiveReader(ArchiveReader):
    """Reads one mbox file or a directory of mbox files."""

    SUFFIX = ".mbox"

    def __init__(self, path: str):
        super().__init__(path)
        self._folders: list[tuple[str, Path]] = []

    @property
    def format_name(self) -> str:
        return "mbox"

    def open(self) -> None:
        root = Path(self.path)
        if root.is_file():
            self._folders = [(root.stem, root)]
        elif root.is_dir():
            files = sorted(p for p in root.rglob(f"*{self.SUFFIX}") if p.is_file())
            self._folders = [
                (p.relative_to(root).with_suffix("").as_posix(), p) for p in files
            ]
            if not self._folders:
                raise ArchiveOpenError(f"No {self.SUFFIX} files found under {root}")
        else:
            raise ArchiveOpenError(f"Archive not found: {root}")
        logger.debug(f"Opened mbox archive {root} ({len(self._folders)} folders)")

    def close(self) -> None:
        self._folders = []

    def iter_messages(self) -> Iterator[ArchiveMessage]:
        for folder_path, file_path in self._folders:
            try:
                box = mailbox.mbox(str(file_path), factory=_message_factory, create=False)
            except (OSError, mailbox.Error) as e:
                raise ArchiveOpenError(f"Cannot open mbox {file_path}: {e}") from e

            try:
                for key in sorted(box.keys()):
                    msg = box[key]
                    yield self._to_archive_message(folder_path, str(key), msg)
            finally:
                box.close()

    def _to_archive_message(self, folder_path: str, key: str, msg: Message) -> ArchiveMessage:
        attachments = []
        for part in msg.walk():
            if part.is_multipart():
                continue
            file_name = part.get_filename()
            if not file_name:
                continue
            attachments.append(
                AttachmentRef(
                    file_name=str(file_name),
                    index=len(attachments),
                    loader=_payload_loader(part),
                )
            )

        subject = msg.get("Subject")
        return ArchiveMessage(
            message_key=key,
            folder_path=folder_path,
            subject=str(subject) if subject is not None else None,
            sent_at=_parse_date(msg.get("Date")),
            attachments=attachments,
        )
