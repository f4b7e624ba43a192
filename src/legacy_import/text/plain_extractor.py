"""
Plain text and legacy Word (.doc) extraction.

Binary .doc files store body text as UTF-16LE or cp1252 runs inside an
OLE container; without a Word parser we recover readable runs of text.
"""

import re

from ..errors import TextExtractionFailure
from .base import BaseTextExtractor

OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

# Minimum characters in a recovered run
MIN_RUN_LENGTH = 4

_UTF16_RUN = re.compile(rb"(?:[\x20-\x7e\xa0-\xff]\x00|[\x00-\xff][\x01\x02]){%d,}" % MIN_RUN_LENGTH)
_BYTE_RUN = re.compile(rb"[\x20-\x7e\xa0-\xff\t]{%d,}" % MIN_RUN_LENGTH)


def _utf16_runs(data: bytes) -> list[str]:
    runs = []
    for match in _UTF16_RUN.finditer(data):
        chunk = match.group()
        if len(chunk) % 2:
            chunk = chunk[:-1]
        text = chunk.decode("utf-16-le", errors="ignore").strip()
        if len(text) >= MIN_RUN_LENGTH:
            runs.append(text)
    return runs


def _byte_runs(data: bytes) -> list[str]:
    return [m.group().decode("cp1252", errors="ignore").strip() for m in _BYTE_RUN.finditer(data)]


class PlainTextExtractor(BaseTextExtractor):
    """Decodes text files and recovers text runs from binary .doc files."""

    @property
    def name(self) -> str:
        return "plain"

    @property
    def extensions(self) -> frozenset[str]:
        return frozenset({"doc", "txt", "rtf"})

    def extract(self, data: bytes) -> str:
        if not data:
            raise TextExtractionFailure("Empty file")

        if data.startswith(OLE_MAGIC) or b"\x00" in data[:4096]:
            runs = _utf16_runs(data)
            if not runs:
                runs = _byte_runs(data)
            return "\n".join(run for run in runs if run)

        for encoding in ("utf-8", "cp1252"):
            try:
                return data.decode(encoding).strip()
            except UnicodeDecodeError:
                continue
        raise TextExtractionFailure("Undecodable text file")
