"""
DOCX text extraction (python-docx).
"""

from io import BytesIO
from zipfile import BadZipFile

from docx import Document
from docx.opc.exceptions import PackageNotFoundError

from ..errors import TextExtractionFailure
from .base import BaseTextExtractor


class DocxTextExtractor(BaseTextExtractor):
    """Extracts paragraph and table cell text."""

    @property
    def name(self) -> str:
        return "docx"

    @property
    def extensions(self) -> frozenset[str]:
        return frozenset({"docx"})

    def extract(self, data: bytes) -> str:
        try:
            doc = Document(BytesIO(data))
        except (PackageNotFoundError, BadZipFile, KeyError, ValueError) as e:
            raise TextExtractionFailure(f"DOCX parse failed: {e}") from e

        lines = [p.text.strip() for p in doc.paragraphs if p.text and p.text.strip()]
        for table in doc.tables:
            for row in table.rows:
                cells = [c.text.strip() for c in row.cells if c.text and c.text.strip()]
                if cells:
                    lines.append(" ".join(cells))
        return "\n".join(lines)
