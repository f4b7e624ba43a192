"""
PDF text layer extraction (pypdf).

Scanned PDFs have no text layer and come back (nearly) empty; that is a
successful extraction, judged later by the scanned heuristic.
"""

import logging
from io import BytesIO

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from ..errors import TextExtractionFailure
from .base import BaseTextExtractor

logger = logging.getLogger(__name__)


class PdfTextExtractor(BaseTextExtractor):
    """Extracts the text layer of every page."""

    @property
    def name(self) -> str:
        return "pdf"

    @property
    def extensions(self) -> frozenset[str]:
        return frozenset({"pdf"})

    def extract(self, data: bytes) -> str:
        try:
            reader = PdfReader(BytesIO(data))
            if reader.is_encrypted:
                # Empty user password opens most "protected" mail attachments
                reader.decrypt("")
            pages = [page.extract_text() or "" for page in reader.pages]
        except (PyPdfError, ValueError, KeyError, TypeError, OSError) as e:
            raise TextExtractionFailure(f"PDF parse failed: {e}") from e

        return "\n".join(pages).strip()
