"""
Text extractor router - picks the extractor for a file extension.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import TextExtractionFailure
from .base import BaseTextExtractor
from .docx_extractor import DocxTextExtractor
from .language import detect_language
from .pdf_extractor import PdfTextExtractor
from .plain_extractor import PlainTextExtractor

logger = logging.getLogger(__name__)


@dataclass
class TextExtractionResult:
    """Outcome of extracting one document's text."""

    text: str
    language: Optional[str]
    extractor: str


class TextExtractorRouter:
    """
    Routes text extraction by file extension.

    Extractors:
    1. PDF text layer (pypdf)
    2. DOCX paragraphs and tables (python-docx)
    3. Plain text / legacy .doc text runs
    """

    def __init__(self, extractors: Optional[list[BaseTextExtractor]] = None):
        self.extractors: list[BaseTextExtractor] = extractors or [
            PdfTextExtractor(),
            DocxTextExtractor(),
            PlainTextExtractor(),
        ]

    def extractor_for(self, extension: str) -> Optional[BaseTextExtractor]:
        for extractor in self.extractors:
            if extractor.can_extract(extension):
                return extractor
        return None

    def extract(self, data: bytes, extension: str) -> TextExtractionResult:
        """
        Extract text and detect its language.

        Raises:
            TextExtractionFailure: Unsupported extension or parse failure
        """
        extractor = self.extractor_for(extension)
        if extractor is None:
            raise TextExtractionFailure(f"No text extractor for .{extension}")

        text = extractor.extract(data)
        logger.debug(f"{extractor.name} extracted {len(text)} chars")
        return TextExtractionResult(
            text=text,
            language=detect_language(text),
            extractor=extractor.name,
        )
