"""
Document text extraction.

Provides:
- TextExtractorRouter: chooses an extractor by extension
- PDF (pypdf), DOCX (python-docx) and plain/legacy .doc extractors
- detect_language: pattern-count language detection
"""

from .base import BaseTextExtractor
from .docx_extractor import DocxTextExtractor
from .language import MIXED, detect_language, language_scores
from .pdf_extractor import PdfTextExtractor
from .plain_extractor import PlainTextExtractor
from .router import TextExtractionResult, TextExtractorRouter

__all__ = [
    "MIXED",
    "BaseTextExtractor",
    "DocxTextExtractor",
    "PdfTextExtractor",
    "PlainTextExtractor",
    "TextExtractionResult",
    "TextExtractorRouter",
    "detect_language",
    "language_scores",
]
