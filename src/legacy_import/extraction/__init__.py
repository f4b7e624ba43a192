"""
Resumable attachment extraction.
"""

from .extractor import BatchExtractor, ExtractionProgress, ExtractionResult, month_bucket

__all__ = ["BatchExtractor", "ExtractionProgress", "ExtractionResult", "month_bucket"]
