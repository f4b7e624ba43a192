"""
Base text extractor interface.
"""

from abc import ABC, abstractmethod


class BaseTextExtractor(ABC):
    """
    Base class for format-specific text extractors.

    Each extractor handles a set of file extensions and turns raw bytes
    into plain text. Failures raise TextExtractionFailure.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Extractor name for logging and provenance."""
        pass

    @property
    @abstractmethod
    def extensions(self) -> frozenset[str]:
        """Lowercase extensions (without dot) this extractor handles."""
        pass

    def can_extract(self, extension: str) -> bool:
        return extension.lower().lstrip(".") in self.extensions

    @abstractmethod
    def extract(self, data: bytes) -> str:
        """
        Extract plain text from file bytes.

        Raises:
            TextExtractionFailure: If the bytes cannot be parsed
        """
        pass
