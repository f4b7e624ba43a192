"""
Scanned-document heuristic.

A PDF whose text layer is nearly empty is an image scan. Only PDFs are
judged; other formats always carry their text.
"""

from dataclasses import dataclass
from enum import Enum

from .normalize import collapse_whitespace

SCANNED_MIN_CHARS = 50
SCANNED_MIN_WORDS = 10


class Verdict(str, Enum):
    """Outcome of a single detector on one document."""

    FLAGGED = "flagged"
    CLEAR = "clear"
    INCONCLUSIVE = "inconclusive"
    NOT_APPLICABLE = "not_applicable"


@dataclass
class ScannedAssessment:
    verdict: Verdict
    char_count: int = 0
    word_count: int = 0

    def to_payload(self) -> dict:
        return {"char_count": self.char_count, "word_count": self.word_count}


def assess_scanned(
    text: str | None,
    extension: str,
    text_failed: bool = False,
    min_chars: int = SCANNED_MIN_CHARS,
    min_words: int = SCANNED_MIN_WORDS,
) -> ScannedAssessment:
    """Scanned iff normalized length < min_chars or word count < min_words."""
    if extension.lower() != "pdf":
        return ScannedAssessment(Verdict.NOT_APPLICABLE)
    if text is None or text_failed:
        return ScannedAssessment(Verdict.INCONCLUSIVE)

    normalized = collapse_whitespace(text)
    chars = len(normalized)
    words = len(normalized.split()) if normalized else 0
    verdict = Verdict.FLAGGED if chars < min_chars or words < min_words else Verdict.CLEAR
    return ScannedAssessment(verdict, char_count=chars, word_count=words)
