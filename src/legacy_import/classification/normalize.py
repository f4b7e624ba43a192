"""
Text normalization shared by the detectors.
"""

import re
import unicodedata

_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")

# Legacy Romanian cedilla forms fold to the same base letters as comma-below
_CEDILLA_MAP = str.maketrans({"ş": "s", "Ş": "S", "ţ": "t", "Ţ": "T"})


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def fold_diacritics(text: str) -> str:
    """Strip combining marks (ă→a, ș→s, é→e)."""
    decomposed = unicodedata.normalize("NFKD", text.translate(_CEDILLA_MAP))
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_for_rules(text: str) -> str:
    """Lowercase and diacritic-fold text for rule matching."""
    return collapse_whitespace(fold_diacritics(text).lower())


def normalize_for_fingerprint(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    return collapse_whitespace(_PUNCTUATION.sub(" ", text.lower()))
