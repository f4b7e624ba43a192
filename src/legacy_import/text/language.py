"""
Lightweight language detection by pattern counting.

Each language has a small table of function words, domain terms and
characteristic diacritics. The language with the most matches wins; when
the runner-up is close the text is reported as Mixed.
"""

import re
from typing import Optional

MIXED = "Mixed"

# Top score must beat the runner-up by this factor to be unambiguous
DOMINANCE_RATIO = 1.5

LANGUAGE_PATTERNS: dict[str, list[re.Pattern]] = {
    "Romanian": [
        re.compile(r"\b(și|si|sau|pentru|este|sunt|care|mai|acest|această|aceste|acestea)\b", re.I),
        re.compile(r"\b(contract|articol|obligații|părți|drepturile|executare|reziliere)\b", re.I),
        re.compile(r"[ăâîșțş]", re.I),
    ],
    "English": [
        re.compile(r"\b(the|and|for|that|with|this|from|have|will|shall)\b", re.I),
        re.compile(r"\b(agreement|contract|party|parties|obligations|rights|termination)\b", re.I),
    ],
    "Italian": [
        re.compile(r"\b(il|lo|gli|che|per|con|una|sono|della|questo)\b", re.I),
        re.compile(r"\b(contratto|articolo|obblighi|parti|diritti|esecuzione|risoluzione)\b", re.I),
    ],
    "French": [
        re.compile(r"\b(le|les|et|pour|que|qui|avec|dans|sont|cette|ces)\b", re.I),
        re.compile(r"\b(contrat|article|obligations|parties|droits|exécution|résiliation)\b", re.I),
        re.compile(r"[éèêëàùûôç]", re.I),
    ],
}


def language_scores(text: str) -> dict[str, int]:
    """Count pattern matches per language."""
    return {
        language: sum(len(pattern.findall(text)) for pattern in patterns)
        for language, patterns in LANGUAGE_PATTERNS.items()
    }


def detect_language(text: str) -> Optional[str]:
    """Return the dominant language, MIXED when ambiguous, None when unknown."""
    if not text or not text.strip():
        return None

    ranked = sorted(language_scores(text).items(), key=lambda item: (-item[1], item[0]))
    (top_language, top_score), (_, second_score) = ranked[0], ranked[1]

    if top_score == 0:
        return None
    if second_score and top_score < second_score * DOMINANCE_RATIO:
        return MIXED
    return top_language
