"""
Content classification primitives.

Pure functions and classifiers used by the detection services:
- assess_scanned: near-empty PDF text layer heuristic
- content_fingerprint / group_duplicates: normalized-text duplicates
- AdministrativeClassifier: weighted admin vs legal rule tables
"""

from .administrative import AdministrativeAssessment, AdministrativeClassifier
from .duplicates import DuplicateGroup, FingerprintedDocument, content_fingerprint, group_duplicates
from .normalize import fold_diacritics, normalize_for_fingerprint, normalize_for_rules
from .rules import ADMIN_RULES, LEGAL_RULES, Rule, RuleScore, score_rules
from .scanned import ScannedAssessment, Verdict, assess_scanned

__all__ = [
    "ADMIN_RULES",
    "LEGAL_RULES",
    "AdministrativeAssessment",
    "AdministrativeClassifier",
    "DuplicateGroup",
    "FingerprintedDocument",
    "Rule",
    "RuleScore",
    "ScannedAssessment",
    "Verdict",
    "assess_scanned",
    "content_fingerprint",
    "fold_diacritics",
    "group_duplicates",
    "normalize_for_fingerprint",
    "normalize_for_rules",
    "score_rules",
]
