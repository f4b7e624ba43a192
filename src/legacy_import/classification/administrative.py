"""
Administrative document classifier.

Decision:
- legal_score >= legal_override_threshold → never Administrative
- else admin_score >= admin_threshold → Administrative
"""

from dataclasses import dataclass, field
from typing import Optional

from .normalize import normalize_for_rules
from .rules import ADMIN_RULES, LEGAL_RULES, Rule, score_rules
from .scanned import Verdict

ADMIN_THRESHOLD = 5
LEGAL_OVERRIDE_THRESHOLD = 2


@dataclass
class AdministrativeAssessment:
    verdict: Verdict
    admin_score: int = 0
    legal_score: int = 0
    matched_admin: list[str] = field(default_factory=list)
    matched_legal: list[str] = field(default_factory=list)
    legal_override: bool = False

    def to_payload(self) -> dict:
        return {
            "admin_score": self.admin_score,
            "legal_score": self.legal_score,
            "matched_admin": self.matched_admin,
            "matched_legal": self.matched_legal,
            "legal_override": self.legal_override,
        }


class AdministrativeClassifier:
    """Scores text against the administrative and legal rule tables."""

    def __init__(
        self,
        admin_threshold: int = ADMIN_THRESHOLD,
        legal_override_threshold: int = LEGAL_OVERRIDE_THRESHOLD,
        admin_rules: Optional[list[Rule]] = None,
        legal_rules: Optional[list[Rule]] = None,
    ):
        self.admin_threshold = admin_threshold
        self.legal_override_threshold = legal_override_threshold
        self.admin_rules = admin_rules if admin_rules is not None else ADMIN_RULES
        self.legal_rules = legal_rules if legal_rules is not None else LEGAL_RULES

    def assess(self, text: Optional[str], text_failed: bool = False) -> AdministrativeAssessment:
        if text is None or text_failed or not text.strip():
            return AdministrativeAssessment(Verdict.INCONCLUSIVE)

        normalized = normalize_for_rules(text)
        admin = score_rules(self.admin_rules, normalized)
        legal = score_rules(self.legal_rules, normalized)

        legal_override = legal.score >= self.legal_override_threshold
        flagged = not legal_override and admin.score >= self.admin_threshold
        return AdministrativeAssessment(
            verdict=Verdict.FLAGGED if flagged else Verdict.CLEAR,
            admin_score=admin.score,
            legal_score=legal.score,
            matched_admin=admin.matched,
            matched_legal=legal.matched,
            legal_override=legal_override,
        )
