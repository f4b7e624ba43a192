"""
Weighted rule tables for the administrative classifier.

Patterns run against lowercased, diacritic-folded text (see
normalize_for_rules), so they are written without diacritics. Each rule
contributes its weight at most once per document, however often it matches.
"""

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Rule:
    """A weighted pattern belonging to a rule category."""

    name: str
    pattern: str
    weight: int
    category: str
    _compiled: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_compiled", re.compile(self.pattern))

    def matches(self, normalized_text: str) -> bool:
        return self._compiled.search(normalized_text) is not None


@dataclass
class RuleScore:
    score: int
    matched: list[str]


def score_rules(rules: list[Rule], normalized_text: str) -> RuleScore:
    """Sum the weights of the rules that match, in table order."""
    matched = [rule.name for rule in rules if rule.matches(normalized_text)]
    weights = {rule.name: rule.weight for rule in rules}
    return RuleScore(score=sum(weights[name] for name in matched), matched=matched)


# Administrative categories
INVOICE_HEADERS = "invoice_headers"
TAX_IDENTIFIERS = "tax_identifiers"
PAYMENT_TERMS = "payment_terms"
UTILITY_PROVIDERS = "utility_providers"
ADMIN_KEYWORDS = "administrative_keywords"

# Legal categories
CASE_NUMBERS = "case_numbers"
COURT_DECISIONS = "court_decisions"
MOTIONS = "motions"
LITIGATION_TERMS = "litigation_terms"


ADMIN_RULES: list[Rule] = [
    Rule("invoice_header_ro", r"\bfactura( fiscala| proforma)?\b", 3, INVOICE_HEADERS),
    Rule("invoice_header_en", r"\b(tax )?invoice\s*(no|nr|number|#)", 3, INVOICE_HEADERS),
    Rule("invoice_series", r"\bseria?\s+[a-z]{1,5}\s*(nr\.?|numar)\s*\d+", 3, INVOICE_HEADERS),
    Rule("fiscal_code", r"\b(cui|cif|cod fiscal|cod unic de inregistrare)\s*:?\s*(ro)?\s*\d{2,10}\b", 2, TAX_IDENTIFIERS),
    Rule("trade_registry", r"\bj\d{1,2}/\d+/\d{4}\b", 2, TAX_IDENTIFIERS),
    Rule("vat", r"\b(tva|vat)\b", 2, TAX_IDENTIFIERS),
    Rule("iban", r"\bro\d{2}\s?[a-z]{4}(\s?[0-9a-z]{4}){4}\b", 2, PAYMENT_TERMS),
    Rule("due_date", r"\b(termen de plata|scadenta|data scadentei|due date|payment terms)\b", 2, PAYMENT_TERMS),
    Rule("amount_due", r"\b(total de plata|total to pay|amount due|rest de plata)\b", 2, PAYMENT_TERMS),
    Rule(
        "utility_provider",
        r"\b(enel|e\.on|eon energie|engie|electrica furnizare|distrigaz|apa nova|orange romania|vodafone|telekom|digi|rcs ?& ?rds|upc)\b",
        3,
        UTILITY_PROVIDERS,
    ),
    Rule("receipt", r"\b(chitanta|bon fiscal|receipt)\b", 1, ADMIN_KEYWORDS),
    Rule("delivery_note", r"\b(aviz de insotire|delivery note|proces[- ]verbal de predare)\b", 1, ADMIN_KEYWORDS),
    Rule("statement", r"\b(extras de cont|bank statement)\b", 1, ADMIN_KEYWORDS),
    Rule("consumption", r"\b(abonament|consum|kwh|index vechi|index nou)\b", 1, ADMIN_KEYWORDS),
]

LEGAL_RULES: list[Rule] = [
    Rule("case_number_ro", r"\bdosar(ul)?\s*(nr\.?|numar)?\s*\d+/\d+/\d{4}\b", 2, CASE_NUMBERS),
    Rule("case_number_en", r"\bcase\s+no\.?\s*[\w/-]*\d", 2, CASE_NUMBERS),
    Rule("court_decision", r"\b(sentinta (civila|penala)|decizia (civila|penala|nr)|hotararea nr|incheierea)\b", 1, COURT_DECISIONS),
    Rule("court", r"\b(tribunalul|judecatoria|curtea de apel|inalta curte|court of appeal|district court)\b", 1, COURT_DECISIONS),
    Rule("motion", r"\b(cerere de chemare in judecata|intampinare|cerere de apel|recurs|contestatie|motion to)\b", 1, MOTIONS),
    Rule("litigation", r"\b(reclamant(ul|a)?|parat(ul|a)?|instanta|litigiu|litigation|lawsuit|plaintiff|defendant)\b", 1, LITIGATION_TERMS),
]
