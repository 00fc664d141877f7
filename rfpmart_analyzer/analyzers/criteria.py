"""
Criteria detection over an opportunity corpus.

Finds the facts the scorer weighs: institution type, budget amounts, CMS
platform, project type, technology keywords, location and red flags. All
functions are pure.
"""

import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional

from ..config import BudgetThresholds, KeywordConfig

US_STATES: Dict[str, str] = {
    "AL": "alabama", "AK": "alaska", "AZ": "arizona", "AR": "arkansas", "CA": "california",
    "CO": "colorado", "CT": "connecticut", "DE": "delaware", "FL": "florida", "GA": "georgia",
    "HI": "hawaii", "ID": "idaho", "IL": "illinois", "IN": "indiana", "IA": "iowa",
    "KS": "kansas", "KY": "kentucky", "LA": "louisiana", "ME": "maine", "MD": "maryland",
    "MA": "massachusetts", "MI": "michigan", "MN": "minnesota", "MS": "mississippi", "MO": "missouri",
    "MT": "montana", "NE": "nebraska", "NV": "nevada", "NH": "new hampshire", "NJ": "new jersey",
    "NM": "new mexico", "NY": "new york", "NC": "north carolina", "ND": "north dakota", "OH": "ohio",
    "OK": "oklahoma", "OR": "oregon", "PA": "pennsylvania", "RI": "rhode island", "SC": "south carolina",
    "SD": "south dakota", "TN": "tennessee", "TX": "texas", "UT": "utah", "VT": "vermont",
    "VA": "virginia", "WA": "washington", "WV": "west virginia", "WI": "wisconsin", "WY": "wyoming",
    "DC": "district of columbia",
}

_STATE_NAME_PATTERN = re.compile(
    r"\b(" + "|".join(sorted((re.escape(name) for name in US_STATES.values()), key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)
# Abbreviations only count in address position ("Austin, TX" or "TX 78701")
_STATE_ABBREV_PATTERN = re.compile(
    r"(?:,\s*(" + "|".join(US_STATES) + r")\b)|\b(" + "|".join(US_STATES) + r")\s+\d{5}\b"
)

INSTITUTION_TYPES = (
    ("community college", "Community College"),
    ("state university", "State University"),
    ("university", "University"),
    ("college", "College"),
)

CHARACTERISTIC_PATTERNS = {
    "accessibility": re.compile(r"\b(accessibility|wcag|ada|508|inclusive|disability)\b", re.I),
    "responsive": re.compile(r"\b(responsive|mobile|tablet|device|breakpoint)\b", re.I),
    "api": re.compile(r"\b(api|integration|web service|rest|json|xml)\b", re.I),
}

_MULTIPLIERS = {
    "k": 1000, "thousand": 1000,
    "m": 1000000, "mm": 1000000, "million": 1000000,
}
_NUMBER = r"(\d{1,3}(?:,\d{3})+|\d+)(\.\d+)?"
_SUFFIX = r"(?:\s*(k|thousand|mm|m|million)\b)?"
AMOUNT_PATTERNS = [
    re.compile(r"\$\s?" + _NUMBER + _SUFFIX, re.I),
    re.compile(r"(?:not[\s-]+to[\s-]+exceed|\bNTE\b)[^\d$]{0,20}\$?\s?" + _NUMBER + _SUFFIX, re.I),
    re.compile(r"\b" + _NUMBER + r"\s*(?:USD|dollars)\b", re.I),
]


@dataclass
class KeywordMatch:
    """Which terms of a keyword set appear in the text."""
    matches: List[str] = field(default_factory=list)
    confidence: int = 0

    @property
    def found(self) -> bool:
        return bool(self.matches)


@dataclass
class InstitutionAnalysis:
    is_higher_education: bool
    institution_type: Optional[str]
    match: KeywordMatch
    is_large_institution: bool = False
    large_match: KeywordMatch = field(default_factory=KeywordMatch)


@dataclass
class BudgetAnalysis:
    amounts: List[int] = field(default_factory=list)
    has_budget_language: bool = False

    @property
    def budget_found(self) -> bool:
        return bool(self.amounts)

    @property
    def highest_amount(self) -> Optional[int]:
        return max(self.amounts) if self.amounts else None


@dataclass
class TechnologyAnalysis:
    preferred_cms: KeywordMatch
    acceptable_cms: KeywordMatch
    project_types: KeywordMatch
    tech_keywords: KeywordMatch
    red_flags: KeywordMatch


@dataclass
class LocationAnalysis:
    state: Optional[str] = None
    is_preferred_state: bool = False


@dataclass
class CriteriaReport:
    institution: InstitutionAnalysis
    budget: BudgetAnalysis
    technology: TechnologyAnalysis
    location: LocationAnalysis
    characteristics: Dict[str, bool]


def match_keywords(text: str, keywords: Iterable[str]) -> KeywordMatch:
    """Case-insensitive whole-word matching; confidence is the share of unique terms found."""
    keywords = [kw for kw in keywords if kw]
    if not keywords:
        return KeywordMatch()

    matches = []
    for keyword in keywords:
        pattern = r"\b" + r"\s+".join(re.escape(part) for part in keyword.split()) + r"\b"
        if re.search(pattern, text, re.IGNORECASE) and keyword.lower() not in matches:
            matches.append(keyword.lower())

    confidence = round(min(100, len(matches) / len(keywords) * 100))
    return KeywordMatch(matches=matches, confidence=confidence)


def parse_amount(number: str, fraction: Optional[str], suffix: Optional[str]) -> Optional[int]:
    """Turn the pieces of a matched amount into whole dollars."""
    try:
        value = Decimal(number.replace(",", "") + (fraction or ""))
    except InvalidOperation:
        return None
    if suffix:
        value *= _MULTIPLIERS[suffix.lower()]
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def extract_amounts(text: str, floor: int = 1000, ceiling: int = 50000000) -> List[int]:
    """All plausible monetary amounts in ascending order, deduplicated."""
    amounts = set()
    for pattern in AMOUNT_PATTERNS:
        for match in pattern.finditer(text):
            groups = match.groups()
            suffix = groups[2] if len(groups) > 2 else None
            amount = parse_amount(groups[0], groups[1], suffix)
            if amount is not None and floor <= amount <= ceiling:
                amounts.add(amount)
    return sorted(amounts)


def classify_institution(text: str) -> Optional[str]:
    lowered = text.lower()
    for term, label in INSTITUTION_TYPES:
        if re.search(r"\b" + term.replace(" ", r"\s+") + r"\b", lowered):
            return label
    return None


def detect_state(text: str) -> Optional[str]:
    """First full state name, else first address-style abbreviation."""
    match = _STATE_NAME_PATTERN.search(text)
    if match:
        return " ".join(match.group(1).lower().split())
    match = _STATE_ABBREV_PATTERN.search(text)
    if match:
        return US_STATES[match.group(1) or match.group(2)]
    return None


class CriteriaChecker:
    """Runs every detector over a corpus."""

    def __init__(self, keywords: KeywordConfig, budget: BudgetThresholds):
        self.keywords = keywords
        self.budget = budget

    def analyze_institution(self, text: str) -> InstitutionAnalysis:
        match = match_keywords(text, self.keywords.higher_education)
        large = match_keywords(text, self.keywords.large_institution)
        institution_type = classify_institution(text)
        if match.found and institution_type is None:
            institution_type = "Higher Education"
        return InstitutionAnalysis(
            is_higher_education=match.found,
            institution_type=institution_type if match.found else None,
            match=match,
            is_large_institution=large.found,
            large_match=large,
        )

    def analyze_budget(self, text: str) -> BudgetAnalysis:
        return BudgetAnalysis(
            amounts=extract_amounts(text, self.budget.floor, self.budget.ceiling),
            has_budget_language=match_keywords(text, self.keywords.budget).found,
        )

    def analyze_technology(self, text: str) -> TechnologyAnalysis:
        preferred = match_keywords(text, self.keywords.cms_preferred)
        acceptable = match_keywords(text, self.keywords.cms_acceptable)
        if preferred.found:
            acceptable = KeywordMatch()
        return TechnologyAnalysis(
            preferred_cms=preferred,
            acceptable_cms=acceptable,
            project_types=match_keywords(text, self.keywords.project_types),
            tech_keywords=match_keywords(text, self.keywords.tech_positive),
            red_flags=match_keywords(text, self.keywords.red_flags),
        )

    def analyze_location(self, text: str) -> LocationAnalysis:
        state = detect_state(text)
        preferred = {name.lower() for name in self.keywords.preferred_states}
        return LocationAnalysis(state=state, is_preferred_state=state is not None and state in preferred)

    def analyze(self, text: str) -> CriteriaReport:
        return CriteriaReport(
            institution=self.analyze_institution(text),
            budget=self.analyze_budget(text),
            technology=self.analyze_technology(text),
            location=self.analyze_location(text),
            characteristics={
                name: bool(pattern.search(text)) for name, pattern in CHARACTERISTIC_PATTERNS.items()
            },
        )
