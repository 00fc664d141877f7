"""
Domain records passed between pipeline stages.

These are plain dataclasses; the SQLAlchemy models under ``database.models``
are the persisted counterparts.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import TierThresholds


class Tier(str, Enum):
    """Recommendation bucket derived from a percentage score."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    SKIP = "SKIP"


class Polarity(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


def tier_for(percentage: int, thresholds: TierThresholds) -> Tier:
    """Map a percentage onto a tier using the configured thresholds."""
    if percentage >= thresholds.high:
        return Tier.HIGH
    if percentage >= thresholds.medium:
        return Tier.MEDIUM
    if percentage >= thresholds.low:
        return Tier.LOW
    return Tier.SKIP


@dataclass
class AuthSession:
    """Login state owned by the session manager."""
    authenticated: bool = False
    login_time: Optional[datetime] = None
    session_budget: timedelta = timedelta(hours=4)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if not self.authenticated or self.login_time is None:
            return True
        now = now or datetime.now()
        return now - self.login_time >= self.session_budget


@dataclass
class OpportunityListing:
    """One opportunity as discovered on the listing page or feed."""
    id: str
    title: str
    detail_ref: str
    posted_date: Optional[date] = None
    due_date: Optional[date] = None
    download_ref: Optional[str] = None
    source: str = "listing"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "detail_ref": self.detail_ref,
            "posted_date": self.posted_date.isoformat() if self.posted_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "download_ref": self.download_ref,
            "source": self.source,
        }


@dataclass
class DocumentBuffer:
    """Raw bytes of a single document awaiting text extraction."""
    data: bytes
    filename: str
    declared_type: str
    owner_opportunity_id: str

    @property
    def size(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return (
            f"DocumentBuffer(filename={self.filename!r}, declared_type={self.declared_type!r}, "
            f"size={self.size}, owner={self.owner_opportunity_id!r})"
        )


@dataclass
class Rejection:
    """An artifact, archive entry or document that was skipped, and why."""
    filename: str
    reason: str
    detail: Optional[str] = None

    def __str__(self) -> str:
        if self.detail:
            return f"{self.filename}: {self.reason} ({self.detail})"
        return f"{self.filename}: {self.reason}"


@dataclass
class ExtractedText:
    """Text pulled from one document.

    Counts are computed once by whitespace tokenization and reused downstream.
    """
    source_filename: str
    text: str
    format: str
    word_count: int = 0
    char_count: int = 0
    page_count: Optional[int] = None
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(cls, source_filename: str, text: str, format: str, **kwargs) -> "ExtractedText":
        return cls(
            source_filename=source_filename,
            text=text,
            format=format,
            word_count=len(text.split()),
            char_count=len(text),
            **kwargs,
        )


@dataclass
class Corpus:
    """Concatenated text of every extracted document for one opportunity."""
    opportunity_id: str
    combined_text: str
    document_count: int
    total_words: int
    total_chars: int = 0
    sources: List[str] = field(default_factory=list)


@dataclass
class ScoreBreakdown:
    category: str
    score: int
    max_score: int
    rationale: str
    polarity: Polarity = Polarity.NEUTRAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "score": self.score,
            "max_score": self.max_score,
            "rationale": self.rationale,
            "polarity": self.polarity.value,
        }


@dataclass
class FitResult:
    """Scored fit of one opportunity.

    ``tier`` is recomputed from ``percentage`` and ``thresholds`` on every
    access; it is never set on its own.
    """
    opportunity_id: str
    total_score: int
    max_score: int
    percentage: int
    thresholds: TierThresholds = field(default_factory=TierThresholds)
    breakdown: List[ScoreBreakdown] = field(default_factory=list)
    advantages: List[str] = field(default_factory=list)
    red_flags: List[str] = field(default_factory=list)
    reasoning: str = ""
    error: Optional[str] = None
    narrative: Optional[str] = None

    @property
    def tier(self) -> Tier:
        return tier_for(self.percentage, self.thresholds)

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(
        cls,
        opportunity_id: str,
        error: str,
        max_score: int = 0,
        thresholds: Optional[TierThresholds] = None,
    ) -> "FitResult":
        """Zero-score result carrying an error marker; always tier SKIP."""
        return cls(
            opportunity_id=opportunity_id,
            total_score=0,
            max_score=max_score,
            percentage=0,
            thresholds=thresholds or TierThresholds(),
            reasoning=f"Analysis failed: {error}",
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "opportunity_id": self.opportunity_id,
            "total_score": self.total_score,
            "max_score": self.max_score,
            "percentage": self.percentage,
            "tier": self.tier.value,
            "breakdown": [item.to_dict() for item in self.breakdown],
            "advantages": list(self.advantages),
            "red_flags": list(self.red_flags),
            "reasoning": self.reasoning,
            "error": self.error,
            "narrative": self.narrative,
        }


@dataclass
class AcquisitionResult:
    """Documents acquired for one opportunity, plus everything rejected on the way."""
    listing: OpportunityListing
    documents: List[DocumentBuffer] = field(default_factory=list)
    rejections: List[Rejection] = field(default_factory=list)
    artifact_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class CorpusResult:
    """Outcome of normalizing one opportunity's documents."""
    corpus: Corpus
    texts: List[ExtractedText] = field(default_factory=list)
    failures: List[Rejection] = field(default_factory=list)


@dataclass
class OpportunityOutcome:
    """Per-opportunity entry in a run result; failures are flagged, not dropped."""
    listing: OpportunityListing
    success: bool
    fit: Optional[FitResult] = None
    documents: int = 0
    rejections: List[Rejection] = field(default_factory=list)
    failure_reason: Optional[str] = None


@dataclass
class RunResult:
    """Summary of one coordinator run."""
    since: datetime
    run_id: Optional[int] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    discovered: int = 0
    outcomes: List[OpportunityOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    status: str = "running"

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)
