"""
Deterministic fit scoring.

Given corpus text and the scoring configuration, produces a weighted score,
a percentage of the maximum possible score, a tier and an ordered breakdown.
Any internal failure degrades to a zero-score SKIP result carrying an error
marker; ``score()`` never raises.
"""

import logging
from typing import List, Optional

from ..config import ScoringConfig
from ..exceptions import ScoringError
from ..models import Corpus, FitResult, Polarity, ScoreBreakdown, Tier, tier_for
from ..utils.logging import log_scoring
from .criteria import CriteriaChecker, CriteriaReport

logger = logging.getLogger(__name__)

TIER_GUIDANCE = {
    Tier.HIGH: "Strong fit for our expertise and target market. Recommend immediate pursuit.",
    Tier.MEDIUM: "Good fit with some favorable factors. Worth considering if capacity allows.",
    Tier.LOW: "Limited alignment with target criteria. Pursue only if strategic value or low competition.",
    Tier.SKIP: "Poor fit for our target market and expertise. Recommend skipping.",
}


def _money(amount: int) -> str:
    return f"${amount:,}"


def _positive(score: int) -> Polarity:
    return Polarity.POSITIVE if score > 0 else Polarity.NEUTRAL


class ScoringEngine:
    """Weighted rubric over a corpus."""

    def __init__(self, config: ScoringConfig):
        self.config = config
        self.weights = config.weights
        self.checker = CriteriaChecker(config.keywords, config.budget)

    @property
    def max_possible_score(self) -> int:
        return self.weights.max_possible

    def score(self, corpus: Corpus) -> FitResult:
        """Score a corpus. Never raises."""
        try:
            result = self._score(corpus.opportunity_id, corpus.combined_text)
        except Exception as e:
            logger.exception(f"Scoring failed for {corpus.opportunity_id}")
            result = FitResult.failure(
                corpus.opportunity_id,
                f"ScoringError: {e}",
                max_score=self.max_possible_score,
                thresholds=self.config.thresholds,
            )
        log_scoring(result.opportunity_id, result.total_score, result.percentage, result.tier.value, result.error)
        return result

    def score_text(self, opportunity_id: str, text: str) -> FitResult:
        corpus = Corpus(opportunity_id=opportunity_id, combined_text=text, document_count=1,
                        total_words=len(text.split()), total_chars=len(text))
        return self.score(corpus)

    def _score(self, opportunity_id: str, text: str) -> FitResult:
        if text is None:
            raise ScoringError("corpus text is missing")

        report = self.checker.analyze(text)
        breakdown = [
            self._institution(report),
            self._platform(report),
            self._project_type(report),
            self._budget(report),
            self._tech_keywords(report),
            self._institution_size(report),
            self._geography(report),
            self._red_flags(report),
            self._characteristics(report),
        ]

        total = sum(item.score for item in breakdown)
        max_score = self.max_possible_score
        if max_score <= 0:
            raise ScoringError("maximum possible score must be positive")
        percentage = round(total / max_score * 100)

        result = FitResult(
            opportunity_id=opportunity_id,
            total_score=total,
            max_score=max_score,
            percentage=percentage,
            thresholds=self.config.thresholds,
            breakdown=breakdown,
            advantages=[
                f"{item.category}: {item.rationale}"
                for item in breakdown if item.score > 0 and item.polarity is Polarity.POSITIVE
            ],
            red_flags=[f"{item.category}: {item.rationale}" for item in breakdown if item.polarity is Polarity.NEGATIVE],
        )
        result.reasoning = self._reasoning(report, result)
        return result

    def _institution(self, report: CriteriaReport) -> ScoreBreakdown:
        institution = report.institution
        score = self.weights.higher_education if institution.is_higher_education else 0
        if institution.is_higher_education:
            rationale = (
                f"{institution.institution_type} ({institution.match.confidence}% confidence; "
                f"matched {', '.join(institution.match.matches)})"
            )
        else:
            rationale = "Not identified as higher education"
        return ScoreBreakdown("Higher Education Institution", score, self.weights.higher_education,
                              rationale, _positive(score))

    def _platform(self, report: CriteriaReport) -> ScoreBreakdown:
        tech = report.technology
        if tech.preferred_cms.found:
            score = self.weights.cms_preferred
            rationale = f"Preferred CMS: {', '.join(tech.preferred_cms.matches)}"
        elif tech.acceptable_cms.found:
            score = self.weights.cms_acceptable
            rationale = f"Acceptable CMS: {', '.join(tech.acceptable_cms.matches)}"
        else:
            score = 0
            rationale = "No CMS platform identified"
        return ScoreBreakdown("CMS Platform", score, self.weights.cms_preferred, rationale, _positive(score))

    def _project_type(self, report: CriteriaReport) -> ScoreBreakdown:
        match = report.technology.project_types
        score = self.weights.project_type if match.found else 0
        rationale = f"Project type: {', '.join(match.matches)}" if match.found else "No target project type found"
        return ScoreBreakdown("Project Type", score, self.weights.project_type, rationale, _positive(score))

    def _budget(self, report: CriteriaReport) -> ScoreBreakdown:
        budget = report.budget
        thresholds = self.config.budget
        highest = budget.highest_amount
        if highest is None:
            score = 0
            rationale = "No budget information found"
        elif highest >= thresholds.min_preferred:
            score = self.weights.budget_high
            rationale = f"High budget: {_money(highest)}"
        elif highest >= thresholds.min_acceptable:
            score = self.weights.budget_medium
            rationale = f"Medium budget: {_money(highest)}"
        else:
            score = self.weights.budget_low
            rationale = f"Low budget: {_money(highest)}"
        return ScoreBreakdown("Budget", score, self.weights.budget_high, rationale, _positive(score))

    def _tech_keywords(self, report: CriteriaReport) -> ScoreBreakdown:
        match = report.technology.tech_keywords
        score = self.weights.tech_keywords if match.found else 0
        rationale = f"Technology keywords: {', '.join(match.matches)}" if match.found else "No technology keywords"
        return ScoreBreakdown("Technology Keywords", score, self.weights.tech_keywords, rationale, _positive(score))

    def _institution_size(self, report: CriteriaReport) -> ScoreBreakdown:
        institution = report.institution
        score = self.weights.large_institution if institution.is_large_institution else 0
        rationale = (
            f"Large institution: {', '.join(institution.large_match.matches)}"
            if institution.is_large_institution else "Institution size not indicated"
        )
        return ScoreBreakdown("Institution Size", score, self.weights.large_institution, rationale, _positive(score))

    def _geography(self, report: CriteriaReport) -> ScoreBreakdown:
        location = report.location
        score = self.weights.preferred_state if location.is_preferred_state else 0
        if location.state is None:
            rationale = "State not identified"
        elif location.is_preferred_state:
            rationale = f"Preferred state: {location.state.title()}"
        else:
            rationale = f"State: {location.state.title()}"
        return ScoreBreakdown("Geographic Location", score, self.weights.preferred_state, rationale, _positive(score))

    def _red_flags(self, report: CriteriaReport) -> ScoreBreakdown:
        match = report.technology.red_flags
        if match.found:
            return ScoreBreakdown("Red Flags", self.weights.red_flags, 0,
                                  f"Red flags identified: {', '.join(match.matches)}", Polarity.NEGATIVE)
        return ScoreBreakdown("Red Flags", 0, 0, "No red flags identified", Polarity.NEUTRAL)

    def _characteristics(self, report: CriteriaReport) -> ScoreBreakdown:
        found = report.characteristics
        details: List[str] = []
        score = 0
        if found.get("accessibility"):
            score += self.weights.accessibility
            details.append("accessibility focus")
        if found.get("responsive"):
            score += self.weights.responsive
            details.append("responsive design")
        if found.get("api"):
            score += self.weights.api
            details.append("API integration")
        rationale = ", ".join(details) if details else "No additional characteristics"
        return ScoreBreakdown("Project Characteristics", score, self.weights.characteristics_max,
                              rationale, _positive(score))

    def _reasoning(self, report: CriteriaReport, result: FitResult) -> str:
        """One clause per category in fixed order, then tier guidance. Never affects the score."""
        try:
            reasons = []
            institution = report.institution
            if institution.is_higher_education:
                reasons.append(f"confirmed higher education institution ({institution.institution_type})")
            else:
                reasons.append("not identified as higher education institution")

            highest: Optional[int] = report.budget.highest_amount
            if highest is None:
                reasons.append("budget not specified")
            elif highest >= self.config.budget.min_preferred:
                reasons.append(f"excellent budget range ({_money(highest)})")
            elif highest >= self.config.budget.min_acceptable:
                reasons.append(f"acceptable budget range ({_money(highest)})")
            else:
                reasons.append(f"low budget ({_money(highest)})")

            tech = report.technology
            if tech.preferred_cms.found:
                reasons.append(f"uses preferred CMS ({', '.join(tech.preferred_cms.matches)})")
            elif tech.acceptable_cms.found:
                reasons.append(f"uses acceptable CMS ({', '.join(tech.acceptable_cms.matches)})")

            if tech.project_types.found:
                reasons.append(f"suitable project type ({', '.join(tech.project_types.matches)})")

            if report.location.is_preferred_state:
                reasons.append(f"located in preferred state ({report.location.state.title()})")

            if tech.red_flags.found:
                reasons.append(f"red flags present ({', '.join(tech.red_flags.matches)})")

            tier = tier_for(result.percentage, self.config.thresholds)
            return f"Score: {result.percentage}% - {', '.join(reasons)}. {TIER_GUIDANCE[tier]}"
        except Exception as e:
            logger.warning(f"Reasoning generation failed for {result.opportunity_id}: {e}")
            return f"Score: {result.percentage}%."
