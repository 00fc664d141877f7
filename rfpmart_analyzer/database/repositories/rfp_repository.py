"""
RFP Repository

Persistence contract used by the run coordinator: id-keyed upserts and reads
for listings, extracted text and fit results, plus run bookkeeping and the
"date of last run" query.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Set

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ...config import TierThresholds
from ...models import ExtractedText, FitResult, OpportunityListing, Polarity, RunResult, ScoreBreakdown
from ...utils.logging import log_database_operation
from ..models import DocumentText, FitResultRecord, Opportunity, Run
from .base import BaseRepository

logger = logging.getLogger(__name__)


class RfpRepository(BaseRepository[Opportunity]):
    """Repository for opportunities and everything hanging off them."""

    def __init__(self, session: Session):
        super().__init__(Opportunity, session)

    # Listings

    def upsert_listing(self, listing: OpportunityListing, status: Optional[str] = None) -> Opportunity:
        """Insert or update the row for a listing id."""
        opportunity = self.get_by_id(listing.id)
        operation = "UPDATE"
        if opportunity is None:
            operation = "INSERT"
            opportunity = Opportunity(id=listing.id, title=listing.title, detail_ref=listing.detail_ref)
            self.session.add(opportunity)

        opportunity.title = listing.title
        opportunity.detail_ref = listing.detail_ref
        opportunity.posted_date = listing.posted_date
        opportunity.due_date = listing.due_date
        opportunity.source = listing.source
        if listing.download_ref:
            opportunity.download_ref = listing.download_ref
        if status:
            opportunity.status = status

        self.session.flush()
        log_database_operation(operation, Opportunity.__tablename__, listing.id)
        return opportunity

    def mark_status(self, opportunity_id: str, status: str, failure_reason: Optional[str] = None) -> None:
        opportunity = self.get_by_id(opportunity_id)
        if opportunity is None:
            return
        opportunity.status = status
        opportunity.failure_reason = failure_reason
        self.session.flush()

    def known_ids(self, ids: Optional[Iterable[str]] = None) -> Set[str]:
        """Ids already stored, optionally restricted to the given candidates."""
        stmt = select(Opportunity.id)
        if ids is not None:
            ids = list(ids)
            if not ids:
                return set()
            stmt = stmt.where(Opportunity.id.in_(ids))
        return set(self.session.execute(stmt).scalars().all())

    def get_listing(self, opportunity_id: str) -> Optional[OpportunityListing]:
        opportunity = self.get_by_id(opportunity_id)
        if opportunity is None:
            return None
        return OpportunityListing(
            id=opportunity.id,
            title=opportunity.title,
            detail_ref=opportunity.detail_ref,
            posted_date=opportunity.posted_date,
            due_date=opportunity.due_date,
            download_ref=opportunity.download_ref,
            source=opportunity.source,
        )

    def delete_opportunity(self, opportunity_id: str) -> bool:
        deleted = self.delete(opportunity_id)
        if deleted:
            log_database_operation("DELETE", Opportunity.__tablename__, opportunity_id)
        return deleted

    # Extracted text

    def save_documents(self, opportunity_id: str, texts: Sequence[ExtractedText]) -> int:
        """Replace the stored text of an opportunity's documents."""
        self.session.execute(delete(DocumentText).where(DocumentText.opportunity_id == opportunity_id))
        for position, extracted in enumerate(texts):
            self.session.add(
                DocumentText(
                    opportunity_id=opportunity_id,
                    position=position,
                    filename=extracted.source_filename,
                    format=extracted.format,
                    text=extracted.text,
                    word_count=extracted.word_count,
                    char_count=extracted.char_count,
                    page_count=extracted.page_count,
                )
            )
        self.session.flush()
        log_database_operation("INSERT", DocumentText.__tablename__, opportunity_id)
        return len(texts)

    def get_corpus_texts(self, opportunity_id: str) -> List[ExtractedText]:
        stmt = (
            select(DocumentText)
            .where(DocumentText.opportunity_id == opportunity_id)
            .order_by(DocumentText.position)
        )
        return [
            ExtractedText(
                source_filename=row.filename,
                text=row.text,
                format=row.format,
                word_count=row.word_count,
                char_count=row.char_count,
                page_count=row.page_count,
            )
            for row in self.session.execute(stmt).scalars().all()
        ]

    def ids_with_documents(self) -> List[str]:
        stmt = select(DocumentText.opportunity_id).distinct().order_by(DocumentText.opportunity_id)
        return list(self.session.execute(stmt).scalars().all())

    # Fit results

    def save_fit_result(self, fit: FitResult) -> FitResultRecord:
        record = self.session.get(FitResultRecord, fit.opportunity_id)
        if record is None:
            record = FitResultRecord(opportunity_id=fit.opportunity_id)
            self.session.add(record)

        record.total_score = fit.total_score
        record.max_score = fit.max_score
        record.percentage = fit.percentage
        record.tier = fit.tier.value
        record.breakdown = [item.to_dict() for item in fit.breakdown]
        record.advantages = list(fit.advantages)
        record.red_flags = list(fit.red_flags)
        record.reasoning = fit.reasoning
        record.error = fit.error
        record.narrative = fit.narrative

        self.mark_status(fit.opportunity_id, "failed" if fit.failed else "scored", fit.error)
        self.session.flush()
        log_database_operation("UPSERT", FitResultRecord.__tablename__, fit.opportunity_id)
        return record

    def get_fit_result(self, opportunity_id: str, thresholds: Optional[TierThresholds] = None) -> Optional[FitResult]:
        """Load a stored result; its tier is recomputed from the thresholds given."""
        record = self.session.get(FitResultRecord, opportunity_id)
        if record is None:
            return None
        return FitResult(
            opportunity_id=record.opportunity_id,
            total_score=record.total_score,
            max_score=record.max_score,
            percentage=record.percentage,
            thresholds=thresholds or TierThresholds(),
            breakdown=[
                ScoreBreakdown(
                    category=item["category"],
                    score=item["score"],
                    max_score=item["max_score"],
                    rationale=item["rationale"],
                    polarity=Polarity(item.get("polarity", Polarity.NEUTRAL.value)),
                )
                for item in record.breakdown or []
            ],
            advantages=list(record.advantages or []),
            red_flags=list(record.red_flags or []),
            reasoning=record.reasoning,
            error=record.error,
            narrative=record.narrative,
        )

    # Runs

    def start_run(self, since: datetime, command: str = "run") -> Run:
        run = Run(command=command, started_at=datetime.now(), since_date=since, status="running", errors=[])
        self.session.add(run)
        self.session.flush()
        log_database_operation("INSERT", Run.__tablename__, str(run.id))
        return run

    def finish_run(self, run_id: int, result: RunResult) -> Optional[Run]:
        run = self.session.get(Run, run_id)
        if run is None:
            logger.warning(f"Run {run_id} not found")
            return None
        run.finished_at = result.finished_at or datetime.now()
        run.discovered = result.discovered
        run.processed = len(result.outcomes)
        run.succeeded = result.succeeded
        run.failed = result.failed
        run.status = result.status
        run.errors = list(result.errors)
        self.session.flush()
        log_database_operation("UPDATE", Run.__tablename__, str(run_id))
        return run

    def last_run_date(self, commands: Sequence[str] = ("run", "scrape")) -> Optional[datetime]:
        """Start time of the latest discovery run that was not fatal."""
        stmt = (
            select(func.max(Run.started_at))
            .where(Run.status.in_(("completed", "partial")))
            .where(Run.command.in_(tuple(commands)))
        )
        return self.session.execute(stmt).scalar_one_or_none()
