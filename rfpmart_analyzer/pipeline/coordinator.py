"""
Run coordinator.

Sequences discovery, acquisition, normalization and scoring over the batch
of new opportunities. Opportunities are processed one at a time because they
share the single browser session. A failure inside one opportunity is
recorded on its outcome and the batch continues; failures at the session or
listing level abort the run.
"""

from contextlib import AbstractContextManager
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from ..analyzers.narrative import NarrativeProvider, NullNarrativeProvider
from ..analyzers.scoring import ScoringEngine
from ..config import Config
from ..database.connection import get_db
from ..database.repositories import RfpRepository
from ..exceptions import AnalyzerError, AuthError, InsufficientCorpusError, ListingError
from ..models import Corpus, FitResult, OpportunityListing, OpportunityOutcome, RunResult
from ..processors.document_processor import DocumentProcessor, combine_texts
from ..processors.text_normalizer import TextNormalizer
from ..scrapers.acquisition import AcquisitionOrchestrator
from ..scrapers.auth import SessionManager
from ..scrapers.listing import ListingExtractor
from ..scrapers.rate_limiter import RateLimiter
from ..scrapers.rss import RSSFeedReader
from ..storage.retention import CleanupReport, RetentionManager
from ..utils.logging import get_logger
from .discovery import Discovery, FeedDiscovery, ListingDiscovery

logger = get_logger(__name__)

DEFAULT_LOOKBACK = timedelta(days=7)


def with_title(listing: OpportunityListing, corpus: Corpus) -> Corpus:
    """Corpus copy with the listing title ahead of the document text."""
    if not listing.title:
        return corpus
    return replace(corpus, combined_text=f"{listing.title}\n\n{corpus.combined_text}")


def filter_new(
    listings: Iterable[OpportunityListing],
    since: datetime,
    known_ids: Set[str],
) -> List[OpportunityListing]:
    """
    Keep listings that are neither already stored nor posted before ``since``.

    Order is preserved. A listing without a posted date counts as new, since
    it cannot be placed before the cutoff.
    """
    cutoff = since.date()
    seen: Set[str] = set()
    fresh = []
    for listing in listings:
        if listing.id in known_ids or listing.id in seen:
            continue
        if listing.posted_date is not None and listing.posted_date < cutoff:
            continue
        seen.add(listing.id)
        fresh.append(listing)
    return fresh


class RunCoordinator:
    """Drives the run, scrape, rescore and cleanup commands."""

    def __init__(
        self,
        config: Config,
        discovery: Optional[Discovery] = None,
        session: Optional[SessionManager] = None,
        orchestrator: Optional[AcquisitionOrchestrator] = None,
        scoring: Optional[ScoringEngine] = None,
        processor: Optional[DocumentProcessor] = None,
        narrative: Optional[NarrativeProvider] = None,
        retention: Optional[RetentionManager] = None,
        db_scope: Callable[[], AbstractContextManager] = get_db,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.discovery = discovery
        self.session = session
        self.orchestrator = orchestrator
        self.scoring = scoring or ScoringEngine(config.scoring)
        self.processor = processor or (orchestrator.processor if orchestrator else DocumentProcessor(
            TextNormalizer(), config.processing.max_workers, config.scoring.min_corpus_chars
        ))
        self.narrative = narrative or NullNarrativeProvider()
        self.retention = retention or RetentionManager(config.retention)
        self.db_scope = db_scope
        self.clock = clock

    def _repository(self, session: Session) -> RfpRepository:
        return RfpRepository(session)

    def resolve_since(self, since: Optional[datetime] = None) -> datetime:
        """Explicit cutoff, else the last run's start, else a week ago."""
        if since is not None:
            return since
        with self.db_scope() as session:
            last = self._repository(session).last_run_date()
        if last is not None:
            return last
        return self.clock() - DEFAULT_LOOKBACK

    async def run(self, since: Optional[datetime] = None) -> RunResult:
        """Discover, acquire, score and persist every new opportunity."""
        return await self._execute("run", since, score=True)

    async def scrape(self, since: Optional[datetime] = None) -> RunResult:
        """Discover, acquire and persist extracted text without scoring."""
        return await self._execute("scrape", since, score=False)

    async def _execute(self, command: str, since: Optional[datetime], score: bool) -> RunResult:
        if self.discovery is None or self.orchestrator is None:
            raise AnalyzerError(f"'{command}' needs a discovery source and an acquisition orchestrator")

        since = self.resolve_since(since)
        with self.db_scope() as session:
            run_id = self._repository(session).start_run(since, command).id
        result = RunResult(since=since, run_id=run_id, started_at=self.clock())
        logger.info("Run started", command=command, run_id=run_id, since=since.isoformat())

        try:
            listings = await self.discovery.discover(since)
            result.discovered = len(listings)

            with self.db_scope() as session:
                known = self._repository(session).known_ids(listing.id for listing in listings)
            fresh = filter_new(listings, since, known)
            logger.info("Discovery complete", discovered=len(listings), new=len(fresh), known=len(known))

            for index, listing in enumerate(fresh, start=1):
                logger.info("Processing opportunity", position=index, total=len(fresh), id=listing.id,
                            title=listing.title)
                result.outcomes.append(await self._process_guarded(listing, score))

        except (AuthError, ListingError) as e:
            result.status = "failed"
            result.errors.append(f"{type(e).__name__}: {e.message}")
            logger.error("Run aborted", command=command, error=str(e))
            self._finish(result)
            raise
        except Exception as e:
            result.status = "failed"
            result.errors.append(f"{type(e).__name__}: {e}")
            logger.exception("Run aborted by unexpected error", command=command, error=str(e))
            self._finish(result)
            raise

        result.status = "completed" if result.failed == 0 else "partial"
        self._finish(result)
        logger.info(
            "Run finished",
            command=command,
            status=result.status,
            discovered=result.discovered,
            processed=len(result.outcomes),
            succeeded=result.succeeded,
            failed=result.failed,
        )
        return result

    async def _process_guarded(self, listing: OpportunityListing, score: bool) -> OpportunityOutcome:
        """Process one opportunity, turning unexpected errors into a failed outcome."""
        try:
            return await self.process(listing, score=score)
        except AuthError:
            raise
        except Exception as e:
            reason = f"unexpected_error: {type(e).__name__}: {e}"
            logger.exception("Opportunity failed unexpectedly", id=listing.id, error=str(e))
            with self.db_scope() as session:
                repo = self._repository(session)
                repo.upsert_listing(listing)
                repo.mark_status(listing.id, "failed", reason)
            return OpportunityOutcome(listing=listing, success=False, failure_reason=reason)

    def _finish(self, result: RunResult) -> None:
        result.finished_at = self.clock()
        with self.db_scope() as session:
            self._repository(session).finish_run(result.run_id, result)

    async def process(self, listing: OpportunityListing, score: bool = True) -> OpportunityOutcome:
        """
        Acquire, normalize and (optionally) score one opportunity.

        Raises:
            AuthError: The session cannot be re-established; fatal to the run
        """
        with self.db_scope() as session:
            self._repository(session).upsert_listing(listing, status="discovered")

        acquisition = await self.orchestrator.acquire(listing)
        if not acquisition.success:
            with self.db_scope() as session:
                repo = self._repository(session)
                repo.upsert_listing(listing)
                repo.mark_status(listing.id, "failed", acquisition.error)
            return OpportunityOutcome(
                listing=listing,
                success=False,
                rejections=acquisition.rejections,
                failure_reason=acquisition.error,
            )

        corpus_result = await self.orchestrator.build_corpus(acquisition)
        rejections = acquisition.rejections + corpus_result.failures
        with self.db_scope() as session:
            repo = self._repository(session)
            repo.upsert_listing(listing, status="acquired")
            repo.save_documents(listing.id, corpus_result.texts)

        outcome = OpportunityOutcome(
            listing=listing,
            success=True,
            documents=corpus_result.corpus.document_count,
            rejections=rejections,
        )
        if not score:
            return outcome

        fit = self.score_corpus(listing, corpus_result.corpus)
        with self.db_scope() as session:
            self._repository(session).save_fit_result(fit)

        outcome.fit = fit
        if fit.failed:
            outcome.success = False
            outcome.failure_reason = fit.error
        return outcome

    def score_corpus(self, listing: OpportunityListing, corpus: Corpus) -> FitResult:
        """
        Score a corpus, refusing ones too small to score.

        The listing title is scored along with the documents but does not
        count toward the minimum corpus size.
        """
        try:
            self.processor.require_sufficient(corpus)
        except InsufficientCorpusError as e:
            logger.warning("Insufficient corpus", id=listing.id, chars=e.char_count, minimum=e.minimum)
            return FitResult.failure(
                listing.id,
                f"InsufficientCorpusError: {e.message}",
                max_score=self.scoring.max_possible_score,
                thresholds=self.config.scoring.thresholds,
            )

        fit = self.scoring.score(with_title(listing, corpus))
        if not fit.failed:
            try:
                fit.narrative = self.narrative.describe(listing, corpus, fit)
            except Exception as e:
                logger.warning("Narrative generation failed", id=listing.id, error=str(e))
        return fit

    async def rescore(self) -> RunResult:
        """Re-score every stored corpus with the current scoring configuration."""
        since = self.clock()
        with self.db_scope() as session:
            repo = self._repository(session)
            run_id = repo.start_run(since, "rescore").id
            ids = repo.ids_with_documents()
        result = RunResult(since=since, run_id=run_id, started_at=since, discovered=len(ids))

        for opportunity_id in ids:
            with self.db_scope() as session:
                repo = self._repository(session)
                listing = repo.get_listing(opportunity_id)
                texts = repo.get_corpus_texts(opportunity_id)
            if listing is None:
                continue

            corpus = combine_texts(opportunity_id, texts)
            fit = self.score_corpus(listing, corpus)
            with self.db_scope() as session:
                self._repository(session).save_fit_result(fit)
            result.outcomes.append(OpportunityOutcome(
                listing=listing,
                success=not fit.failed,
                fit=fit,
                documents=corpus.document_count,
                failure_reason=fit.error,
            ))

        result.status = "completed" if result.failed == 0 else "partial"
        self._finish(result)
        logger.info("Rescore finished", rescored=len(result.outcomes), failed=result.failed)
        return result

    def cleanup(self, dry_run: Optional[bool] = None) -> Dict[str, CleanupReport]:
        """Apply age-based and, when enabled, fit-based retention."""
        reports = {"age": self.retention.cleanup_by_age(dry_run=dry_run)}

        if self.config.retention.cleanup_poor_fits:
            def fit_percentage(opportunity_id: str) -> Optional[int]:
                with self.db_scope() as session:
                    fit = self._repository(session).get_fit_result(opportunity_id, self.config.scoring.thresholds)
                if fit is None or fit.failed:
                    return None
                return fit.percentage

            reports["fit"] = self.retention.cleanup_by_fit(fit_percentage, dry_run=dry_run)
        return reports


def build_coordinator(
    config: Config,
    page,
    narrative: Optional[NarrativeProvider] = None,
) -> RunCoordinator:
    """Wire the live collaborators around one Playwright page."""
    rate_limiter = RateLimiter(config.browser.request_delay)
    session = SessionManager(page, config.site, config.browser, config.selectors, rate_limiter)

    if config.acquisition.discovery_mode == "rss":
        discovery: Discovery = FeedDiscovery(RSSFeedReader(
            config.site.rss_feed_url,
            timeout=config.acquisition.rss_timeout,
            max_items=config.acquisition.rss_max_items,
            user_agent=config.browser.user_agent,
        ))
    else:
        discovery = ListingDiscovery(ListingExtractor(
            session, config.selectors.listing, config.site.category_url, config.acquisition.max_pages
        ))

    processor = DocumentProcessor(TextNormalizer(), config.processing.max_workers, config.scoring.min_corpus_chars)
    orchestrator = AcquisitionOrchestrator(
        session, config.acquisition, config.selectors.download_host_pattern, processor=processor
    )
    return RunCoordinator(
        config,
        discovery=discovery,
        session=session,
        orchestrator=orchestrator,
        processor=processor,
        narrative=narrative,
    )
