"""End-to-end tests for the run coordinator against the fake site.

Tests cover:
- A full run: discovery, since filtering, acquisition, scoring, persistence
- Re-runs skipping stored opportunities
- Since-date resolution from stored runs
- The listing title scored alongside the documents
- Per-opportunity failures recorded without stopping the batch, including unexpected errors
- Fatal listing, authentication and discovery failures
- Optional narratives
- Scrape followed by rescore
- Fit-based cleanup of stored artifacts
- The shared "new listing" filter and RSS discovery
"""

from datetime import date, datetime, timedelta
from pathlib import Path

import pytest

from rfpmart_analyzer.database.models import Run
from rfpmart_analyzer.database.repositories import RfpRepository
from rfpmart_analyzer.exceptions import AnalyzerError, AuthError, ListingError
from rfpmart_analyzer.models import Corpus, OpportunityListing, Tier
from rfpmart_analyzer.pipeline.coordinator import RunCoordinator, build_coordinator, filter_new
from rfpmart_analyzer.pipeline.discovery import FeedDiscovery

from conftest import BASE_URL, CATEGORY_URL, LOGO_TEXT, make_pdf, make_zip

FILES_HOST = "https://files.rfpmart.com"
SINCE = datetime(2024, 9, 30)

WEB_URL = f"{BASE_URL}/rfp-web-1.html"
LOGO_URL = f"{BASE_URL}/rfp-logo-2.html"
OLD_URL = f"{BASE_URL}/rfp-old-3.html"

# No institution terms; the listing title supplies them
BUNDLE_TEXT = (
    "The selected firm will redesign the public website on Drupal, migrate existing content and train "
    "staff. Total compensation shall not to exceed $120,000 for the full engagement."
)

LISTING_HTML = f"""
<html><body>
<div class="rfp-list">
  <div class="rfp-item">
    <h3><a href="{WEB_URL}">State University Website Redesign</a></h3>
    <span class="date-posted">Posted Date: 10/01/2024</span>
  </div>
  <div class="rfp-item">
    <h3><a href="{LOGO_URL}">City Logo Refresh</a></h3>
    <span class="date-posted">Posted Date: 10/02/2024</span>
  </div>
  <div class="rfp-item">
    <h3><a href="{OLD_URL}">Old Portal Refresh</a></h3>
    <span class="date-posted">Posted Date: 09/01/2024</span>
  </div>
</div>
</body></html>
"""


def detail_page(file_url=None):
    link = f'<a href="{file_url}">Download</a>' if file_url else '<a href="/about.html">About</a>'
    return f'<html><body><a href="/">Home</a>{link}</body></html>'


@pytest.fixture
def populated_site(site):
    """The category listing with a web redesign bundle and a logo brief."""
    site.add_page(CATEGORY_URL, LISTING_HTML)

    bundle_url = f"{FILES_HOST}/web-1/bundle.zip"
    site.add_page(WEB_URL, detail_page(bundle_url))
    site.add_file(bundle_url, make_zip({"scope.pdf": make_pdf(BUNDLE_TEXT), "readme.exe": b"MZ"}),
                  "application/zip")

    brief_url = f"{FILES_HOST}/logo-2/brief.txt"
    site.add_page(LOGO_URL, detail_page(brief_url))
    site.add_file(brief_url, LOGO_TEXT.encode("utf-8"), "text/plain")

    site.add_page(OLD_URL, detail_page())
    return site


@pytest.fixture
def coordinator(config, page, populated_site, database):
    return build_coordinator(config, page)


def outcome_by_title(result, title):
    return next(outcome for outcome in result.outcomes if outcome.listing.title == title)


class FixedNarrative:
    def describe(self, listing, corpus, fit):
        return f"{listing.title} fits at {fit.percentage}%"


class BrokenNarrative:
    def describe(self, listing, corpus, fit):
        raise RuntimeError("narrative service unavailable")


# --- Full run ---


@pytest.mark.asyncio
async def test_run_scores_new_opportunities(coordinator, database):
    result = await coordinator.run(since=SINCE)

    assert result.status == "completed"
    assert result.discovered == 3
    assert [outcome.listing.title for outcome in result.outcomes] == [
        "State University Website Redesign", "City Logo Refresh",
    ]

    web = outcome_by_title(result, "State University Website Redesign")
    assert web.success
    assert web.documents == 1
    assert web.fit.tier is Tier.HIGH
    assert web.fit.percentage >= 75
    assert [rejection.filename for rejection in web.rejections] == ["readme.exe"]

    logo = outcome_by_title(result, "City Logo Refresh")
    assert logo.success
    assert logo.fit.tier is Tier.SKIP
    assert logo.fit.red_flags

    with database() as session:
        repo = RfpRepository(session)
        assert repo.count() == 2
        assert repo.get_by_id(web.listing.id).status == "scored"
        assert repo.get_fit_result(web.listing.id).tier is Tier.HIGH
        run = session.get(Run, result.run_id)
        assert run.status == "completed"
        assert run.discovered == 3
        assert run.succeeded == 2


@pytest.mark.asyncio
async def test_rerun_skips_stored_opportunities(coordinator):
    await coordinator.run(since=SINCE)
    second = await coordinator.run(since=SINCE)

    assert second.discovered == 3
    assert second.outcomes == []
    assert second.status == "completed"


@pytest.mark.asyncio
async def test_memory_mode_writes_no_artifacts(coordinator, config):
    await coordinator.run(since=SINCE)
    assert not Path(config.acquisition.download_dir).exists()


# --- Since resolution ---


def test_since_defaults_to_a_week_back_on_an_empty_database(config, database):
    now = datetime(2024, 10, 10, 9, 0)
    coordinator = RunCoordinator(config, clock=lambda: now)

    assert coordinator.resolve_since() == now - timedelta(days=7)
    assert coordinator.resolve_since(SINCE) == SINCE


@pytest.mark.asyncio
async def test_since_defaults_to_the_last_run_start(coordinator, database):
    before = datetime.now()
    result = await coordinator.run(since=SINCE)

    with database() as session:
        started = session.get(Run, result.run_id).started_at

    assert started >= before
    assert coordinator.resolve_since() == started


# --- Listing title ---


@pytest.mark.asyncio
async def test_listing_title_is_scored_with_the_documents(coordinator):
    result = await coordinator.run(since=SINCE)

    web = outcome_by_title(result, "State University Website Redesign")
    scores = {item.category: item.score for item in web.fit.breakdown}

    assert scores["Higher Education Institution"] == 30
    assert scores["Institution Size"] == 10
    assert web.fit.total_score == 95
    assert web.fit.tier is Tier.HIGH


def test_title_does_not_count_toward_the_minimum(coordinator):
    listing = make_listing("RFP-SHORT")
    listing.title = "State University Website Redesign with Drupal Migration and Accessibility Review " * 2
    corpus = Corpus(opportunity_id="RFP-SHORT", combined_text="Drupal redesign.", document_count=1,
                    total_words=2, total_chars=16)

    fit = coordinator.score_corpus(listing, corpus)

    assert fit.failed
    assert fit.error.startswith("InsufficientCorpusError")


# --- Per-opportunity failures ---


@pytest.mark.asyncio
async def test_insufficient_corpus_is_a_failed_outcome(coordinator, populated_site, database):
    short_url = f"{FILES_HOST}/logo-2/brief.txt"
    populated_site.add_file(short_url, b"Too short.", "text/plain")

    result = await coordinator.run(since=SINCE)

    logo = outcome_by_title(result, "City Logo Refresh")
    assert not logo.success
    assert logo.failure_reason.startswith("InsufficientCorpusError")
    assert logo.fit.tier is Tier.SKIP
    assert result.status == "partial"
    assert outcome_by_title(result, "State University Website Redesign").success

    with database() as session:
        assert RfpRepository(session).get_by_id(logo.listing.id).status == "failed"


@pytest.mark.asyncio
async def test_acquisition_failure_does_not_stop_the_batch(coordinator, populated_site, database):
    populated_site.add_page(WEB_URL, detail_page())

    result = await coordinator.run(since=SINCE)

    web = outcome_by_title(result, "State University Website Redesign")
    assert not web.success
    assert web.fit is None
    assert web.failure_reason.startswith("no_download_link")
    assert outcome_by_title(result, "City Logo Refresh").success
    assert result.status == "partial"

    with database() as session:
        stored = RfpRepository(session).get_by_id(web.listing.id)
        assert stored.status == "failed"
        assert stored.failure_reason.startswith("no_download_link")


@pytest.mark.asyncio
async def test_unexpected_error_fails_only_that_opportunity(coordinator, database, monkeypatch):
    build_corpus = coordinator.orchestrator.build_corpus

    async def fail_for_web(acquisition):
        if acquisition.listing.title == "State University Website Redesign":
            raise RuntimeError("parser crashed")
        return await build_corpus(acquisition)

    monkeypatch.setattr(coordinator.orchestrator, "build_corpus", fail_for_web)

    result = await coordinator.run(since=SINCE)

    web = outcome_by_title(result, "State University Website Redesign")
    assert not web.success
    assert web.failure_reason == "unexpected_error: RuntimeError: parser crashed"
    assert outcome_by_title(result, "City Logo Refresh").success
    assert result.status == "partial"

    with database() as session:
        assert RfpRepository(session).get_by_id(web.listing.id).status == "failed"
        assert session.get(Run, result.run_id).status == "partial"


# --- Fatal failures ---


@pytest.mark.asyncio
async def test_unreachable_listing_aborts_the_run(coordinator, populated_site, config, database):
    populated_site.failing_urls.add(CATEGORY_URL)

    with pytest.raises(ListingError):
        await coordinator.run(since=SINCE)

    with database() as session:
        run = session.query(Run).one()
        assert run.status == "failed"
        assert run.errors and run.errors[0].startswith("ListingError")
        assert RfpRepository(session).last_run_date() is None


@pytest.mark.asyncio
async def test_rejected_credentials_abort_the_run(coordinator, populated_site, database):
    populated_site.password = "rotated"

    with pytest.raises(AuthError):
        await coordinator.run(since=SINCE)

    with database() as session:
        assert session.query(Run).one().status == "failed"
        assert RfpRepository(session).count() == 0


@pytest.mark.asyncio
async def test_unexpected_discovery_error_finishes_the_run(coordinator, database, monkeypatch):
    async def broken_discover(since):
        raise RuntimeError("selector engine crashed")

    monkeypatch.setattr(coordinator.discovery, "discover", broken_discover)

    with pytest.raises(RuntimeError):
        await coordinator.run(since=SINCE)

    with database() as session:
        run = session.query(Run).one()
        assert run.status == "failed"
        assert run.finished_at is not None
        assert run.errors == ["RuntimeError: selector engine crashed"]


@pytest.mark.asyncio
async def test_run_without_discovery_is_refused(config, database):
    with pytest.raises(AnalyzerError):
        await RunCoordinator(config).run(since=SINCE)


# --- Narratives ---


@pytest.mark.asyncio
async def test_narrative_is_attached(config, page, populated_site, database):
    coordinator = build_coordinator(config, page, narrative=FixedNarrative())

    result = await coordinator.run(since=SINCE)

    web = outcome_by_title(result, "State University Website Redesign")
    assert web.fit.narrative == f"State University Website Redesign fits at {web.fit.percentage}%"


@pytest.mark.asyncio
async def test_failing_narrative_is_ignored(config, page, populated_site, database):
    coordinator = build_coordinator(config, page, narrative=BrokenNarrative())

    result = await coordinator.run(since=SINCE)

    assert result.status == "completed"
    assert all(outcome.fit.narrative is None for outcome in result.outcomes)


# --- Scrape and rescore ---


@pytest.mark.asyncio
async def test_scrape_then_rescore(coordinator, database):
    scraped = await coordinator.scrape(since=SINCE)

    assert scraped.status == "completed"
    assert all(outcome.fit is None for outcome in scraped.outcomes)
    web_id = outcome_by_title(scraped, "State University Website Redesign").listing.id
    with database() as session:
        repo = RfpRepository(session)
        assert repo.get_by_id(web_id).status == "acquired"
        assert repo.get_fit_result(web_id) is None
        assert [text.source_filename for text in repo.get_corpus_texts(web_id)] == ["scope.pdf"]

    rescored = await coordinator.rescore()

    assert rescored.status == "completed"
    assert len(rescored.outcomes) == 2
    assert outcome_by_title(rescored, "State University Website Redesign").fit.tier is Tier.HIGH
    with database() as session:
        repo = RfpRepository(session)
        assert repo.get_by_id(web_id).status == "scored"
        # Rescoring does not move the discovery cutoff
        assert repo.last_run_date() == session.get(Run, scraped.run_id).started_at


# --- Cleanup ---


@pytest.mark.asyncio
async def test_cleanup_removes_poor_fits_only(coordinator, config):
    result = await coordinator.run(since=SINCE)
    web_id = outcome_by_title(result, "State University Website Redesign").listing.id
    logo_id = outcome_by_title(result, "City Logo Refresh").listing.id

    data_dir = Path(config.retention.data_dir)
    for name in (web_id, logo_id, "RFP-UNKNOWN"):
        directory = data_dir / name
        directory.mkdir(parents=True)
        (directory / "bundle.zip").write_bytes(b"x" * 10)
        (directory / "fit-analysis.json").write_text("{}")

    reports = coordinator.cleanup()

    assert reports["age"].deleted == []
    assert reports["fit"].deleted == [logo_id]
    assert sorted(reports["fit"].kept) == sorted([web_id, "RFP-UNKNOWN"])
    assert not (data_dir / logo_id / "bundle.zip").exists()
    assert (data_dir / logo_id / "fit-analysis.json").exists()
    assert (data_dir / web_id / "bundle.zip").exists()


def test_cleanup_skips_fit_pass_when_disabled(config, database):
    config.retention.cleanup_poor_fits = False
    assert list(RunCoordinator(config).cleanup(dry_run=True)) == ["age"]


# --- New-listing filter ---


def make_listing(listing_id, posted=None):
    return OpportunityListing(id=listing_id, title=listing_id, detail_ref=f"{BASE_URL}/{listing_id}.html",
                              posted_date=posted)


def test_filter_new_drops_known_old_and_duplicate_listings():
    listings = [
        make_listing("RFP-A", date(2024, 10, 2)),
        make_listing("RFP-B", date(2024, 9, 1)),
        make_listing("RFP-C", date(2024, 10, 3)),
        make_listing("RFP-A", date(2024, 10, 2)),
        make_listing("RFP-D"),
    ]

    fresh = filter_new(listings, datetime(2024, 10, 1, 15, 30), known_ids={"RFP-C"})

    assert [listing.id for listing in fresh] == ["RFP-A", "RFP-D"]


def test_filter_new_compares_dates_not_times():
    listing = make_listing("RFP-A", date(2024, 10, 1))
    assert filter_new([listing], datetime(2024, 10, 1, 23, 59), set()) == [listing]


# --- RSS discovery ---


class FakeReader:
    def __init__(self, records):
        self.records = records
        self.requested = []

    async def fetch(self, since=None):
        self.requested.append(since)
        return self.records


@pytest.mark.asyncio
async def test_feed_discovery_passes_the_cutoff_date():
    record = make_listing("RFP-FEED", date(2024, 10, 2))
    reader = FakeReader([record])

    records = await FeedDiscovery(reader).discover(datetime(2024, 10, 1, 8, 0))

    assert records == [record]
    assert reader.requested == [date(2024, 10, 1)]


def test_rss_discovery_mode_is_wired(config, page, database):
    config.acquisition.discovery_mode = "rss"
    coordinator = build_coordinator(config, page)

    assert isinstance(coordinator.discovery, FeedDiscovery)
    assert coordinator.discovery.reader.feed_url == config.site.rss_feed_url
