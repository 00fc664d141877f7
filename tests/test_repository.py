"""Tests for the SQLAlchemy persistence layer."""

from datetime import date, datetime

import pytest
from sqlalchemy.exc import IntegrityError

from rfpmart_analyzer.config import TierThresholds
from rfpmart_analyzer.database.connection import check_database_connection
from rfpmart_analyzer.database.models import DocumentText, Opportunity, Run
from rfpmart_analyzer.database.repositories import RfpRepository
from rfpmart_analyzer.models import (
    ExtractedText,
    FitResult,
    OpportunityListing,
    Polarity,
    RunResult,
    ScoreBreakdown,
    Tier,
)


def make_listing(listing_id: str = "RFP-1", title: str = "Website Redesign") -> OpportunityListing:
    return OpportunityListing(
        id=listing_id,
        title=title,
        detail_ref=f"https://www.rfpmart.com/{listing_id.lower()}.html",
        posted_date=date(2024, 10, 1),
        due_date=date(2024, 11, 1),
    )


def make_fit(listing_id: str = "RFP-1", percentage: int = 80) -> FitResult:
    return FitResult(
        opportunity_id=listing_id,
        total_score=90,
        max_score=112,
        percentage=percentage,
        breakdown=[
            ScoreBreakdown("CMS Platform", 20, 20, "Preferred CMS: drupal", Polarity.POSITIVE),
            ScoreBreakdown("Red Flags", 0, 0, "No red flags identified"),
        ],
        advantages=["CMS Platform: Preferred CMS: drupal"],
        reasoning="Score: 80% - uses preferred CMS (drupal).",
    )


# --- Listings ---


def test_upsert_is_keyed_by_id(database):
    with database() as session:
        repo = RfpRepository(session)
        repo.upsert_listing(make_listing(), status="discovered")
        repo.upsert_listing(make_listing(title="Website Redesign (Amended)"))

    with database() as session:
        repo = RfpRepository(session)
        assert repo.count() == 1
        stored = repo.get_by_id("RFP-1")
        assert stored.title == "Website Redesign (Amended)"
        assert stored.status == "discovered"
        assert stored.posted_date == date(2024, 10, 1)


def test_get_listing_round_trip(database):
    listing = make_listing()
    listing.download_ref = "https://files.rfpmart.com/1/bundle.zip"
    with database() as session:
        RfpRepository(session).upsert_listing(listing)

    with database() as session:
        assert RfpRepository(session).get_listing("RFP-1") == listing
        assert RfpRepository(session).get_listing("RFP-404") is None


def test_known_ids(database):
    with database() as session:
        repo = RfpRepository(session)
        repo.upsert_listing(make_listing("RFP-1"))
        repo.upsert_listing(make_listing("RFP-2"))
        repo.mark_status("RFP-2", "failed", "navigation_failed: timeout")

    with database() as session:
        repo = RfpRepository(session)
        assert repo.known_ids() == {"RFP-1", "RFP-2"}
        assert repo.known_ids(["RFP-2", "RFP-3"]) == {"RFP-2"}
        assert repo.known_ids([]) == set()
        assert repo.get_by_id("RFP-2").failure_reason == "navigation_failed: timeout"


# --- Documents ---


def test_save_documents_replaces_previous_text(database):
    first = [ExtractedText.build("a.pdf", "first version", "pdf", page_count=2)]
    second = [
        ExtractedText.build("b.docx", "second one", "docx"),
        ExtractedText.build("c.txt", "third", "txt"),
    ]
    with database() as session:
        repo = RfpRepository(session)
        repo.upsert_listing(make_listing())
        repo.save_documents("RFP-1", first)
        repo.save_documents("RFP-1", second)

    with database() as session:
        repo = RfpRepository(session)
        texts = repo.get_corpus_texts("RFP-1")
        assert [text.source_filename for text in texts] == ["b.docx", "c.txt"]
        assert texts[0].word_count == 2
        assert repo.ids_with_documents() == ["RFP-1"]


# --- Fit results ---


def test_fit_result_round_trip(database):
    with database() as session:
        repo = RfpRepository(session)
        repo.upsert_listing(make_listing())
        repo.save_fit_result(make_fit())

    with database() as session:
        repo = RfpRepository(session)
        loaded = repo.get_fit_result("RFP-1")
        assert loaded.percentage == 80
        assert loaded.tier is Tier.HIGH
        assert loaded.breakdown[0].polarity is Polarity.POSITIVE
        assert loaded.breakdown[1].polarity is Polarity.NEUTRAL
        assert loaded.advantages == ["CMS Platform: Preferred CMS: drupal"]
        assert repo.get_by_id("RFP-1").status == "scored"

        strict = repo.get_fit_result("RFP-1", TierThresholds(high=90, medium=60, low=30))
        assert strict.tier is Tier.MEDIUM


def test_failed_fit_marks_opportunity_failed(database):
    with database() as session:
        repo = RfpRepository(session)
        repo.upsert_listing(make_listing())
        repo.save_fit_result(FitResult.failure("RFP-1", "InsufficientCorpusError: too short", 112))

    with database() as session:
        repo = RfpRepository(session)
        assert repo.get_by_id("RFP-1").status == "failed"
        assert repo.get_fit_result("RFP-1").failed


def test_deleting_an_opportunity_cascades(database):
    with database() as session:
        repo = RfpRepository(session)
        repo.upsert_listing(make_listing())
        repo.save_documents("RFP-1", [ExtractedText.build("a.txt", "text", "txt")])
        repo.save_fit_result(make_fit())

    with database() as session:
        assert RfpRepository(session).delete_opportunity("RFP-1")

    with database() as session:
        assert session.query(DocumentText).count() == 0
        assert RfpRepository(session).get_fit_result("RFP-1") is None
        assert session.get(Opportunity, "RFP-1") is None


# --- Runs ---


def finish(repo: RfpRepository, run: Run, status: str) -> None:
    result = RunResult(since=run.since_date, run_id=run.id, status=status)
    repo.finish_run(run.id, result)


def test_last_run_date_ignores_failed_and_rescore_runs(database):
    with database() as session:
        repo = RfpRepository(session)
        assert repo.last_run_date() is None

        completed = repo.start_run(datetime(2024, 9, 1), "run")
        completed.started_at = datetime(2024, 10, 1, 8, 0)
        finish(repo, completed, "completed")

        partial = repo.start_run(datetime(2024, 10, 1), "scrape")
        partial.started_at = datetime(2024, 10, 5, 8, 0)
        finish(repo, partial, "partial")

        failed = repo.start_run(datetime(2024, 10, 5), "run")
        failed.started_at = datetime(2024, 10, 9, 8, 0)
        finish(repo, failed, "failed")

        rescore = repo.start_run(datetime(2024, 10, 10), "rescore")
        rescore.started_at = datetime(2024, 10, 10, 8, 0)
        finish(repo, rescore, "completed")

    with database() as session:
        assert RfpRepository(session).last_run_date() == datetime(2024, 10, 5, 8, 0)


def test_finish_run_records_counts(database):
    with database() as session:
        repo = RfpRepository(session)
        run = repo.start_run(datetime(2024, 10, 1))
        result = RunResult(since=datetime(2024, 10, 1), run_id=run.id, discovered=4, status="partial",
                           errors=["one failed"])
        repo.finish_run(run.id, result)

    with database() as session:
        stored = session.get(Run, run.id)
        assert stored.discovered == 4
        assert stored.status == "partial"
        assert stored.errors == ["one failed"]
        assert stored.finished_at is not None
        assert stored.duration_seconds is not None


def test_finish_unknown_run(database):
    with database() as session:
        assert RfpRepository(session).finish_run(999, RunResult(since=datetime.now())) is None


def test_invalid_status_is_rejected(database):
    with pytest.raises(IntegrityError):
        with database() as session:
            repo = RfpRepository(session)
            repo.upsert_listing(make_listing(), status="archived")


def test_connection_check(database):
    assert check_database_connection()


def test_rows_and_listings_serialize(database):
    listing = make_listing()
    with database() as session:
        repo = RfpRepository(session)
        repo.upsert_listing(listing, status="discovered")
        row = repo.get_by_id("RFP-1").to_dict()

    assert row["id"] == "RFP-1"
    assert row["posted_date"] == "2024-10-01"
    assert row["status"] == "discovered"
    assert listing.to_dict()["due_date"] == "2024-11-01"
    assert listing.to_dict()["source"] == "listing"
