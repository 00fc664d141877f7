"""Tests for criteria detection."""

import pytest

from rfpmart_analyzer.analyzers.criteria import (
    CriteriaChecker,
    classify_institution,
    detect_state,
    extract_amounts,
    match_keywords,
)
from rfpmart_analyzer.config import BudgetThresholds, KeywordConfig


@pytest.fixture
def checker() -> CriteriaChecker:
    return CriteriaChecker(KeywordConfig(), BudgetThresholds())


# --- Amounts ---


@pytest.mark.parametrize("text", ["$50k", "$50,000", "$0.05 million", "$50 thousand", "50,000 USD"])
def test_equivalent_amounts_normalize_to_whole_dollars(text):
    assert extract_amounts(text) == [50000]


def test_amounts_are_deduplicated_and_sorted():
    text = "Phase one $50k, phase two $50,000, total not to exceed $1.2M."
    assert extract_amounts(text) == [50000, 1200000]


def test_amounts_outside_bounds_are_ignored():
    assert extract_amounts("Application fee $500; insurance $75,000,000") == []


def test_not_to_exceed_without_dollar_sign():
    assert extract_amounts("The contract is NTE 75,000 for year one") == [75000]
    assert extract_amounts("not-to-exceed amount of 120,000") == [120000]


def test_budget_analysis(checker):
    analysis = checker.analyze_budget("The available budget is $80,000.")

    assert analysis.budget_found
    assert analysis.has_budget_language
    assert analysis.highest_amount == 80000


def test_budget_language_without_amount(checker):
    analysis = checker.analyze_budget("Vendors should state their price.")

    assert not analysis.budget_found
    assert analysis.has_budget_language
    assert analysis.highest_amount is None


# --- Keywords ---


def test_keyword_confidence():
    match = match_keywords("A university and college partnership", ["university", "college", "campus", "school"])

    assert match.matches == ["university", "college"]
    assert match.confidence == 50


def test_keywords_match_whole_words_only():
    assert not match_keywords("Universityville public works", ["university"]).found
    assert match_keywords("UNIVERSITY of the plains", ["university"]).found


def test_multi_word_keywords_span_whitespace():
    assert match_keywords("built on Modern\nCampus today", ["modern campus"]).found


def test_empty_keyword_set():
    match = match_keywords("anything", [])
    assert not match.found
    assert match.confidence == 0


# --- Institution ---


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Lakeside Community College district", "Community College"),
        ("Northern State University", "State University"),
        ("University of the Plains", "University"),
        ("Hill College", "College"),
        ("City of Springfield", None),
    ],
)
def test_classify_institution(text, expected):
    assert classify_institution(text) == expected


def test_institution_analysis(checker):
    analysis = checker.analyze_institution("Northern State University seeks proposals")

    assert analysis.is_higher_education
    assert analysis.institution_type == "State University"
    assert analysis.is_large_institution


def test_non_education_institution(checker):
    analysis = checker.analyze_institution("County water district seeks proposals")

    assert not analysis.is_higher_education
    assert analysis.institution_type is None


# --- Technology ---


def test_preferred_cms_suppresses_acceptable(checker):
    technology = checker.analyze_technology("Current site runs Wix; the new site will use Drupal.")

    assert technology.preferred_cms.matches == ["drupal"]
    assert not technology.acceptable_cms.found


def test_acceptable_cms_alone(checker):
    technology = checker.analyze_technology("We host on Squarespace.")

    assert technology.acceptable_cms.matches == ["squarespace"]


def test_red_flags(checker):
    technology = checker.analyze_technology("This engagement covers hosting only.")

    assert technology.red_flags.matches == ["hosting only"]


def test_characteristics(checker):
    report = checker.analyze("Must meet WCAG 2.1 and offer a REST API for integration.")

    assert report.characteristics == {"accessibility": True, "responsive": False, "api": True}


# --- Location ---


def test_state_by_name():
    assert detect_state("Located in New York City") == "new york"
    assert detect_state("WEST VIRGINIA department") == "west virginia"


def test_state_abbreviation_in_address_position():
    assert detect_state("Austin, TX 78701") == "texas"
    assert detect_state("Mail to PO Box 12, Salem OR 97301") == "oregon"


def test_state_abbreviation_outside_address_is_ignored():
    assert detect_state("Submit IN person OR by mail") is None


def test_preferred_state(checker):
    assert checker.analyze_location("Sacramento, California").is_preferred_state
    location = checker.analyze_location("Portland, Oregon")
    assert location.state == "oregon"
    assert not location.is_preferred_state
