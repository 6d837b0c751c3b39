"""
Shared test fixtures: sample intake answers and model response builders.
"""

import json
from typing import Optional

import pytest

from relocation_intake.models.assessment import IntakeAnswers


CANADA_ANSWERS = {
    "destination": "Toronto, Canada",
    "companions": "My spouse and our two kids (8 and 12)",
    "income": "Salaried software engineer, about $80k per year",
    "housing": "Rent a 3-bedroom apartment near good schools",
    "timing": "Within 6 months",
    "priority": "Good schools for the kids and a smooth work permit process",
}

CANADA_CATEGORIES = {
    "goal": "Relocate the family to Toronto for a stable career and good schools",
    "finance": "Salaried income around $80k per year",
    "family": "Spouse and two children aged 8 and 12",
    "housing": "Renting a 3-bedroom apartment near schools",
    "work": "Software engineer, needs a work permit",
    "immigration": "Needs a work permit and family visas",
    "education": None,
    "tax": "Will become Canadian tax resident",
    "healthcare": "Needs provincial health coverage for the family",
    "other": "n/a",
}


def make_response(
    categories: Optional[dict] = None,
    not_applicable: Optional[list] = None,
    questions: Optional[dict] = None,
    fenced: bool = False,
) -> str:
    """Build a model response in the categorization JSON envelope."""
    document = {"categories": categories if categories is not None else {}}
    if not_applicable is not None:
        document["not_applicable"] = not_applicable
    if questions is not None:
        document["questions"] = questions
    text = json.dumps(document)
    return f"```json\n{text}\n```" if fenced else text


def canada_round1_response() -> str:
    return make_response(
        CANADA_CATEGORIES,
        questions={"education": "Which school grades do your kids need?"},
    )


def canada_round2_response() -> str:
    categories = dict(CANADA_CATEGORIES)
    categories["education"] = "Public school places for grades 3 and 7"
    return make_response(categories)


@pytest.fixture
def raw_answers() -> dict:
    return dict(CANADA_ANSWERS)


@pytest.fixture
def intake_answers() -> IntakeAnswers:
    return IntakeAnswers.from_raw(CANADA_ANSWERS)


@pytest.fixture
def response_builder():
    """The make_response helper, for tests that script model output."""
    return make_response


@pytest.fixture
def canada_responses() -> list[str]:
    """Round 1 leaves education open, round 2 resolves it."""
    return [canada_round1_response(), canada_round2_response()]


@pytest.fixture
def canada_categories() -> dict:
    return dict(CANADA_CATEGORIES)
