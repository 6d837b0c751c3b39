"""
Unit tests for the Clarification Tracker.
"""

import pytest

from relocation_intake.agents.clarification_tracker import ClarificationTracker
from relocation_intake.errors import ClarificationValidationError, UnknownClarificationTopic
from relocation_intake.models.assessment import (
    Assessment,
    AssessmentState,
    CategorizedProfile,
    Topic,
)
from relocation_intake.models.config import DEFAULT_QUESTIONS


@pytest.fixture
def tracker():
    return ClarificationTracker()


@pytest.fixture
def awaiting(intake_answers):
    """Assessment waiting on education and tax after round 1."""
    return Assessment(
        answers=intake_answers,
        state=AssessmentState.AWAITING_CLARIFICATION,
        profile=CategorizedProfile(goal="Career move"),
        outstanding_clarifications=[Topic.EDUCATION, Topic.TAX],
    )


class TestBuildQuestions:
    def test_suggestions_win_over_defaults(self, tracker):
        """Test that model questions are used and defaults fill the gaps."""
        # Act
        questions = tracker.build_questions(
            [Topic.TAX, Topic.EDUCATION], {Topic.EDUCATION: "Which grades?", Topic.TAX: "  "}
        )

        # Assert
        assert list(questions) == [Topic.EDUCATION, Topic.TAX]
        assert questions[Topic.EDUCATION] == "Which grades?"
        assert questions[Topic.TAX] == DEFAULT_QUESTIONS[Topic.TAX]

    def test_configured_defaults(self):
        tracker = ClarificationTracker({Topic.TAX: "Where do you pay tax?"})

        assert tracker.build_questions([Topic.TAX]) == {Topic.TAX: "Where do you pay tax?"}


class TestValidateAnswers:
    """Test cases for clarification answer validation."""

    def test_valid_partial_answers(self, tracker, awaiting):
        """Test that answering a subset of outstanding topics is allowed."""
        # Act
        answers = tracker.validate_answers(awaiting, {"tax": "  UK resident "})

        # Assert
        assert answers == {Topic.TAX: "UK resident"}

    def test_empty_map_rejected(self, tracker, awaiting):
        with pytest.raises(ClarificationValidationError):
            tracker.validate_answers(awaiting, {})

    def test_unknown_topic_rejected(self, tracker, awaiting):
        with pytest.raises(UnknownClarificationTopic) as exc_info:
            tracker.validate_answers(awaiting, {"pets": "Two cats"})

        assert exc_info.value.topic == "pets"

    def test_topic_not_outstanding_rejected(self, tracker, awaiting):
        """Test that a known but resolved topic is rejected."""
        with pytest.raises(UnknownClarificationTopic) as exc_info:
            tracker.validate_answers(awaiting, {"goal": "Something else"})

        assert exc_info.value.reason == "topic is not outstanding"

    def test_blank_answer_rejected(self, tracker, awaiting):
        with pytest.raises(ClarificationValidationError):
            tracker.validate_answers(awaiting, {"education": "   "})

    def test_validation_does_not_mutate(self, tracker, awaiting):
        # Arrange
        before = awaiting.model_copy(deep=True)

        # Act
        with pytest.raises(ClarificationValidationError):
            tracker.validate_answers(awaiting, {"education": "Grades 3 and 7", "tax": ""})

        # Assert
        assert awaiting == before


class TestQuestionLog:
    """Test cases for Q&A log bookkeeping."""

    def test_record_questions_and_answers(self, tracker, awaiting):
        """Test that questions are logged per round and answers attached."""
        # Arrange
        questions = tracker.build_questions(awaiting.outstanding_clarifications)

        # Act
        tracker.record_questions(awaiting, questions)
        tracker.record_answers(awaiting, {Topic.EDUCATION: "Grades 3 and 7"}, asked_round=1)

        # Assert
        assert awaiting.pending_questions == questions
        assert [e.id for e in awaiting.qa_log] == [
            f"{awaiting.id}-r1-education",
            f"{awaiting.id}-r1-tax",
        ]
        answered = awaiting.answered_entries()
        assert len(answered) == 1
        assert answered[0].answer == "Grades 3 and 7"
        assert answered[0].answered_at is not None

    def test_merge_answers_overwrites_topic(self, tracker):
        # Arrange
        profile = CategorizedProfile(goal="Career move", tax="Unclear")

        # Act
        merged = tracker.merge_answers(profile, {Topic.TAX: "UK resident"})

        # Assert
        assert merged.tax == "UK resident"
        assert merged.goal == "Career move"
