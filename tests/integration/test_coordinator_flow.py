"""
Integration tests for AssessmentCoordinator: intake, clarification rounds and
matching against the shipped package catalog, with a scripted model gateway.
"""

import asyncio

import pytest

from relocation_intake.errors import (
    AssessmentAlreadyComplete,
    AssessmentIncomplete,
    CategorizationParseError,
    IntakeValidationError,
    InvalidTransition,
    StaleRound,
    UnknownClarificationTopic,
    UpstreamRejected,
    UpstreamUnavailable,
)
from relocation_intake.models.assessment import AssessmentState, Topic
from relocation_intake.models.package import ComplexityLevel, FamilySize, IncomeLevel
from relocation_intake.utils.assessment_repository import JsonlAssessmentRepository


class TestCanadaFamilyMove:
    """A family of four moving to Toronto, resolved in two rounds."""

    @pytest.mark.asyncio
    async def test_complete_after_second_round(
        self, coordinator, gateway, raw_answers, canada_responses
    ):
        # Arrange
        gateway.generate.side_effect = canada_responses

        # Act
        first = await coordinator.submit_intake(raw_answers)
        final = await coordinator.submit_clarification(
            first.id, {"education": "Grades 3 and 7"}, expected_round=1
        )

        # Assert
        assert first.state == AssessmentState.AWAITING_CLARIFICATION
        assert first.current_round == 1
        assert first.outstanding_clarifications == [Topic.EDUCATION]
        assert first.pending_questions == {
            Topic.EDUCATION: "Which school grades do your kids need?"
        }

        assert final.state == AssessmentState.COMPLETE
        assert final.is_complete is True
        assert final.current_round == 2
        assert final.outstanding_clarifications == []
        assert final.profile.education == "Public school places for grades 3 and 7"
        assert final.not_applicable == [Topic.OTHER]
        assert [(e.id, e.answer) for e in final.qa_log] == [
            (f"{first.id}-r1-education", "Grades 3 and 7")
        ]
        assert gateway.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_matches_tie_broken_by_price(
        self, coordinator, gateway, raw_answers, canada_responses
    ):
        """Test that professional and premium tie on score and the cheaper one leads."""
        # Arrange
        gateway.generate.side_effect = canada_responses
        first = await coordinator.submit_intake(raw_answers)
        await coordinator.submit_clarification(
            first.id, {"education": "Grades 3 and 7"}, expected_round=1
        )

        # Act
        result = coordinator.get_matches(first.id)

        # Assert
        assert result.ranked_ids() == ["professional", "premium", "essentials"]
        assert [m.score for m in result.matches] == pytest.approx([0.5, 0.5, 0.0])
        assert result.dimensions.income_level == IncomeLevel.MEDIUM
        assert result.dimensions.family_size == FamilySize.FAMILY
        assert result.dimensions.complexity_level == ComplexityLevel.COMPLEX
        assert result.matches[0].missing_services[0].value == "education_planning"
        assert result.matches[1].missing_services == ()

    @pytest.mark.asyncio
    async def test_single_round_exhausts(
        self, coordinator_factory, gateway, raw_answers, canada_responses
    ):
        """Test that with one round the open topic is accepted as unresolved."""
        # Arrange
        coordinator = coordinator_factory(max_rounds=1)
        gateway.generate.return_value = canada_responses[0]

        # Act
        assessment = await coordinator.submit_intake(raw_answers)
        result = coordinator.get_matches(assessment.id)

        # Assert
        assert assessment.state == AssessmentState.ROUNDS_EXHAUSTED
        assert assessment.is_complete is True
        assert assessment.outstanding_clarifications == []
        assert assessment.accepted_unresolved == [Topic.EDUCATION]
        assert assessment.pending_questions == {}
        assert result.dimensions.complexity_level == ComplexityLevel.COMPLEX

    @pytest.mark.asyncio
    async def test_persisted_to_jsonl(
        self, coordinator_factory, gateway, raw_answers, canada_responses, tmp_path
    ):
        # Arrange
        path = tmp_path / "assessments.jsonl"
        coordinator = coordinator_factory(repo=JsonlAssessmentRepository(path))
        gateway.generate.side_effect = canada_responses

        # Act
        first = await coordinator.submit_intake(raw_answers)
        await coordinator.submit_clarification(
            first.id, {"education": "Grades 3 and 7"}, expected_round=1
        )

        # Assert
        reloaded = JsonlAssessmentRepository(path).get(first.id)
        assert reloaded.state == AssessmentState.COMPLETE
        assert reloaded.revision == 2
        assert reloaded.qa_log[0].answer == "Grades 3 and 7"


class TestRejectedSubmissions:
    """Submissions rejected without touching the stored assessment."""

    @pytest.mark.asyncio
    async def test_invalid_intake_stores_nothing(self, coordinator, gateway, repository, raw_answers):
        # Arrange
        raw_answers["timing"] = "   "

        # Act & Assert
        with pytest.raises(IntakeValidationError) as exc_info:
            await coordinator.submit_intake(raw_answers)

        assert list(exc_info.value.errors) == ["timing"]
        assert repository.list_ids() == []
        gateway.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_clarification_after_complete(
        self, coordinator, gateway, raw_answers, canada_responses
    ):
        # Arrange
        gateway.generate.side_effect = canada_responses
        first = await coordinator.submit_intake(raw_answers)
        final = await coordinator.submit_clarification(
            first.id, {"education": "Grades 3 and 7"}, expected_round=1
        )

        # Act & Assert
        with pytest.raises(AssessmentAlreadyComplete):
            await coordinator.submit_clarification(
                first.id, {"education": "Private school"}, expected_round=2
            )

        assert coordinator.get_assessment(first.id) == final
        assert gateway.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_wrong_round_is_stale(self, coordinator, gateway, raw_answers, canada_responses):
        # Arrange
        gateway.generate.return_value = canada_responses[0]
        first = await coordinator.submit_intake(raw_answers)

        # Act & Assert
        with pytest.raises(StaleRound) as exc_info:
            await coordinator.submit_clarification(
                first.id, {"education": "Grades 3 and 7"}, expected_round=2
            )

        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 1
        assert coordinator.get_assessment(first.id) == first

    @pytest.mark.asyncio
    async def test_unknown_topic(self, coordinator, gateway, raw_answers, canada_responses):
        # Arrange
        gateway.generate.return_value = canada_responses[0]
        first = await coordinator.submit_intake(raw_answers)

        # Act & Assert
        with pytest.raises(UnknownClarificationTopic):
            await coordinator.submit_clarification(
                first.id, {"pets": "Two cats"}, expected_round=1
            )

        assert coordinator.get_assessment(first.id) == first

    @pytest.mark.asyncio
    async def test_matches_before_complete(self, coordinator, gateway, raw_answers, canada_responses):
        gateway.generate.return_value = canada_responses[0]
        first = await coordinator.submit_intake(raw_answers)

        with pytest.raises(AssessmentIncomplete):
            coordinator.get_matches(first.id)

    @pytest.mark.asyncio
    async def test_concurrent_submission_is_stale(
        self, coordinator, gateway, raw_answers, canada_responses
    ):
        """Test that a second submission during an in-flight round is rejected."""
        # Arrange
        gateway.generate.return_value = canada_responses[0]
        first = await coordinator.submit_intake(raw_answers)

        release = asyncio.Event()

        async def slow_round_two(**kwargs):
            await release.wait()
            return canada_responses[1]

        gateway.generate.side_effect = slow_round_two
        in_flight = asyncio.create_task(
            coordinator.submit_clarification(
                first.id, {"education": "Grades 3 and 7"}, expected_round=1
            )
        )
        while gateway.generate.await_count < 2:
            await asyncio.sleep(0)

        # Act
        with pytest.raises(StaleRound):
            await coordinator.submit_clarification(
                first.id, {"education": "Grades 4 and 8"}, expected_round=1
            )
        release.set()
        final = await in_flight

        # Assert
        assert final.state == AssessmentState.COMPLETE
        assert final.qa_log[0].answer == "Grades 3 and 7"
        assert gateway.generate.await_count == 2


class TestUpstreamFailures:
    """Test cases for model failures during a round."""

    @pytest.mark.asyncio
    async def test_transient_failure_retried(
        self, coordinator, gateway, raw_answers, canada_responses
    ):
        # Arrange
        gateway.generate.side_effect = [UpstreamUnavailable("503"), canada_responses[0]]

        # Act
        assessment = await coordinator.submit_intake(raw_answers)

        # Assert
        assert assessment.state == AssessmentState.AWAITING_CLARIFICATION
        assert gateway.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_round_one_failure_then_retry(
        self, coordinator, gateway, raw_answers, canada_responses
    ):
        """Test that a failed first round can be re-run for the same assessment."""
        # Arrange
        gateway.generate.side_effect = UpstreamRejected("400 bad request")

        # Act
        with pytest.raises(UpstreamRejected) as exc_info:
            await coordinator.submit_intake(raw_answers)

        assessment_id = exc_info.value.assessment_id
        stored = coordinator.get_assessment(assessment_id)

        gateway.generate.side_effect = None
        gateway.generate.return_value = canada_responses[0]
        retried = await coordinator.retry_categorization(assessment_id)

        # Assert
        assert stored.state == AssessmentState.CREATED
        assert stored.profile is None
        assert stored.revision == 0
        assert retried.state == AssessmentState.AWAITING_CLARIFICATION
        assert retried.current_round == 1

    @pytest.mark.asyncio
    async def test_retry_only_from_created(
        self, coordinator, gateway, raw_answers, canada_responses
    ):
        gateway.generate.return_value = canada_responses[0]
        first = await coordinator.submit_intake(raw_answers)

        with pytest.raises(InvalidTransition):
            await coordinator.retry_categorization(first.id)

    @pytest.mark.asyncio
    async def test_unparseable_response_retried_once(
        self, coordinator, gateway, raw_answers, canada_responses
    ):
        # Arrange
        gateway.generate.side_effect = ["I think you should move!", canada_responses[0]]

        # Act
        assessment = await coordinator.submit_intake(raw_answers)

        # Assert
        assert assessment.outstanding_clarifications == [Topic.EDUCATION]

    @pytest.mark.asyncio
    async def test_clarification_round_failure_keeps_record(
        self, coordinator, gateway, raw_answers, canada_responses
    ):
        """Test that a failed round leaves the stored record as it was."""
        # Arrange
        gateway.generate.return_value = canada_responses[0]
        first = await coordinator.submit_intake(raw_answers)
        gateway.generate.side_effect = ["not json", "still not json"]

        # Act
        with pytest.raises(CategorizationParseError):
            await coordinator.submit_clarification(
                first.id, {"education": "Grades 3 and 7"}, expected_round=1
            )

        # Assert
        stored = coordinator.get_assessment(first.id)
        assert stored == first
        assert stored.answered_entries() == []
