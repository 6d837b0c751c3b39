"""
Unit tests for the assessment repositories.
"""

import pytest

from relocation_intake.errors import AssessmentAlreadyComplete, AssessmentNotFound, StaleRound
from relocation_intake.models.assessment import Assessment, AssessmentState
from relocation_intake.utils.assessment_repository import (
    InMemoryAssessmentRepository,
    JsonlAssessmentRepository,
)


@pytest.fixture
def assessment(intake_answers):
    return Assessment(answers=intake_answers)


@pytest.fixture(params=["memory", "jsonl"])
def repository(request, tmp_path):
    if request.param == "memory":
        return InMemoryAssessmentRepository()
    return JsonlAssessmentRepository(tmp_path / "data" / "assessments.jsonl")


class TestCreateAndGet:
    def test_create_stores_revision_zero(self, repository, assessment):
        # Act
        stored = repository.create(assessment)

        # Assert
        assert stored.revision == 0
        assert repository.get(assessment.id) == stored
        assert repository.list_ids() == [assessment.id]

    def test_duplicate_create_rejected(self, repository, assessment):
        repository.create(assessment)

        with pytest.raises(StaleRound):
            repository.create(assessment)

    def test_get_returns_copy(self, repository, assessment):
        """Test that mutating a fetched record does not touch the stored one."""
        # Arrange
        repository.create(assessment)

        # Act
        working = repository.get(assessment.id)
        working.state = AssessmentState.CATEGORIZING

        # Assert
        assert repository.get(assessment.id).state == AssessmentState.CREATED

    def test_unknown_id(self, repository):
        with pytest.raises(AssessmentNotFound):
            repository.get("missing")


class TestSave:
    """Test cases for revision-checked saves."""

    def test_save_increments_revision(self, repository, assessment):
        # Arrange
        repository.create(assessment)
        working = repository.get(assessment.id)
        working.state = AssessmentState.CATEGORIZING

        # Act
        saved = repository.save(working, expected_revision=0)

        # Assert
        assert saved.revision == 1
        assert repository.get(assessment.id).state == AssessmentState.CATEGORIZING

    def test_stale_revision_rejected(self, repository, assessment):
        """Test that the second of two writers based on the same revision loses."""
        # Arrange
        repository.create(assessment)
        first = repository.get(assessment.id)
        second = repository.get(assessment.id)
        repository.save(first, expected_revision=0)

        # Act & Assert
        with pytest.raises(StaleRound):
            repository.save(second, expected_revision=0)

        assert repository.get(assessment.id).revision == 1

    def test_complete_record_never_overwritten(self, repository, assessment):
        # Arrange
        repository.create(assessment)
        working = repository.get(assessment.id)
        working.state = AssessmentState.COMPLETE
        working.is_complete = True
        repository.save(working, expected_revision=0)

        # Act & Assert
        with pytest.raises(AssessmentAlreadyComplete):
            repository.save(working, expected_revision=1)

    def test_save_before_create(self, repository, assessment):
        with pytest.raises(AssessmentNotFound):
            repository.save(assessment, expected_revision=0)


class TestJsonlAssessmentRepository:
    """Test cases for jsonlines persistence."""

    def test_reload_latest_revision_wins(self, tmp_path, assessment):
        # Arrange
        path = tmp_path / "assessments.jsonl"
        repository = JsonlAssessmentRepository(path)
        repository.create(assessment)
        working = repository.get(assessment.id)
        working.state = AssessmentState.CATEGORIZING
        repository.save(working, expected_revision=0)

        # Act
        reloaded = JsonlAssessmentRepository(path)

        # Assert
        record = reloaded.get(assessment.id)
        assert record.revision == 1
        assert record.state == AssessmentState.CATEGORIZING
        assert record.answers == assessment.answers
        assert len(path.read_text(encoding="utf-8").splitlines()) == 2

    def test_corrupted_file_raises(self, tmp_path):
        # Arrange
        path = tmp_path / "assessments.jsonl"
        path.write_text("{not json\n", encoding="utf-8")

        # Act & Assert
        with pytest.raises(IOError, match="Corrupted"):
            JsonlAssessmentRepository(path)

    def test_invalid_record_raises(self, tmp_path):
        path = tmp_path / "assessments.jsonl"
        path.write_text('{"id": "a-1"}\n', encoding="utf-8")

        with pytest.raises(IOError, match="Invalid assessment record"):
            JsonlAssessmentRepository(path)
