"""
Assessment Repository Module

Record store for Assessments with optimistic concurrency. Every save names the
revision it was based on; a save against a newer stored revision is rejected
with StaleRound, and a stored complete assessment is never overwritten.

Example Usage:
    from relocation_intake.utils.assessment_repository import JsonlAssessmentRepository

    repository = JsonlAssessmentRepository("data/assessments.jsonl")
    repository.create(assessment)

    working = repository.get(assessment.id)
    working.current_round += 1
    repository.save(working, expected_revision=working.revision)
"""

import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, Optional

import jsonlines
import structlog
from pydantic import ValidationError

from relocation_intake.errors import AssessmentAlreadyComplete, AssessmentNotFound, StaleRound
from relocation_intake.models.assessment import Assessment

logger = structlog.get_logger(__name__)


class AssessmentRepository(ABC):
    """Abstract record store. Returned assessments are always copies."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @abstractmethod
    def _load(self, assessment_id: str) -> Optional[Assessment]:
        """Return the stored record or None."""

    @abstractmethod
    def _store(self, assessment: Assessment) -> None:
        """Persist a record, replacing any previous revision."""

    @abstractmethod
    def _ids(self) -> list[str]:
        """Ids of every stored assessment."""

    def create(self, assessment: Assessment) -> Assessment:
        """
        Store a new assessment at revision 0.

        Raises:
            StaleRound: If an assessment with the same id already exists
        """
        with self._lock:
            if self._load(assessment.id) is not None:
                raise StaleRound(assessment.id, reason="assessment already exists")
            record = assessment.model_copy(update={"revision": 0}, deep=True)
            self._store(record)

        logger.info("assessment_created", assessment_id=assessment.id)
        return record.model_copy(deep=True)

    def get(self, assessment_id: str) -> Assessment:
        """
        Fetch an assessment.

        Raises:
            AssessmentNotFound: If no assessment has this id
        """
        with self._lock:
            record = self._load(assessment_id)
        if record is None:
            raise AssessmentNotFound(assessment_id)
        return record.model_copy(deep=True)

    def save(self, assessment: Assessment, expected_revision: int) -> Assessment:
        """
        Replace the stored record if it is still at `expected_revision`.

        Returns:
            The stored record with its revision incremented

        Raises:
            AssessmentNotFound: If the assessment was never created
            AssessmentAlreadyComplete: If the stored record is already complete
            StaleRound: If another write landed since `expected_revision`
        """
        with self._lock:
            stored = self._load(assessment.id)
            if stored is None:
                raise AssessmentNotFound(assessment.id)
            if stored.is_complete:
                raise AssessmentAlreadyComplete(assessment.id)
            if stored.revision != expected_revision:
                raise StaleRound(
                    assessment.id,
                    reason=(
                        f"revision {expected_revision} is stale, "
                        f"stored revision is {stored.revision}"
                    ),
                )

            record = assessment.model_copy(
                update={"revision": expected_revision + 1}, deep=True
            )
            self._store(record)

        logger.debug(
            "assessment_saved",
            assessment_id=assessment.id,
            revision=record.revision,
            state=record.state.value,
        )
        return record.model_copy(deep=True)

    def list_ids(self) -> list[str]:
        with self._lock:
            return self._ids()

    def __iter__(self) -> Iterator[Assessment]:
        for assessment_id in self.list_ids():
            yield self.get(assessment_id)


class InMemoryAssessmentRepository(AssessmentRepository):
    """Dictionary-backed repository for tests and single-process use."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, Assessment] = {}

    def _load(self, assessment_id: str) -> Optional[Assessment]:
        return self._records.get(assessment_id)

    def _store(self, assessment: Assessment) -> None:
        self._records[assessment.id] = assessment

    def _ids(self) -> list[str]:
        return list(self._records)


class JsonlAssessmentRepository(AssessmentRepository):
    """
    Append-only jsonlines file. Each save appends the full record; on load the
    latest line per id wins.
    """

    def __init__(self, path: Path | str = Path("data/assessments.jsonl")):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._records = self._read_file()

    def _read_file(self) -> dict[str, Assessment]:
        """
        Replay the file into the latest record per id.

        Raises:
            IOError: If the file is corrupted
        """
        records: dict[str, Assessment] = {}
        if not self.path.exists():
            return records

        try:
            with jsonlines.open(self.path) as reader:
                for line in reader:
                    record = Assessment.model_validate(line)
                    records[record.id] = record
        except (json.JSONDecodeError, jsonlines.InvalidLineError) as e:
            raise IOError(f"Corrupted assessment file {self.path}: {e}") from e
        except ValidationError as e:
            raise IOError(f"Invalid assessment record in {self.path}: {e}") from e

        logger.info("assessments_loaded", path=str(self.path), count=len(records))
        return records

    def _load(self, assessment_id: str) -> Optional[Assessment]:
        return self._records.get(assessment_id)

    def _store(self, assessment: Assessment) -> None:
        try:
            with jsonlines.open(self.path, mode="a") as writer:
                writer.write(assessment.model_dump(mode="json"))
        except OSError as e:
            raise IOError(f"Failed to save assessment {assessment.id}: {e}") from e
        self._records[assessment.id] = assessment

    def _ids(self) -> list[str]:
        return list(self._records)
