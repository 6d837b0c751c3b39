"""
Assessment Coordinator Module

Entry point for callers of the intake core. Wires the Categorization Engine,
Round Controller, Clarification Tracker and Package Matching Engine to a
repository and a catalog, and serializes transitions per assessment.

Every transition works on a copy of the stored record and is persisted once,
at the end, with the revision it started from. Any failure along the way leaves
the stored record exactly as it was.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

from relocation_intake.agents.categorizer import CategorizationEngine, CategorizationOutcome
from relocation_intake.agents.clarification_tracker import ClarificationTracker
from relocation_intake.agents.package_matcher import PackageMatchingEngine
from relocation_intake.agents.round_controller import RoundController
from relocation_intake.errors import (
    AssessmentAlreadyComplete,
    CategorizationParseError,
    InvalidTransition,
    StaleRound,
    UpstreamError,
)
from relocation_intake.models.assessment import (
    Assessment,
    AssessmentState,
    IntakeAnswers,
    Topic,
)
from relocation_intake.models.config import SystemParams
from relocation_intake.models.package import MatchResult
from relocation_intake.utils.assessment_repository import (
    AssessmentRepository,
    InMemoryAssessmentRepository,
)
from relocation_intake.utils.llm_gateway import LanguageModelGateway
from relocation_intake.utils.llm_helpers import upstream_retrying
from relocation_intake.utils.logger import get_logger
from relocation_intake.utils.package_catalog import JsonPackageCatalog, PackageCatalog
from relocation_intake.utils.prompt_loader import PromptLoader, PromptRegistry
from relocation_intake.utils.validator import ConfigValidator


class AssessmentCoordinator:
    """
    Core interface: intake submission, clarification rounds and matching.

    Assessments are independent of each other. Within one assessment a second
    transition started while the first is still awaiting the model is rejected
    with StaleRound.
    """

    def __init__(
        self,
        gateway: LanguageModelGateway,
        prompts: Optional[PromptRegistry] = None,
        catalog: Optional[PackageCatalog] = None,
        repository: Optional[AssessmentRepository] = None,
        params: Optional[SystemParams] = None,
        loader: Optional[PromptLoader] = None,
        validator: Optional[ConfigValidator] = None,
    ):
        """
        Initialize Assessment Coordinator.

        Args:
            gateway: Language model gateway used for categorization
            prompts: Prompt registry (defaults built from the bundled templates)
            catalog: Package catalog (defaults to config/packages.json)
            repository: Assessment store (defaults to in-memory)
            params: System parameters (defaults to built-in values)
            loader: Prompt loader used for rendering
            validator: Schema validator for model responses
        """
        self.params = params or SystemParams()
        self.prompts = prompts or PromptRegistry.with_defaults(loader)
        self.catalog = catalog or JsonPackageCatalog()
        self.repository = repository or InMemoryAssessmentRepository()

        self.engine = CategorizationEngine(
            gateway,
            self.prompts,
            loader=loader,
            validator=validator,
            gateway_config=self.params.gateway,
        )
        self.controller = RoundController()
        self.tracker = ClarificationTracker(self.params.default_questions)
        self.matcher = PackageMatchingEngine(self.params.matching)

        self._in_flight: set[str] = set()

    @classmethod
    def from_config(
        cls,
        gateway: LanguageModelGateway,
        config_path: Path | str = "config/system_params.json",
        catalog_path: Path | str = "config/packages.json",
        repository: Optional[AssessmentRepository] = None,
    ) -> "AssessmentCoordinator":
        """Build a coordinator from config files on disk."""
        return cls(
            gateway,
            catalog=JsonPackageCatalog(catalog_path),
            repository=repository,
            params=SystemParams.load(config_path),
        )

    async def submit_intake(
        self, raw_answers: Mapping[str, Any], timeout: Optional[float] = None
    ) -> Assessment:
        """
        Validate the intake answers, create an assessment and run round 1.

        Args:
            raw_answers: The six intake answers keyed by field name
            timeout: Seconds allowed per model call

        Returns:
            The persisted assessment after round 1

        Raises:
            IntakeValidationError: If any answer is missing or blank (nothing is stored)
            UpstreamError: If the model call failed after retries
            CategorizationParseError: If the model response could not be parsed

        On an upstream or parse failure the assessment stays stored in `created`
        and its id is attached to the error as `assessment_id`, so the caller
        can use `retry_categorization`.
        """
        answers = IntakeAnswers.from_raw(raw_answers)
        assessment = self.repository.create(
            Assessment(answers=answers, max_rounds=self.params.rounds.max_rounds)
        )

        logger = self._logger(assessment.id)
        logger.info(
            "Intake submitted",
            max_rounds=assessment.max_rounds,
            answer_lengths={k: len(v) for k, v in answers.as_dict().items()},
        )

        with self._transition(assessment.id):
            try:
                return await self._run_round(assessment, {}, timeout)
            except (UpstreamError, CategorizationParseError) as e:
                e.assessment_id = assessment.id
                logger.error(
                    "Round 1 categorization failed, assessment left in 'created'",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

    async def retry_categorization(
        self, assessment_id: str, timeout: Optional[float] = None
    ) -> Assessment:
        """
        Re-run round 1 for an assessment whose first categorization failed.

        Raises:
            AssessmentNotFound: Unknown id
            AssessmentAlreadyComplete: If the assessment is terminal
            StaleRound: If another transition is in flight
            InvalidTransition: If round 1 already succeeded
        """
        stored = self.repository.get(assessment_id)
        if stored.is_complete:
            raise AssessmentAlreadyComplete(assessment_id)
        if stored.state != AssessmentState.CREATED:
            raise InvalidTransition(
                f"Assessment {assessment_id} is in '{stored.state.value}', "
                f"only 'created' assessments can be re-categorized"
            )

        self._logger(assessment_id).info("Retrying round 1 categorization")
        with self._transition(assessment_id):
            return await self._run_round(stored, {}, timeout)

    async def submit_clarification(
        self,
        assessment_id: str,
        round_answers: Mapping[str, Any],
        expected_round: int,
        timeout: Optional[float] = None,
    ) -> Assessment:
        """
        Answer the outstanding clarifications and run the next round.

        Args:
            assessment_id: Assessment to update
            round_answers: Topic -> answer for some or all outstanding topics
            expected_round: Round the caller believes is current
            timeout: Seconds allowed per model call

        Returns:
            The persisted assessment after the new round

        Raises:
            AssessmentNotFound: Unknown id
            AssessmentAlreadyComplete: If the assessment is terminal
            StaleRound: If `expected_round` is not current or a transition is in flight
            InvalidTransition: If no clarification is being awaited
            UnknownClarificationTopic: Answer for a topic that is not outstanding
            ClarificationValidationError: Empty answer map or blank answer
            UpstreamError / CategorizationParseError: Round failed, record unchanged
        """
        stored = self.repository.get(assessment_id)

        if stored.is_complete or stored.is_terminal:
            raise AssessmentAlreadyComplete(assessment_id)
        if assessment_id in self._in_flight:
            raise StaleRound(assessment_id, reason="another transition is in flight")
        if expected_round != stored.current_round:
            raise StaleRound(assessment_id, expected=expected_round, actual=stored.current_round)
        if stored.state != AssessmentState.AWAITING_CLARIFICATION:
            raise InvalidTransition(
                f"Assessment {assessment_id} is in '{stored.state.value}', "
                f"not awaiting clarification"
            )

        answers = self.tracker.validate_answers(stored, round_answers)

        with self._transition(assessment_id):
            asked_round = stored.current_round
            self.tracker.record_answers(stored, answers, asked_round)
            stored.profile = self.tracker.merge_answers(stored.profile, answers)

            self._logger(assessment_id).info(
                "Clarification submitted",
                round=asked_round,
                answered=[t.value for t in answers],
                still_open=[
                    t.value for t in stored.outstanding_clarifications if t not in answers
                ],
            )
            return await self._run_round(stored, answers, timeout)

    def get_assessment(self, assessment_id: str) -> Assessment:
        """
        Raises:
            AssessmentNotFound: Unknown id
        """
        return self.repository.get(assessment_id)

    def get_matches(self, assessment_id: str) -> MatchResult:
        """
        Rank the catalog for a completed assessment.

        Raises:
            AssessmentNotFound: Unknown id
            AssessmentIncomplete: If the assessment has not reached a terminal state
        """
        assessment = self.repository.get(assessment_id)
        return self.matcher.match_assessment(assessment, self.catalog.list_packages())

    async def _run_round(
        self,
        working: Assessment,
        new_answers: Mapping[Topic, str],
        timeout: Optional[float],
    ) -> Assessment:
        """Categorize, decide the next state, persist. `working` is a private copy."""
        expected_revision = working.revision
        self.controller.begin_round(working)

        outcome: Optional[CategorizationOutcome] = None
        async for attempt in upstream_retrying(self.params.retry):
            with attempt:
                outcome = await self.engine.categorize(
                    answers=working.answers,
                    profile=working.profile,
                    new_answers=new_answers,
                    current_round=working.current_round,
                    max_rounds=working.max_rounds,
                    qa_history=working.qa_log,
                    not_applicable=working.not_applicable,
                    timeout=timeout,
                    correlation_id=working.id,
                )

        working.profile = outcome.profile
        working.not_applicable = outcome.not_applicable
        working.pending_questions = {}

        state = self.controller.resolve_round(working, outcome.outstanding)
        if state == AssessmentState.AWAITING_CLARIFICATION:
            questions = self.tracker.build_questions(outcome.outstanding, outcome.questions)
            self.tracker.record_questions(working, questions)

        return self.repository.save(working, expected_revision=expected_revision)

    @contextmanager
    def _transition(self, assessment_id: str) -> Iterator[None]:
        if assessment_id in self._in_flight:
            raise StaleRound(assessment_id, reason="another transition is in flight")
        self._in_flight.add(assessment_id)
        try:
            yield
        finally:
            self._in_flight.discard(assessment_id)

    def _logger(self, assessment_id: str):
        return get_logger(
            correlation_id=assessment_id,
            phase="coordinator",
            component="assessment_coordinator",
        )
