"""Categorization Engine.

Turns intake answers (round 1) or clarification answers (later rounds) into an
updated CategorizedProfile plus the list of topics that still need clarifying.
One gateway call per round; a response that cannot be parsed is retried once
with the same inputs.
"""

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from relocation_intake.errors import CategorizationParseError
from relocation_intake.models.assessment import (
    CategorizedProfile,
    ClarificationEntry,
    IntakeAnswers,
    Topic,
)
from relocation_intake.models.config import GatewayConfig
from relocation_intake.utils.llm_gateway import LanguageModelGateway
from relocation_intake.utils.llm_helpers import call_with_timeout, parse_retrying
from relocation_intake.utils.logger import get_logger, round_phase
from relocation_intake.utils.prompt_loader import (
    CATEGORIZATION_PROMPT,
    UPDATE_PROMPT,
    PromptLoader,
    PromptRegistry,
    get_default_loader,
)
from relocation_intake.utils.response_parser import (
    ParsedCategorization,
    parse_categorization_response,
)
from relocation_intake.utils.validator import ConfigValidator


@dataclass
class CategorizationOutcome:
    """Result of one categorization round.

    Attributes:
        profile: Merged profile; previously resolved topics are never lost
        outstanding: Unresolved, applicable topics in declaration order
        not_applicable: Topics marked not applicable so far
        questions: Model-suggested question per outstanding topic
    """

    profile: CategorizedProfile
    outstanding: list[Topic]
    not_applicable: list[Topic]
    questions: dict[Topic, str] = field(default_factory=dict)


def outstanding_topics(
    profile: CategorizedProfile, not_applicable: Iterable[Topic]
) -> list[Topic]:
    """Topics with no resolved value that were not marked not applicable."""
    skipped = set(not_applicable)
    return [t for t in Topic if not profile.is_resolved(t) and t not in skipped]


class CategorizationEngine:
    """Maps raw answers to profile topics through the language model."""

    def __init__(
        self,
        gateway: LanguageModelGateway,
        prompts: PromptRegistry,
        loader: Optional[PromptLoader] = None,
        validator: Optional[ConfigValidator] = None,
        gateway_config: Optional[GatewayConfig] = None,
        parse_attempts: int = 2,
    ):
        self.gateway = gateway
        self.prompts = prompts
        self.loader = loader or get_default_loader()
        self.validator = validator
        self.gateway_config = gateway_config or GatewayConfig()
        self.parse_attempts = parse_attempts

    def build_prompt(
        self,
        answers: IntakeAnswers,
        profile: Optional[CategorizedProfile],
        new_answers: Mapping[Topic, str],
        current_round: int,
        max_rounds: int,
        qa_history: Iterable[ClarificationEntry] = (),
        correlation_id: Optional[str] = None,
    ) -> tuple[str, str]:
        """Render the round's prompt.

        Returns:
            (template name, rendered user prompt)
        """
        template_name = CATEGORIZATION_PROMPT if current_round == 1 else UPDATE_PROMPT
        template = self.prompts.get(template_name)

        user_prompt = self.loader.render_string(
            template.user_prompt,
            correlation_id=correlation_id,
            answers=answers.as_dict(),
            topics=[t.value for t in Topic],
            profile=(profile or CategorizedProfile()).as_dict(),
            new_answers={Topic(t).value: a for t, a in new_answers.items()},
            qa_history=[
                {
                    "round": e.round,
                    "topic": e.topic.value,
                    "question": e.question,
                    "answer": e.answer,
                }
                for e in qa_history
                if e.is_answered
            ],
            current_round=current_round,
            max_rounds=max_rounds,
        )
        return template_name, user_prompt

    async def categorize(
        self,
        answers: IntakeAnswers,
        profile: Optional[CategorizedProfile],
        new_answers: Mapping[Topic, str],
        current_round: int = 1,
        max_rounds: int = 3,
        qa_history: Iterable[ClarificationEntry] = (),
        not_applicable: Iterable[Topic] = (),
        timeout: Optional[float] = None,
        correlation_id: Optional[str] = None,
    ) -> CategorizationOutcome:
        """
        Categorize this round's answers and merge them into the profile.

        Args:
            answers: The six intake answers
            profile: Profile so far (None before round 1)
            new_answers: Answers supplied this round, keyed by topic (empty in round 1)
            current_round: Round being categorized
            max_rounds: Round limit, shown to the model
            qa_history: Clarification log; answered entries go into the prompt
            not_applicable: Topics already marked not applicable
            timeout: Seconds allowed per model call (defaults to gateway config)
            correlation_id: Correlation ID for logging (assessment id)

        Returns:
            CategorizationOutcome

        Raises:
            UpstreamError: Gateway failure or timeout
            CategorizationParseError: Response unparseable on both attempts
        """
        logger = get_logger(
            correlation_id=correlation_id,
            phase=round_phase(current_round),
            component="categorizer",
        )
        timeout = timeout if timeout is not None else self.gateway_config.timeout_seconds
        qa_history = list(qa_history)

        template_name, user_prompt = self.build_prompt(
            answers,
            profile,
            new_answers,
            current_round,
            max_rounds,
            qa_history,
            correlation_id=correlation_id,
        )
        template = self.prompts.get(template_name)

        logger.info(
            "Categorization started",
            template=template_name,
            new_answer_count=len(new_answers),
        )

        parsed: Optional[ParsedCategorization] = None
        async for attempt in parse_retrying(self.parse_attempts):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Retrying categorization after parse error",
                        attempt=attempt.retry_state.attempt_number,
                    )
                raw = await call_with_timeout(
                    self.gateway,
                    template,
                    user_prompt,
                    timeout=timeout,
                    correlation_id=correlation_id,
                )
                logger.debug("Raw categorization response", response=raw)
                parsed = parse_categorization_response(
                    raw, validator=self.validator, correlation_id=correlation_id
                )

        if parsed is None:
            raise CategorizationParseError("No categorization response was parsed")
        return self._merge(profile, parsed, not_applicable, logger)

    def _merge(
        self,
        profile: Optional[CategorizedProfile],
        parsed: ParsedCategorization,
        not_applicable: Iterable[Topic],
        logger,
    ) -> CategorizationOutcome:
        merged = (profile or CategorizedProfile()).merged_with(parsed.values)

        # A resolved topic is applicable, whatever was said before
        skipped = [
            t
            for t in Topic.ordered([*not_applicable, *parsed.not_applicable])
            if not merged.is_resolved(t)
        ]
        outstanding = outstanding_topics(merged, skipped)
        questions = {t: q for t, q in parsed.questions.items() if t in outstanding}

        logger.info(
            "Categorization complete",
            resolved=[t.value for t in merged.resolved_topics()],
            outstanding=[t.value for t in outstanding],
            not_applicable=[t.value for t in skipped],
        )
        return CategorizationOutcome(
            profile=merged,
            outstanding=outstanding,
            not_applicable=skipped,
            questions=questions,
        )
