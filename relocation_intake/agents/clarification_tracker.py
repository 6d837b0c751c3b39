"""Clarification Tracker.

Keeps the per-round questions for outstanding topics, validates the answers
coming back, folds them into the profile and maintains the Q&A log.
"""

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from relocation_intake.errors import ClarificationValidationError, UnknownClarificationTopic
from relocation_intake.models.assessment import (
    Assessment,
    CategorizedProfile,
    ClarificationEntry,
    Topic,
)
from relocation_intake.models.config import DEFAULT_QUESTIONS
from relocation_intake.utils.logger import get_logger, round_phase


class ClarificationTracker:
    """Question bookkeeping for clarification rounds."""

    def __init__(self, default_questions: Optional[Mapping[Topic, str]] = None):
        self.default_questions = dict(DEFAULT_QUESTIONS)
        if default_questions:
            self.default_questions.update(default_questions)

    def build_questions(
        self,
        outstanding: list[Topic],
        suggested: Optional[Mapping[Topic, str]] = None,
    ) -> dict[Topic, str]:
        """One question per outstanding topic, in Topic declaration order.

        The model's suggestion wins; otherwise the configured default is used.
        """
        suggested = suggested or {}
        questions = {}
        for topic in Topic.ordered(outstanding):
            text = (suggested.get(topic) or "").strip()
            questions[topic] = text or self.default_questions[topic]
        return questions

    def validate_answers(
        self, assessment: Assessment, answers: Mapping[Any, Any]
    ) -> dict[Topic, str]:
        """Check a round's answers before anything is mutated.

        Returns:
            Answers keyed by Topic in declaration order, whitespace stripped

        Raises:
            ClarificationValidationError: Empty answer map or blank answer
            UnknownClarificationTopic: Key outside the Topic set or not outstanding
        """
        if not answers:
            raise ClarificationValidationError("At least one clarification answer is required")

        outstanding = set(assessment.outstanding_clarifications)
        validated: dict[Topic, str] = {}

        for key, value in answers.items():
            try:
                topic = Topic(key)
            except ValueError:
                raise UnknownClarificationTopic(str(key), "not a known topic") from None
            if topic not in outstanding:
                raise UnknownClarificationTopic(topic.value, "topic is not outstanding")
            if not isinstance(value, str) or not value.strip():
                raise ClarificationValidationError(
                    f"Answer for '{topic.value}' must be a non-empty string"
                )
            validated[topic] = value.strip()

        return {t: validated[t] for t in Topic.ordered(validated)}

    def merge_answers(
        self, profile: Optional[CategorizedProfile], answers: Mapping[Topic, str]
    ) -> CategorizedProfile:
        """Overwrite each answered topic with its new answer, whole-value."""
        profile = profile or CategorizedProfile()
        return profile.merged_with(answers)

    def record_questions(self, assessment: Assessment, questions: Mapping[Topic, str]) -> None:
        """Store the round's questions as pending and append them to the Q&A log."""
        assessment.pending_questions = dict(questions)
        for topic, question in questions.items():
            entry_id = f"{assessment.id}-r{assessment.current_round}-{topic.value}"
            assessment.qa_log.append(
                ClarificationEntry(
                    id=entry_id,
                    topic=topic,
                    question=question,
                    round=assessment.current_round,
                )
            )

        if questions:
            get_logger(
                correlation_id=assessment.id,
                phase=round_phase(assessment.current_round),
                component="clarification_tracker",
            ).info("Clarification questions recorded", topics=[t.value for t in questions])

    def record_answers(
        self, assessment: Assessment, answers: Mapping[Topic, str], asked_round: int
    ) -> None:
        """Attach answers to the questions asked in `asked_round`."""
        now = datetime.now(timezone.utc)
        for entry in assessment.qa_log:
            if entry.round == asked_round and entry.topic in answers:
                entry.answer = answers[entry.topic]
                entry.answered_at = now

        get_logger(
            correlation_id=assessment.id,
            phase=round_phase(asked_round),
            component="clarification_tracker",
        ).debug(
            "Clarification answers recorded",
            topics=[t.value for t in answers],
            answer_lengths={t.value: len(a) for t, a in answers.items()},
        )
