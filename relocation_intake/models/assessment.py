"""Assessment data models: intake answers, categorized profile and round state."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from relocation_intake.errors import IntakeValidationError


class Topic(str, Enum):
    """Closed set of profile topics. Declaration order drives question ordering."""

    GOAL = "goal"
    FINANCE = "finance"
    FAMILY = "family"
    HOUSING = "housing"
    WORK = "work"
    IMMIGRATION = "immigration"
    EDUCATION = "education"
    TAX = "tax"
    HEALTHCARE = "healthcare"
    OTHER = "other"

    @classmethod
    def ordered(cls, topics: Any) -> list["Topic"]:
        """Return the given topics deduplicated, in declaration order."""
        wanted = {cls(t) for t in topics}
        return [t for t in cls if t in wanted]


class AssessmentState(str, Enum):
    CREATED = "created"
    CATEGORIZING = "categorizing"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    COMPLETE = "complete"
    ROUNDS_EXHAUSTED = "rounds_exhausted"


TERMINAL_STATES = frozenset({AssessmentState.COMPLETE, AssessmentState.ROUNDS_EXHAUSTED})

INTAKE_FIELDS = ("destination", "companions", "income", "housing", "timing", "priority")

# Messages shown to the person filling in the form
INTAKE_FIELD_MESSAGES = {
    "destination": "Please specify your destination",
    "companions": "Please tell us who's moving with you",
    "income": "Please describe your income source",
    "housing": "Please describe your housing plan",
    "timing": "Please specify your timing",
    "priority": "Please share what's most important",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntakeAnswers(BaseModel):
    """The six raw intake answers, collected once at submission time."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    destination: str = Field(min_length=1)
    companions: str = Field(min_length=1)
    income: str = Field(min_length=1)
    housing: str = Field(min_length=1)
    timing: str = Field(min_length=1)
    priority: str = Field(min_length=1)

    @classmethod
    def from_raw(cls, raw_answers: Mapping[str, Any]) -> "IntakeAnswers":
        """Validate a raw answer mapping.

        Extra keys are ignored; every intake field must be a non-empty string.

        Raises:
            IntakeValidationError: With one message per offending field
        """
        try:
            return cls(**{name: raw_answers.get(name) for name in INTAKE_FIELDS})
        except ValidationError as e:
            errors = {}
            for err in e.errors():
                field = str(err["loc"][0]) if err["loc"] else "answers"
                errors[field] = INTAKE_FIELD_MESSAGES.get(field, err["msg"])
            raise IntakeValidationError(errors) from e

    def as_dict(self) -> dict[str, str]:
        return self.model_dump()


class CategorizedProfile(BaseModel):
    """Structured topic -> text mapping derived from intake and clarification answers.

    Fields are keyed by the closed Topic set; unknown keys are rejected.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    goal: Optional[str] = None
    finance: Optional[str] = None
    family: Optional[str] = None
    housing: Optional[str] = None
    work: Optional[str] = None
    immigration: Optional[str] = None
    education: Optional[str] = None
    tax: Optional[str] = None
    healthcare: Optional[str] = None
    other: Optional[str] = None

    def get(self, topic: Topic) -> Optional[str]:
        return getattr(self, Topic(topic).value)

    def is_resolved(self, topic: Topic) -> bool:
        value = self.get(topic)
        return bool(value and value.strip())

    def resolved_topics(self) -> list[Topic]:
        return [t for t in Topic if self.is_resolved(t)]

    def merged_with(self, updates: Mapping[Topic, Optional[str]]) -> "CategorizedProfile":
        """Return a new profile with non-empty updates applied.

        Empty or missing values never replace a populated field.
        """
        data = self.model_dump()
        for topic, value in updates.items():
            if value is not None and value.strip():
                data[Topic(topic).value] = value.strip()
        return CategorizedProfile(**data)

    def as_dict(self) -> dict[str, Optional[str]]:
        return {t.value: self.get(t) for t in Topic}


class ClarificationEntry(BaseModel):
    """One clarification question and, once given, its answer."""

    id: str
    topic: Topic
    question: str
    answer: str = ""
    round: int = Field(ge=1)
    asked_at: datetime = Field(default_factory=_utcnow)
    answered_at: Optional[datetime] = None

    @property
    def is_answered(self) -> bool:
        return bool(self.answer.strip())


class Assessment(BaseModel):
    """One relocation intake record and its clarification round state.

    Attributes:
        id: Unique identifier (UUID4)
        answers: The six intake answers
        profile: Categorized profile, None until the first categorization
        current_round: Current round number, starts at 1
        max_rounds: Upper bound on rounds (>= 1)
        state: Round controller state
        is_complete: True once a terminal state is reached
        outstanding_clarifications: Topics still awaiting an answer
        accepted_unresolved: Topics accepted as unresolved when rounds ran out
        not_applicable: Topics the model marked as not applicable
        pending_questions: Questions asked for the current round
        qa_log: Append-only question/answer history
        revision: Incremented on every persisted write
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    answers: IntakeAnswers
    profile: Optional[CategorizedProfile] = None
    current_round: int = Field(default=1, ge=1)
    max_rounds: int = Field(default=3, ge=1)
    state: AssessmentState = AssessmentState.CREATED
    is_complete: bool = False
    outstanding_clarifications: list[Topic] = Field(default_factory=list)
    accepted_unresolved: list[Topic] = Field(default_factory=list)
    not_applicable: list[Topic] = Field(default_factory=list)
    pending_questions: dict[Topic, str] = Field(default_factory=dict)
    qa_log: list[ClarificationEntry] = Field(default_factory=list)
    revision: int = 0
    submitted_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def check_invariants(self) -> "Assessment":
        if self.current_round > self.max_rounds:
            raise ValueError(
                f"current_round ({self.current_round}) exceeds max_rounds ({self.max_rounds})"
            )
        if self.is_complete and self.outstanding_clarifications:
            raise ValueError("A complete assessment cannot have outstanding clarifications")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def answered_entries(self) -> list[ClarificationEntry]:
        return [entry for entry in self.qa_log if entry.is_answered]

    def entries_for_round(self, round_number: int) -> list[ClarificationEntry]:
        return [entry for entry in self.qa_log if entry.round == round_number]

    def unresolved_topics(self) -> list[Topic]:
        """Outstanding plus explicitly accepted unresolved topics."""
        return Topic.ordered([*self.outstanding_clarifications, *self.accepted_unresolved])
