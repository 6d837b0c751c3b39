"""
Configuration Models

Pydantic models for config/system_params.json: round limits, gateway and
retry settings, package matching heuristics and default clarification questions.
"""

import math
from pathlib import Path

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from relocation_intake.models.assessment import Topic

DEFAULT_PARAMS_PATH = Path("config/system_params.json")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class RoundsConfig(BaseModel):
    """Clarification round configuration."""

    max_rounds: int = Field(default=3, ge=1, le=10)


class GatewayConfig(BaseModel):
    """Language model gateway configuration."""

    model: str = Field(default="claude-sonnet-4-5")
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_response_chars: int = Field(default=20000, gt=0)
    requests_per_minute: int = Field(
        default=30,
        gt=0,
        description="Maximum model calls per minute across all assessments",
    )


class RetryConfig(BaseModel):
    """Retry policy for recoverable upstream errors."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    multiplier: float = Field(default=1.0, ge=0)
    min_wait: float = Field(default=2.0, ge=0)
    max_wait: float = Field(default=10.0, ge=0)

    @field_validator("max_wait")
    @classmethod
    def validate_wait_ordering(cls, v: float, info: ValidationInfo) -> float:
        """Validate that max_wait >= min_wait."""
        min_wait = info.data.get("min_wait", 2.0)
        if v < min_wait:
            raise ValueError(f"max_wait ({v}) must be >= min_wait ({min_wait})")
        return v


class MatchingWeights(BaseModel):
    """Per-dimension weights for package scoring. Must sum to 1.0."""

    income: float = Field(default=0.30, ge=0.0, le=1.0)
    complexity: float = Field(default=0.30, ge=0.0, le=1.0)
    family: float = Field(default=0.20, ge=0.0, le=1.0)
    urgency: float = Field(default=0.20, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_sum(self) -> "MatchingWeights":
        total = self.income + self.complexity + self.family + self.urgency
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"Matching weights must sum to 1.0 (got {total:.4f})")
        return self


class MatchingConfig(BaseModel):
    """Package matching heuristics.

    Income bands are annual amounts in the answer's currency; complexity points
    are accumulated from unresolved topics, populated complex topics, keyword
    hits and long answers.
    """

    weights: MatchingWeights = Field(default_factory=MatchingWeights)
    service_gap_penalty: float = Field(default=0.1, ge=0.0, le=1.0)

    low_income_ceiling: float = Field(default=50_000, gt=0)
    high_income_floor: float = Field(default=150_000, gt=0)
    low_income_keywords: list[str] = Field(
        default_factory=lambda: [
            "student", "unemployed", "retired", "pension", "savings only",
            "no income", "part-time", "part time", "minimum wage",
        ]
    )
    high_income_keywords: list[str] = Field(
        default_factory=lambda: [
            "investor", "investment income", "business owner", "executive",
            "wealthy", "high net worth", "founder", "exit",
        ]
    )

    complex_topics: list[Topic] = Field(
        default_factory=lambda: [
            Topic.IMMIGRATION, Topic.TAX, Topic.EDUCATION, Topic.HEALTHCARE,
        ]
    )
    complexity_keywords: list[str] = Field(
        default_factory=lambda: [
            "business", "self-employed", "freelance", "company", "dual citizenship",
            "pets", "medical", "disability", "investment", "property", "divorce",
            "custody", "visa", "work permit", "pension transfer",
        ]
    )
    long_answer_chars: int = Field(default=600, gt=0)
    unresolved_topic_points: int = Field(default=2, ge=0)
    moderate_complexity_points: int = Field(default=2, ge=1)
    complex_complexity_points: int = Field(default=5, ge=1)

    high_urgency_max_months: float = Field(default=3, gt=0)
    medium_urgency_max_months: float = Field(default=6, gt=0)

    @field_validator("high_income_floor")
    @classmethod
    def validate_income_bands(cls, v: float, info: ValidationInfo) -> float:
        low = info.data.get("low_income_ceiling", 50_000)
        if v <= low:
            raise ValueError(
                f"high_income_floor ({v}) must be greater than low_income_ceiling ({low})"
            )
        return v

    @field_validator("complex_complexity_points")
    @classmethod
    def validate_complexity_points(cls, v: int, info: ValidationInfo) -> int:
        moderate = info.data.get("moderate_complexity_points", 2)
        if v <= moderate:
            raise ValueError(
                f"complex_complexity_points ({v}) must be greater than "
                f"moderate_complexity_points ({moderate})"
            )
        return v

    @field_validator("medium_urgency_max_months")
    @classmethod
    def validate_urgency_bands(cls, v: float, info: ValidationInfo) -> float:
        high = info.data.get("high_urgency_max_months", 3)
        if v <= high:
            raise ValueError(
                f"medium_urgency_max_months ({v}) must be greater than "
                f"high_urgency_max_months ({high})"
            )
        return v


DEFAULT_QUESTIONS: dict[Topic, str] = {
    Topic.GOAL: "What is the main goal of your move?",
    Topic.FINANCE: "What are your main income sources and savings?",
    Topic.FAMILY: "Who exactly is moving with you, and how old are any children?",
    Topic.HOUSING: "Do you plan to rent or buy, and in which area?",
    Topic.WORK: "Will you keep your current job, work remotely, or look for work?",
    Topic.IMMIGRATION: "What is your citizenship, and do you hold any visas?",
    Topic.EDUCATION: "Do your children need school places, and which type of school?",
    Topic.TAX: "Where are you tax resident today, and any cross-border income?",
    Topic.HEALTHCARE: "Any insurance needs or ongoing medical treatment to plan for?",
    Topic.OTHER: "Is there anything else we should know about your move?",
}


class SystemParams(BaseModel):
    """Top-level contents of system_params.json."""

    rounds: RoundsConfig = Field(default_factory=RoundsConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    default_questions: dict[Topic, str] = Field(
        default_factory=lambda: dict(DEFAULT_QUESTIONS)
    )
    log_level: str = Field(default="INFO")

    @field_validator("default_questions")
    @classmethod
    def fill_missing_questions(cls, v: dict[Topic, str]) -> dict[Topic, str]:
        """Fall back to the built-in question for topics the file leaves out."""
        merged = dict(DEFAULT_QUESTIONS)
        merged.update({topic: text for topic, text in v.items() if text.strip()})
        return merged

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {v!r}")
        return level

    @classmethod
    def load(cls, config_path: Path | str = DEFAULT_PARAMS_PATH) -> "SystemParams":
        """
        Read and validate system_params.json. Sections left out use defaults.

        Raises:
            FileNotFoundError: If the file is missing
            ValueError: If the JSON is malformed or a value is out of range
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(
                f"Config file not found: {path} "
                f"(start from {path.with_name(path.stem + '.example.json')})"
            )
        return cls.model_validate_json(path.read_text(encoding="utf-8"))
