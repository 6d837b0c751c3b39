"""
Error taxonomy for the intake core.

Every error raised across the core interface derives from IntakeError so callers
can catch the whole family at the boundary. Subclasses are grouped by how the
caller is expected to react:

    - Validation errors: rejected before any state mutation, never retried
    - Upstream errors: language model failures, some of them retryable
    - CategorizationParseError: model answered but not in the expected shape
    - State errors: caller/concurrency mistakes, always surfaced
"""

from typing import Optional


class IntakeError(Exception):
    """Base class for all intake core errors."""


class ConfigurationError(IntakeError):
    """Raised when a configuration or catalog file fails validation."""


# Validation errors


class ValidationError(IntakeError):
    """Input rejected before any state was touched."""


class IntakeValidationError(ValidationError):
    """One or more intake answers are missing or empty.

    Attributes:
        errors: Mapping of field name to human readable message
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors))
        super().__init__(f"Invalid intake answers: {fields}")


class ClarificationValidationError(ValidationError):
    """Clarification answers are empty or blank."""


class UnknownClarificationTopic(ValidationError):
    """Answer submitted for a topic outside the closed set or not outstanding."""

    def __init__(self, topic: str, reason: str):
        self.topic = topic
        self.reason = reason
        super().__init__(f"Cannot accept answer for topic '{topic}': {reason}")


# Upstream errors


class UpstreamError(IntakeError):
    """Language model call failed."""

    retryable = False


class UpstreamUnavailable(UpstreamError):
    """Network or transport failure reaching the model provider."""

    retryable = True


class UpstreamRateLimited(UpstreamError):
    """Model provider throttled the request."""

    retryable = True


class UpstreamTimeout(UpstreamError):
    """Model call exceeded the caller supplied timeout."""

    retryable = True


class UpstreamMalformed(UpstreamError):
    """Model returned an empty or oversized response."""


class UpstreamRejected(UpstreamError):
    """Model provider rejected the request (bad request, auth, ...)."""


class CategorizationParseError(IntakeError):
    """Model response could not be read as structured topic data.

    Attributes:
        raw_response: Truncated raw model output for diagnostics
    """

    def __init__(self, message: str, raw_response: str = ""):
        self.raw_response = raw_response[:500]
        super().__init__(message)


# State errors


class StateError(IntakeError):
    """Operation is not valid for the current assessment state."""


class AssessmentNotFound(StateError):
    def __init__(self, assessment_id: str):
        self.assessment_id = assessment_id
        super().__init__(f"Assessment not found: {assessment_id}")


class AssessmentAlreadyComplete(StateError):
    def __init__(self, assessment_id: str):
        self.assessment_id = assessment_id
        super().__init__(f"Assessment {assessment_id} is already complete")


class AssessmentIncomplete(StateError):
    def __init__(self, assessment_id: str):
        self.assessment_id = assessment_id
        super().__init__(f"Assessment {assessment_id} is not complete yet")


class StaleRound(StateError):
    """Submission raced another transition or assumed the wrong round."""

    def __init__(
        self,
        assessment_id: str,
        expected: Optional[int] = None,
        actual: Optional[int] = None,
        reason: str = "",
    ):
        self.assessment_id = assessment_id
        self.expected = expected
        self.actual = actual
        if not reason:
            reason = f"expected round {expected}, current round is {actual}"
        super().__init__(f"Stale submission for assessment {assessment_id}: {reason}")


class InvalidTransition(StateError):
    """Round controller was asked for a transition the state machine forbids."""
