"""Round Controller.

State machine over an Assessment's clarification rounds:

    created ──► categorizing ──► complete            (nothing outstanding)
                    ▲        ├─► rounds_exhausted    (outstanding, last round)
                    │        └─► awaiting_clarification
                    └──────────────────┘ (round + 1)

`complete` and `rounds_exhausted` are terminal. At `rounds_exhausted` the
remaining outstanding topics move to `accepted_unresolved`, so a complete
assessment never carries outstanding clarifications.
"""

from datetime import datetime, timezone
from typing import Iterable

from relocation_intake.errors import AssessmentAlreadyComplete, InvalidTransition
from relocation_intake.models.assessment import (
    TERMINAL_STATES,
    Assessment,
    AssessmentState,
    Topic,
)
from relocation_intake.utils.logger import get_logger, round_phase


def is_terminal(state: AssessmentState) -> bool:
    return state in TERMINAL_STATES


class RoundController:
    """Owns round count, completion flag and the continue/stop decision.

    Both transitions mutate the Assessment passed in; callers hand it a working
    copy and persist only once the whole round succeeded.
    """

    def begin_round(self, assessment: Assessment) -> Assessment:
        """Enter `categorizing`.

        From `created` the round stays at 1; from `awaiting_clarification` the
        round advances by exactly one.

        Raises:
            AssessmentAlreadyComplete: If the assessment is terminal
            InvalidTransition: If a round is already being categorized
        """
        if assessment.is_complete or is_terminal(assessment.state):
            raise AssessmentAlreadyComplete(assessment.id)

        if assessment.state == AssessmentState.CREATED:
            if assessment.current_round != 1:
                raise InvalidTransition(
                    f"Assessment {assessment.id} in 'created' must be at round 1, "
                    f"found round {assessment.current_round}"
                )
        elif assessment.state == AssessmentState.AWAITING_CLARIFICATION:
            if assessment.current_round >= assessment.max_rounds:
                raise InvalidTransition(
                    f"Assessment {assessment.id} cannot advance past round "
                    f"{assessment.max_rounds}"
                )
            assessment.current_round += 1
        else:
            raise InvalidTransition(
                f"Cannot start a round from state '{assessment.state.value}'"
            )

        assessment.state = AssessmentState.CATEGORIZING
        assessment.updated_at = datetime.now(timezone.utc)

        get_logger(
            correlation_id=assessment.id,
            phase=round_phase(assessment.current_round),
            component="round_controller",
        ).info("Round started", max_rounds=assessment.max_rounds)
        return assessment

    def resolve_round(
        self, assessment: Assessment, outstanding: Iterable[Topic]
    ) -> AssessmentState:
        """Decide where a finished categorization leads.

        Args:
            assessment: Assessment in `categorizing`
            outstanding: Topics still unresolved after this round

        Returns:
            The new state

        Raises:
            InvalidTransition: If the assessment is not being categorized
        """
        if assessment.state != AssessmentState.CATEGORIZING:
            raise InvalidTransition(
                f"Cannot resolve a round from state '{assessment.state.value}'"
            )

        logger = get_logger(
            correlation_id=assessment.id,
            phase=round_phase(assessment.current_round),
            component="round_controller",
        )
        remaining = Topic.ordered(outstanding)

        if not remaining:
            assessment.state = AssessmentState.COMPLETE
            assessment.outstanding_clarifications = []
            assessment.is_complete = True
            logger.info("Assessment complete", round=assessment.current_round)
        elif assessment.current_round >= assessment.max_rounds:
            assessment.state = AssessmentState.ROUNDS_EXHAUSTED
            assessment.accepted_unresolved = remaining
            assessment.outstanding_clarifications = []
            assessment.is_complete = True
            logger.warning(
                "Rounds exhausted, accepting unresolved topics",
                round=assessment.current_round,
                accepted_unresolved=[t.value for t in remaining],
            )
        else:
            assessment.state = AssessmentState.AWAITING_CLARIFICATION
            assessment.outstanding_clarifications = remaining
            logger.info(
                "Clarification needed",
                round=assessment.current_round,
                outstanding=[t.value for t in remaining],
            )

        assessment.updated_at = datetime.now(timezone.utc)
        return assessment.state
