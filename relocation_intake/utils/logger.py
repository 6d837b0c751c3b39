"""
Structured Logger Module

structlog setup shared by every component. Log lines are JSON, carry the
assessment id as `correlation_id`, and are tagged with the round (`phase`) and
the emitting `component`, so one assessment can be followed from intake through
its clarification rounds to package matching.

Example Usage:
    from relocation_intake.utils.logger import get_logger, round_phase

    logger = get_logger(
        correlation_id=assessment.id,
        phase=round_phase(assessment.current_round),
        component="categorizer",
    )
    logger.info("Categorization complete", outstanding=["education"])

Levels:
    - DEBUG: Rendered prompts and raw model responses (truncated)
    - INFO: Round transitions, categorization and matching summaries
    - WARNING: Parse retries, upstream retries, topics accepted as unresolved
    - ERROR: Failed model calls and errors surfaced to the caller

Answers are personal data: INFO and above log answer lengths and topic names,
never answer text.
"""

import logging
import os
import re
import sys
import uuid
from pathlib import Path
from typing import Optional

import structlog
from structlog.types import BindableLogger, EventDict, WrappedLogger

LOG_FILE_ENV = "RELOCATION_INTAKE_LOG_FILE"
LOG_LEVEL_ENV = "LOG_LEVEL"
DEFAULT_LOG_FILE = "logs/relocation-intake.log"

MASK = "***MASKED***"
SENSITIVE_FIELDS = ("password", "api_key", "token", "secret", "credential", "auth")

# Exact key, or the sensitive word joined to the rest of the key by - or _
_SENSITIVE_KEY_RE = re.compile(
    r"^(?:.+[-_])?(?:{0})$|^(?:{0})[-_].+$".format("|".join(SENSITIVE_FIELDS))
)

FREE_TEXT_FIELDS = ("response", "prompt")
MAX_FREE_TEXT_CHARS = 2000


def mask_credentials(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Replace values of credential-like keys (api_key, access_token, ...) with a mask."""
    for key in event_dict:
        if _SENSITIVE_KEY_RE.match(key.lower()):
            event_dict[key] = MASK
    return event_dict


def truncate_free_text(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Cap prompt/response bodies so one model call cannot flood the log file."""
    for key in FREE_TEXT_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > MAX_FREE_TEXT_CHARS:
            hidden = len(value) - MAX_FREE_TEXT_CHARS
            event_dict[key] = f"{value[:MAX_FREE_TEXT_CHARS]}...(+{hidden} chars)"
    return event_dict


def configure_logging(
    log_file: Optional[str] = None, log_level: Optional[str] = None
) -> None:
    """
    Configure stdlib logging and structlog.

    Args:
        log_file: Log file path (env RELOCATION_INTAKE_LOG_FILE, else logs/relocation-intake.log)
        log_level: Level name (env LOG_LEVEL, else INFO)
    """
    log_file = log_file or os.getenv(LOG_FILE_ENV) or DEFAULT_LOG_FILE
    log_level = (log_level or os.getenv(LOG_LEVEL_ENV) or "INFO").upper()

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level, logging.INFO),
        handlers=[logging.FileHandler(log_file), logging.StreamHandler(sys.stdout)],
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            truncate_free_text,
            mask_credentials,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(
    correlation_id: Optional[str] = None,
    phase: Optional[str] = None,
    component: Optional[str] = None,
) -> BindableLogger:
    """
    Logger bound to an assessment context.

    A fresh UUID is used as correlation_id when none is given.
    """
    context = {
        "correlation_id": correlation_id or str(uuid.uuid4()),
        "phase": phase,
        "component": component,
    }
    return structlog.get_logger().bind(**{k: v for k, v in context.items() if v})


def round_phase(round_number: int) -> str:
    return f"round-{round_number}"


configure_logging()
