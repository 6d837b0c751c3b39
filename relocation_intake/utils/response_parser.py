"""
Categorization response parser.

The model is asked for one JSON object:

    {"categories": {"<topic>": "<text>" | null, ...},
     "not_applicable": ["<topic>", ...],
     "questions": {"<topic>": "<question>", ...}}

optionally wrapped in a markdown code fence. Anything that is not JSON, or JSON
that breaks the envelope schema, raises CategorizationParseError. Within a
valid envelope the parser is lenient: missing topics are simply absent from the
result, empty values are unresolved, unknown keys are dropped.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from relocation_intake.errors import CategorizationParseError
from relocation_intake.models.assessment import Topic
from relocation_intake.utils.validator import (
    CATEGORIZATION_RESPONSE_SCHEMA,
    ConfigValidator,
    get_default_validator,
)

logger = structlog.get_logger(__name__)

NOT_APPLICABLE_MARKERS = frozenset({"n/a", "na", "not applicable", "not-applicable"})


@dataclass
class ParsedCategorization:
    """Topic data read from one model response.

    Attributes:
        values: Topic -> text for topics the response populated
        empty: Topics present in the response but null/blank
        not_applicable: Topics the model marked as not applicable
        questions: Suggested clarification question per topic
        ignored_keys: Keys dropped because they are not known topics
    """

    values: dict[Topic, str] = field(default_factory=dict)
    empty: set[Topic] = field(default_factory=set)
    not_applicable: set[Topic] = field(default_factory=set)
    questions: dict[Topic, str] = field(default_factory=dict)
    ignored_keys: list[str] = field(default_factory=list)


def extract_json_from_markdown(response_text: str) -> str:
    """Extract JSON from LLM response, removing markdown code block markers if present.

    Args:
        response_text: Raw text response from LLM

    Returns:
        Clean JSON string with code block markers removed
    """
    json_text = response_text.strip()

    if json_text.startswith("```json"):
        json_text = json_text[7:]
    elif json_text.startswith("```"):
        json_text = json_text[3:]

    if json_text.endswith("```"):
        json_text = json_text[:-3]

    json_text = json_text.strip()

    # Model sometimes wraps the object in a sentence
    if not json_text.startswith("{"):
        start, end = json_text.find("{"), json_text.rfind("}")
        if start != -1 and end > start:
            json_text = json_text[start : end + 1]

    return json_text


def _as_topic(key: Any) -> Optional[Topic]:
    if not isinstance(key, str):
        return None
    try:
        return Topic(key.strip().lower())
    except ValueError:
        return None


def _normalize_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, list):
        parts = [str(v).strip() for v in value if str(v).strip()]
        return "; ".join(parts) or None
    text = str(value).strip()
    return text or None


def parse_categorization_response(
    response_text: str,
    validator: Optional[ConfigValidator] = None,
    correlation_id: Optional[str] = None,
) -> ParsedCategorization:
    """
    Parse a model response into topic data.

    Args:
        response_text: Raw model output
        validator: Schema validator (defaults to the shared instance)
        correlation_id: Optional correlation ID for logging

    Returns:
        ParsedCategorization

    Raises:
        CategorizationParseError: If the response is not JSON or breaks the envelope schema
    """
    log = logger.bind(correlation_id=correlation_id)
    validator = validator or get_default_validator()

    json_text = extract_json_from_markdown(response_text or "")
    try:
        document = json.loads(json_text)
    except (json.JSONDecodeError, RecursionError) as e:
        log.warning("Categorization response is not JSON", error=str(e))
        raise CategorizationParseError(
            f"Response is not valid JSON: {e}", raw_response=response_text or ""
        ) from e

    try:
        errors = validator.iter_errors(document, CATEGORIZATION_RESPONSE_SCHEMA)
        details = validator.format_validation_errors(errors, CATEGORIZATION_RESPONSE_SCHEMA)
    except RecursionError as e:
        log.warning("Categorization response nested too deeply")
        raise CategorizationParseError(
            "Response is nested too deeply to validate", raw_response=response_text
        ) from e
    if errors:
        log.warning("Categorization response breaks schema", error_count=len(errors))
        raise CategorizationParseError("\n".join(details), raw_response=response_text)

    parsed = ParsedCategorization()

    for key, raw_value in document["categories"].items():
        topic = _as_topic(key)
        if topic is None:
            parsed.ignored_keys.append(str(key))
            continue
        value = _normalize_value(raw_value)
        if value is None:
            parsed.empty.add(topic)
        elif value.lower() in NOT_APPLICABLE_MARKERS:
            parsed.not_applicable.add(topic)
        else:
            parsed.values[topic] = value

    for key in document.get("not_applicable", []):
        topic = _as_topic(key)
        if topic is None:
            parsed.ignored_keys.append(str(key))
        elif topic not in parsed.values:
            parsed.not_applicable.add(topic)

    for key, question in (document.get("questions") or {}).items():
        topic = _as_topic(key)
        text = _normalize_value(question)
        if topic is None:
            parsed.ignored_keys.append(str(key))
        elif text:
            parsed.questions[topic] = text

    if parsed.ignored_keys:
        log.debug("Ignored unknown keys in categorization response", keys=parsed.ignored_keys)

    log.debug(
        "Categorization response parsed",
        populated=[t.value for t in Topic.ordered(parsed.values)],
        empty=[t.value for t in Topic.ordered(parsed.empty)],
        not_applicable=[t.value for t in Topic.ordered(parsed.not_applicable)],
    )
    return parsed
