"""
Configuration Validator Module

JSON Schema (Draft 7) checks for the documents the intake core reads: the
package catalog, intake answer files and model categorization responses.
Schemas ship in relocation_intake/schemas/.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from jsonschema import Draft7Validator, FormatChecker, ValidationError

from relocation_intake.errors import ConfigurationError

logger = structlog.get_logger(__name__)

SCHEMA_DIR = Path(__file__).parent.parent / "schemas"

CATALOG_SCHEMA = "package_catalog_schema.json"
INTAKE_SCHEMA = "intake_schema.json"
CATEGORIZATION_RESPONSE_SCHEMA = "categorization_response_schema.json"

# jsonschema keyword -> message prefix
_ERROR_LABELS = {
    "type": "Wrong type",
    "minLength": "Value empty or too short",
    "maxLength": "Value too long",
    "pattern": "Value empty or too short",
    "minimum": "Value too small",
    "enum": "Invalid value",
    "additionalProperties": "Unexpected field",
}


def _location(error: ValidationError) -> str:
    return " -> ".join(str(part) for part in error.absolute_path) or "(root)"


def describe_error(error: ValidationError) -> str:
    """One readable line for a schema violation."""
    location = _location(error)
    if error.validator == "required":
        field = error.message.split("'")[1]
        return f"Missing required field: '{field}' at {location}"
    label = _ERROR_LABELS.get(error.validator, "Validation error")
    if error.validator == "enum":
        return f"{label} at '{location}': {error.message} (allowed: {error.validator_value})"
    return f"{label} at '{location}': {error.message}"


class ConfigValidator:
    """Schema validation with per-instance schema caching."""

    def __init__(self, schema_dir: Optional[Path] = None):
        self.schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR
        self._validators: Dict[str, Draft7Validator] = {}

    def load_schema(self, schema_name: str) -> Dict[str, Any]:
        """
        Raises:
            ConfigurationError: If the schema file is missing or not JSON
        """
        return self._validator(schema_name).schema

    def _validator(self, schema_name: str) -> Draft7Validator:
        cached = self._validators.get(schema_name)
        if cached is not None:
            return cached

        path = self.schema_dir / schema_name
        if not path.exists():
            logger.error("schema_not_found", schema_path=str(path))
            raise ConfigurationError(f"Schema file not found: {path}")
        try:
            schema = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.error("schema_invalid_json", schema_name=schema_name, error=str(e))
            raise ConfigurationError(f"Invalid JSON in schema {schema_name}: {e}") from e

        validator = Draft7Validator(schema, format_checker=FormatChecker())
        self._validators[schema_name] = validator
        logger.debug("schema_loaded", schema_name=schema_name)
        return validator

    def iter_errors(self, document: Any, schema_name: str) -> List[ValidationError]:
        """Every violation in `document`, ordered by location. Empty when valid."""
        errors = self._validator(schema_name).iter_errors(document)
        return sorted(errors, key=lambda e: [str(p) for p in e.absolute_path])

    def format_validation_errors(
        self, errors: List[ValidationError], schema_name: str
    ) -> List[str]:
        return [f"Validation failed for {schema_name}:"] + [
            f"  * {describe_error(error)}" for error in errors
        ]

    def validate(self, document: Any, schema_name: str) -> None:
        """
        Raises:
            ConfigurationError: Listing every violation
        """
        errors = self.iter_errors(document, schema_name)
        if errors:
            logger.warning("validation_failed", schema_name=schema_name, error_count=len(errors))
            raise ConfigurationError("\n".join(self.format_validation_errors(errors, schema_name)))

    def validate_file(self, path: Path, schema_name: str) -> Dict[str, Any]:
        """
        Read a JSON file and validate it.

        Returns:
            The parsed document

        Raises:
            ConfigurationError: If the file is missing, not JSON, or invalid
        """
        path = Path(path)
        if not path.exists():
            logger.error("config_file_not_found", config_path=str(path))
            raise ConfigurationError(f"Configuration file not found: {path}")

        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.error("config_invalid_json", config_path=str(path), error=str(e))
            raise ConfigurationError(
                f"Invalid JSON in {path.name}: {e} (line {e.lineno}, column {e.colno})"
            ) from e

        self.validate(document, schema_name)
        logger.debug("file_validated", config_path=str(path), schema_name=schema_name)
        return document


_default_validator: Optional[ConfigValidator] = None


def get_default_validator() -> ConfigValidator:
    """Shared validator so schemas are parsed once per process."""
    global _default_validator
    if _default_validator is None:
        _default_validator = ConfigValidator()
    return _default_validator
