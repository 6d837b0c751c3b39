"""
Jinja2-based prompt template loading and rendering.

Prompt text lives in the package's prompts/ directory. A PromptTemplate record
carries the Jinja2 source of its user prompt, so templates edited in
configuration storage render exactly like the shipped defaults.

Usage:
    from relocation_intake.utils.prompt_loader import PromptRegistry, get_default_loader

    registry = PromptRegistry.with_defaults()
    template = registry.get("categorization")
    user_prompt = get_default_loader().render_string(
        template.user_prompt, answers=assessment.answers.as_dict()
    )
"""

import json
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

import structlog
from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    Template,
    TemplateNotFound,
    TemplateSyntaxError,
    Undefined,
    UndefinedError,
)

from relocation_intake.errors import ConfigurationError
from relocation_intake.models.prompt import PromptTemplate

logger = structlog.get_logger(__name__)

CATEGORIZATION_PROMPT = "categorization"
UPDATE_PROMPT = "update"


class PromptLoader:
    """
    Jinja2 environment over the package's prompts/ directory.

    File templates (`render`) and in-memory sources such as
    PromptTemplate.user_prompt (`render_string`) share one environment, so both
    get the same filters, whitespace handling and undefined-variable policy.
    """

    def __init__(self, template_dir: Optional[Path] = None, strict_undefined: bool = False) -> None:
        self.template_dir = Path(template_dir or Path(__file__).parent.parent / "prompts")
        self.strict_undefined = strict_undefined
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined if strict_undefined else Undefined,
        )
        self.env.filters["tojson_pretty"] = _tojson_pretty

    def render(self, template_name: str, correlation_id: Optional[str] = None, **variables: Any) -> str:
        """
        Render prompts/<template_name>.

        Raises:
            TemplateNotFound / TemplateSyntaxError / UndefinedError (strict mode)
        """
        return self._render(
            lambda: self.env.get_template(template_name), template_name, correlation_id, variables
        )

    def render_string(
        self, source: str, correlation_id: Optional[str] = None, **variables: Any
    ) -> str:
        """Render Jinja2 source held in memory (e.g. PromptTemplate.user_prompt)."""
        return self._render(
            lambda: self.env.from_string(source), "<string>", correlation_id, variables
        )

    def _render(
        self,
        build: Callable[[], Template],
        label: str,
        correlation_id: Optional[str],
        variables: dict[str, Any],
    ) -> str:
        log = logger.bind(template=label, correlation_id=correlation_id)
        try:
            rendered = build().render(**variables)
        except TemplateNotFound as e:
            log.error("Prompt template missing", template_dir=str(self.template_dir), error=str(e))
            raise
        except (TemplateSyntaxError, UndefinedError) as e:
            log.error(
                "Prompt template failed to render",
                error=str(e),
                variables=sorted(variables),
            )
            raise
        log.debug("Prompt rendered", rendered_length=len(rendered))
        return rendered

    def get_source(self, template_name: str) -> str:
        """Raw Jinja2 source of a file template."""
        source, _, _ = self.env.loader.get_source(self.env, template_name)
        return source

    def get_system_prompt(self, prompt_type: str = "system", **variables: Any) -> str:
        return self.render(f"base/{prompt_type}.j2", **variables)


def _tojson_pretty(value: Any) -> str:
    """Jinja2 filter: indented JSON without HTML escaping."""
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


class PromptRegistry:
    """
    Read-only lookup of PromptTemplate records by name.

    Stands in for the configuration storage the templates are edited in; the
    core only ever reads from it.
    """

    def __init__(self, templates: Iterable[PromptTemplate]):
        self._templates: dict[str, PromptTemplate] = {t.name: t for t in templates}

    def get(self, name: str) -> PromptTemplate:
        """
        Look up a template by name.

        Raises:
            ConfigurationError: If no template with that name is configured
        """
        try:
            return self._templates[name]
        except KeyError:
            raise ConfigurationError(f"Prompt template not found: {name}") from None

    def names(self) -> list[str]:
        return sorted(self._templates)

    @classmethod
    def with_defaults(cls, loader: Optional[PromptLoader] = None) -> "PromptRegistry":
        """Build the shipped categorization and update templates from prompts/."""
        loader = loader or get_default_loader()
        system_prompt = loader.get_system_prompt()
        return cls(
            [
                PromptTemplate(
                    name=CATEGORIZATION_PROMPT,
                    description="Categorizes intake answers into profile topics",
                    system_prompt=system_prompt,
                    user_prompt=loader.get_source("assessment/categorize.j2"),
                    temperature=0.3,
                    max_tokens=1500,
                ),
                PromptTemplate(
                    name=UPDATE_PROMPT,
                    description="Folds clarification answers into the existing profile",
                    system_prompt=system_prompt,
                    user_prompt=loader.get_source("assessment/update.j2"),
                    temperature=0.3,
                    max_tokens=1200,
                ),
            ]
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PromptRegistry":
        """Build a registry from {"templates": [{...}, ...]} configuration data."""
        try:
            return cls(PromptTemplate(**item) for item in data["templates"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid prompt template configuration: {e}") from e

    @classmethod
    def from_json(cls, path: Path | str) -> "PromptRegistry":
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Prompt template file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
        return cls.from_mapping(data)


_default_loader: Optional[PromptLoader] = None


def get_default_loader() -> PromptLoader:
    """Process-wide loader over the packaged prompts/ directory."""
    global _default_loader
    if _default_loader is None:
        _default_loader = PromptLoader()
    return _default_loader


def render_prompt(template_name: str, correlation_id: Optional[str] = None, **variables: Any) -> str:
    """Render a file template with the default loader."""
    return get_default_loader().render(template_name, correlation_id=correlation_id, **variables)
