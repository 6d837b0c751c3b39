"""
Command line entry point.

Runs one relocation assessment interactively: asks the six intake questions,
walks through clarification rounds and prints the ranked packages.

Usage:
    relocation-intake --config config/system_params.json --catalog config/packages.json
    relocation-intake --answers my_answers.json --max-rounds 2
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from relocation_intake.coordinator import AssessmentCoordinator
from relocation_intake.errors import IntakeError, IntakeValidationError
from relocation_intake.models.assessment import INTAKE_FIELDS, Assessment, AssessmentState
from relocation_intake.models.config import RoundsConfig, SystemParams
from relocation_intake.models.package import MatchResult
from relocation_intake.utils.assessment_repository import (
    AssessmentRepository,
    InMemoryAssessmentRepository,
    JsonlAssessmentRepository,
)
from relocation_intake.utils.credential_manager import API_KEY_ENV, MODEL_ENV, CredentialManager
from relocation_intake.utils.llm_gateway import AnthropicGateway
from relocation_intake.utils.logger import get_logger
from relocation_intake.utils.package_catalog import JsonPackageCatalog
from relocation_intake.utils.validator import INTAKE_SCHEMA, get_default_validator

console = Console()

INTAKE_QUESTIONS = {
    "destination": "Where are you moving to?",
    "companions": "Who is moving with you?",
    "income": "What is your main source of income?",
    "housing": "What is your housing plan?",
    "timing": "When are you planning to move?",
    "priority": "What matters most to you about this move?",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relocation-intake",
        description="Relocation intake assessment with package recommendations",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config/system_params.json"),
        help="System parameters file (built-in defaults when missing)",
    )
    parser.add_argument(
        "--catalog",
        type=Path,
        default=Path("config/packages.json"),
        help="Package catalog file",
    )
    parser.add_argument(
        "--max-rounds", type=int, default=None, help="Override rounds.max_rounds"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log_level from the config file",
    )
    parser.add_argument(
        "--answers", type=Path, default=None, help="JSON file with the six intake answers"
    )
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Append assessments to this jsonlines file instead of keeping them in memory",
    )
    parser.add_argument(
        "--update-key", action="store_true", help="Offer to replace the stored API key first"
    )
    return parser


def load_params(args: argparse.Namespace) -> SystemParams:
    """System parameters from --config with command line overrides applied."""
    if args.config.exists():
        params = SystemParams.load(args.config)
    else:
        console.print(f"[yellow][i] {args.config} not found, using built-in defaults[/yellow]")
        params = SystemParams()

    updates: dict[str, Any] = {}
    if args.max_rounds is not None:
        updates["rounds"] = RoundsConfig(max_rounds=args.max_rounds)
    if args.log_level:
        updates["log_level"] = args.log_level
    return params.model_copy(update=updates) if updates else params


def load_answers_file(path: Path) -> dict[str, str]:
    """Read intake answers from a JSON file validated against the intake schema."""
    document = get_default_validator().validate_file(path, INTAKE_SCHEMA)
    return {field: document[field] for field in INTAKE_FIELDS}


def ask_intake() -> dict[str, str]:
    console.print(Panel("Tell us about your move", style="bold cyan"))
    return {field: Prompt.ask(INTAKE_QUESTIONS[field]) for field in INTAKE_FIELDS}


def ask_clarifications(assessment: Assessment) -> dict[str, str]:
    """Ask the pending questions; blank answers are left for a later round."""
    console.print(
        Panel(
            f"Round {assessment.current_round} of {assessment.max_rounds}: "
            "a few more details would help",
            style="bold cyan",
        )
    )
    while True:
        answers = {}
        for topic, question in assessment.pending_questions.items():
            reply = Prompt.ask(f"[bold]{topic.value}[/bold] {question}", default="")
            if reply.strip():
                answers[topic.value] = reply.strip()
        if answers:
            return answers
        console.print("[yellow]Please answer at least one question.[/yellow]")


def render_profile(assessment: Assessment) -> Table:
    table = Table(title="Your relocation profile")
    table.add_column("Topic", style="cyan")
    table.add_column("Details")

    profile = assessment.profile.as_dict() if assessment.profile else {}
    for topic, value in profile.items():
        if value:
            table.add_row(topic, value)
    for topic in assessment.accepted_unresolved:
        table.add_row(topic.value, "[dim]left open[/dim]")
    return table


def render_matches(result: MatchResult) -> Table:
    table = Table(title="Recommended packages")
    table.add_column("#", justify="right")
    table.add_column("Package", style="bold")
    table.add_column("Price", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Missing services")

    for rank, match in enumerate(result.matches, start=1):
        package = match.package
        table.add_row(
            str(rank),
            package.display_name or package.name,
            f"{package.price:,.0f} {package.currency}",
            f"{match.score:.2f}",
            ", ".join(s.value for s in match.missing_services) or "-",
        )
    return table


async def run_assessment(
    coordinator: AssessmentCoordinator, raw_answers: Optional[dict[str, str]] = None
) -> MatchResult:
    """Drive one assessment from intake to ranked packages."""
    while True:
        answers = raw_answers or ask_intake()
        try:
            assessment = await coordinator.submit_intake(answers)
            break
        except IntakeValidationError as e:
            for message in e.errors.values():
                console.print(f"[red][X] {message}[/red]")
            if raw_answers:
                raise

    while assessment.state == AssessmentState.AWAITING_CLARIFICATION:
        replies = ask_clarifications(assessment)
        assessment = await coordinator.submit_clarification(
            assessment.id, replies, expected_round=assessment.current_round
        )

    console.print(render_profile(assessment))
    if assessment.state == AssessmentState.ROUNDS_EXHAUSTED:
        console.print(
            "[yellow][i] Some topics are still open; a consultant will follow up on them.[/yellow]"
        )

    result = coordinator.get_matches(assessment.id)
    console.print(render_matches(result))
    return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = get_logger(phase="cli", component="cli")

    try:
        params = load_params(args)
        logging.getLogger().setLevel(params.log_level)

        raw_answers = load_answers_file(args.answers) if args.answers else None

        credential_manager = CredentialManager()
        if args.update_key:
            credential_manager.update_credentials()
        credentials = credential_manager.check_required_credentials()
        gateway_config = params.gateway
        if credentials[MODEL_ENV]:
            gateway_config = gateway_config.model_copy(update={"model": credentials[MODEL_ENV]})
        gateway = AnthropicGateway.from_env(gateway_config, api_key=credentials[API_KEY_ENV])

        repository: AssessmentRepository = (
            JsonlAssessmentRepository(args.store) if args.store else InMemoryAssessmentRepository()
        )
        coordinator = AssessmentCoordinator(
            gateway,
            catalog=JsonPackageCatalog(args.catalog),
            repository=repository,
            params=params,
        )
        asyncio.run(run_assessment(coordinator, raw_answers))
    except (IntakeError, FileNotFoundError, ValueError) as e:
        logger.error("Assessment failed", error=str(e), error_type=type(e).__name__)
        console.print(f"[red][X] {e}[/red]")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
