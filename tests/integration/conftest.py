"""
Integration Test Configuration

Coordinator fixtures wired to the shipped package catalog and a scripted
model gateway. Tests marked `slow` (live model calls) are skipped when CI=true.
"""

import os
from pathlib import Path

import pytest

from relocation_intake.coordinator import AssessmentCoordinator
from relocation_intake.models.config import RetryConfig, RoundsConfig, SystemParams
from relocation_intake.utils.assessment_repository import InMemoryAssessmentRepository
from relocation_intake.utils.llm_gateway import LanguageModelGateway
from relocation_intake.utils.package_catalog import JsonPackageCatalog

PROJECT_ROOT = Path(__file__).parents[2]
CATALOG_PATH = PROJECT_ROOT / "config" / "packages.json"


@pytest.fixture
def is_ci_environment() -> bool:
    return os.getenv("CI", "").lower() == "true"


@pytest.fixture(autouse=True)
def skip_slow_tests_in_ci(request, is_ci_environment):
    """Skip tests marked @pytest.mark.slow when running in CI."""
    if is_ci_environment and request.node.get_closest_marker("slow"):
        pytest.skip("Skipping slow test in CI environment")


@pytest.fixture
def gateway(mocker):
    """Model gateway whose responses each test scripts via side_effect/return_value."""
    return mocker.AsyncMock(spec=LanguageModelGateway)


@pytest.fixture
def params_factory():
    """SystemParams with zero retry backoff."""

    def build(max_rounds: int = 3) -> SystemParams:
        return SystemParams(
            rounds=RoundsConfig(max_rounds=max_rounds),
            retry=RetryConfig(max_attempts=3, multiplier=0, min_wait=0, max_wait=0),
        )

    return build


@pytest.fixture
def repository():
    return InMemoryAssessmentRepository()


@pytest.fixture
def coordinator_factory(gateway, repository, params_factory):
    def build(max_rounds: int = 3, repo=None) -> AssessmentCoordinator:
        return AssessmentCoordinator(
            gateway,
            catalog=JsonPackageCatalog(CATALOG_PATH),
            repository=repo or repository,
            params=params_factory(max_rounds),
        )

    return build


@pytest.fixture
def coordinator(coordinator_factory):
    return coordinator_factory()
