"""
Package Catalog Module

Read-only access to the pricing package catalog. Every call returns an
immutable snapshot, so matching always sees one consistent catalog.

Example Usage:
    from relocation_intake.utils.package_catalog import JsonPackageCatalog

    catalog = JsonPackageCatalog("config/packages.json")
    packages = catalog.list_packages()
"""

import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Optional

import structlog
from pydantic import ValidationError

from relocation_intake.errors import ConfigurationError
from relocation_intake.models.package import PricingPackage
from relocation_intake.utils.validator import CATALOG_SCHEMA, ConfigValidator, get_default_validator

logger = structlog.get_logger(__name__)

DEFAULT_CATALOG_PATH = Path("config/packages.json")


def packages_from_document(document: dict[str, Any]) -> tuple[PricingPackage, ...]:
    """Build packages from a catalog document, ordered by sort_order then id.

    Raises:
        ConfigurationError: If an entry fails model validation or ids repeat
    """
    packages = []
    for index, entry in enumerate(document.get("packages", [])):
        try:
            packages.append(PricingPackage(**entry))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid package at index {index}: {e}") from e

    ids = [p.id for p in packages]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate package ids in catalog: {', '.join(duplicates)}")

    return tuple(sorted(packages, key=lambda p: (p.sort_order, p.id)))


class PackageCatalog(ABC):
    """Read-only pricing package source."""

    @abstractmethod
    def list_packages(self) -> tuple[PricingPackage, ...]:
        """Return a snapshot of every package, active or not."""

    def get(self, package_id: str) -> Optional[PricingPackage]:
        for package in self.list_packages():
            if package.id == package_id:
                return package
        return None


class InMemoryPackageCatalog(PackageCatalog):
    """Catalog held in memory. Safe to read while another thread replaces it."""

    def __init__(self, packages: Iterable[PricingPackage] = ()):
        self._lock = threading.Lock()
        self._packages: tuple[PricingPackage, ...] = tuple(packages)

    def list_packages(self) -> tuple[PricingPackage, ...]:
        with self._lock:
            return self._packages

    def replace(self, packages: Iterable[PricingPackage]) -> None:
        snapshot = tuple(packages)
        with self._lock:
            self._packages = snapshot
        logger.info("catalog_replaced", package_count=len(snapshot))


class JsonPackageCatalog(PackageCatalog):
    """Catalog backed by a JSON file, re-read and validated on every call."""

    def __init__(
        self,
        path: Path | str = DEFAULT_CATALOG_PATH,
        validator: Optional[ConfigValidator] = None,
    ):
        self.path = Path(path)
        self.validator = validator or get_default_validator()

    def list_packages(self) -> tuple[PricingPackage, ...]:
        """
        Load the catalog file.

        Raises:
            ConfigurationError: If the file is missing, not JSON, or invalid
        """
        document = self.validator.validate_file(self.path, CATALOG_SCHEMA)
        packages = packages_from_document(document)
        logger.debug("catalog_loaded", path=str(self.path), package_count=len(packages))
        return packages
