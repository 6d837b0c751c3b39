#!/usr/bin/env python3
"""
Check that relocation-intake's runtime and test libraries import.

Run after `pip install -e ".[test]"`; exits 1 if anything is missing.
"""

import sys
from importlib import import_module
from importlib.metadata import PackageNotFoundError, version

# (import name, distribution name on PyPI)
DEPENDENCIES = [
    ("anthropic", "anthropic"),
    ("aiolimiter", "aiolimiter"),
    ("jinja2", "Jinja2"),
    ("jsonlines", "jsonlines"),
    ("jsonschema", "jsonschema"),
    ("pydantic", "pydantic"),
    ("dotenv", "python-dotenv"),
    ("rich", "rich"),
    ("structlog", "structlog"),
    ("tenacity", "tenacity"),
    ("pytest", "pytest"),
    ("pytest_asyncio", "pytest-asyncio"),
    ("pytest_mock", "pytest-mock"),
]


def installed_version(distribution: str) -> str:
    try:
        return version(distribution)
    except PackageNotFoundError:
        return "unknown version"


def verify_imports():
    missing = []
    print(f"Checking {len(DEPENDENCIES)} libraries on Python {sys.version.split()[0]}\n")

    for module_name, distribution in DEPENDENCIES:
        try:
            import_module(module_name)
        except ImportError as e:
            print(f"[FAILED] {distribution}: {e}")
            missing.append(distribution)
            continue
        print(f"[OK] {distribution} ({installed_version(distribution)})")

    print()
    if missing:
        print(f"[ERROR] {len(missing)} dependencies failed: {', '.join(missing)}")
        print('Install them with: pip install -e ".[test]"')
        sys.exit(1)

    print("[SUCCESS] All dependencies import")
    sys.exit(0)


if __name__ == "__main__":
    verify_imports()
