"""
Credential Manager Module

The CLI needs one secret, the Anthropic API key, plus an optional model
override. Both live in .env next to the config directory; the key is prompted
for (masked) the first time and written back to .env with 0600 permissions.
"""

import os
from pathlib import Path
from typing import Dict, Optional

import structlog
from dotenv import load_dotenv, set_key
from rich.console import Console
from rich.prompt import Confirm, Prompt

console = Console()
logger = structlog.get_logger(__name__)

API_KEY_ENV = "ANTHROPIC_API_KEY"
MODEL_ENV = "RELOCATION_INTAKE_MODEL"
API_KEY_PREFIX = "sk-ant-"
PLACEHOLDER_VALUES = frozenset({"", "your-api-key", "changeme"})


class CredentialManager:
    """Reads the provider key from the environment/.env and prompts when it is missing."""

    def __init__(self, env_file: Path = Path(".env"), example_file: Path = Path(".env.example")):
        self.env_file = Path(env_file)
        self.example_file = Path(example_file)

        if not self.env_file.exists() and self.example_file.exists():
            console.print(f"[yellow][i] Creating {self.env_file} from {self.example_file}[/yellow]")
            self.env_file.write_text(self.example_file.read_text(encoding="utf-8"), encoding="utf-8")
            logger.info("env_file_created", env_file=str(self.env_file))

        if self.env_file.exists():
            self._restrict_permissions()
            load_dotenv(self.env_file)
            logger.info("env_file_loaded", env_file=str(self.env_file))
        else:
            logger.warning("env_file_missing", env_file=str(self.env_file))

    def _restrict_permissions(self) -> None:
        """chmod 600 on POSIX; a failure is reported but not fatal."""
        if os.name == "nt":
            return
        try:
            self.env_file.chmod(0o600)
        except OSError as e:
            console.print(f"[yellow][!] Could not restrict permissions on {self.env_file}: {e}[/yellow]")
            logger.warning("env_permissions_not_set", env_file=str(self.env_file), error=str(e))

    @staticmethod
    def _configured(key: str) -> Optional[str]:
        value = (os.getenv(key) or "").strip()
        return None if value.lower() in PLACEHOLDER_VALUES else value

    def get_credential(
        self, key: str, description: str, secret: bool = True, required: bool = True
    ) -> Optional[str]:
        """
        Return `key` from the environment, prompting for it (and saving it) when unset.

        Raises:
            ValueError: If a required value is still empty after prompting
        """
        value = self._configured(key)
        if value:
            return value

        console.print(f"\n[yellow][*] {key} is not set[/yellow]  {description}")
        value = Prompt.ask("   Enter value", password=secret).strip()

        if not value:
            if required:
                logger.error("credential_missing", key=key)
                raise ValueError(f"Required credential not provided: {key}")
            return None

        self.store(key, value)
        return value

    def store(self, key: str, value: str) -> None:
        """Write `key` to .env and the current environment."""
        set_key(str(self.env_file), key, value)
        os.environ[key] = value
        self._restrict_permissions()
        console.print(f"   [green][+] {key} saved to {self.env_file}[/green]")
        logger.info("credential_stored", key=key, env_file=str(self.env_file))

    def check_required_credentials(self) -> Dict[str, Optional[str]]:
        """
        Returns:
            {ANTHROPIC_API_KEY: key, RELOCATION_INTAKE_MODEL: override or None}

        Raises:
            ValueError: If no API key is available after prompting
        """
        api_key = self.get_credential(
            API_KEY_ENV, "Anthropic API key used to categorize intake answers"
        )
        if not api_key.startswith(API_KEY_PREFIX):
            console.print(
                f"[yellow][!] {API_KEY_ENV} does not start with '{API_KEY_PREFIX}'[/yellow]"
            )
            logger.warning("api_key_unexpected_prefix")

        model = self._configured(MODEL_ENV)
        logger.info("credentials_ready", key_hint=self.mask_credential(api_key), model=model)
        return {API_KEY_ENV: api_key, MODEL_ENV: model}

    def update_credentials(self) -> None:
        """Offer to replace the stored API key."""
        if not Confirm.ask("Update Anthropic API key?", default=False):
            return
        os.environ.pop(API_KEY_ENV, None)
        self.get_credential(API_KEY_ENV, "New Anthropic API key")
        logger.info("api_key_rotated")

    @staticmethod
    def mask_credential(value: str, visible: int = 4) -> str:
        """Keep the last `visible` characters, e.g. "sk-ant-...wxyz"."""
        if len(value) <= visible * 2:
            return "***"
        prefix = API_KEY_PREFIX if value.startswith(API_KEY_PREFIX) else ""
        return f"{prefix}...{value[-visible:]}"
