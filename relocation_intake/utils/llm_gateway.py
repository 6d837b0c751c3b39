"""
Language Model Gateway

Wraps the single external text-completion call used by the categorization
engine. The gateway formats the request, maps provider failures onto the
Upstream* error taxonomy and checks the response size. It never retries; retry
policy belongs to the caller.

Example Usage:
    from relocation_intake.utils.llm_gateway import AnthropicGateway

    gateway = AnthropicGateway.from_env(params.gateway)
    text = await gateway.generate(
        system_prompt="You are Clarity...",
        user_prompt="MODE=categorize ...",
        temperature=0.3,
        max_tokens=1500,
    )
"""

import os
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import anthropic
import structlog
from aiolimiter import AsyncLimiter
from dotenv import load_dotenv

from relocation_intake.errors import (
    ConfigurationError,
    UpstreamMalformed,
    UpstreamRateLimited,
    UpstreamRejected,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from relocation_intake.models.config import GatewayConfig

logger = structlog.get_logger(__name__)

API_KEY_ENV = "ANTHROPIC_API_KEY"


class LanguageModelGateway(ABC):
    """Contract for one prompt-in, text-out model call."""

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
        correlation_id: Optional[str] = None,
    ) -> str:
        """
        Run one completion.

        Returns:
            Raw response text

        Raises:
            UpstreamUnavailable: Network/transport failure
            UpstreamRateLimited: Provider throttled the call
            UpstreamTimeout: Transport timed out
            UpstreamMalformed: Empty or oversized response
            UpstreamRejected: Provider refused the request
        """


def check_response_text(text: Optional[str], max_chars: int) -> str:
    """Reject empty or oversized model output."""
    if not text or not text.strip():
        raise UpstreamMalformed("Model returned an empty response")
    if len(text) > max_chars:
        raise UpstreamMalformed(
            f"Model response too large ({len(text)} chars, limit {max_chars})"
        )
    return text.strip()


class AnthropicGateway(LanguageModelGateway):
    """Gateway backed by the Anthropic Messages API."""

    def __init__(
        self,
        client: Any,
        config: Optional[GatewayConfig] = None,
        limiter: Optional[AsyncLimiter] = None,
    ):
        """
        Args:
            client: anthropic.AsyncAnthropic (or compatible) client
            config: Gateway configuration (model, size limit, rate)
            limiter: Shared rate limiter; built from config when omitted
        """
        self.client = client
        self.config = config or GatewayConfig()
        self.limiter = limiter or AsyncLimiter(
            max_rate=self.config.requests_per_minute, time_period=60
        )

    @classmethod
    def from_env(
        cls, config: Optional[GatewayConfig] = None, api_key: Optional[str] = None
    ) -> "AnthropicGateway":
        """
        Build a gateway using ANTHROPIC_API_KEY from the environment or .env.

        Raises:
            ConfigurationError: If no API key is available
        """
        config = config or GatewayConfig()
        if api_key is None:
            load_dotenv()
            api_key = os.getenv(API_KEY_ENV)
        if not api_key:
            raise ConfigurationError(
                f"{API_KEY_ENV} is not set. Add it to your environment or .env file."
            )
        client = anthropic.AsyncAnthropic(
            api_key=api_key,
            max_retries=0,  # retries are the caller's decision
            timeout=config.timeout_seconds,
        )
        return cls(client, config)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
        correlation_id: Optional[str] = None,
    ) -> str:
        log = logger.bind(correlation_id=correlation_id, model=self.config.model)
        log.debug(
            "LLM call initiated",
            system_prompt_length=len(system_prompt),
            prompt_length=len(user_prompt),
            temperature=temperature,
            max_tokens=max_tokens,
        )

        await self.limiter.acquire()
        started = time.monotonic()

        try:
            response = await self.client.messages.create(
                model=self.config.model,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except anthropic.RateLimitError as e:
            log.warning("LLM call rate limited", error=str(e))
            raise UpstreamRateLimited(str(e)) from e
        except anthropic.APITimeoutError as e:
            log.warning("LLM call timed out", error=str(e))
            raise UpstreamTimeout(str(e)) from e
        except anthropic.APIConnectionError as e:
            log.error("LLM call failed to connect", error=str(e))
            raise UpstreamUnavailable(str(e)) from e
        except anthropic.APIStatusError as e:
            if e.status_code >= 500:
                log.error("LLM provider error", status_code=e.status_code, error=str(e))
                raise UpstreamUnavailable(str(e)) from e
            log.error("LLM request rejected", status_code=e.status_code, error=str(e))
            raise UpstreamRejected(str(e)) from e

        text = "".join(
            block.text
            for block in response.content
            if getattr(block, "type", None) == "text"
        )
        text = check_response_text(text, self.config.max_response_chars)

        log.debug(
            "LLM call succeeded",
            response_length=len(text),
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )
        return text
