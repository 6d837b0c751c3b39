"""
LLM Helpers Module

Timeout and retry plumbing around the Language Model Gateway. All model calls
made by the core go through `call_with_timeout`; callers that own a retry
budget wrap their work in `upstream_retrying`.

Example Usage:
    from relocation_intake.utils.llm_helpers import call_with_timeout, upstream_retrying

    async for attempt in upstream_retrying(params.retry):
        with attempt:
            text = await call_with_timeout(gateway, template, user_prompt, timeout=30)
"""

import asyncio
import logging
from typing import Optional

import structlog
from tenacity import (
    AsyncRetrying,
    after_log,
    before_log,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from relocation_intake.errors import CategorizationParseError, UpstreamError, UpstreamTimeout
from relocation_intake.models.config import RetryConfig
from relocation_intake.models.prompt import PromptTemplate
from relocation_intake.utils.llm_gateway import LanguageModelGateway

logger = structlog.get_logger(__name__)


def is_retryable_upstream_error(error: BaseException) -> bool:
    """True for upstream failures that are safe to retry with backoff."""
    return isinstance(error, UpstreamError) and error.retryable


def upstream_retrying(config: Optional[RetryConfig] = None) -> AsyncRetrying:
    """
    Build the retry loop for recoverable upstream errors.

    Retries UpstreamUnavailable, UpstreamRateLimited and UpstreamTimeout with
    exponential backoff; anything else propagates immediately. The last error is
    re-raised once attempts are exhausted.
    """
    config = config or RetryConfig()
    return AsyncRetrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier, min=config.min_wait, max=config.max_wait
        ),
        retry=retry_if_exception(is_retryable_upstream_error),
        before=before_log(logger, logging.DEBUG),
        after=after_log(logger, logging.WARNING),
        reraise=True,
    )


def parse_retrying(attempts: int = 2) -> AsyncRetrying:
    """Retry loop for CategorizationParseError: one extra call with the same inputs."""
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        retry=retry_if_exception_type(CategorizationParseError),
        after=after_log(logger, logging.WARNING),
        reraise=True,
    )


async def call_with_timeout(
    gateway: LanguageModelGateway,
    template: PromptTemplate,
    user_prompt: str,
    timeout: float,
    correlation_id: Optional[str] = None,
) -> str:
    """
    Run one gateway call bounded by a caller supplied timeout.

    Args:
        gateway: Language model gateway
        template: Prompt configuration supplying system text and sampling params
        user_prompt: Rendered user prompt
        timeout: Seconds before the call is cancelled
        correlation_id: Optional correlation ID for logging

    Returns:
        Raw model response text

    Raises:
        UpstreamTimeout: If the call did not finish within `timeout`
        UpstreamError: Any error raised by the gateway
    """
    log = logger.bind(correlation_id=correlation_id, template=template.name)

    try:
        return await asyncio.wait_for(
            gateway.generate(
                system_prompt=template.system_prompt,
                user_prompt=user_prompt,
                temperature=template.temperature,
                max_tokens=template.max_tokens,
                correlation_id=correlation_id,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        log.warning("LLM call exceeded timeout", timeout_seconds=timeout)
        raise UpstreamTimeout(f"Model call exceeded {timeout}s timeout") from e
