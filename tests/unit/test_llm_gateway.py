"""
Unit tests for the Language Model Gateway.
"""

from types import SimpleNamespace

import anthropic
import httpx
import pytest

from relocation_intake.errors import (
    ConfigurationError,
    UpstreamMalformed,
    UpstreamRateLimited,
    UpstreamRejected,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from relocation_intake.models.config import GatewayConfig
from relocation_intake.utils.llm_gateway import AnthropicGateway, check_response_text

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def status_error(cls, status_code: int):
    return cls(
        message=f"HTTP {status_code}",
        response=httpx.Response(status_code, request=REQUEST),
        body=None,
    )


@pytest.fixture
def client(mocker):
    """Anthropic client stub returning one text block."""
    client = mocker.Mock()
    client.messages.create = mocker.AsyncMock(
        return_value=SimpleNamespace(
            content=[SimpleNamespace(type="text", text='  {"categories": {}}  ')]
        )
    )
    return client


class TestCheckResponseText:
    """Test cases for response size checks."""

    def test_empty_response_rejected(self):
        with pytest.raises(UpstreamMalformed):
            check_response_text("   ", max_chars=100)

    def test_oversized_response_rejected(self):
        with pytest.raises(UpstreamMalformed) as exc_info:
            check_response_text("x" * 101, max_chars=100)

        assert "limit 100" in str(exc_info.value)

    def test_response_stripped(self):
        assert check_response_text(" ok \n", max_chars=100) == "ok"


class TestAnthropicGateway:
    """Test cases for AnthropicGateway.generate."""

    @pytest.mark.asyncio
    async def test_generate_passes_sampling_parameters(self, client):
        """Test that template parameters reach the Messages API."""
        # Arrange
        gateway = AnthropicGateway(client, GatewayConfig(model="claude-test"))

        # Act
        text = await gateway.generate(
            system_prompt="You are Clarity.",
            user_prompt="MODE=categorize",
            temperature=0.3,
            max_tokens=1500,
            correlation_id="a-1",
        )

        # Assert
        assert text == '{"categories": {}}'
        client.messages.create.assert_awaited_once_with(
            model="claude-test",
            system="You are Clarity.",
            messages=[{"role": "user", "content": "MODE=categorize"}],
            temperature=0.3,
            max_tokens=1500,
        )

    @pytest.mark.asyncio
    async def test_generate_joins_text_blocks(self, client):
        """Test that only text blocks contribute to the response."""
        # Arrange
        client.messages.create.return_value = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text='{"categories":'),
                SimpleNamespace(type="tool_use", text="ignored"),
                SimpleNamespace(type="text", text=" {}}"),
            ]
        )
        gateway = AnthropicGateway(client)

        # Act
        text = await gateway.generate("s", "u", temperature=0.3, max_tokens=10)

        # Assert
        assert text == '{"categories": {}}'

    @pytest.mark.asyncio
    async def test_empty_completion_is_malformed(self, client):
        client.messages.create.return_value = SimpleNamespace(content=[])
        gateway = AnthropicGateway(client)

        with pytest.raises(UpstreamMalformed):
            await gateway.generate("s", "u", temperature=0.3, max_tokens=10)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "provider_error, expected",
        [
            (status_error(anthropic.RateLimitError, 429), UpstreamRateLimited),
            (anthropic.APITimeoutError(request=REQUEST), UpstreamTimeout),
            (anthropic.APIConnectionError(request=REQUEST), UpstreamUnavailable),
            (status_error(anthropic.InternalServerError, 500), UpstreamUnavailable),
            (status_error(anthropic.BadRequestError, 400), UpstreamRejected),
            (status_error(anthropic.AuthenticationError, 401), UpstreamRejected),
        ],
    )
    async def test_provider_errors_are_mapped(self, client, provider_error, expected):
        """Test that provider failures map onto the upstream taxonomy."""
        # Arrange
        client.messages.create.side_effect = provider_error
        gateway = AnthropicGateway(client)

        # Act & Assert
        with pytest.raises(expected):
            await gateway.generate("s", "u", temperature=0.3, max_tokens=10)

    def test_retryable_flags(self):
        """Test which mapped errors are retryable."""
        assert UpstreamRateLimited.retryable
        assert UpstreamTimeout.retryable
        assert UpstreamUnavailable.retryable
        assert not UpstreamRejected.retryable
        assert not UpstreamMalformed.retryable


class TestFromEnv:
    """Test cases for AnthropicGateway.from_env."""

    def test_missing_key_raises(self, monkeypatch, mocker):
        # Arrange
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        mocker.patch("relocation_intake.utils.llm_gateway.load_dotenv")

        # Act & Assert
        with pytest.raises(ConfigurationError):
            AnthropicGateway.from_env()

    def test_builds_client_without_sdk_retries(self, mocker):
        """Test that SDK-level retries are disabled and the timeout is applied."""
        # Arrange
        client_class = mocker.patch("relocation_intake.utils.llm_gateway.anthropic.AsyncAnthropic")

        # Act
        gateway = AnthropicGateway.from_env(GatewayConfig(timeout_seconds=12), api_key="sk-test")

        # Assert
        client_class.assert_called_once_with(api_key="sk-test", max_retries=0, timeout=12)
        assert gateway.client is client_class.return_value
