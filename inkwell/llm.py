"""Streaming connector contract and provider registry."""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Literal, Optional, Protocol, Sequence, Union

from inkwell.constants import SUPPORTED_MODELS

if TYPE_CHECKING:
    from inkwell.cancel import CancelToken
    from inkwell.config import Config, ProviderConfig
    from inkwell.context import RequestOptions
    from inkwell.models import Turn

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThinkingUpdate:
    """Cumulative reasoning text received so far."""

    text: str


@dataclass(frozen=True)
class AnswerUpdate:
    """Cumulative answer text received so far."""

    text: str


StreamEvent = Union[ThinkingUpdate, AnswerUpdate]

# Callback receiving the cumulative text, never just the new fragment
TextCallback = Callable[[str], None]


@dataclass
class LLMResult:
    """Final output of one generation."""

    content: str
    reasoning_content: Optional[str] = None


class StreamingConnector(Protocol):
    """What the orchestrator and the pipeline need from a provider."""

    async def call(
        self,
        messages: Sequence[Union["Turn", dict]],
        options: Optional["RequestOptions"] = None,
        cancel: Optional["CancelToken"] = None,
        on_thinking: Optional[TextCallback] = None,
        on_answer: Optional[TextCallback] = None,
        extra_context: Optional[str] = None,
    ) -> LLMResult:
        ...


@dataclass
class ModelDescriptor:
    """Descriptor for an LLM model."""

    vendor: str
    type: Literal["openai", "gemini", "anthropic"]
    name: str
    max_output_tokens: int


def parse_model_string(model_str: str) -> ModelDescriptor:
    """Parse model string into ModelDescriptor.

    Args:
        model_str: Model string (e.g., "openai:gpt-4o-mini")

    Returns:
        ModelDescriptor

    Raises:
        ValueError: If model string is invalid
    """
    if model_str not in SUPPORTED_MODELS:
        raise ValueError(
            f"Unsupported model: {model_str}. "
            f"Supported: {', '.join(SUPPORTED_MODELS.keys())}"
        )

    model_config = SUPPORTED_MODELS[model_str]
    return ModelDescriptor(
        vendor=model_str.split(":", 1)[0],
        type=model_config["type"],
        name=model_config["name"],
        max_output_tokens=model_config["max_output_tokens"],
    )


def list_models() -> list[str]:
    """List all supported model strings.

    Returns:
        List of model strings
    """
    return list(SUPPORTED_MODELS.keys())


def create_connector(provider: "ProviderConfig", http_client: Any = None) -> StreamingConnector:
    """Build the connector matching a provider's wire format.

    Args:
        provider: Provider settings
        http_client: Optional client shared with the connector (httpx.AsyncClient
            for HTTP connectors, AsyncAnthropic for Anthropic)

    Returns:
        Connector instance
    """
    from inkwell.providers.anthropic import AnthropicConnector
    from inkwell.providers.gemini import GeminiConnector
    from inkwell.providers.openai import OpenAIConnector

    connectors = {
        "openai": OpenAIConnector,
        "gemini": GeminiConnector,
        "anthropic": AnthropicConnector,
    }
    return connectors[provider.type](provider, client=http_client)


ConnectorFactory = Callable[["ProviderConfig"], StreamingConnector]


class ConnectorRegistry:
    """Hands out one connector per provider id, created on first use."""

    def __init__(self, config: "Config", factory: Optional[ConnectorFactory] = None):
        """Initialize registry.

        Args:
            config: Configuration holding the provider table
            factory: Builds a connector from provider settings (defaults to
                create_connector)
        """
        self.config = config
        self.factory = factory or create_connector
        self._connectors: dict[str, StreamingConnector] = {}

    def get(self, provider_id: Optional[str] = None) -> StreamingConnector:
        """Return the connector for ``provider_id`` (current provider if None).

        Raises:
            ValueError: If the provider id is not configured
        """
        provider_id = provider_id or self.config.current_provider_id
        if provider_id not in self._connectors:
            provider = self.config.get_provider(provider_id)
            if provider is None:
                raise ValueError(
                    f"Unknown provider: {provider_id}. "
                    f"Configured: {', '.join(sorted(self.config.providers))}"
                )
            logger.debug("Creating %s connector for %s", provider.type, provider_id)
            self._connectors[provider_id] = self.factory(provider)
        return self._connectors[provider_id]

    def reset(self) -> None:
        """Drop cached connectors (after the provider table changes)."""
        self._connectors.clear()
