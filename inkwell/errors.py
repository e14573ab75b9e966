"""Exception types raised by Inkwell."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from inkwell.llm import LLMResult


class InkwellError(Exception):
    """Base class for all Inkwell errors."""


class GenerationCancelled(InkwellError):
    """Raised by a connector when its cancel token fires mid-stream.

    Carries whatever the connector had accumulated before it stopped reading,
    so callers can keep partial output instead of discarding it.
    """

    def __init__(self, partial: Optional["LLMResult"] = None):
        super().__init__("Generation cancelled")
        self.partial = partial


class ProviderError(InkwellError):
    """An LLM provider request failed (HTTP error, SDK error, bad payload)."""

    def __init__(self, provider: str, detail: str, status_code: Optional[int] = None):
        self.provider = provider
        self.detail = detail
        self.status_code = status_code
        if status_code is not None:
            message = f"{provider} request failed: {status_code} - {detail}"
        else:
            message = f"{provider} request failed: {detail}"
        super().__init__(message)


class EmptyResponseError(ProviderError):
    """The provider finished successfully but produced no answer text."""

    def __init__(self, provider: str):
        super().__init__(provider, "empty response content")


class StorageError(InkwellError):
    """Conversation storage could not be read or written."""
