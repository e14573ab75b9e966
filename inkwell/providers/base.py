"""Shared connector behaviour: callbacks, cancellation, empty-response checks."""

import logging
from abc import ABC, abstractmethod
from contextlib import aclosing, asynccontextmanager
from typing import AsyncIterator, Optional, Sequence, Union

import httpx

from inkwell.cancel import CancelToken
from inkwell.config import ProviderConfig
from inkwell.constants import DEFAULT_HTTP_TIMEOUT
from inkwell.context import RequestOptions, build_request_messages
from inkwell.errors import EmptyResponseError, GenerationCancelled, ProviderError
from inkwell.llm import AnswerUpdate, LLMResult, StreamEvent, TextCallback, ThinkingUpdate
from inkwell.models import Turn

logger = logging.getLogger(__name__)


class BaseConnector(ABC):
    """Base class for provider connectors.

    Subclasses implement ``stream``, which yields cumulative thinking and
    answer updates for an already assembled request. ``call`` wraps it with
    request assembly, callbacks and the cancellation contract.
    """

    def __init__(self, provider: ProviderConfig, client=None):
        """Initialize connector.

        Args:
            provider: Provider settings
            client: Optional pre-built client (shared, not closed here)
        """
        self.provider = provider
        self._client = client

    @abstractmethod
    def stream(
        self,
        request_messages: list[dict],
        cancel: CancelToken,
    ) -> AsyncIterator[StreamEvent]:
        """Stream updates for one request.

        Implementations stop reading once ``cancel`` fires.

        Args:
            request_messages: Assembled {"role", "content"} messages
            cancel: Cancellation token

        Yields:
            ThinkingUpdate / AnswerUpdate with cumulative text
        """

    async def call(
        self,
        messages: Sequence[Union[Turn, dict]],
        options: Optional[RequestOptions] = None,
        cancel: Optional[CancelToken] = None,
        on_thinking: Optional[TextCallback] = None,
        on_answer: Optional[TextCallback] = None,
        extra_context: Optional[str] = None,
    ) -> LLMResult:
        """Run a generation to completion.

        Args:
            messages: Conversation history, root first
            options: Request assembly settings
            cancel: Cancellation token
            on_thinking: Called with the cumulative reasoning text
            on_answer: Called with the cumulative answer text
            extra_context: Temporary context for this request only

        Returns:
            Final content and reasoning

        Raises:
            GenerationCancelled: The token fired; carries the partial result
            EmptyResponseError: The stream finished without answer text
            ProviderError: The provider request failed
        """
        cancel = cancel or CancelToken()
        request = build_request_messages(messages, options, extra_context)
        thinking = ""
        answer = ""

        def partial() -> LLMResult:
            return LLMResult(content=answer, reasoning_content=thinking or None)

        cancel.raise_if_cancelled()
        logger.debug("%s: sending %d messages", self.provider.id, len(request))

        async with aclosing(self.stream(request, cancel)) as events:
            async for event in events:
                if isinstance(event, ThinkingUpdate):
                    thinking = event.text
                    if on_thinking:
                        on_thinking(thinking)
                elif isinstance(event, AnswerUpdate):
                    answer = event.text
                    if on_answer:
                        on_answer(answer)
                if cancel.cancelled:
                    break

        if cancel.cancelled:
            logger.info("%s: generation cancelled after %d chars", self.provider.id, len(answer))
            raise GenerationCancelled(partial())

        if not answer.strip():
            raise EmptyResponseError(self.provider.id)

        return partial()


class HttpConnector(BaseConnector):
    """Connector speaking a streaming HTTP API through httpx."""

    @asynccontextmanager
    async def http(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the shared client, or a short-lived one for this request."""
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT) as client:
                yield client

    async def raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        body = await response.aread()
        detail = body.decode("utf-8", errors="replace").strip() or response.reason_phrase
        raise ProviderError(self.provider.id, detail, status_code=response.status_code)

    async def sse_payloads(self, response: httpx.Response, cancel: CancelToken) -> AsyncIterator[str]:
        """Yield the ``data:`` payloads of a server-sent event stream."""
        async for line in response.aiter_lines():
            if cancel.cancelled:
                return
            if not line or not line.startswith("data:"):
                continue
            payload = line[5:].strip()
            if payload:
                yield payload
