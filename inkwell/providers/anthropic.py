"""Anthropic Claude connector using the official SDK."""

import logging
from typing import Any, AsyncIterator

from anthropic import APIError, APIStatusError, AsyncAnthropic

from inkwell.cancel import CancelToken
from inkwell.errors import ProviderError
from inkwell.llm import AnswerUpdate, StreamEvent, ThinkingUpdate
from inkwell.providers.base import BaseConnector

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 8192


class AnthropicConnector(BaseConnector):
    """Streams ``messages.stream`` events from AsyncAnthropic."""

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            kwargs: dict[str, Any] = {"api_key": self.provider.api_key}
            if self.provider.base_url:
                kwargs["base_url"] = self.provider.base_url
            if self.provider.extra_headers:
                kwargs["default_headers"] = self.provider.extra_headers
            self._client = AsyncAnthropic(**kwargs)
        return self._client

    def build_kwargs(self, request_messages: list[dict]) -> dict[str, Any]:
        # Anthropic requires system messages to be separate
        system_messages = [m["content"] for m in request_messages if m["role"] == "system"]
        chat_messages = [
            {"role": m["role"], "content": m["content"]}
            for m in request_messages
            if m["role"] != "system"
        ]

        kwargs: dict[str, Any] = {
            "model": self.provider.model,
            "messages": chat_messages,
            "max_tokens": self.provider.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if system_messages:
            kwargs["system"] = "\n\n".join(system_messages)
        if self.provider.temperature is not None:
            kwargs["temperature"] = self.provider.temperature
        kwargs.update(self.provider.extra_params)
        return kwargs

    async def stream(
        self,
        request_messages: list[dict],
        cancel: CancelToken,
    ) -> AsyncIterator[StreamEvent]:
        thinking = ""
        answer = ""
        try:
            async with self.client.messages.stream(**self.build_kwargs(request_messages)) as stream:
                async for event in stream:
                    if cancel.cancelled:
                        return
                    if event.type != "content_block_delta":
                        continue
                    delta = event.delta
                    if delta.type == "thinking_delta":
                        thinking += delta.thinking
                        yield ThinkingUpdate(thinking)
                    elif delta.type == "text_delta":
                        answer += delta.text
                        yield AnswerUpdate(answer)
        except APIStatusError as e:
            raise ProviderError(self.provider.id, e.message, status_code=e.status_code) from e
        except APIError as e:
            raise ProviderError(self.provider.id, e.message) from e
