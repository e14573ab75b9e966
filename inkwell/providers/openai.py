"""OpenAI-compatible chat completions connector (OpenAI, DeepSeek, ...)."""

import json
import logging
from typing import Any, AsyncIterator

import httpx

from inkwell.cancel import CancelToken
from inkwell.errors import ProviderError
from inkwell.llm import AnswerUpdate, StreamEvent, ThinkingUpdate
from inkwell.providers.base import HttpConnector

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"


class OpenAIConnector(HttpConnector):
    """Streams ``/chat/completions`` over server-sent events."""

    def build_body(self, request_messages: list[dict]) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.provider.model,
            "messages": request_messages,
            "stream": True,
        }
        if self.provider.max_tokens is not None:
            body["max_tokens"] = self.provider.max_tokens
        if self.provider.temperature is not None:
            body["temperature"] = self.provider.temperature
        body.update(self.provider.extra_params)
        return body

    def build_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.provider.api_key or ''}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            **self.provider.extra_headers,
        }

    async def stream(
        self,
        request_messages: list[dict],
        cancel: CancelToken,
    ) -> AsyncIterator[StreamEvent]:
        if not self.provider.base_url:
            raise ProviderError(self.provider.id, "no base_url configured")

        thinking = ""
        answer = ""
        try:
            async with self.http() as client, client.stream(
                "POST",
                self.provider.base_url,
                headers=self.build_headers(),
                json=self.build_body(request_messages),
            ) as response:
                await self.raise_for_status(response)

                async for payload in self.sse_payloads(response, cancel):
                    if payload == DONE_MARKER:
                        return
                    try:
                        chunk = json.loads(payload)
                    except json.JSONDecodeError:
                        logger.debug("Skipping malformed SSE payload: %s", payload[:80])
                        continue

                    if isinstance(chunk, dict) and chunk.get("error"):
                        raise ProviderError(self.provider.id, str(chunk["error"]))

                    choices = chunk.get("choices") if isinstance(chunk, dict) else None
                    if not choices:
                        continue
                    delta = choices[0].get("delta") or {}

                    reasoning = delta.get("reasoning_content")
                    if reasoning:
                        thinking += reasoning
                        yield ThinkingUpdate(thinking)

                    content = delta.get("content")
                    if content:
                        answer += content
                        yield AnswerUpdate(answer)
        except httpx.HTTPError as e:
            raise ProviderError(self.provider.id, str(e) or type(e).__name__) from e
