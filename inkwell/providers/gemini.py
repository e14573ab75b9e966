"""Google Gemini connector (generateContent over SSE)."""

import json
import logging
from typing import Any, AsyncIterator

import httpx

from inkwell.cancel import CancelToken
from inkwell.errors import ProviderError
from inkwell.llm import AnswerUpdate, StreamEvent, ThinkingUpdate
from inkwell.providers.base import HttpConnector

logger = logging.getLogger(__name__)


def to_gemini_contents(request_messages: list[dict]) -> tuple[list[dict], str]:
    """Split assembled messages into Gemini contents and a system instruction.

    Args:
        request_messages: {"role", "content"} dicts

    Returns:
        (contents, system_instruction_text)
    """
    system_parts = []
    contents = []
    for message in request_messages:
        if message["role"] == "system":
            system_parts.append(message["content"])
            continue
        role = "model" if message["role"] == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": message["content"]}]})
    return contents, "\n\n".join(system_parts)


class GeminiConnector(HttpConnector):
    """Streams ``:streamGenerateContent?alt=sse``."""

    def build_url(self) -> str:
        base = (self.provider.base_url or "").rstrip("/")
        return f"{base}/{self.provider.model}:streamGenerateContent?alt=sse"

    def build_body(self, request_messages: list[dict]) -> dict[str, Any]:
        contents, system = to_gemini_contents(request_messages)
        generation_config: dict[str, Any] = {
            "thinkingConfig": {"includeThoughts": True},
        }
        if self.provider.max_tokens is not None:
            generation_config["maxOutputTokens"] = self.provider.max_tokens
        if self.provider.temperature is not None:
            generation_config["temperature"] = self.provider.temperature

        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        body.update(self.provider.extra_params)
        return body

    async def stream(
        self,
        request_messages: list[dict],
        cancel: CancelToken,
    ) -> AsyncIterator[StreamEvent]:
        if not self.provider.base_url:
            raise ProviderError(self.provider.id, "no base_url configured")

        headers = {
            "x-goog-api-key": self.provider.api_key or "",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            **self.provider.extra_headers,
        }

        thinking = ""
        answer = ""
        try:
            async with self.http() as client, client.stream(
                "POST",
                self.build_url(),
                headers=headers,
                json=self.build_body(request_messages),
            ) as response:
                await self.raise_for_status(response)

                async for payload in self.sse_payloads(response, cancel):
                    try:
                        chunk = json.loads(payload)
                    except json.JSONDecodeError:
                        logger.debug("Skipping malformed SSE payload: %s", payload[:80])
                        continue
                    if not isinstance(chunk, dict):
                        continue

                    if chunk.get("error"):
                        error = chunk["error"]
                        detail = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                        raise ProviderError(self.provider.id, detail)

                    candidates = chunk.get("candidates") or []
                    if not candidates:
                        continue
                    parts = (candidates[0].get("content") or {}).get("parts") or []
                    for part in parts:
                        text = part.get("text")
                        if not text:
                            continue
                        if part.get("thought"):
                            thinking += text
                            yield ThinkingUpdate(thinking)
                        else:
                            answer += text
                            yield AnswerUpdate(answer)
        except httpx.HTTPError as e:
            raise ProviderError(self.provider.id, str(e) or type(e).__name__) from e
