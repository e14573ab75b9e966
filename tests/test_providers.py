"""Tests for provider connectors and the connector registry."""

import json
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from inkwell.cancel import CancelToken
from inkwell.config import ProviderConfig
from inkwell.errors import EmptyResponseError, GenerationCancelled, ProviderError
from inkwell.llm import ConnectorRegistry, create_connector, list_models, parse_model_string
from inkwell.providers.anthropic import AnthropicConnector
from inkwell.providers.gemini import GeminiConnector
from inkwell.providers.openai import OpenAIConnector

OPENAI_PROVIDER = ProviderConfig(
    id="openai:test",
    name="openai test",
    type="openai",
    model="gpt-test",
    api_key="sk-test",
    base_url="https://api.example.com/v1/chat/completions",
    max_tokens=100,
)

GEMINI_PROVIDER = ProviderConfig(
    id="gemini:test",
    name="gemini test",
    type="gemini",
    model="gemini-test",
    api_key="g-key",
    base_url="https://generativelanguage.example.com/v1beta/models",
)

ANTHROPIC_PROVIDER = ProviderConfig(
    id="anthropic:test",
    name="anthropic test",
    type="anthropic",
    model="claude-test",
    api_key="a-key",
)


def sse(*payloads) -> bytes:
    """Encode payloads as server-sent events."""
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def openai_delta(**delta) -> dict:
    return {"choices": [{"delta": delta}]}


def gemini_parts(*parts) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": list(parts)}}]}


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.mark.asyncio
async def test_openai_streams_cumulative_updates():
    """Test SSE parsing, cumulative callbacks and the request body."""
    recorder = Recorder(httpx.Response(200, content=sse(
        openai_delta(reasoning_content="Think"),
        openai_delta(reasoning_content="ing"),
        openai_delta(content="Hel"),
        "{not json",
        openai_delta(content="lo"),
        "[DONE]",
        openai_delta(content=" ignored"),
    )))
    thinking, answers = [], []

    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
        connector = OpenAIConnector(OPENAI_PROVIDER, client=client)
        result = await connector.call(
            [{"role": "user", "content": "Hi"}],
            on_thinking=thinking.append,
            on_answer=answers.append,
        )

    assert result.content == "Hello"
    assert result.reasoning_content == "Thinking"
    assert thinking == ["Think", "Thinking"]
    assert answers == ["Hel", "Hello"]

    request = recorder.requests[0]
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert recorder.body["model"] == "gpt-test"
    assert recorder.body["stream"] is True
    assert recorder.body["max_tokens"] == 100
    assert recorder.body["messages"] == [{"role": "user", "content": "Hi"}]


@pytest.mark.asyncio
async def test_openai_http_error():
    """Test that a non-2xx response raises ProviderError with the status."""
    recorder = Recorder(httpx.Response(401, text="invalid api key"))

    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
        connector = OpenAIConnector(OPENAI_PROVIDER, client=client)
        with pytest.raises(ProviderError) as exc_info:
            await connector.call([{"role": "user", "content": "Hi"}])

    assert exc_info.value.status_code == 401
    assert "invalid api key" in str(exc_info.value)


@pytest.mark.asyncio
async def test_openai_transport_error():
    """Test that connection failures surface as ProviderError."""

    def handler(request):
        raise httpx.ConnectError("connection refused")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        connector = OpenAIConnector(OPENAI_PROVIDER, client=client)
        with pytest.raises(ProviderError, match="connection refused"):
            await connector.call([{"role": "user", "content": "Hi"}])


@pytest.mark.asyncio
async def test_openai_empty_response():
    """Test that a stream without answer text is an error."""
    recorder = Recorder(httpx.Response(200, content=sse(
        openai_delta(reasoning_content="only thinking"),
        "[DONE]",
    )))

    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
        connector = OpenAIConnector(OPENAI_PROVIDER, client=client)
        with pytest.raises(EmptyResponseError):
            await connector.call([{"role": "user", "content": "Hi"}])


@pytest.mark.asyncio
async def test_openai_cancel_keeps_partial():
    """Test that cancelling mid-stream raises with the text received so far."""
    recorder = Recorder(httpx.Response(200, content=sse(
        openai_delta(content="Hel"),
        openai_delta(content="lo wor"),
        openai_delta(content="ld"),
        "[DONE]",
    )))
    cancel = CancelToken()

    def on_answer(text):
        if text == "Hello wor":
            cancel.cancel()

    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
        connector = OpenAIConnector(OPENAI_PROVIDER, client=client)
        with pytest.raises(GenerationCancelled) as exc_info:
            await connector.call([{"role": "user", "content": "Hi"}], cancel=cancel, on_answer=on_answer)

    assert exc_info.value.partial.content == "Hello wor"


@pytest.mark.asyncio
async def test_call_with_cancelled_token_sends_nothing():
    """Test that an already-cancelled token stops the call before any request."""
    recorder = Recorder(httpx.Response(200, content=sse("[DONE]")))
    cancel = CancelToken()
    cancel.cancel()

    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
        connector = OpenAIConnector(OPENAI_PROVIDER, client=client)
        with pytest.raises(GenerationCancelled):
            await connector.call([{"role": "user", "content": "Hi"}], cancel=cancel)

    assert recorder.requests == []


@pytest.mark.asyncio
async def test_gemini_streams_thoughts_and_answer():
    """Test Gemini request shape and thought/answer separation."""
    recorder = Recorder(httpx.Response(200, content=sse(
        gemini_parts({"text": "planning", "thought": True}),
        gemini_parts({"text": "Hi"}),
        gemini_parts({"text": " there"}),
    )))
    history = [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "hey"},
        {"role": "user", "content": "again"},
    ]

    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
        connector = GeminiConnector(GEMINI_PROVIDER, client=client)
        result = await connector.call(history)

    assert result.content == "Hi there"
    assert result.reasoning_content == "planning"

    request = recorder.requests[0]
    assert request.url.path.endswith("/models/gemini-test:streamGenerateContent")
    assert request.url.params["alt"] == "sse"
    assert request.headers["x-goog-api-key"] == "g-key"
    assert recorder.body["systemInstruction"] == {"parts": [{"text": "sys"}]}
    assert [c["role"] for c in recorder.body["contents"]] == ["user", "model", "user"]


@pytest.mark.asyncio
async def test_gemini_error_payload():
    """Test that an error object in the stream raises ProviderError."""
    recorder = Recorder(httpx.Response(200, content=sse({"error": {"message": "quota exceeded"}})))

    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
        connector = GeminiConnector(GEMINI_PROVIDER, client=client)
        with pytest.raises(ProviderError, match="quota exceeded"):
            await connector.call([{"role": "user", "content": "hello"}])


class FakeAnthropicStream:
    def __init__(self, events, error=None):
        self.events = events
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self.events:
            yield event
        if self.error is not None:
            raise self.error


class FakeAnthropicMessages:
    def __init__(self, events, error=None):
        self.events = events
        self.error = error
        self.kwargs = None

    def stream(self, **kwargs):
        self.kwargs = kwargs
        return FakeAnthropicStream(self.events, self.error)


def delta_event(delta_type, **fields):
    return SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type=delta_type, **fields))


@pytest.mark.asyncio
async def test_anthropic_streams_thinking_and_text():
    """Test Anthropic event handling and request kwargs."""
    messages = FakeAnthropicMessages([
        SimpleNamespace(type="message_start"),
        delta_event("thinking_delta", thinking="Hmm"),
        delta_event("text_delta", text="Hi"),
        delta_event("text_delta", text="!"),
        SimpleNamespace(type="message_stop"),
    ])
    connector = AnthropicConnector(ANTHROPIC_PROVIDER, client=SimpleNamespace(messages=messages))

    result = await connector.call([
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "hello"},
    ])

    assert result.content == "Hi!"
    assert result.reasoning_content == "Hmm"
    assert messages.kwargs["system"] == "sys"
    assert messages.kwargs["model"] == "claude-test"
    assert messages.kwargs["messages"] == [{"role": "user", "content": "hello"}]
    assert messages.kwargs["max_tokens"] > 0


@pytest.mark.asyncio
async def test_anthropic_api_error():
    """Test that SDK status errors become ProviderError."""
    response = httpx.Response(529, request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
    error = anthropic.APIStatusError("overloaded", response=response, body=None)
    messages = FakeAnthropicMessages([delta_event("text_delta", text="Hi")], error=error)
    connector = AnthropicConnector(ANTHROPIC_PROVIDER, client=SimpleNamespace(messages=messages))

    with pytest.raises(ProviderError) as exc_info:
        await connector.call([{"role": "user", "content": "hello"}])

    assert exc_info.value.status_code == 529


def test_registry_caches_connectors(mock_config):
    """Test that the registry builds one connector per provider id."""
    built = []

    def factory(provider):
        built.append(provider.id)
        return object()

    registry = ConnectorRegistry(mock_config, factory=factory)

    assert registry.get() is registry.get("fake")
    assert built == ["fake"]

    registry.reset()
    registry.get()
    assert built == ["fake", "fake"]


def test_registry_unknown_provider(mock_config):
    """Test that an unknown provider id raises ValueError."""
    registry = ConnectorRegistry(mock_config)

    with pytest.raises(ValueError, match="Unknown provider"):
        registry.get("nope")


def test_create_connector_picks_wire_format():
    """Test connector selection by provider type."""
    assert isinstance(create_connector(OPENAI_PROVIDER), OpenAIConnector)
    assert isinstance(create_connector(GEMINI_PROVIDER), GeminiConnector)
    assert isinstance(create_connector(ANTHROPIC_PROVIDER), AnthropicConnector)


def test_parse_model_string():
    """Test model string parsing."""
    descriptor = parse_model_string("deepseek:deepseek-reasoner")

    assert descriptor.vendor == "deepseek"
    assert descriptor.type == "openai"
    assert descriptor.name == "deepseek-reasoner"
    assert "gemini:gemini-2.5-flash" in list_models()

    with pytest.raises(ValueError, match="Unsupported model"):
        parse_model_string("acme:unknown")
