"""Pytest configuration and fixtures."""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import pytest

from inkwell.config import Config, ProviderConfig
from inkwell.llm import ConnectorRegistry
from inkwell.models import Conversation, Turn
from inkwell.providers.base import BaseConnector

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


class ScriptedConnector(BaseConnector):
    """Connector that replays scripted stream events, one script per call."""

    def __init__(self, scripts: Optional[list] = None, error: Optional[Exception] = None):
        super().__init__(ProviderConfig(id="fake", name="fake", type="openai", model="fake-model"))
        self.scripts = list(scripts or [])
        self.error = error
        self.requests: list[list[dict]] = []

    async def stream(self, request_messages, cancel):
        self.requests.append(request_messages)
        if self.error is not None:
            raise self.error
        script = self.scripts.pop(0) if self.scripts else []
        for event in script:
            if cancel.cancelled:
                return
            yield event


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_config(temp_dir):
    """Create a mock configuration with a single fake provider."""
    return Config(
        default_model="fake",
        providers={
            "fake": ProviderConfig(id="fake", name="fake", type="openai", model="fake-model", api_key="k"),
        },
        system_prompt="",
        data_dir=temp_dir / ".inkwell",
    )


@pytest.fixture
def scripted():
    """Factory for scripted connectors plus a registry that always returns them."""

    def make(config: Config, *scripts, error: Optional[Exception] = None):
        connector = ScriptedConnector(list(scripts), error=error)
        return connector, ConnectorRegistry(config, factory=lambda provider: connector)

    return make


@pytest.fixture
def make_turn():
    """Factory for turns with deterministic timestamps (minutes after BASE_TIME)."""

    def make(turn_id: str, role: str, parent_id: Optional[str], minute: int, content: str = "") -> Turn:
        return Turn(
            id=turn_id,
            role=role,
            content=content or f"{role} {turn_id}",
            parent_id=parent_id,
            timestamp=BASE_TIME + timedelta(minutes=minute),
        )

    return make


@pytest.fixture
def branched_conversation(make_turn):
    """A conversation with a branch point under the first user turn.

    root(system)
      u1(user)
        a1(assistant) -> u2(user) -> a2(assistant)
        a1b(assistant, newer sibling) -> u3(user)

    The active path runs through a1.
    """
    turns = [
        make_turn("root", "system", None, 0, "welcome"),
        make_turn("u1", "user", "root", 1),
        make_turn("a1", "assistant", "u1", 2),
        make_turn("u2", "user", "a1", 3),
        make_turn("a2", "assistant", "u2", 4),
        make_turn("a1b", "assistant", "u1", 5),
        make_turn("u3", "user", "a1b", 6),
    ]
    return Conversation(
        messages={t.id: t for t in turns},
        active_path=["root", "u1", "a1", "u2", "a2"],
    )
