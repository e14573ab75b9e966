"""Conversation history: metadata index, lazy loading and JSON persistence."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from inkwell.branches import find_deepest_path
from inkwell.constants import (
    DEFAULT_TITLE,
    EMPTY_PREVIEW,
    PREVIEW_MAX_CHARS,
    TITLE_MAX_CHARS,
)
from inkwell.errors import StorageError
from inkwell.models import Conversation, MessageComponents, Turn
from inkwell.store import create_initial_conversation, generate_id
from inkwell.tree import build_tree, is_valid_active_path

logger = logging.getLogger(__name__)

CURRENT_CONVERSATION_KEY = "current_conversation_id"


class ConversationMetadata(BaseModel):
    """Index entry for one stored conversation."""

    id: str
    title: str = DEFAULT_TITLE
    timestamp: datetime
    preview: str = EMPTY_PREVIEW
    renamed: bool = False


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit] + "..."


def serialize_conversation(conversation: Conversation) -> dict:
    """Convert a conversation to a JSON-ready dict (ISO timestamps)."""
    return {
        "messages": {
            turn_id: turn.model_dump(mode="json", exclude_none=True)
            for turn_id, turn in conversation.messages.items()
        },
        "active_path": list(conversation.active_path),
    }


def deserialize_conversation(data: dict) -> Conversation:
    """Load a stored conversation, migrating older shapes.

    Accepts camelCase keys, a list of turns instead of a mapping, turns
    without timestamps, and active paths that reference missing turns.

    Args:
        data: Parsed conversation JSON

    Returns:
        Conversation whose active path satisfies the path invariant
    """
    raw_messages = data.get("messages") or data.get("flatMessages") or {}
    if isinstance(raw_messages, list):
        raw_messages = {m.get("id"): m for m in raw_messages if isinstance(m, dict)}

    loaded_at = datetime.now()
    messages: dict[str, Turn] = {}
    for turn_id, raw in raw_messages.items():
        if not isinstance(raw, dict):
            continue
        entry = dict(raw)
        entry.setdefault("id", turn_id)
        if not entry.get("timestamp"):
            entry["timestamp"] = loaded_at
        try:
            turn = Turn.model_validate(entry)
        except ValidationError as e:
            logger.warning("Dropping unreadable turn %s: %s", turn_id, e)
            continue
        if turn.role == "user" and turn.components is None:
            turn = turn.model_copy(update={"components": MessageComponents(user_input=turn.content)})
        messages[turn.id] = turn

    raw_path = data.get("active_path") or data.get("activePath") or []
    conversation = Conversation(
        messages=messages,
        active_path=[i for i in raw_path if i in messages],
    )
    if conversation.active_path and is_valid_active_path(conversation):
        return conversation
    return Conversation(messages=messages, active_path=rebuild_active_path(messages))


def rebuild_active_path(messages: dict[str, Turn]) -> list[str]:
    """Newest root followed by its deepest recent path."""
    roots = build_tree(messages)
    if not roots:
        return []
    newest = roots[-1]
    return [newest.id, *find_deepest_path(newest)]


class JsonFileStorage:
    """Stores each conversation as JSON under a directory.

    Layout::

        <root>/index.json
        <root>/state.json
        <root>/conversations/<id>.json
    """

    def __init__(self, root: Path):
        self.root = root
        self.conversations_dir = root / "conversations"
        self.index_path = root / "index.json"
        self.state_path = root / "state.json"
        self.conversations_dir.mkdir(parents=True, exist_ok=True)

    def _read(self, path: Path) -> Optional[Any]:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (ValueError, OSError) as e:
            logger.warning("Could not read %s: %s", path, e)
            return None

    def _write(self, path: Path, data: Any) -> None:
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Could not write {path}: {e}") from e

    def save_conversation(self, conversation_id: str, data: dict) -> None:
        self._write(self.conversations_dir / f"{conversation_id}.json", data)

    def load_conversation(self, conversation_id: str) -> Optional[dict]:
        return self._read(self.conversations_dir / f"{conversation_id}.json")

    def delete_conversation(self, conversation_id: str) -> None:
        path = self.conversations_dir / f"{conversation_id}.json"
        if path.exists():
            path.unlink()

    def save_conversation_index(self, metadata: list[dict]) -> None:
        self._write(self.index_path, metadata)

    def load_conversation_index(self) -> list[dict]:
        data = self._read(self.index_path)
        return data if isinstance(data, list) else []

    def get_value(self, key: str) -> Any:
        state = self._read(self.state_path)
        return state.get(key) if isinstance(state, dict) else None

    def set_value(self, key: str, value: Any) -> None:
        state = self._read(self.state_path)
        if not isinstance(state, dict):
            state = {}
        state[key] = value
        self._write(self.state_path, state)


class ConversationHistory:
    """Index of saved conversations with lazy, cached loading."""

    def __init__(self, storage: JsonFileStorage):
        """Initialize history.

        Args:
            storage: Persistence backend
        """
        self.storage = storage
        self._cache: dict[str, Conversation] = {}
        self._index: list[ConversationMetadata] = []

        for entry in storage.load_conversation_index():
            try:
                self._index.append(ConversationMetadata.model_validate(entry))
            except ValidationError as e:
                logger.warning("Dropping bad index entry: %s", e)
        self._sort()

        current = storage.get_value(CURRENT_CONVERSATION_KEY)
        self.current_id: Optional[str] = current if self.get_metadata(current) else None

    @property
    def conversations(self) -> list[ConversationMetadata]:
        """Metadata, newest first."""
        return list(self._index)

    def get_metadata(self, conversation_id: Optional[str]) -> Optional[ConversationMetadata]:
        return next((m for m in self._index if m.id == conversation_id), None)

    def _sort(self) -> None:
        self._index.sort(key=lambda m: m.timestamp, reverse=True)

    def _save_index(self) -> None:
        self.storage.save_conversation_index([m.model_dump(mode="json") for m in self._index])

    def create_new_conversation(self, welcome_message: Optional[str] = None) -> str:
        """Create, persist and select an empty conversation.

        Returns:
            The new conversation id
        """
        conversation_id = generate_id()
        conversation = create_initial_conversation(welcome_message)
        self._cache[conversation_id] = conversation
        self.storage.save_conversation(conversation_id, serialize_conversation(conversation))

        self._index.append(ConversationMetadata(id=conversation_id, timestamp=datetime.now()))
        self._sort()
        self._save_index()
        self.set_current(conversation_id)
        return conversation_id

    def load_conversation(self, conversation_id: str) -> Optional[Conversation]:
        """Return a conversation, reading it from storage on first access."""
        if conversation_id in self._cache:
            return self._cache[conversation_id]

        data = self.storage.load_conversation(conversation_id)
        if data is None:
            return None
        conversation = deserialize_conversation(data)
        self._cache[conversation_id] = conversation
        return conversation

    def update_conversation(self, conversation_id: str, conversation: Conversation) -> None:
        """Persist a conversation and refresh its title and preview."""
        self._cache[conversation_id] = conversation
        self.storage.save_conversation(conversation_id, serialize_conversation(conversation))

        metadata = self.get_metadata(conversation_id)
        if metadata is None:
            metadata = ConversationMetadata(id=conversation_id, timestamp=datetime.now())
            self._index.append(metadata)

        if not metadata.renamed:
            metadata.title = self._title_for(conversation)
        metadata.preview = self._preview_for(conversation)
        metadata.timestamp = datetime.now()
        self._sort()
        self._save_index()

    def _title_for(self, conversation: Conversation) -> str:
        users = [t for t in conversation.active_turns() if t.role == "user"]
        if not users:
            users = sorted(
                (t for t in conversation.messages.values() if t.role == "user"),
                key=lambda t: t.timestamp,
            )
        if not users:
            return DEFAULT_TITLE
        return _truncate(users[0].content, TITLE_MAX_CHARS) or DEFAULT_TITLE

    def _preview_for(self, conversation: Conversation) -> str:
        if not conversation.messages:
            return EMPTY_PREVIEW
        newest = max(conversation.messages.values(), key=lambda t: t.timestamp)
        return _truncate(newest.content, PREVIEW_MAX_CHARS) or EMPTY_PREVIEW

    def delete_conversation(self, conversation_id: str) -> None:
        self._cache.pop(conversation_id, None)
        self._index = [m for m in self._index if m.id != conversation_id]
        self.storage.delete_conversation(conversation_id)
        self._save_index()
        if self.current_id == conversation_id:
            self.set_current(None)

    def rename_conversation(self, conversation_id: str, title: str) -> bool:
        """Set a custom title that later updates will not overwrite."""
        metadata = self.get_metadata(conversation_id)
        if metadata is None or not title.strip():
            return False
        metadata.title = title.strip()
        metadata.renamed = True
        self._save_index()
        return True

    def clear_all_conversations(self) -> None:
        for metadata in self._index:
            self.storage.delete_conversation(metadata.id)
        self._index = []
        self._cache.clear()
        self._save_index()
        self.set_current(None)

    def set_current(self, conversation_id: Optional[str]) -> None:
        self.current_id = conversation_id
        self.storage.set_value(CURRENT_CONVERSATION_KEY, conversation_id)
