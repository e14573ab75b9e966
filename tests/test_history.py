"""Tests for conversation history and persistence."""

import json
from datetime import datetime

import pytest

from inkwell.errors import StorageError
from inkwell.history import (
    ConversationHistory,
    JsonFileStorage,
    deserialize_conversation,
    serialize_conversation,
)
from inkwell.store import add_message_to_tree, create_turn
from inkwell.tree import is_valid_active_path


@pytest.fixture
def storage(temp_dir):
    return JsonFileStorage(temp_dir / "history")


def _chat(conversation, *texts):
    for index, text in enumerate(texts):
        role = "user" if index % 2 == 0 else "assistant"
        parent = conversation.active_path[-1] if conversation.active_path else None
        conversation = add_message_to_tree(conversation, create_turn(text, role, parent))
    return conversation


def test_create_and_reload(storage):
    """Test that conversations and the current id survive a restart."""
    history = ConversationHistory(storage)
    conversation_id = history.create_new_conversation()
    conversation = _chat(history.load_conversation(conversation_id), "Hello there", "Hi! How can I help?")
    history.update_conversation(conversation_id, conversation)

    reopened = ConversationHistory(storage)
    loaded = reopened.load_conversation(conversation_id)

    assert reopened.current_id == conversation_id
    assert loaded.active_path == conversation.active_path
    for turn_id, turn in conversation.messages.items():
        assert loaded.messages[turn_id].timestamp == turn.timestamp
        assert loaded.messages[turn_id].content == turn.content


def test_load_is_cached(storage):
    """Test that repeated loads return the cached conversation."""
    history = ConversationHistory(storage)
    conversation_id = history.create_new_conversation()

    assert history.load_conversation(conversation_id) is history.load_conversation(conversation_id)
    assert history.load_conversation("missing") is None


def test_title_and_preview(storage):
    """Test title from the first user turn and preview from the newest turn."""
    history = ConversationHistory(storage)
    conversation_id = history.create_new_conversation()
    conversation = _chat(
        history.load_conversation(conversation_id),
        "Please help me outline a mystery novel set in Venice",
        "Sure. " + "A long answer about canals and masks. " * 5,
    )

    history.update_conversation(conversation_id, conversation)
    metadata = history.get_metadata(conversation_id)

    assert metadata.title == "Please help me outline a myste..."
    assert metadata.preview.startswith("Sure. A long answer")
    assert metadata.preview.endswith("...")
    assert len(metadata.preview) == 53


def test_empty_conversation_metadata(storage):
    """Test defaults for a conversation with no turns."""
    history = ConversationHistory(storage)
    conversation_id = history.create_new_conversation()

    metadata = history.get_metadata(conversation_id)

    assert metadata.title == "New conversation"
    assert metadata.preview == "Empty conversation"


def test_index_newest_first(storage):
    """Test that the most recently updated conversation is listed first."""
    history = ConversationHistory(storage)
    first = history.create_new_conversation()
    second = history.create_new_conversation()
    assert [m.id for m in history.conversations] == [second, first]

    history.update_conversation(first, _chat(history.load_conversation(first), "bump"))

    assert [m.id for m in history.conversations] == [first, second]


def test_rename_survives_updates(storage):
    """Test that a custom title is not replaced by the generated one."""
    history = ConversationHistory(storage)
    conversation_id = history.create_new_conversation()

    assert history.rename_conversation(conversation_id, "My novel")
    history.update_conversation(conversation_id, _chat(history.load_conversation(conversation_id), "text"))

    assert ConversationHistory(storage).get_metadata(conversation_id).title == "My novel"
    assert not history.rename_conversation("missing", "x")


def test_delete_and_clear(storage):
    """Test deleting one conversation and clearing all of them."""
    history = ConversationHistory(storage)
    keep = history.create_new_conversation()
    drop = history.create_new_conversation()

    history.delete_conversation(drop)

    assert [m.id for m in history.conversations] == [keep]
    assert history.current_id is None
    assert storage.load_conversation(drop) is None

    history.clear_all_conversations()

    assert history.conversations == []
    assert ConversationHistory(storage).conversations == []
    assert storage.load_conversation(keep) is None


def test_serialize_uses_iso_timestamps():
    """Test the stored shape of a conversation."""
    conversation = _chat(deserialize_conversation({}), "Hi")

    data = serialize_conversation(conversation)
    (turn,) = data["messages"].values()

    assert data["active_path"] == conversation.active_path
    datetime.fromisoformat(turn["timestamp"])
    assert "parent_id" not in turn


def test_migrates_camel_case_data():
    """Test loading data written with camelCase keys and missing fields."""
    data = {
        "flatMessages": {
            "s": {"id": "s", "role": "system", "content": "welcome", "parentId": None,
                  "timestamp": "2024-01-01T12:00:00"},
            "u": {"id": "u", "role": "user", "content": "hi", "parentId": "s",
                  "timestamp": "2024-01-01T12:01:00"},
            "a": {"id": "a", "role": "assistant", "content": "hello", "parentId": "u",
                  "reasoningContent": "thought"},
        },
        "activePath": ["s", "u", "a"],
    }

    conversation = deserialize_conversation(data)

    assert conversation.active_path == ["s", "u", "a"]
    assert conversation.messages["u"].parent_id == "s"
    assert conversation.messages["u"].components.user_input == "hi"
    assert conversation.messages["a"].reasoning_content == "thought"
    assert conversation.messages["a"].timestamp is not None


def test_broken_active_path_rebuilt():
    """Test that missing ids are dropped and a broken path is rebuilt."""
    data = {
        "messages": {
            "r": {"id": "r", "role": "user", "content": "a", "timestamp": "2024-01-01T12:00:00"},
            "x": {"id": "x", "role": "assistant", "content": "old", "parent_id": "r",
                  "timestamp": "2024-01-01T12:01:00"},
            "y": {"id": "y", "role": "assistant", "content": "new", "parent_id": "r",
                  "timestamp": "2024-01-01T12:02:00"},
            "bad": {"id": "bad", "role": "narrator", "content": "?"},
        },
        "active_path": ["gone", "x"],
    }

    conversation = deserialize_conversation(data)

    assert "bad" not in conversation.messages
    assert conversation.active_path == ["r", "y"]
    assert is_valid_active_path(conversation)


def test_valid_prefix_kept_after_dropping_tail():
    """Test that dropping a missing trailing id keeps the valid prefix."""
    data = {
        "messages": {
            "r": {"id": "r", "role": "user", "content": "a", "timestamp": "2024-01-01T12:00:00"},
            "x": {"id": "x", "role": "assistant", "content": "b", "parent_id": "r",
                  "timestamp": "2024-01-01T12:01:00"},
        },
        "active_path": ["r", "x", "gone"],
    }

    assert deserialize_conversation(data).active_path == ["r", "x"]


def test_unreadable_files_are_ignored(storage):
    """Test that corrupt JSON reads as missing."""
    (storage.conversations_dir / "broken.json").write_text("{not json")
    storage.index_path.write_text("[oops")

    assert storage.load_conversation("broken") is None
    assert ConversationHistory(storage).conversations == []


def test_invalid_utf8_reads_as_missing(storage):
    """Test that files with undecodable bytes read as missing."""
    (storage.conversations_dir / "garbled.json").write_bytes(b'{"messages": {"a": {"content": "\xff\xfe"}}}')
    storage.index_path.write_bytes(b'[{"id": "\xff"}]')

    history = ConversationHistory(storage)

    assert history.load_conversation("garbled") is None
    assert history.conversations == []


def test_storage_state_values(storage):
    """Test the generic key/value state."""
    storage.set_value("theme", "dark")

    assert storage.get_value("theme") == "dark"
    assert json.loads(storage.state_path.read_text()) == {"theme": "dark"}
    assert storage.get_value("missing") is None


def test_unwritable_data_raises_storage_error(storage):
    """Test that write failures surface as StorageError."""
    with pytest.raises(StorageError):
        storage.save_conversation("x", {"bad": object()})
