"""Tests for derived tree views."""

from inkwell.models import Conversation
from inkwell.store import add_message_to_tree, create_initial_conversation, create_turn
from inkwell.tree import (
    build_node_map,
    build_tree,
    get_active_nodes,
    is_valid_active_path,
    iter_subtree,
)


def test_node_map_matches_store_after_appends():
    """Test that the tree holds exactly the stored ids with correct depths."""
    conversation = create_initial_conversation("welcome", role="system")
    for i in range(6):
        role = "user" if i % 2 == 0 else "assistant"
        turn = create_turn(f"turn {i}", role, conversation.active_path[-1])
        conversation = add_message_to_tree(conversation, turn)

    node_map = build_node_map(build_tree(conversation.messages))

    assert set(node_map) == set(conversation.messages)
    for node in node_map.values():
        ancestors = 0
        parent_id = node.parent_id
        while parent_id is not None:
            ancestors += 1
            parent_id = conversation.messages[parent_id].parent_id
        assert node.depth == ancestors


def test_children_sorted_by_timestamp(make_turn):
    """Test that children and roots are ordered by timestamp, not insertion."""
    turns = [
        make_turn("late-root", "system", None, 9),
        make_turn("c3", "assistant", "r", 7),
        make_turn("r", "user", None, 0),
        make_turn("c1", "assistant", "r", 1),
        make_turn("c2", "assistant", "r", 4),
    ]
    roots = build_tree({t.id: t for t in turns})

    assert [r.id for r in roots] == ["r", "late-root"]
    assert [c.id for c in roots[0].children] == ["c1", "c2", "c3"]


def test_orphans_are_unreachable(make_turn):
    """Test that a turn with a missing parent is left out of the tree."""
    turns = [
        make_turn("r", "user", None, 0),
        make_turn("orphan", "assistant", "missing", 1),
        make_turn("orphan-child", "user", "orphan", 2),
    ]
    node_map = build_node_map(build_tree({t.id: t for t in turns}))

    assert set(node_map) == {"r"}


def test_get_active_nodes(branched_conversation):
    """Test resolving the active path into nodes."""
    nodes = get_active_nodes(branched_conversation)

    assert [n.id for n in nodes] == ["root", "u1", "a1", "u2", "a2"]
    assert [n.depth for n in nodes] == [0, 1, 2, 3, 4]


def test_get_active_nodes_empty():
    """Test that an empty path yields no nodes."""
    assert get_active_nodes(Conversation()) == []


def test_iter_subtree(branched_conversation):
    """Test depth-first iteration over a subtree."""
    node_map = build_node_map(build_tree(branched_conversation.messages))

    ids = [n.id for n in iter_subtree(node_map["u1"])]

    assert ids == ["u1", "a1", "u2", "a2", "a1b", "u3"]


def test_is_valid_active_path(branched_conversation):
    """Test active path validation."""
    assert is_valid_active_path(branched_conversation)

    skipped = branched_conversation.model_copy(update={"active_path": ["root", "a1"]})
    assert not is_valid_active_path(skipped)

    not_rooted = branched_conversation.model_copy(update={"active_path": ["u1", "a1"]})
    assert not is_valid_active_path(not_rooted)

    missing = branched_conversation.model_copy(update={"active_path": ["root", "nope"]})
    assert not is_valid_active_path(missing)
