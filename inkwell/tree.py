"""Derived tree views over the flat turn store.

The tree is never stored. Every view here is rebuilt from
``Conversation.messages`` so it cannot drift from the store.
"""

from typing import Iterable, Mapping

from inkwell.models import Conversation, MessageNode, Turn


def _sort_key(node: MessageNode):
    return node.timestamp


def build_tree(messages: Mapping[str, Turn]) -> list[MessageNode]:
    """Build the parent/child hierarchy from a flat id -> turn mapping.

    Turns whose parent id points at a missing turn are left out of every
    subtree (orphans); they are not promoted to roots.

    Args:
        messages: Flat turn store

    Returns:
        Root nodes ordered by timestamp, each with sorted children and depth
    """
    nodes = {turn_id: MessageNode(turn=turn) for turn_id, turn in messages.items()}
    roots: list[MessageNode] = []

    for node in nodes.values():
        if node.parent_id is None:
            roots.append(node)
            continue
        parent = nodes.get(node.parent_id)
        if parent is not None:
            parent.children.append(node)

    for node in nodes.values():
        node.children.sort(key=_sort_key)
    roots.sort(key=_sort_key)

    # Depths are assigned top-down so they never depend on dict order
    stack = [(root, 0) for root in roots]
    while stack:
        node, depth = stack.pop()
        node.depth = depth
        stack.extend((child, depth + 1) for child in node.children)

    return roots


def build_node_map(roots: Iterable[MessageNode]) -> dict[str, MessageNode]:
    """Flatten a built tree into an id -> node lookup."""
    node_map: dict[str, MessageNode] = {}
    stack = list(roots)
    while stack:
        node = stack.pop()
        node_map[node.id] = node
        stack.extend(node.children)
    return node_map


def get_active_nodes(conversation: Conversation) -> list[MessageNode]:
    """Resolve the active path into tree nodes for rendering.

    Ids that are not reachable in the tree are skipped.
    """
    if not conversation.active_path:
        return []
    node_map = build_node_map(build_tree(conversation.messages))
    return [node_map[i] for i in conversation.active_path if i in node_map]


def iter_subtree(node: MessageNode) -> Iterable[MessageNode]:
    """Yield a node and all its descendants, depth first."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def is_valid_active_path(conversation: Conversation) -> bool:
    """Check that the active path is a parent-linked walk from a root."""
    previous = None
    for index, turn_id in enumerate(conversation.active_path):
        turn = conversation.messages.get(turn_id)
        if turn is None:
            return False
        if index == 0 and turn.parent_id is not None:
            return False
        if index > 0 and turn.parent_id != previous:
            return False
        previous = turn_id
    return True
