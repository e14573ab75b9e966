"""Branch navigation between sibling turns."""

from typing import Literal, Optional

from inkwell.models import BranchNavigation, Conversation, MessageNode
from inkwell.tree import build_node_map, build_tree

Direction = Literal["left", "right"]


def _siblings(
    node: MessageNode,
    roots: list[MessageNode],
    node_map: dict[str, MessageNode],
) -> Optional[list[MessageNode]]:
    if node.parent_id is None:
        return roots
    parent = node_map.get(node.parent_id)
    return parent.children if parent is not None else None


def find_deepest_path(branch_root: MessageNode) -> list[str]:
    """Descend into the most recent child at each level until a leaf.

    Args:
        branch_root: Node to start from (not included in the result)

    Returns:
        Ids below ``branch_root`` along the newest continuation
    """
    path: list[str] = []
    current = branch_root
    while current.children:
        # Ties on timestamp go to the later sibling in sorted order
        current = max(
            enumerate(current.children),
            key=lambda pair: (pair[1].timestamp, pair[0]),
        )[1]
        path.append(current.id)
    return path


def get_branch_navigation(conversation: Conversation, node_id: str) -> BranchNavigation:
    """Report a turn's position within its sibling group.

    Unknown ids report a single, non-navigable branch.
    """
    roots = build_tree(conversation.messages)
    node_map = build_node_map(roots)
    node = node_map.get(node_id)
    if node is None:
        return BranchNavigation(0, 1, False, False)

    siblings = _siblings(node, roots, node_map) or [node]
    index = next(i for i, sibling in enumerate(siblings) if sibling.id == node_id)
    return BranchNavigation(
        current_index=index,
        total_branches=len(siblings),
        can_navigate_left=index > 0,
        can_navigate_right=index < len(siblings) - 1,
    )


def navigate_branch(
    conversation: Conversation,
    node_id: str,
    direction: Direction,
) -> Optional[Conversation]:
    """Switch the active path to a neighbouring sibling of ``node_id``.

    The new path keeps everything before ``node_id``, then the target
    sibling, then the deepest recent path beneath it.

    Args:
        conversation: Current conversation
        node_id: Turn on the active path whose branch should change
        direction: "left" (older sibling) or "right" (newer sibling)

    Returns:
        Conversation with the rewritten path, or None if the move is invalid
    """
    roots = build_tree(conversation.messages)
    node_map = build_node_map(roots)
    node = node_map.get(node_id)
    if node is None:
        return None

    siblings = _siblings(node, roots, node_map)
    if siblings is None:
        return None

    index = next(i for i, sibling in enumerate(siblings) if sibling.id == node_id)
    if direction == "left" and index > 0:
        target = siblings[index - 1]
    elif direction == "right" and index < len(siblings) - 1:
        target = siblings[index + 1]
    else:
        return None

    try:
        position = conversation.active_path.index(node_id)
    except ValueError:
        return None

    new_path = [
        *conversation.active_path[:position],
        target.id,
        *find_deepest_path(target),
    ]
    return Conversation(messages=dict(conversation.messages), active_path=new_path)
