"""Mutations over the flat turn store.

Every function takes a Conversation and returns a new one; the input is
never modified. Operations on unknown ids return None instead of raising.
"""

import uuid
from datetime import datetime, timedelta
from typing import Mapping, Optional

from inkwell.models import Conversation, MessageComponents, Role, Turn
from inkwell.tree import build_node_map, build_tree, iter_subtree

_last_timestamp: Optional[datetime] = None


def generate_id() -> str:
    """Generate a unique turn id."""
    return uuid.uuid4().hex


def _next_timestamp() -> datetime:
    # Siblings are ordered by timestamp, so creation stamps must strictly increase
    global _last_timestamp
    now = datetime.now()
    if _last_timestamp is not None and now <= _last_timestamp:
        now = _last_timestamp + timedelta(microseconds=1)
    _last_timestamp = now
    return now


def create_turn(
    content: str,
    role: Role,
    parent_id: Optional[str],
    reasoning_content: Optional[str] = None,
    components: Optional[MessageComponents] = None,
) -> Turn:
    """Create a new turn with a fresh id and timestamp."""
    return Turn(
        id=generate_id(),
        role=role,
        content=content,
        reasoning_content=reasoning_content,
        parent_id=parent_id,
        timestamp=_next_timestamp(),
        components=components,
    )


def create_initial_conversation(
    welcome_message: Optional[str] = None,
    role: Role = "assistant",
) -> Conversation:
    """Create an empty conversation, optionally seeded with one root turn."""
    if not welcome_message:
        return Conversation()
    welcome = create_turn(welcome_message, role, None)
    return Conversation(messages={welcome.id: welcome}, active_path=[welcome.id])


def get_conversation_history(messages: Mapping[str, Turn], turn_id: Optional[str]) -> list[Turn]:
    """Walk parent links from ``turn_id`` up to its root.

    This follows the stored linkage, not the active path, so turns added to
    the path after a request started never leak into its context.

    Returns:
        Turns ordered root first, ending with ``turn_id``; empty if unknown
    """
    history: list[Turn] = []
    seen: set[str] = set()
    current = turn_id
    while current is not None and current not in seen:
        turn = messages.get(current)
        if turn is None:
            break
        seen.add(current)
        history.append(turn)
        current = turn.parent_id
    history.reverse()
    return history


def path_to(messages: Mapping[str, Turn], turn_id: Optional[str]) -> list[str]:
    """Ids of the ancestor chain ending at ``turn_id`` (root first)."""
    return [turn.id for turn in get_conversation_history(messages, turn_id)]


def add_message_to_tree(conversation: Conversation, turn: Turn) -> Conversation:
    """Insert a turn and append it to the active path."""
    messages = dict(conversation.messages)
    messages[turn.id] = turn
    return Conversation(messages=messages, active_path=[*conversation.active_path, turn.id])


def replace_turn(conversation: Conversation, turn: Turn) -> Conversation:
    """Store a new version of an existing turn under the same id."""
    messages = dict(conversation.messages)
    messages[turn.id] = turn
    return Conversation(messages=messages, active_path=list(conversation.active_path))


def edit_user_message(
    conversation: Conversation,
    target_id: str,
    new_content: str,
    components: Optional[MessageComponents] = None,
) -> Optional[Conversation]:
    """Create an edited copy of a user turn as a new sibling.

    The original turn and its descendants stay in the store as an inactive
    branch. On the active path the target is replaced by the new turn and
    everything after it is dropped. If the target is off the active path, the
    path becomes the chain down to the target's parent followed by the new
    turn.

    Args:
        conversation: Current conversation
        target_id: Id of the user turn being edited
        new_content: Edited text
        components: Optional provenance for the new turn

    Returns:
        New conversation whose active path ends at the edited turn, or None
        if the target is missing or not a user turn
    """
    target = conversation.messages.get(target_id)
    if target is None or target.role != "user":
        return None

    edited = create_turn(new_content.strip(), "user", target.parent_id, components=components)
    messages = dict(conversation.messages)
    messages[edited.id] = edited

    if target_id in conversation.active_path:
        index = conversation.active_path.index(target_id)
        active_path = [*conversation.active_path[:index], edited.id]
    else:
        active_path = [*path_to(messages, target.parent_id), edited.id]

    return Conversation(messages=messages, active_path=active_path)


def update_assistant_message(
    conversation: Conversation,
    target_id: str,
    new_content: str,
) -> Optional[Conversation]:
    """Replace an assistant turn's content in place, without branching."""
    target = conversation.messages.get(target_id)
    if target is None or target.role != "assistant":
        return None
    return replace_turn(conversation, target.model_copy(update={"content": new_content.strip()}))


def delete_node_and_siblings(conversation: Conversation, target_id: str) -> Optional[Conversation]:
    """Collapse the branch point at ``target_id``.

    The target's competing siblings are deleted with their whole subtrees.
    The target itself is deleted but its direct children are re-parented to
    the target's parent, so the chosen branch's continuations survive.
    Deleted ids are stripped from the active path.

    Returns:
        New conversation, or None if the target is missing or unreachable
    """
    if target_id not in conversation.messages:
        return None

    roots = build_tree(conversation.messages)
    node_map = build_node_map(roots)
    target = node_map.get(target_id)
    if target is None:
        return None

    if target.parent_id is None:
        siblings = roots
    else:
        parent = node_map.get(target.parent_id)
        if parent is None:
            return None
        siblings = parent.children

    doomed: set[str] = {target_id}
    for sibling in siblings:
        if sibling.id != target_id:
            doomed.update(node.id for node in iter_subtree(sibling))

    messages = {i: t for i, t in conversation.messages.items() if i not in doomed}
    for child in target.children:
        messages[child.id] = child.turn.model_copy(update={"parent_id": target.parent_id})

    active_path = [i for i in conversation.active_path if i not in doomed]
    return Conversation(messages=messages, active_path=active_path)
