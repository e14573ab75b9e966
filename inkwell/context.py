"""Outgoing request assembly.

Turns the stored ancestor chain into the message list sent to a provider.
Only the request changes here; stored turns are never modified.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence, Union

from inkwell.constants import CONTEXT_MESSAGE_HEADER, DEFAULT_CONTEXT_PLACEMENT
from inkwell.models import Turn

if TYPE_CHECKING:
    from inkwell.config import Config


@dataclass
class RequestOptions:
    """Per-request assembly settings.

    Attributes:
        system_prompt: Replaces stored system turns when set
        history_limit: Keep only the last N non-system messages
        context_placement: "append" (onto the last user message) or
            "after_system" (own message after the system prompt)
    """

    system_prompt: Optional[str] = None
    history_limit: Optional[int] = None
    context_placement: str = DEFAULT_CONTEXT_PLACEMENT

    @classmethod
    def from_config(cls, config: "Config") -> "RequestOptions":
        return cls(
            system_prompt=config.system_prompt or None,
            history_limit=config.history_limit,
            context_placement=config.context_placement,
        )


def _as_message(item: Union[Turn, dict]) -> dict:
    if isinstance(item, Turn):
        return {"role": item.role, "content": item.content}
    return {"role": item["role"], "content": item.get("content") or ""}


def build_request_messages(
    history: Sequence[Union[Turn, dict]],
    options: Optional[RequestOptions] = None,
    extra_context: Optional[str] = None,
) -> list[dict]:
    """Assemble provider messages from a conversation history.

    Args:
        history: Turns (or role/content dicts), root first
        options: Assembly settings
        extra_context: Temporary text for this request only

    Returns:
        List of {"role", "content"} dicts
    """
    options = options or RequestOptions()
    messages = [_as_message(item) for item in history]

    system = [m for m in messages if m["role"] == "system"]
    chat = [m for m in messages if m["role"] != "system"]

    if options.system_prompt:
        system = [{"role": "system", "content": options.system_prompt}]

    if options.history_limit is not None and options.history_limit > 0:
        chat = chat[-options.history_limit:]

    if extra_context and extra_context.strip():
        if options.context_placement == "after_system":
            chat.insert(0, {
                "role": "user",
                "content": f"{CONTEXT_MESSAGE_HEADER}\n{extra_context}",
            })
        else:
            chat = _append_to_last_user(chat, extra_context)

    return [m for m in system + chat if m["content"].strip()]


def _append_to_last_user(chat: list[dict], extra_context: str) -> list[dict]:
    for index in range(len(chat) - 1, -1, -1):
        if chat[index]["role"] == "user":
            updated = dict(chat[index])
            updated["content"] = f"{updated['content']}\n\n{extra_context}"
            return [*chat[:index], updated, *chat[index + 1:]]
    # No user message to carry it, so send it on its own
    return [*chat, {"role": "user", "content": extra_context}]
