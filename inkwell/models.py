"""Data models for conversation turns and trees."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]


class TaskResultView(BaseModel):
    """Display form of one agent task result, stored on the final turn."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    name: str
    task_type: str = Field(
        "custom", validation_alias=AliasChoices("task_type", "taskType")
    )
    optimized_input: Optional[str] = Field(
        None, validation_alias=AliasChoices("optimized_input", "optimizedInput")
    )
    display_result: Optional[str] = Field(
        None, validation_alias=AliasChoices("display_result", "displayResult")
    )
    original_input: Any = Field(
        None, validation_alias=AliasChoices("original_input", "originalInput")
    )
    processing_time: Optional[float] = Field(
        None, validation_alias=AliasChoices("processing_time", "processingTime")
    )
    error: Optional[str] = None


class MessageComponents(BaseModel):
    """Provenance of a turn's content.

    ``content`` on the turn is what was sent; these fields record what the
    user actually typed and what the agent pipeline rewrote it into.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_input: Optional[str] = Field(
        None, validation_alias=AliasChoices("user_input", "userInput")
    )
    optimized_input: Optional[str] = Field(
        None, validation_alias=AliasChoices("optimized_input", "optimizedInput")
    )
    attached_files: Optional[list[str]] = Field(
        None, validation_alias=AliasChoices("attached_files", "attachedFiles")
    )
    agent_results: Optional[list[TaskResultView]] = Field(
        None, validation_alias=AliasChoices("agent_results", "agentResults")
    )


class Turn(BaseModel):
    """One chat message in the flat store."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    role: Role
    content: str = ""
    reasoning_content: Optional[str] = Field(
        None, validation_alias=AliasChoices("reasoning_content", "reasoningContent")
    )
    parent_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("parent_id", "parentId")
    )
    timestamp: datetime = Field(default_factory=datetime.now)
    components: Optional[MessageComponents] = None


class Conversation(BaseModel):
    """The flat turn store plus the currently rendered path.

    Invariant: ``active_path`` is a root-to-leaf walk where each id's parent
    is the previous id, and every id exists in ``messages``.
    """

    messages: dict[str, Turn] = Field(default_factory=dict)
    active_path: list[str] = Field(default_factory=list)

    def get(self, turn_id: str) -> Optional[Turn]:
        return self.messages.get(turn_id)

    def active_turns(self) -> list[Turn]:
        """Turns on the active path, in order, skipping missing ids."""
        return [self.messages[i] for i in self.active_path if i in self.messages]


@dataclass
class MessageNode:
    """A turn placed in the derived tree view."""

    turn: Turn
    children: list["MessageNode"] = field(default_factory=list)
    depth: int = 0

    @property
    def id(self) -> str:
        return self.turn.id

    @property
    def parent_id(self) -> Optional[str]:
        return self.turn.parent_id

    @property
    def role(self) -> str:
        return self.turn.role

    @property
    def content(self) -> str:
        return self.turn.content

    @property
    def timestamp(self) -> datetime:
        return self.turn.timestamp


@dataclass
class BranchNavigation:
    """Position of a turn among its siblings."""

    current_index: int
    total_branches: int
    can_navigate_left: bool
    can_navigate_right: bool
