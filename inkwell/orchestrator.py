"""Conversation orchestration: send, edit, regenerate, delete, navigate.

The orchestrator owns one Conversation and at most one in-flight generation.
It does not reject overlapping requests; callers check ``is_generating``
before starting another one.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from inkwell import branches, store
from inkwell.agents.pipeline import AgentContext, AgentPipeline, ProgressUpdate, TaskResult
from inkwell.cancel import CancelToken
from inkwell.config import Config
from inkwell.constants import (
    AGENT_FAILED_PREFIX,
    GENERATION_FAILED_PREFIX,
    INTERRUPTED_TEXT,
    PLACEHOLDER_TEXT,
)
from inkwell.context import RequestOptions, build_request_messages
from inkwell.errors import GenerationCancelled
from inkwell.llm import ConnectorRegistry, LLMResult
from inkwell.models import Conversation, MessageComponents, TaskResultView, Turn
from inkwell.utils.logging import SessionLogger

logger = logging.getLogger(__name__)


@dataclass
class StreamCallbacks:
    """Observers for a running generation.

    Thinking and answer callbacks receive the cumulative text.
    """

    on_thinking_update: Optional[Callable[[str], None]] = None
    on_answer_update: Optional[Callable[[str], None]] = None
    on_agent_progress: Optional[Callable[[ProgressUpdate], None]] = None
    on_tree_update: Optional[Callable[[Conversation], None]] = None


def to_task_result_view(result: TaskResult) -> TaskResultView:
    """Convert a pipeline task result into its stored display form."""
    output = result.output
    if isinstance(output, LLMResult):
        display = output.content
    elif isinstance(output, bool):
        display = "yes" if output else "no"
    elif output is None:
        display = None
    else:
        display = str(output)

    return TaskResultView(
        success=result.status == "completed",
        name=result.name,
        task_type=result.kind,
        optimized_input=display if result.kind == "transform" else None,
        display_result=display,
        original_input=result.input,
        processing_time=result.duration,
        error=result.error,
    )


class ConversationOrchestrator:
    """Drives user operations against one conversation."""

    def __init__(
        self,
        config: Config,
        connectors: ConnectorRegistry,
        conversation: Optional[Conversation] = None,
        pipeline: Optional[AgentPipeline] = None,
        callbacks: Optional[StreamCallbacks] = None,
        session_logger: Optional[SessionLogger] = None,
    ):
        """Initialize orchestrator.

        Args:
            config: Configuration (request options, agent switch)
            connectors: Connector registry
            conversation: Conversation to operate on (empty if None)
            pipeline: Agent pipeline used when agent mode is on
            callbacks: Streaming and tree observers
            session_logger: Optional transcript writer
        """
        self.config = config
        self.connectors = connectors
        self.pipeline = pipeline
        self.callbacks = callbacks or StreamCallbacks()
        self.session_logger = session_logger
        self.extra_context: Optional[str] = None

        self._conversation = conversation or Conversation()
        self._cancel: Optional[CancelToken] = None

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def is_generating(self) -> bool:
        return self._cancel is not None

    @property
    def agent_enabled(self) -> bool:
        return self.config.agent_enabled and self.pipeline is not None

    def set_conversation(self, conversation: Conversation) -> None:
        """Switch to another conversation (not while generating)."""
        self._commit(conversation)

    def _commit(self, conversation: Conversation) -> Conversation:
        self._conversation = conversation
        if self.callbacks.on_tree_update:
            self.callbacks.on_tree_update(conversation)
        return conversation

    def abort(self) -> None:
        """Cancel the in-flight generation, keeping partial output."""
        if self._cancel is not None:
            logger.info("Aborting generation")
            self._cancel.cancel()

    # Tree operations

    async def send_message(
        self,
        content: str,
        parent_id: Optional[str] = None,
        attached_files: Optional[list[str]] = None,
    ) -> Optional[Conversation]:
        """Add a user turn and generate an answer to it.

        Args:
            content: Message text
            parent_id: Turn to reply under (defaults to the end of the active path)
            attached_files: File texts to send with this message

        Returns:
            The conversation after generation, or None if nothing was sent
        """
        content = content.strip()
        if not content:
            return None

        conversation = self._conversation
        if parent_id is None and conversation.active_path:
            parent_id = conversation.active_path[-1]
        if parent_id is not None and parent_id not in conversation.messages:
            return None

        user_turn = store.create_turn(
            content,
            "user",
            parent_id,
            components=MessageComponents(user_input=content, attached_files=attached_files or None),
        )
        placeholder = store.create_turn(PLACEHOLDER_TEXT, "assistant", user_turn.id)

        rooted = Conversation(
            messages=dict(conversation.messages),
            active_path=store.path_to(conversation.messages, parent_id),
        )
        rooted = store.add_message_to_tree(rooted, user_turn)
        self._commit(store.add_message_to_tree(rooted, placeholder))

        if self.session_logger:
            self.session_logger.log_turn(user_turn)

        await self._generate(user_turn, placeholder)
        return self._conversation

    async def edit_user_message(self, turn_id: str, new_content: str) -> Optional[Conversation]:
        """Branch a user turn with new text and generate an answer to it.

        Returns:
            The conversation after generation, or None for an invalid target
        """
        target = self._conversation.get(turn_id)
        if target is None or target.role != "user" or not new_content.strip():
            return None

        previous = target.components or MessageComponents()
        components = MessageComponents(
            user_input=new_content.strip(),
            attached_files=previous.attached_files,
        )
        edited = store.edit_user_message(self._conversation, turn_id, new_content, components)
        if edited is None:
            return None

        user_turn = edited.messages[edited.active_path[-1]]
        placeholder = store.create_turn(PLACEHOLDER_TEXT, "assistant", user_turn.id)
        self._commit(store.add_message_to_tree(edited, placeholder))

        if self.session_logger:
            self.session_logger.log_turn(user_turn)

        await self._generate(user_turn, placeholder)
        return self._conversation

    def edit_assistant_message(self, turn_id: str, new_content: str) -> Optional[Conversation]:
        """Fix an assistant turn's text in place, without branching."""
        updated = store.update_assistant_message(self._conversation, turn_id, new_content)
        if updated is None:
            return None
        return self._commit(updated)

    async def regenerate(self, turn_id: str) -> Optional[Conversation]:
        """Generate a new answer as a sibling branch.

        For an assistant turn the new answer goes under the same user turn.
        For a user turn a new assistant child is generated.

        Returns:
            The conversation after generation, or None for an invalid target
        """
        target = self._conversation.get(turn_id)
        if target is None:
            return None

        if target.role == "user":
            user_turn = target
        elif target.role == "assistant" and target.parent_id is not None:
            user_turn = self._conversation.get(target.parent_id)
            if user_turn is None or user_turn.role != "user":
                return None
        else:
            return None

        placeholder = store.create_turn(PLACEHOLDER_TEXT, "assistant", user_turn.id)
        messages = dict(self._conversation.messages)
        messages[placeholder.id] = placeholder
        self._commit(Conversation(
            messages=messages,
            active_path=[*store.path_to(messages, user_turn.id), placeholder.id],
        ))

        await self._generate(user_turn, placeholder)
        return self._conversation

    def delete_node(self, turn_id: str) -> Optional[Conversation]:
        """Collapse the branch point at a turn (see delete_node_and_siblings)."""
        updated = store.delete_node_and_siblings(self._conversation, turn_id)
        if updated is None:
            return None
        return self._commit(updated)

    def navigate_branch(self, turn_id: str, direction: branches.Direction) -> Optional[Conversation]:
        """Move the active path to a neighbouring sibling of a turn."""
        updated = branches.navigate_branch(self._conversation, turn_id, direction)
        if updated is None:
            return None
        return self._commit(updated)

    # Generation

    async def _generate(self, user_turn: Turn, placeholder: Turn) -> None:
        cancel = CancelToken()
        self._cancel = cancel
        # Ancestor chain from the stored links, not the active path
        history = store.get_conversation_history(self._conversation.messages, user_turn.id)

        try:
            if self.agent_enabled:
                logger.debug("Routing %s through the agent pipeline", user_turn.id)
                content, reasoning, components = await self._run_agent(
                    user_turn, placeholder, history, cancel
                )
            else:
                logger.debug("Routing %s directly to %s", user_turn.id, self.config.current_provider_id)
                content, reasoning = await self._run_direct(user_turn, placeholder, history, cancel)
                components = None
        finally:
            self._cancel = None

        self._finalize(placeholder, content, reasoning, components)

    def request_context(self, user_turn: Turn) -> Optional[str]:
        """Temporary context for a request: the session context plus the turn's attached files."""
        components = user_turn.components or MessageComponents()
        parts = [p for p in [self.extra_context, *(components.attached_files or [])] if p and p.strip()]
        return "\n\n".join(parts) or None

    async def _run_direct(
        self,
        user_turn: Turn,
        placeholder: Turn,
        history: list[Turn],
        cancel: CancelToken,
    ) -> tuple[str, Optional[str]]:
        thinking = ""
        answer = ""

        def on_thinking(text: str) -> None:
            nonlocal thinking
            thinking = text
            if self.callbacks.on_thinking_update:
                self.callbacks.on_thinking_update(text)

        def on_answer(text: str) -> None:
            nonlocal answer
            answer = text
            if self.callbacks.on_answer_update:
                self.callbacks.on_answer_update(text)

        options = RequestOptions.from_config(self.config)
        extra_context = self.request_context(user_turn)
        if self.session_logger:
            self.session_logger.save_request(
                placeholder.id,
                build_request_messages(history, options, extra_context),
            )

        try:
            connector = self.connectors.get()
            result = await connector.call(
                history,
                options,
                cancel,
                on_thinking=on_thinking,
                on_answer=on_answer,
                extra_context=extra_context,
            )
            return result.content, result.reasoning_content
        except GenerationCancelled as e:
            partial = answer or (e.partial.content if e.partial else "")
            return partial or INTERRUPTED_TEXT, thinking or None
        except Exception as e:
            logger.warning("Generation failed: %s", e)
            return f"{GENERATION_FAILED_PREFIX}: {e}", thinking or None

    async def _run_agent(
        self,
        user_turn: Turn,
        placeholder: Turn,
        history: list[Turn],
        cancel: CancelToken,
    ) -> tuple[str, Optional[str], Optional[MessageComponents]]:
        thinking = ""
        answer = ""
        pipeline = self.pipeline
        components = user_turn.components or MessageComponents()
        context = AgentContext(
            user_input=components.user_input or user_turn.content,
            attached_files=list(components.attached_files or []),
            conversation_history=history,
            options=RequestOptions.from_config(self.config),
            extra_context=self.extra_context,
        )

        def on_progress(update: ProgressUpdate) -> None:
            nonlocal thinking, answer
            if update.kind == "message" and update.task_id == pipeline.main_task_id:
                if update.channel == "thinking":
                    thinking = update.text or ""
                    if self.callbacks.on_thinking_update:
                        self.callbacks.on_thinking_update(thinking)
                else:
                    answer = update.text or ""
                    if self.callbacks.on_answer_update:
                        self.callbacks.on_answer_update(answer)
            if self.callbacks.on_agent_progress:
                self.callbacks.on_agent_progress(update)

        try:
            result = await pipeline.run(context, cancel, on_progress)
        except Exception as e:
            logger.warning("Agent workflow failed: %s", e)
            return f"{AGENT_FAILED_PREFIX}: {e}", thinking or None, None

        if self.session_logger:
            self.session_logger.save_pipeline_result(placeholder.id, result)

        final = result.final
        if result.success and final is not None:
            content, reasoning = final.content, final.reasoning_content
        elif result.cancelled:
            content = (final.content if final else "") or answer or INTERRUPTED_TEXT
            reasoning = (final.reasoning_content if final else None) or thinking or None
        else:
            content, reasoning = f"{AGENT_FAILED_PREFIX}: {result.error}", thinking or None

        agent_components = MessageComponents(
            optimized_input=context.goal if context.goal != context.user_input else None,
            agent_results=[to_task_result_view(r) for r in result.task_results],
        )
        return content, reasoning, agent_components

    def _finalize(
        self,
        placeholder: Turn,
        content: str,
        reasoning: Optional[str],
        components: Optional[MessageComponents],
    ) -> None:
        # The caller may have deleted the placeholder while it was streaming
        if placeholder.id not in self._conversation.messages:
            logger.debug("Placeholder %s is gone, dropping result", placeholder.id)
            return

        final_turn = self._conversation.messages[placeholder.id].model_copy(update={
            "content": content,
            "reasoning_content": reasoning,
            "components": components,
        })
        self._commit(store.replace_turn(self._conversation, final_turn))

        if self.session_logger:
            self.session_logger.log_turn(final_turn)
