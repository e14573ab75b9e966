"""Task processors: judgment, transform and generation."""

import logging
from dataclasses import replace
from typing import Optional

from inkwell.agents.pipeline import (
    AgentContext,
    StreamCallback,
    TaskConfig,
    TaskProcessor,
    read_task_input,
    write_task_output,
)
from inkwell.cancel import CancelToken
from inkwell.context import RequestOptions
from inkwell.llm import ConnectorRegistry, LLMResult

logger = logging.getLogger(__name__)

YES_TAG = "<yes/>"
NO_TAG = "<no/>"


def parse_judgment(response: str, default: bool = False) -> bool:
    """Read a verdict from a tagged model response.

    Args:
        response: Model output expected to contain <yes/> or <no/>
        default: Verdict when neither tag is present

    Returns:
        True for yes, False for no
    """
    text = response.lower()
    if YES_TAG in text:
        return True
    if NO_TAG in text:
        return False
    return default


class LLMTaskProcessor:
    """Base for processors that call a model through the registry."""

    def __init__(self, connectors: ConnectorRegistry):
        self.connectors = connectors

    def single_prompt(self, task: TaskConfig, text: str) -> tuple[list[dict], RequestOptions]:
        messages = [{"role": "user", "content": text}]
        return messages, RequestOptions(system_prompt=task.system_prompt or None)


class JudgmentProcessor(LLMTaskProcessor):
    """Asks the model a yes/no question about the task input."""

    def __init__(self, connectors: ConnectorRegistry, default_verdict: bool = False):
        super().__init__(connectors)
        self.default_verdict = default_verdict

    async def process(
        self,
        context: AgentContext,
        task: TaskConfig,
        cancel: CancelToken,
        on_stream: Optional[StreamCallback] = None,
    ) -> bool:
        text = read_task_input(context, task)
        if len(text.strip()) < task.min_input_length:
            logger.debug("%s: input too short, verdict %s", task.id, self.default_verdict)
            context.data[task.id] = self.default_verdict
            return self.default_verdict

        messages, options = self.single_prompt(task, text)
        result = await self.connectors.get(task.provider_id).call(messages, options, cancel)
        verdict = parse_judgment(result.content, self.default_verdict)
        context.data[task.id] = verdict
        return verdict


class TransformProcessor(LLMTaskProcessor):
    """Rewrites the task input with one model call."""

    async def process(
        self,
        context: AgentContext,
        task: TaskConfig,
        cancel: CancelToken,
        on_stream: Optional[StreamCallback] = None,
    ) -> str:
        text = read_task_input(context, task)
        if len(text.strip()) < task.min_input_length:
            # Nothing worth rewriting; pass through unchanged
            write_task_output(context, task, text)
            return text

        def on_answer(answer: str) -> None:
            if on_stream:
                on_stream("answer", answer)

        messages, options = self.single_prompt(task, text)
        result = await self.connectors.get(task.provider_id).call(
            messages,
            options,
            cancel,
            on_answer=on_answer,
        )
        output = result.content.strip()
        write_task_output(context, task, output)
        return output


class GenerationProcessor(LLMTaskProcessor):
    """Main generation: the conversation with the current goal as the last user turn."""

    def build_messages(self, context: AgentContext) -> list[dict]:
        messages = [
            {"role": turn.role, "content": turn.content}
            for turn in context.conversation_history
        ]
        if messages and messages[-1]["role"] == "user":
            messages[-1] = {"role": "user", "content": context.goal}
        else:
            messages.append({"role": "user", "content": context.goal})
        return messages

    def build_extra_context(self, context: AgentContext) -> Optional[str]:
        parts = [p for p in [context.extra_context, *context.attached_files] if p and p.strip()]
        return "\n\n".join(parts) or None

    async def process(
        self,
        context: AgentContext,
        task: TaskConfig,
        cancel: CancelToken,
        on_stream: Optional[StreamCallback] = None,
    ) -> LLMResult:
        options = replace(
            context.options,
            system_prompt=task.system_prompt or context.options.system_prompt,
            context_placement="after_system",
        )

        def on_thinking(text: str) -> None:
            if on_stream:
                on_stream("thinking", text)

        def on_answer(text: str) -> None:
            if on_stream:
                on_stream("answer", text)

        return await self.connectors.get(task.provider_id).call(
            self.build_messages(context),
            options,
            cancel,
            on_thinking=on_thinking,
            on_answer=on_answer,
            extra_context=self.build_extra_context(context),
        )


def default_processors(connectors: ConnectorRegistry) -> dict[str, TaskProcessor]:
    """Processor table keyed by task kind."""
    return {
        "judgment": JudgmentProcessor(connectors),
        "transform": TransformProcessor(connectors),
        "generation": GenerationProcessor(connectors),
    }
