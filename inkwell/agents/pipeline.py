"""Sequential agent pipeline.

Tasks run one at a time, in list order, over a shared AgentContext. Later
tasks read what earlier ones wrote (``goal``, ``attached_files``, ``data``).
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Literal, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from inkwell.cancel import CancelToken
from inkwell.constants import DEFAULT_MIN_INPUT_LENGTH, MAIN_TASK_ID
from inkwell.context import RequestOptions
from inkwell.errors import GenerationCancelled
from inkwell.llm import LLMResult
from inkwell.models import Turn

logger = logging.getLogger(__name__)

TaskKind = Literal["judgment", "transform", "generation"]
TaskStatus = Literal["pending", "running", "completed", "failed", "cancelled"]


@dataclass
class TaskResult:
    """Outcome of one task invocation."""

    id: str
    kind: str
    name: str
    status: TaskStatus
    input: Any
    start_time: float
    output: Any = None
    end_time: Optional[float] = None
    error: Optional[str] = None

    @property
    def duration(self) -> float:
        """Seconds the task ran (0 while still running)."""
        if self.end_time is None:
            return 0.0
        return self.end_time - self.start_time


@dataclass
class AgentContext:
    """Scratchpad shared by every task of one pipeline run.

    Attributes:
        user_input: What the user typed
        goal: The working version of the request; starts as ``user_input``
        attached_files: File texts the user attached
        conversation_history: Ancestor chain ending at the user turn
        options: Request assembly settings for generation
        extra_context: Temporary context for this request only
        task_results: Latest result per task id
        data: Free-form values tasks pass to each other
    """

    user_input: str
    goal: str = ""
    attached_files: list[str] = field(default_factory=list)
    conversation_history: list[Turn] = field(default_factory=list)
    options: RequestOptions = field(default_factory=RequestOptions)
    extra_context: Optional[str] = None
    task_results: dict[str, TaskResult] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.goal:
            self.goal = self.user_input


Predicate = Callable[[AgentContext], bool]


class TaskConfig(BaseModel):
    """Configuration of one pipeline task.

    ``requires`` lists task ids that must have completed (and, for
    judgments, returned a true verdict) before this task runs. ``when`` is
    an extra predicate over the live context.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    name: str
    kind: TaskKind
    enabled: bool = True
    description: str = ""
    system_prompt: str = ""
    provider_id: Optional[str] = None
    input: Literal["user_input", "goal", "files"] = "goal"
    output: Literal["none", "goal", "files"] = "none"
    min_input_length: int = DEFAULT_MIN_INPUT_LENGTH
    requires: list[str] = Field(default_factory=list)
    when: Optional[Predicate] = Field(None, exclude=True)


@dataclass
class ProgressUpdate:
    """Event sent to the pipeline observer.

    ``task_start`` and ``task_complete`` carry the results collected so far.
    ``message`` carries cumulative streamed text from the running task on
    ``channel`` ("thinking" or "answer").
    """

    kind: Literal["task_start", "task_complete", "message"]
    task_id: str
    task_name: str
    results: list[TaskResult] = field(default_factory=list)
    text: Optional[str] = None
    channel: Optional[str] = None


@dataclass
class PipelineResult:
    """Outcome of a whole pipeline run."""

    success: bool
    task_results: list[TaskResult]
    final: Optional[LLMResult] = None
    cancelled: bool = False
    error: Optional[str] = None
    total_time: float = 0.0


# (channel, cumulative text)
StreamCallback = Callable[[str, str], None]
ProgressCallback = Callable[[ProgressUpdate], None]


class TaskProcessor(Protocol):
    """Runs one kind of task.

    Expected no-op conditions (such as input too short to bother with) must
    return a pass-through output instead of raising.
    """

    async def process(
        self,
        context: AgentContext,
        task: TaskConfig,
        cancel: CancelToken,
        on_stream: Optional[StreamCallback] = None,
    ) -> Any:
        ...


def read_task_input(context: AgentContext, task: TaskConfig) -> str:
    """Resolve a task's input source from the context."""
    if task.input == "user_input":
        return context.user_input
    if task.input == "files":
        return "\n\n".join(context.attached_files)
    return context.goal


def write_task_output(context: AgentContext, task: TaskConfig, output: str) -> None:
    """Store a task's text output where its config says."""
    if task.output == "goal":
        context.goal = output
    elif task.output == "files":
        context.attached_files = [output] if output else []


class AgentPipeline:
    """Runs an ordered task list over one AgentContext."""

    def __init__(
        self,
        tasks: list[TaskConfig],
        processors: dict[str, TaskProcessor],
        main_task_id: str = MAIN_TASK_ID,
    ):
        """Initialize pipeline.

        Args:
            tasks: Ordered task configurations
            processors: Processor per task kind
            main_task_id: Task whose output is the final generation
        """
        self.tasks = tasks
        self.processors = processors
        self.main_task_id = main_task_id

    def should_run(self, task: TaskConfig, context: AgentContext) -> bool:
        """Check enablement, declared dependencies and the ``when`` predicate."""
        if not task.enabled:
            return False
        for dependency in task.requires:
            result = context.task_results.get(dependency)
            if result is None or result.status != "completed":
                return False
            if result.kind == "judgment" and result.output is not True:
                return False
        if task.when is not None and not task.when(context):
            return False
        return True

    async def run(
        self,
        context: AgentContext,
        cancel: Optional[CancelToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PipelineResult:
        """Execute the task list.

        Args:
            context: Shared context, mutated in place
            cancel: Cancellation token checked before each task
            on_progress: Observer for task and stream events

        Returns:
            PipelineResult with every attempted task's result
        """
        cancel = cancel or CancelToken()
        started = time.monotonic()
        results: list[TaskResult] = []
        cancelled = False

        def emit(update: ProgressUpdate) -> None:
            if on_progress:
                on_progress(update)

        for task in self.tasks:
            if cancel.cancelled:
                cancelled = True
                break
            if not self.should_run(task, context):
                logger.debug("Skipping task %s", task.id)
                continue

            running = TaskResult(
                id=task.id,
                kind=task.kind,
                name=task.name,
                status="running",
                input=read_task_input(context, task),
                start_time=time.time(),
            )
            context.task_results[task.id] = running
            emit(ProgressUpdate("task_start", task.id, task.name, results=list(results)))
            logger.info("Task %s started", task.id)

            def on_stream(channel: str, text: str, task=task) -> None:
                emit(ProgressUpdate("message", task.id, task.name, text=text, channel=channel))

            try:
                processor = self.processors.get(task.kind)
                if processor is None:
                    raise ValueError(f"No processor for task kind: {task.kind}")
                output = await processor.process(context, task, cancel, on_stream)
                result = replace(running, status="completed", output=output, end_time=time.time())
            except GenerationCancelled as e:
                result = replace(
                    running,
                    status="cancelled",
                    output=e.partial,
                    end_time=time.time(),
                    error="cancelled",
                )
                cancelled = True
            except Exception as e:
                logger.warning("Task %s failed: %s", task.id, e)
                result = replace(running, status="failed", end_time=time.time(), error=str(e))

            results.append(result)
            context.task_results[task.id] = result
            emit(ProgressUpdate("task_complete", task.id, task.name, results=list(results)))
            logger.info("Task %s %s in %.2fs", task.id, result.status, result.duration)

            if cancelled:
                break

        return self._finish(context, results, cancelled, time.monotonic() - started)

    def _finish(
        self,
        context: AgentContext,
        results: list[TaskResult],
        cancelled: bool,
        total_time: float,
    ) -> PipelineResult:
        main = context.task_results.get(self.main_task_id)
        final = main.output if main is not None and isinstance(main.output, LLMResult) else None

        if main is not None and main.status == "completed":
            return PipelineResult(True, results, final=final, total_time=total_time)

        if cancelled:
            error = None
        elif main is None:
            error = f"main task '{self.main_task_id}' did not run"
        else:
            error = main.error or f"main task '{self.main_task_id}' {main.status}"
        return PipelineResult(
            False,
            results,
            final=final,
            cancelled=cancelled,
            error=error,
            total_time=total_time,
        )
