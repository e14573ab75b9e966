"""Default agent workflow and task-config loading."""

from typing import TYPE_CHECKING, Optional

from inkwell.agents.pipeline import AgentContext, AgentPipeline, Predicate, TaskConfig
from inkwell.agents.tasks import default_processors
from inkwell.constants import MAIN_TASK_ID

if TYPE_CHECKING:
    from inkwell.config import Config
    from inkwell.llm import ConnectorRegistry

SHOULD_OPTIMIZE_PROMPT = """You judge whether a user's message needs rewriting before it is answered.

Rewrite is needed when:
1. It has obvious grammar mistakes or typos
2. It is unclear or its logic is muddled
3. It is too terse to act on

No rewrite is needed when:
1. It is already clear, accurate and complete
2. It is long, article-style prose
3. It is too chaotic to recover the user's intent

Reply with exactly one tag:
- <yes/> if it needs rewriting
- <no/> if it does not

Return only the tag."""

OPTIMIZE_INPUT_PROMPT = """You rewrite user messages so they are clear, accurate and easy to act on.

Rules:
1. Keep the original meaning
2. Fix obvious grammar mistakes and typos
3. Make the wording concise
4. Add context only when it is clearly implied

Output only the rewritten text, with no explanation."""

SUMMARIZE_FILES_PROMPT = """You condense attached documents into reference notes for a writing assistant.

Keep names, facts, figures and any passages the user is likely to ask about.
Drop boilerplate. Output only the notes."""


def has_attached_files(context: AgentContext) -> bool:
    return bool(context.attached_files)


def has_extra_context(context: AgentContext) -> bool:
    return bool(context.extra_context)


# Predicates that config.json can name in a task's "when" field
PREDICATES: dict[str, Predicate] = {
    "has_attached_files": has_attached_files,
    "has_extra_context": has_extra_context,
}


def default_tasks() -> list[TaskConfig]:
    """Build the default workflow.

    should-optimize -> optimize-input -> summarize-files -> main-generation
    """
    return [
        TaskConfig(
            id="should-optimize",
            name="Judge input",
            kind="judgment",
            description="Decide whether the user's message needs rewriting",
            system_prompt=SHOULD_OPTIMIZE_PROMPT,
            input="user_input",
        ),
        TaskConfig(
            id="optimize-input",
            name="Optimize input",
            kind="transform",
            description="Fix grammar and sharpen the wording of the user's message",
            system_prompt=OPTIMIZE_INPUT_PROMPT,
            input="user_input",
            output="goal",
            requires=["should-optimize"],
        ),
        TaskConfig(
            id="summarize-files",
            name="Summarize files",
            kind="transform",
            description="Condense attached files before generation",
            system_prompt=SUMMARIZE_FILES_PROMPT,
            input="files",
            output="files",
            when=has_attached_files,
        ),
        TaskConfig(
            id=MAIN_TASK_ID,
            name="Generate answer",
            kind="generation",
            description="Answer the (possibly rewritten) message",
        ),
    ]


def load_task_configs(raw_tasks: list[dict]) -> list[TaskConfig]:
    """Build task configs from config.json entries.

    Args:
        raw_tasks: Task dicts; ``when`` may name an entry of PREDICATES

    Returns:
        Task configs in the given order

    Raises:
        ValueError: If a ``when`` name is unknown
    """
    tasks = []
    for raw in raw_tasks:
        entry = dict(raw)
        when = entry.pop("when", None)
        if when is not None:
            if when not in PREDICATES:
                raise ValueError(
                    f"Unknown predicate: {when}. Available: {', '.join(PREDICATES)}"
                )
            entry["when"] = PREDICATES[when]
        tasks.append(TaskConfig.model_validate(entry))
    return tasks


def build_pipeline(
    config: "Config",
    connectors: "ConnectorRegistry",
    tasks: Optional[list[TaskConfig]] = None,
) -> AgentPipeline:
    """Create the pipeline configured for this session."""
    if tasks is None:
        tasks = load_task_configs(config.agent_tasks) if config.agent_tasks else default_tasks()
    return AgentPipeline(tasks, default_processors(connectors), main_task_id=config.main_task_id)
