"""CLI and REPL for Inkwell."""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console, Group
from rich.live import Live
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from inkwell.agents.defaults import build_pipeline
from inkwell.agents.pipeline import ProgressUpdate
from inkwell.branches import get_branch_navigation
from inkwell.config import Config
from inkwell.constants import CONTEXT_PLACEMENTS, PLACEHOLDER_TEXT
from inkwell.history import ConversationHistory, JsonFileStorage
from inkwell.llm import ConnectorRegistry, list_models
from inkwell.models import Conversation, MessageNode, Turn
from inkwell.orchestrator import ConversationOrchestrator, StreamCallbacks
from inkwell.tree import build_tree, get_active_nodes
from inkwell.utils.logging import SessionLogger

app = typer.Typer(help="Inkwell - Branching chat for writers")
console = Console()

SHORT_ID = 8
ROLE_STYLES = {"user": "bold cyan", "assistant": "bold green", "system": "bold magenta"}


class REPL:
    """Interactive REPL for Inkwell."""

    def __init__(self, project_root: Path, config: Config):
        """Initialize REPL.

        Args:
            project_root: Project root directory
            config: Configuration object
        """
        self.project_root = project_root
        self.config = config
        self.logger = SessionLogger(config.data_dir)
        self.history = ConversationHistory(JsonFileStorage(config.data_dir / "history"))
        self.connectors = ConnectorRegistry(config)

        self.callbacks = StreamCallbacks(
            on_thinking_update=self._on_thinking,
            on_answer_update=self._on_answer,
            on_agent_progress=self._on_progress,
            on_tree_update=self._on_tree_update,
        )
        self.orchestrator = ConversationOrchestrator(
            config,
            self.connectors,
            pipeline=build_pipeline(config, self.connectors),
            callbacks=self.callbacks,
            session_logger=self.logger,
        )
        self.loop = asyncio.new_event_loop()

        self.attached_files: list[str] = []
        self.running = True

        # Live streaming state
        self._live: Optional[Live] = None
        self._status = ""
        self._thinking = ""
        self._answer = ""

    # Conversation bookkeeping

    def open_initial_conversation(self) -> None:
        conversation_id = self.history.current_id
        conversation = self.history.load_conversation(conversation_id) if conversation_id else None
        if conversation is None:
            conversation_id = self.history.create_new_conversation()
            conversation = self.history.load_conversation(conversation_id)
        self.orchestrator.set_conversation(conversation)

    def _on_tree_update(self, conversation: Conversation) -> None:
        if self.history.current_id:
            self.history.update_conversation(self.history.current_id, conversation)

    def resolve_turn(self, prefix: str) -> Optional[str]:
        """Resolve a unique turn-id prefix in the open conversation."""
        matches = [i for i in self.orchestrator.conversation.messages if i.startswith(prefix)]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            console.print(f"[red]No turn matches: {prefix}[/red]")
        else:
            console.print(f"[red]Ambiguous id {prefix}: {len(matches)} turns match[/red]")
        return None

    def resolve_conversation(self, prefix: str) -> Optional[str]:
        matches = [m.id for m in self.history.conversations if m.id.startswith(prefix)]
        if len(matches) == 1:
            return matches[0]
        console.print(f"[red]No unique conversation matches: {prefix}[/red]")
        return None

    # Streaming display

    def _render_stream(self) -> Group:
        parts = []
        if self._status:
            parts.append(Text(self._status, style="dim"))
        if self._thinking:
            parts.append(Panel(Text(self._thinking, style="dim italic"), title="thinking", border_style="dim"))
        parts.append(Markdown(self._answer or PLACEHOLDER_TEXT))
        return Group(*parts)

    def _refresh(self) -> None:
        if self._live is not None:
            self._live.update(self._render_stream())

    def _on_thinking(self, text: str) -> None:
        self._thinking = text
        self._refresh()

    def _on_answer(self, text: str) -> None:
        self._answer = text
        self._refresh()

    def _on_progress(self, update: ProgressUpdate) -> None:
        if update.kind == "task_start":
            self._status = f"> {update.task_name}..."
        elif update.kind == "task_complete":
            result = update.results[-1]
            self._status = f"> {update.task_name}: {result.status} ({result.duration:.1f}s)"
        self._refresh()

    def run_generation(self, coro) -> None:
        """Run one generation with live output; Ctrl+C cancels it."""
        if self.orchestrator.is_generating:
            console.print("[yellow]A generation is already running[/yellow]")
            coro.close()
            return

        self._status = ""
        self._thinking = ""
        self._answer = ""

        try:
            self.loop.add_signal_handler(signal.SIGINT, self.orchestrator.abort)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            handler_installed = False

        try:
            with Live(self._render_stream(), console=console, refresh_per_second=10, transient=True) as live:
                self._live = live
                result = self.loop.run_until_complete(coro)
        finally:
            self._live = None
            if handler_installed:
                self.loop.remove_signal_handler(signal.SIGINT)

        if result is None:
            console.print("[red]Nothing to do for that turn[/red]")
            return
        turns = result.active_turns()
        if turns:
            self.print_turn(turns[-1])

    # Rendering

    def print_turn(self, turn: Turn) -> None:
        nav = get_branch_navigation(self.orchestrator.conversation, turn.id)
        branch = ""
        if nav.total_branches > 1:
            left = "<" if nav.can_navigate_left else " "
            right = ">" if nav.can_navigate_right else " "
            branch = f" {left}{nav.current_index + 1}/{nav.total_branches}{right}"

        title = f"[{ROLE_STYLES.get(turn.role, 'bold')}]{turn.role}[/] [dim]{turn.id[:SHORT_ID]}{branch}[/dim]"
        body = [Markdown(turn.content)]
        if turn.reasoning_content:
            body.insert(0, Text(turn.reasoning_content, style="dim italic"))
        components = turn.components
        if components and components.optimized_input:
            body.append(Text(f"optimized input: {components.optimized_input}", style="dim"))
        console.print(Panel(Group(*body), title=title, title_align="left", border_style="dim"))

    def show_path(self) -> None:
        nodes = get_active_nodes(self.orchestrator.conversation)
        if not nodes:
            console.print("[dim]Empty conversation[/dim]")
        for node in nodes:
            self.print_turn(node.turn)

    def show_tree(self) -> None:
        conversation = self.orchestrator.conversation
        active = set(conversation.active_path)
        root = Tree("[bold]conversation[/bold]")

        def add(parent: Tree, node: MessageNode) -> None:
            preview = " ".join(node.content.split())[:60]
            style = "bold" if node.id in active else "dim"
            branch = parent.add(
                f"[{style}]{node.id[:SHORT_ID]} {node.role}: {preview}[/{style}]"
            )
            for child in node.children:
                add(branch, child)

        for node in build_tree(conversation.messages):
            add(root, node)
        console.print(root)

    def list_conversations(self) -> None:
        table = Table(title="Conversations")
        table.add_column("id", style="dim")
        table.add_column("title")
        table.add_column("updated")
        table.add_column("preview", style="dim")
        for metadata in self.history.conversations:
            marker = "*" if metadata.id == self.history.current_id else ""
            table.add_row(
                metadata.id[:SHORT_ID] + marker,
                metadata.title,
                metadata.timestamp.strftime("%Y-%m-%d %H:%M"),
                metadata.preview,
            )
        console.print(table)

    # Main loop

    def start(self) -> None:
        """Start the REPL."""
        console.print(Panel.fit(
            "[bold cyan]Inkwell[/bold cyan] - Branching chat for writers\n"
            f"Project: {self.project_root}\n"
            f"Model: {self.config.default_model}\n"
            f"Agent: {'on' if self.config.agent_enabled else 'off'}\n"
            "\n"
            "Type /help for commands or /quit to exit",
            border_style="cyan"
        ))

        self.open_initial_conversation()
        self.show_path()

        while self.running:
            try:
                user_input = console.input("[bold cyan]inkwell>[/bold cyan] ").strip()

                if not user_input:
                    continue

                self.handle_input(user_input)

            except KeyboardInterrupt:
                console.print("\n[dim]Use /quit to exit[/dim]")
                continue
            except EOFError:
                break

        self.loop.close()
        console.print("\n[cyan]Goodbye![/cyan]")

    def handle_input(self, user_input: str) -> None:
        """Handle user input (command or message).

        Args:
            user_input: User input string
        """
        if user_input.startswith("/"):
            self.handle_command(user_input)
        else:
            files = self.attached_files or None
            self.attached_files = []
            self.run_generation(self.orchestrator.send_message(user_input, attached_files=files))

    def handle_command(self, command: str) -> None:
        """Handle slash command.

        Args:
            command: Command string (starting with /)
        """
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        args = parts[1] if len(parts) > 1 else ""

        try:
            if cmd == "/help":
                self.show_help()
            elif cmd == "/quit" or cmd == "/exit":
                self.running = False
            elif cmd == "/new":
                conversation_id = self.history.create_new_conversation()
                self.orchestrator.set_conversation(self.history.load_conversation(conversation_id))
                console.print(f"[green]Started conversation {conversation_id[:SHORT_ID]}[/green]")
            elif cmd == "/list":
                self.list_conversations()
            elif cmd == "/open":
                conversation_id = self.resolve_conversation(args) if args else None
                if conversation_id is None:
                    console.print("[red]Usage: /open <id>[/red]")
                    return
                conversation = self.history.load_conversation(conversation_id)
                if conversation is None:
                    console.print(f"[red]Could not load conversation {conversation_id}[/red]")
                    return
                self.history.set_current(conversation_id)
                self.orchestrator.set_conversation(conversation)
                self.show_path()
            elif cmd == "/rename":
                if not args or not self.history.current_id:
                    console.print("[red]Usage: /rename <title>[/red]")
                    return
                self.history.rename_conversation(self.history.current_id, args)
                console.print(f"[green]Renamed to: {args}[/green]")
            elif cmd == "/delete-conversation":
                if self.history.current_id:
                    self.history.delete_conversation(self.history.current_id)
                self.open_initial_conversation()
                self.show_path()
            elif cmd == "/path":
                self.show_path()
            elif cmd == "/tree":
                self.show_tree()
            elif cmd in ("/edit", "/fix"):
                id_prefix, _, text = args.partition(" ")
                turn_id = self.resolve_turn(id_prefix) if id_prefix else None
                if turn_id is None or not text.strip():
                    console.print(f"[red]Usage: {cmd} <id> <text>[/red]")
                    return
                if cmd == "/edit":
                    self.run_generation(self.orchestrator.edit_user_message(turn_id, text))
                elif self.orchestrator.edit_assistant_message(turn_id, text) is None:
                    console.print("[red]/fix only applies to assistant turns[/red]")
                else:
                    self.print_turn(self.orchestrator.conversation.messages[turn_id])
            elif cmd == "/regen":
                turn_id = self.resolve_turn(args) if args else self._last_assistant_id()
                if turn_id is None:
                    console.print("[red]Usage: /regen [id][/red]")
                    return
                self.run_generation(self.orchestrator.regenerate(turn_id))
            elif cmd == "/delete":
                turn_id = self.resolve_turn(args) if args else None
                if turn_id is None or self.orchestrator.delete_node(turn_id) is None:
                    console.print("[red]Usage: /delete <id>[/red]")
                    return
                self.show_path()
            elif cmd in ("/left", "/right"):
                turn_id = self.resolve_turn(args) if args else None
                direction = "left" if cmd == "/left" else "right"
                if turn_id is None or self.orchestrator.navigate_branch(turn_id, direction) is None:
                    console.print(f"[red]Cannot move {direction} from that turn[/red]")
                    return
                self.show_path()
            elif cmd == "/context":
                if not args:
                    current = self.orchestrator.extra_context
                    console.print(f"[dim]Context: {current or '(none)'}[/dim]")
                elif args.lower() == "clear":
                    self.orchestrator.extra_context = None
                    console.print("[green]Temporary context cleared[/green]")
                else:
                    self.orchestrator.extra_context = args
                    console.print("[green]Temporary context set[/green]")
            elif cmd == "/attach":
                if not args:
                    console.print(f"[dim]{len(self.attached_files)} file(s) attached to the next message[/dim]")
                elif args.lower() == "clear":
                    self.attached_files = []
                    console.print("[green]Attachments cleared[/green]")
                else:
                    path = (self.project_root / args).resolve()
                    if not path.is_file():
                        console.print(f"[red]Not a file: {path}[/red]")
                        return
                    self.attached_files.append(f"### {path.name}\n{path.read_text(errors='replace')}")
                    console.print(f"[green]Attached {path.name}[/green]")
            elif cmd == "/placement":
                if args not in CONTEXT_PLACEMENTS:
                    console.print(f"[dim]Placement: {self.config.context_placement}[/dim]")
                    console.print(f"[dim]Usage: /placement {'|'.join(CONTEXT_PLACEMENTS)}[/dim]")
                    return
                self.config.context_placement = args
                console.print(f"[green]Context placement: {args}[/green]")
            elif cmd == "/agent":
                if args.lower() == "on":
                    self.config.agent_enabled = True
                    console.print("[green]Agent pipeline enabled[/green]")
                elif args.lower() == "off":
                    self.config.agent_enabled = False
                    console.print("[yellow]Agent pipeline disabled[/yellow]")
                else:
                    console.print(f"[dim]Agent currently: {'on' if self.config.agent_enabled else 'off'}[/dim]")
                    console.print("[dim]Usage: /agent on|off[/dim]")
            elif cmd == "/model":
                if args:
                    if args not in self.config.providers:
                        console.print(f"[red]Unknown model: {args}[/red]")
                        return
                    self.config.default_model = args
                    console.print(f"[green]Switched to model: {args}[/green]")
                else:
                    console.print(f"[dim]Current model: {self.config.default_model}[/dim]")
                    console.print("\nAvailable models:")
                    for model in sorted(set(list_models()) | set(self.config.providers)):
                        console.print(f"  - {model}")
            elif cmd == "/config":
                config_dict = self.config.to_dict()
                console.print(Panel(
                    "\n".join(f"{k}: {v}" for k, v in config_dict.items()),
                    title="Configuration",
                    border_style="blue"
                ))
            elif cmd == "/log":
                log_path = self.logger.get_log_path()
                console.print(f"[dim]Session logs: {log_path}[/dim]")
            else:
                console.print(f"[red]Unknown command: {cmd}[/red]")
                console.print("[dim]Type /help for available commands[/dim]")

        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")
            import traceback
            traceback.print_exc()

    def _last_assistant_id(self) -> Optional[str]:
        for turn in reversed(self.orchestrator.conversation.active_turns()):
            if turn.role == "assistant":
                return turn.id
        return None

    def show_help(self) -> None:
        """Show help message."""
        help_text = """
**Messages:** type anything not starting with `/` to send it.

**Conversations:**

- `/new` - Start a new conversation
- `/list` - List saved conversations
- `/open <id>` - Open a conversation
- `/rename <title>` - Rename the open conversation
- `/delete-conversation` - Delete the open conversation

**Turns** (ids accept unique prefixes):

- `/path` - Show the active path
- `/tree` - Show every branch
- `/edit <id> <text>` - Edit a user turn as a new branch and regenerate
- `/fix <id> <text>` - Correct an assistant turn in place
- `/regen [id]` - Regenerate an answer as a new branch
- `/delete <id>` - Keep this branch, drop its siblings
- `/left <id>` / `/right <id>` - Switch to a neighbouring branch

**Context:**

- `/context <text>|clear` - Temporary context for the next requests
- `/placement append|after_system` - Where temporary context goes
- `/attach <path>|clear` - Attach a file to the next message

**Settings:**

- `/agent on|off` - Toggle the agent pipeline
- `/model [name]` - Show or switch LLM model
- `/config` - Show current configuration
- `/log` - Show session log path
- `/help` - Show this help message
- `/quit` - Exit Inkwell

Press Ctrl+C while a reply is streaming to stop it and keep the partial text.
        """
        console.print(Markdown(help_text))


@app.command()
def main(
    path: Optional[str] = typer.Argument(
        None,
        help="Project path (default: current directory)"
    ),
    model: Optional[str] = typer.Option(
        None,
        "--model", "-m",
        help="Model to use (e.g., openai:gpt-4o-mini)"
    ),
    agent: Optional[bool] = typer.Option(
        None,
        "--agent/--no-agent",
        help="Route messages through the agent pipeline"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show debug logs"
    ),
) -> None:
    """Start Inkwell interactive session."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console)],
        )

    # Determine project root
    project_root = Path(path).resolve() if path else Path.cwd()

    if not project_root.exists():
        console.print(f"[red]Error: Path does not exist: {project_root}[/red]")
        sys.exit(1)

    if not project_root.is_dir():
        console.print(f"[red]Error: Path is not a directory: {project_root}[/red]")
        sys.exit(1)

    # Load configuration
    try:
        config = Config.load(project_root)
    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    if model:
        config.default_model = model
    if agent is not None:
        config.agent_enabled = agent

    # Validate configuration
    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        sys.exit(1)

    # Start REPL
    try:
        repl = REPL(project_root, config)
        repl.start()
    except Exception as e:
        console.print(f"[red]Fatal error: {e}[/red]")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    app()
