"""Session logging utilities."""

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from inkwell.models import Turn


def _jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    return str(value)


class SessionLogger:
    """Writes the transcript, requests and pipeline runs of one session."""

    def __init__(self, data_dir: Path, run_id: Optional[str] = None):
        """Initialize session logger.

        Args:
            data_dir: Inkwell data directory
            run_id: Optional run ID (generated if not provided)
        """
        self.data_dir = data_dir
        self.run_id = run_id or datetime.now().strftime("%Y%m%d_%H%M%S")

        # Create logs directory
        self.log_dir = data_dir / "runs" / self.run_id
        self.log_dir.mkdir(parents=True, exist_ok=True)

        # Log files
        self.transcript_path = self.log_dir / "transcript.ndjson"
        self.requests_dir = self.log_dir / "requests"
        self.pipeline_dir = self.log_dir / "pipeline"

        self.requests_dir.mkdir(exist_ok=True)
        self.pipeline_dir.mkdir(exist_ok=True)

    def log_turn(self, turn: Turn) -> None:
        """Append a finalized turn to the transcript.

        Args:
            turn: Turn to record
        """
        entry = {
            "ts": datetime.now().isoformat(),
            "id": turn.id,
            "parent_id": turn.parent_id,
            "role": turn.role,
            "content": turn.content,
        }

        if turn.reasoning_content:
            entry["reasoning_content"] = turn.reasoning_content

        with open(self.transcript_path, "a") as f:
            f.write(json.dumps(entry) + "\n")

    def save_request(self, turn_id: str, messages: list[dict]) -> None:
        """Save the messages sent to generate a turn.

        Args:
            turn_id: Turn being generated
            messages: Assembled request messages
        """
        timestamp = datetime.now().strftime("%H%M%S")
        with open(self.requests_dir / f"{timestamp}_{turn_id}.json", "w") as f:
            json.dump(
                {
                    "turn_id": turn_id,
                    "timestamp": datetime.now().isoformat(),
                    "messages": messages,
                },
                f,
                indent=2,
            )

    def save_pipeline_result(self, turn_id: str, result: Any) -> None:
        """Save the task results of an agent run.

        Args:
            turn_id: Turn the run produced
            result: PipelineResult
        """
        timestamp = datetime.now().strftime("%H%M%S")
        with open(self.pipeline_dir / f"{timestamp}_{turn_id}.json", "w") as f:
            json.dump(_jsonable(result), f, indent=2, default=_jsonable)

    def get_log_path(self) -> str:
        """Get the path to the log directory.

        Returns:
            Absolute path to log directory
        """
        return str(self.log_dir.absolute())
