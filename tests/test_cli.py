"""Tests for the REPL's conversation rendering."""

import pytest
from rich.console import Console

from inkwell import cli


@pytest.fixture
def repl(mock_config, temp_dir, monkeypatch):
    """REPL writing to a recording console."""
    monkeypatch.setattr(cli, "console", Console(record=True, width=120))
    instance = cli.REPL(temp_dir, mock_config)
    yield instance
    instance.loop.close()


def test_show_path_renders_active_branch(repl, branched_conversation):
    """Test that only turns on the active path are printed, with branch markers."""
    repl.orchestrator.set_conversation(branched_conversation)

    repl.show_path()
    output = cli.console.export_text()

    assert "assistant a2" in output
    assert "user u2" in output
    assert "user u3" not in output
    assert "1/2" in output


def test_show_path_skips_missing_ids(repl, branched_conversation):
    """Test that stale ids on the path are not rendered."""
    stale = branched_conversation.model_copy(update={"active_path": ["root", "u1", "gone"]})
    repl.orchestrator.set_conversation(stale)

    repl.show_path()
    output = cli.console.export_text()

    assert "user u1" in output
    assert "gone" not in output


def test_show_path_empty(repl):
    """Test the empty conversation message."""
    repl.show_path()

    assert "Empty conversation" in cli.console.export_text()
