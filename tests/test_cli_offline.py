from __future__ import annotations

import logging
import shlex
import sys
from pathlib import Path
from typing import Iterator, List

import pytest
import yaml
from typer.testing import CliRunner

from pbt import cli
from pbt.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _detach_cli_handlers() -> Iterator[None]:
    yield
    for handler in cli._INSTALLED_HANDLERS:
        logging.getLogger("pbt").removeHandler(handler)
        logging.getLogger("pbt.cycles").removeHandler(handler)
        handler.close()
    cli._INSTALLED_HANDLERS.clear()


def _invoke(root: Path, *args: str):
    return runner.invoke(app, [*args, "--project", str(root)])


def _init(root: Path) -> None:
    result = _invoke(root, "init", "Todo app", "--offline")
    assert result.exit_code == 0, result.output


def _lines(output: str) -> List[str]:
    return [line.rstrip() for line in output.splitlines()]


def test_init_writes_config_and_plans_backlogs(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "init", "Todo app", "--offline")

    assert result.exit_code == 0, result.output
    lines = _lines(result.output)
    assert "Using offline stub client." in lines
    assert "Created 2 backlog(s):" in lines
    assert "  1. Project foundation" in lines
    assert "  2. Core features (depends on 1)" in lines
    config = yaml.safe_load((tmp_path / "config.yaml").read_text(encoding="utf-8"))
    assert config["project"]["description"] == "Todo app"
    assert (tmp_path / "backlogs.json").is_file()
    assert (tmp_path / "plan-build-test" / "events.jsonl").is_file()


def test_list_backlogs_shows_status_and_dependencies(tmp_path: Path) -> None:
    _init(tmp_path)

    result = _invoke(tmp_path, "list-backlogs")

    assert result.exit_code == 0, result.output
    lines = _lines(result.output)
    assert "[ ] 1. Project foundation [high/small]" in lines
    assert "[ ] 2. Core features [medium/medium] (depends on 1)" in lines
    assert "0/2 completed" in lines


def test_empty_project_lists_no_backlogs(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "list-backlogs")

    assert result.exit_code == 0
    assert "No backlogs found" in result.output


def test_blocked_backlog_reports_waiting_dependencies(tmp_path: Path) -> None:
    _init(tmp_path)

    result = _invoke(tmp_path, "process-backlog", "2", "--no-tests", "--offline")

    assert result.exit_code == 0, result.output
    lines = _lines(result.output)
    assert "All pending backlogs have unmet dependencies:" in lines
    assert "  2. Core features - waiting for: 1" in lines
    assert not (tmp_path / "notes").exists()


def test_process_backlog_builds_and_completes(tmp_path: Path) -> None:
    _init(tmp_path)

    result = _invoke(tmp_path, "process-backlog", "--no-tests", "--offline")

    assert result.exit_code == 0, result.output
    lines = _lines(result.output)
    assert "Processed backlog #1: Project foundation" in lines
    assert "Planned 2 task(s)." in lines
    assert "Backlog #1 completed!" in lines
    assert (tmp_path / "notes" / "task-1.md").read_text(encoding="utf-8").startswith("# Task 1")
    assert (tmp_path / "notes" / "task-2.md").is_file()

    status = _invoke(tmp_path, "status")
    assert status.exit_code == 0, status.output
    status_lines = _lines(status.output)
    assert "Backlogs: 1/2 completed" in status_lines
    assert "- Set up the foundation for Todo app: 2/2 tasks (100%)" in status_lines
    assert "Last task number: 2" in status_lines


def test_all_backlogs_completed_message(tmp_path: Path) -> None:
    _init(tmp_path)
    for _ in range(2):
        assert _invoke(tmp_path, "process-backlog", "--no-tests", "--offline").exit_code == 0

    result = _invoke(tmp_path, "process-backlog", "--no-tests", "--offline")

    assert result.exit_code == 0
    assert "All backlogs completed!" in _lines(result.output)


def test_backlog_management_commands(tmp_path: Path) -> None:
    _init(tmp_path)

    added = _invoke(tmp_path, "add-backlog", "Write the user guide", "--title", "Docs", "--depends-on", "2")
    assert added.exit_code == 0, added.output
    assert "Added backlog #3: Docs" in added.output

    removed = _invoke(tmp_path, "remove-backlog", "3")
    assert removed.exit_code == 0
    assert "Removed backlog #3: Docs" in removed.output

    again = _invoke(tmp_path, "add-backlog", "Write the changelog")
    assert "Added backlog #4: Write the changelog" in again.output

    assert _invoke(tmp_path, "process-backlog", "1", "--no-tests", "--offline").exit_code == 0
    reset = _invoke(tmp_path, "reset-backlog", "1")
    assert reset.exit_code == 0
    assert "Backlog #1 reset to pending." in reset.output
    listing = _lines(_invoke(tmp_path, "list-backlogs").output)
    assert "[ ] 1. Project foundation [high/small]" in listing


def test_unknown_backlog_fails_with_message(tmp_path: Path) -> None:
    _init(tmp_path)

    result = _invoke(tmp_path, "remove-backlog", "99")

    assert result.exit_code == 1
    assert "Error: Backlog 99 not found." in result.output


def test_task_and_refactor_run_offline(tmp_path: Path) -> None:
    task = _invoke(tmp_path, "task", "Add a health check", "--offline")

    assert task.exit_code == 0, task.output
    assert "Planned 2 task(s)." in task.output
    assert (tmp_path / "notes" / "task-2.md").is_file()

    refactor = _invoke(tmp_path, "refactor", "naming", "--offline")
    assert refactor.exit_code == 0, refactor.output
    assert "Planned 1 task(s)." in refactor.output
    assert (tmp_path / "notes" / "task-3.md").is_file()


def test_run_tests_uses_configured_command(tmp_path: Path) -> None:
    _init(tmp_path)
    config_path = tmp_path / "config.yaml"
    config = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    config["testing"]["command"] = f"{shlex.quote(sys.executable)} -c 'print(\"4 passed\")'"
    config["testing"]["install_command"] = ""
    config_path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")

    result = _invoke(tmp_path, "run-tests", "--offline")

    assert result.exit_code == 0, result.output
    assert "Tests passed (4)." in result.output


def test_serve_without_command_explains_remedy(tmp_path: Path) -> None:
    _init(tmp_path)

    result = _invoke(tmp_path, "serve")

    assert result.exit_code == 1
    assert "Error: No serve.command configured." in result.output


def test_invalid_config_is_rejected(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text("- just\n- a list\n", encoding="utf-8")

    result = _invoke(tmp_path, "status")

    assert result.exit_code == 1
    assert "Configuration must be a mapping" in result.output
