from __future__ import annotations

import subprocess
import sys
from typing import Sequence

import pytest

from pbt.models.agent_client import (
    AgentConnectionError,
    AgentInvocationError,
    AgentRequest,
    AgentRetryError,
    AgentTimeoutError,
)
from pbt.models.claude_cli import DEFAULT_AGENT_COMMAND, ClaudeCliClient


@pytest.fixture(autouse=True)
def _clear_agent_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PBT_AGENT_COMMAND", raising=False)
    monkeypatch.delenv("PBT_AGENT_TIMEOUT", raising=False)


def _request() -> AgentRequest:
    return AgentRequest(role="Builder", prompt="build task 1")


def _raising(error: BaseException):
    def transport(command: Sequence[str], prompt: str, timeout: float) -> str:
        raise error

    return transport


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (subprocess.TimeoutExpired(cmd="claude", timeout=1), AgentTimeoutError),
        (ConnectionResetError("reset by peer"), AgentConnectionError),
        (FileNotFoundError("claude"), AgentInvocationError),
        (PermissionError("denied"), AgentInvocationError),
    ],
)
def test_transport_exceptions_map_to_client_errors(error: BaseException, expected: type) -> None:
    client = ClaudeCliClient(transport=_raising(error), max_retries=0)

    with pytest.raises(expected):
        client._raw_invoke(_request())


def test_timeouts_are_retried_then_reported() -> None:
    sleeps: list = []
    client = ClaudeCliClient(
        transport=_raising(subprocess.TimeoutExpired(cmd="claude", timeout=1)),
        max_retries=2,
        retry_delay=5.0,
        sleep=sleeps.append,
    )

    with pytest.raises(AgentRetryError):
        client.invoke(_request())

    assert sleeps == [5.0, 5.0]


def test_transport_receives_command_prompt_and_timeout() -> None:
    received: list = []

    def transport(command: Sequence[str], prompt: str, timeout: float) -> str:
        received.append((tuple(command), prompt, timeout))
        return "ok"

    client = ClaudeCliClient(transport=transport, timeout=30)

    assert client.invoke(_request()) == "ok"
    assert received == [(DEFAULT_AGENT_COMMAND, "build task 1", 30)]


def test_environment_overrides_command_and_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PBT_AGENT_COMMAND", "my-agent --print")
    monkeypatch.setenv("PBT_AGENT_TIMEOUT", "45")

    client = ClaudeCliClient()

    assert client.command == ("my-agent", "--print")
    assert client.timeout == 45.0


def test_invalid_timeout_override_is_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PBT_AGENT_TIMEOUT", "soon")

    assert ClaudeCliClient(timeout=12).timeout == 12


def test_empty_command_is_rejected() -> None:
    with pytest.raises(ValueError):
        ClaudeCliClient(command=())


def test_subprocess_transport_pipes_prompt_through_stdin() -> None:
    command = (sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read().upper())")
    client = ClaudeCliClient(command=command, max_retries=0)

    assert client.invoke(_request()) == "BUILD TASK 1"


def test_nonzero_exit_with_connection_reset_is_transient() -> None:
    script = "import sys; sys.stderr.write('Error: ECONNRESET while streaming'); sys.exit(1)"
    client = ClaudeCliClient(command=(sys.executable, "-c", script), max_retries=0)

    with pytest.raises(AgentConnectionError, match="ECONNRESET"):
        client._raw_invoke(_request())


def test_nonzero_exit_without_markers_is_not_retried() -> None:
    sleeps: list = []
    script = "import sys; sys.stderr.write('bad flag'); sys.exit(2)"
    client = ClaudeCliClient(command=(sys.executable, "-c", script), sleep=sleeps.append)

    with pytest.raises(AgentInvocationError, match="exited with code 2: bad flag"):
        client.invoke(_request())

    assert sleeps == []
