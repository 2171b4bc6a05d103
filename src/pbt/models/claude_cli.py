"""Production client that pipes prompts to the ``claude -p`` command line."""

from __future__ import annotations

import os
import shlex
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

from .agent_client import (
    AgentClient,
    AgentConnectionError,
    AgentInvocationError,
    AgentRequest,
    AgentTimeoutError,
)

__all__ = ["ClaudeCliClient", "DEFAULT_AGENT_COMMAND", "Transport"]


DEFAULT_AGENT_COMMAND: tuple[str, ...] = ("claude", "-p")

Transport = Callable[[Sequence[str], str, float], str]
"""``(command, prompt, timeout) -> stdout``."""

_CONNECTION_MARKERS = ("ECONNRESET", "connection reset", "Connection refused", "ECONNREFUSED")
_TIMEOUT_MARKERS = ("timed out", "ETIMEDOUT")


class ClaudeCliClient(AgentClient):
    """Invoke the agent as an opaque subprocess, prompt on stdin."""

    def __init__(
        self,
        *,
        command: Sequence[str] = DEFAULT_AGENT_COMMAND,
        cwd: Optional[Path | str] = None,
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_retries: int = 2,
        retry_delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__("claude-cli", max_retries=max_retries, retry_delay=retry_delay, sleep=sleep)
        command_override = os.getenv("PBT_AGENT_COMMAND")
        if command_override and command_override.strip():
            command = shlex.split(command_override)
        timeout_override = os.getenv("PBT_AGENT_TIMEOUT")
        if timeout_override:
            try:
                parsed = float(timeout_override)
                if parsed > 0:
                    timeout = parsed
            except ValueError:
                pass
        if not command:
            raise ValueError("An agent command is required.")
        self._command = tuple(command)
        self._cwd = Path(cwd) if cwd is not None else None
        self._timeout = timeout
        self._transport = transport or self._subprocess_transport

    @property
    def command(self) -> tuple[str, ...]:
        return self._command

    @property
    def timeout(self) -> float:
        return self._timeout

    def _raw_invoke(self, request: AgentRequest) -> str:
        try:
            return self._transport(self._command, request.prompt, self._timeout)
        except (AgentTimeoutError, AgentConnectionError, AgentInvocationError):
            raise
        except (subprocess.TimeoutExpired, TimeoutError) as error:
            raise AgentTimeoutError(f"{request.role} timed out after {self._timeout:.0f}s") from error
        except ConnectionError as error:
            raise AgentConnectionError(f"{request.role} connection failed: {error}") from error
        except FileNotFoundError as error:
            raise AgentInvocationError(
                f"Agent command not found: {self._command[0]!r}. Install it or set agent.command."
            ) from error
        except OSError as error:
            raise AgentInvocationError(f"Failed to start agent command: {error}") from error

    def _subprocess_transport(self, command: Sequence[str], prompt: str, timeout: float) -> str:
        """Run ``command`` with ``prompt`` on stdin; the child is killed on timeout."""
        completed = subprocess.run(
            list(command),
            input=prompt,
            cwd=str(self._cwd) if self._cwd else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
        if completed.returncode != 0:
            detail = (completed.stderr or "").strip() or (completed.stdout or "").strip()
            message = f"{' '.join(command)} exited with code {completed.returncode}"
            if detail:
                message = f"{message}: {detail[:500]}"
            lowered = detail.lower()
            if any(marker.lower() in lowered for marker in _CONNECTION_MARKERS):
                raise AgentConnectionError(message)
            if any(marker.lower() in lowered for marker in _TIMEOUT_MARKERS):
                raise AgentTimeoutError(message)
            raise AgentInvocationError(message)
        return completed.stdout
