"""Own a long-running server child process for the ``serve`` command."""

from __future__ import annotations

import atexit
import logging
import shlex
import signal
import subprocess
import time
from pathlib import Path
from typing import Any, Mapping, Optional

__all__ = ["ServerError", "ServerProcess"]

LOGGER = logging.getLogger(__name__)


class ServerError(RuntimeError):
    """Raised when the server command cannot be started."""


class ServerProcess:
    """Start ``command`` under ``cwd`` and terminate it on exit or signal.

    Termination is best effort: the child gets ``terminate`` and, after
    ``grace`` seconds, ``kill``.
    """

    def __init__(
        self,
        command: str,
        *,
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        grace: float = 5.0,
    ) -> None:
        if not command.strip():
            raise ServerError("No serve command configured.")
        self.command = command
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self.grace = grace
        self._process: Optional[subprocess.Popen[Any]] = None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    def start(self) -> "subprocess.Popen[Any]":
        process = self._process
        if process is not None and process.poll() is None:
            return process
        try:
            process = subprocess.Popen(shlex.split(self.command), cwd=self.cwd, env=self.env)
        except OSError as error:
            raise ServerError(f"Failed to start {self.command!r}: {error}") from error
        self._process = process
        atexit.register(self.stop)
        LOGGER.info("Started server %r (pid %s)", self.command, process.pid)
        return process

    def stop(self) -> None:
        process = self._process
        if process is None or process.poll() is not None:
            return
        LOGGER.info("Stopping server (pid %s)", process.pid)
        process.terminate()
        try:
            process.wait(timeout=self.grace)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def wait_forever(self, *, poll_interval: float = 1.0) -> int:
        """Block until the child exits or the process is interrupted."""
        process = self._process if self._process is not None else self.start()

        def _shutdown(signum: int, _frame: Any) -> None:
            raise KeyboardInterrupt(f"signal {signum}")

        previous = signal.signal(signal.SIGTERM, _shutdown)
        try:
            while self.running:
                time.sleep(poll_interval)
        except KeyboardInterrupt:
            LOGGER.info("Interrupted; shutting down server")
        finally:
            signal.signal(signal.SIGTERM, previous)
            self.stop()
        return process.returncode if process.returncode is not None else 0

    def __enter__(self) -> "ServerProcess":
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()
