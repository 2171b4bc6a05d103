"""Client base class shared by all coding-agent integrations."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

__all__ = [
    "AgentClient",
    "AgentClientError",
    "AgentConnectionError",
    "AgentEmptyResponseError",
    "AgentInvocationError",
    "AgentRequest",
    "AgentRetryError",
    "AgentTimeoutError",
    "AgentTransientError",
    "AttemptLogger",
]

LOGGER = logging.getLogger(__name__)


class AgentClientError(RuntimeError):
    """Base error raised for agent client failures."""


class AgentTransientError(AgentClientError):
    """Failure class that is worth retrying after a short delay."""


class AgentTimeoutError(AgentTransientError):
    """The agent did not answer within the configured timeout."""


class AgentConnectionError(AgentTransientError):
    """The connection to the agent was reset or refused."""


class AgentEmptyResponseError(AgentTransientError):
    """The agent exited normally but produced no output."""


class AgentInvocationError(AgentClientError):
    """Non-transient failure: missing executable, non-zero exit and similar."""


class AgentRetryError(AgentClientError):
    """Raised after exhausting retries on transient failures."""


@dataclass(slots=True)
class AgentRequest:
    """Single prompt sent to the agent on behalf of a role."""

    role: str
    prompt: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    max_retries: Optional[int] = None


AttemptLogger = Callable[[AgentRequest, Optional[str], Optional[Exception], int], None]


class AgentClient:
    """Synchronous agent call with bounded retries on transient errors.

    Only :class:`AgentTransientError` subclasses are retried, each time after
    the same fixed delay. Every other :class:`AgentClientError` propagates on
    the first attempt.
    """

    def __init__(
        self,
        name: str,
        *,
        max_retries: int = 2,
        retry_delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._name = name
        self._max_retries = max(0, max_retries)
        self._retry_delay = max(0.0, retry_delay)
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self._name

    @property
    def retry_delay(self) -> float:
        return self._retry_delay

    def invoke(self, request: AgentRequest, *, logger: Optional[AttemptLogger] = None) -> str:
        """Return the raw text produced by the agent for ``request``."""
        retries = request.max_retries if request.max_retries is not None else self._max_retries
        attempts = max(0, retries) + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            raw: Optional[str] = None
            try:
                raw = self._raw_invoke(request)
                if raw is None or not raw.strip():
                    raise AgentEmptyResponseError(f"{request.role} returned an empty response.")
            except AgentTransientError as error:
                last_error = error
                if logger:
                    logger(request, raw, error, attempt)
                if attempt >= attempts:
                    break
                LOGGER.warning(
                    "%s call failed (%s); retry %d/%d in %.1fs",
                    request.role,
                    error,
                    attempt,
                    attempts - 1,
                    self._retry_delay,
                )
                self._sleep(self._retry_delay)
                continue
            except AgentClientError as error:
                if logger:
                    logger(request, raw, error, attempt)
                raise
            if logger:
                logger(request, raw, None, attempt)
            return raw

        raise AgentRetryError(
            f"{request.role} failed after {attempts} attempt(s) via {self._name}: {last_error}"
        ) from last_error

    def _raw_invoke(self, request: AgentRequest) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
