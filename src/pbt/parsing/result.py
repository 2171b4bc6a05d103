"""Tagged-union result produced by the response parser."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Union


class AgentFailureError(RuntimeError):
    """The agent answered with an explicit ``FAILURE`` envelope."""

    def __init__(self, message: str, *, record: Dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.record = record or {}


@dataclass(frozen=True, slots=True)
class Structured:
    """A well-formed envelope with a ``status`` field was found."""

    record: Dict[str, Any]
    text: str
    status: str = "SUCCESS"


@dataclass(frozen=True, slots=True)
class Freeform:
    """No usable envelope; the raw text is handed to free-text extraction."""

    text: str
    reason: str = ""


@dataclass(frozen=True, slots=True)
class Empty:
    """Nothing to parse."""

    reason: str = ""


ParseResult = Union[Structured, Freeform, Empty]


__all__ = ["AgentFailureError", "Empty", "Freeform", "ParseResult", "Structured"]
