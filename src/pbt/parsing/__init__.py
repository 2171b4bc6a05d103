"""Dual-mode parsing of agent responses.

:func:`parse_response` tries structured mode first and falls back to free
text. The two paths share nothing: free-text extraction always starts again
from the raw response, never from a partially decoded envelope.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .envelope import scan_envelope
from .freeform import extract_files, extract_tasks
from .result import AgentFailureError, Empty, Freeform, ParseResult, Structured

LOGGER = logging.getLogger(__name__)

FAILURE_STATUS = "FAILURE"
DEFAULT_FAILURE_MESSAGE = "Agent returned failure status"


def parse_response(text: Optional[str], *, role: str = "agent") -> ParseResult:
    """Classify one agent response.

    Never raises on malformed input. The only exception is
    :class:`AgentFailureError`, raised when the agent explicitly reports
    ``status: FAILURE``.
    """
    if text is None or not str(text).strip():
        return Empty(reason="empty response")
    text = str(text)

    scan = scan_envelope(text)
    if scan.record is not None:
        status = str(scan.record.get("status") or "").strip().upper() or "SUCCESS"
        if status == FAILURE_STATUS:
            message = _failure_message(scan.record.get("error"))
            LOGGER.info("%s reported failure: %s", role, message)
            raise AgentFailureError(message, record=scan.record)
        return Structured(record=scan.record, text=text, status=status)

    if scan.malformed:
        LOGGER.warning(
            "%s response carried %d malformed structured block(s); using free-text mode",
            role,
            scan.malformed,
        )
        return Freeform(text=text, reason="malformed envelope")
    LOGGER.debug("%s response has no structured envelope; using free-text mode", role)
    return Freeform(text=text, reason="no envelope")


def _failure_message(error: Any) -> str:
    if isinstance(error, str) and error.strip():
        return error.strip()
    if error:
        return str(error)
    return DEFAULT_FAILURE_MESSAGE


__all__ = [
    "AgentFailureError",
    "Empty",
    "Freeform",
    "ParseResult",
    "Structured",
    "extract_files",
    "extract_tasks",
    "parse_response",
]
