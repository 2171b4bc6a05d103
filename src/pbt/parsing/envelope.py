"""Structured-mode parsing: locate a key/value envelope inside agent text."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

import yaml

LOGGER = logging.getLogger(__name__)

_FENCE_RE = re.compile(
    r"^[ \t]*```[ \t]*(?P<lang>json|yaml|yml)[ \t]*\r?\n(?P<body>.*?)^[ \t]*```",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)


@dataclass(frozen=True, slots=True)
class EnvelopeScan:
    """Outcome of scanning one response for an envelope.

    ``record`` is set when a mapping with a ``status`` key was found.
    ``malformed`` counts fenced data regions that failed to decode.
    """

    record: Optional[Dict[str, Any]] = None
    malformed: int = 0


def _iter_fenced_regions(text: str) -> Iterator[tuple[str, str]]:
    for match in _FENCE_RE.finditer(text):
        yield match.group("lang").lower(), match.group("body")


def _decode(lang: str, body: str) -> Any:
    if lang == "json":
        return json.loads(body)
    return yaml.safe_load(body)


def _whole_text_object(text: str) -> Any:
    stripped = text.strip()
    if not stripped.startswith("{"):
        return None
    decoder = json.JSONDecoder()
    try:
        value, end = decoder.raw_decode(stripped)
    except (json.JSONDecodeError, RecursionError):
        return None
    if stripped[end:].strip():
        LOGGER.debug("Ignoring %d trailing character(s) after JSON envelope", len(stripped) - end)
    return value


def _is_envelope(value: Any) -> bool:
    return isinstance(value, dict) and "status" in value


def scan_envelope(text: str) -> EnvelopeScan:
    """Find the first fenced (or whole-text) mapping carrying ``status``.

    Fenced blocks without a ``status`` key are left alone: they are usually
    file contents (``package.json`` and friends) meant for free-text mode.
    """
    malformed = 0
    for lang, body in _iter_fenced_regions(text):
        try:
            value = _decode(lang, body)
        except (json.JSONDecodeError, yaml.YAMLError, RecursionError):
            malformed += 1
            continue
        if _is_envelope(value):
            return EnvelopeScan(record=value, malformed=malformed)

    value = _whole_text_object(text)
    if _is_envelope(value):
        return EnvelopeScan(record=value, malformed=malformed)
    return EnvelopeScan(malformed=malformed)


__all__ = ["EnvelopeScan", "scan_envelope"]
