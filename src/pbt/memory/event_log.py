"""Append-only, file-backed event log.

New records are written as JSON Lines (one object per line) and synced to disk
before :meth:`EventLog.append` returns. Projects created by older releases kept
their history in a single JSON array (``logs.json``); that file is replayed as
a read-only prefix and never rewritten.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, List

from pydantic import ValidationError

from .schema import Event

LOGGER = logging.getLogger(__name__)


class EventLogError(RuntimeError):
    """Raised when an event cannot be made durable."""


class EventLog:
    """Durable sequence of :class:`Event` records."""

    def __init__(self, path: Path | str, *, legacy_path: Path | str | None = None) -> None:
        self.path = Path(path)
        self.legacy_path = Path(legacy_path) if legacy_path is not None else None

    def append(self, event: Event) -> Event:
        """Persist ``event`` and fsync the file before returning it."""
        line = json.dumps(event.to_record(), ensure_ascii=False, sort_keys=False)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            needs_separator = self._ends_without_newline()
            with self.path.open("a", encoding="utf-8") as handle:
                if needs_separator:
                    # A crash mid-write leaves a partial line; keep it isolated.
                    handle.write("\n")
                handle.write(line)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as error:
            raise EventLogError(f"Failed to append to event log {self.path}: {error}") from error
        return event

    def replay(self) -> List[Event]:
        """Return every readable event in write order.

        Unreadable files count as empty and malformed records are skipped; the
        files themselves are left untouched.
        """
        events: List[Event] = []
        if self.legacy_path is not None:
            events.extend(self._coerce_records(self._read_legacy(self.legacy_path), source=self.legacy_path))
        events.extend(self._coerce_records(self._read_lines(), source=self.path))
        return events

    def _ends_without_newline(self) -> bool:
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return False
        if size == 0:
            return False
        with self.path.open("rb") as handle:
            handle.seek(-1, os.SEEK_END)
            return handle.read(1) != b"\n"

    @staticmethod
    def _read_legacy(path: Path) -> List[Any]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
            LOGGER.warning("Ignoring unreadable legacy log %s: %s", path, error)
            return []
        if not isinstance(data, list):
            LOGGER.warning("Ignoring legacy log %s: expected a JSON array", path)
            return []
        return data

    def _read_lines(self) -> List[Any]:
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8", errors="replace")
        except OSError as error:
            LOGGER.warning("Ignoring unreadable event log %s: %s", self.path, error)
            return []
        records: List[Any] = []
        for number, line in enumerate(text.splitlines(), start=1):
            stripped = line.strip()
            if not stripped:
                continue
            try:
                records.append(json.loads(stripped))
            except json.JSONDecodeError:
                LOGGER.warning("Skipping malformed event on line %d of %s", number, self.path)
        return records

    @staticmethod
    def _coerce_records(records: Iterable[Any], *, source: Path) -> List[Event]:
        events: List[Event] = []
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                LOGGER.warning("Skipping non-object event #%d in %s", index, source)
                continue
            try:
                events.append(Event.model_validate(record))
            except ValidationError as error:
                LOGGER.warning(
                    "Skipping invalid event #%d in %s (%d validation error(s))",
                    index,
                    source,
                    error.error_count(),
                )
        return events


__all__ = ["EventLog", "EventLogError"]
