"""Project-level aggregate over the event log and backlog store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional

from .backlog_store import BacklogStore
from .event_log import EventLog
from .schema import EVENT_SCHEMA_VERSION, Event, EventAction, utc_timestamp

LOGGER = logging.getLogger(__name__)

DEFAULT_STATE_DIR = "plan-build-test"


def _path_setting(paths_cfg: Mapping[str, Any], key: str, default: str) -> str:
    value = paths_cfg.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


@dataclass(slots=True)
class ProjectPaths:
    """Filesystem locations used by a project."""

    root: Path
    state_dir: Path
    events: Path
    legacy_log: Path
    backlogs: Path
    text_log: Path
    task_log: Path
    role_logs: Path

    @classmethod
    def from_config(cls, root: Path | str, config: Optional[Mapping[str, Any]] = None) -> "ProjectPaths":
        root_path = Path(root).resolve()
        paths_cfg = (config or {}).get("paths") or {}
        if not isinstance(paths_cfg, Mapping):
            paths_cfg = {}

        def _resolve(value: str, base: Path) -> Path:
            candidate = Path(value)
            if not candidate.is_absolute():
                candidate = base / candidate
            return candidate

        state_dir = _resolve(_path_setting(paths_cfg, "state_dir", DEFAULT_STATE_DIR), root_path)
        return cls(
            root=root_path,
            state_dir=state_dir,
            events=_resolve(_path_setting(paths_cfg, "events", "events.jsonl"), state_dir),
            legacy_log=_resolve(_path_setting(paths_cfg, "legacy_log", "logs.json"), state_dir),
            backlogs=_resolve(_path_setting(paths_cfg, "backlogs", "backlogs.json"), root_path),
            text_log=state_dir / "log.txt",
            task_log=state_dir / "task-log.txt",
            role_logs=_resolve(
                _path_setting(paths_cfg, "role_logs", f"{DEFAULT_STATE_DIR}/roles"), root_path
            ),
        )


class ProjectState:
    """Aggregate root: the event log, the task counter and the backlog store.

    The task counter is a cache. It is re-derived from the log whenever a new
    number is issued, so a restart or a hand-edited log can never cause a
    number to be handed out twice.
    """

    def __init__(self, paths: ProjectPaths) -> None:
        self.paths = paths
        self.log = EventLog(paths.events, legacy_path=paths.legacy_log)
        self.backlogs = BacklogStore(paths.backlogs)
        self._counter = 0

    @classmethod
    def open(cls, root: Path | str, config: Optional[Mapping[str, Any]] = None) -> "ProjectState":
        return cls(ProjectPaths.from_config(root, config))

    @property
    def root(self) -> Path:
        return self.paths.root

    @property
    def current_task_number(self) -> int:
        return self._counter

    def append(self, action: EventAction | str, **fields: Any) -> Event:
        """Stamp and persist a new event.

        ``fields`` may use either attribute names (``task_number``) or the
        on-disk names (``taskNumber``). When no task number is given the current
        counter value is recorded as context.
        """
        action_value = action.value if isinstance(action, EventAction) else str(action)
        payload: dict[str, Any] = {key: value for key, value in fields.items() if value is not None}
        if "task_number" not in payload and "taskNumber" not in payload and self._counter:
            payload["task_number"] = self._counter
        event = Event(
            action=action_value,
            timestamp=utc_timestamp(),
            version=EVENT_SCHEMA_VERSION,
            **payload,
        )
        return self.log.append(event)

    def replay(self) -> List[Event]:
        return self.log.replay()

    def sync_counter(self, events: Optional[List[Event]] = None) -> int:
        """Reset the cached counter to the highest task number in the log."""
        history = events if events is not None else self.replay()
        self._counter = highest_task_number(history)
        return self._counter

    def next_task_number(self) -> int:
        derived = highest_task_number(self.replay())
        if derived < self._counter:
            LOGGER.debug("Task counter cache (%d) ahead of log (%d)", self._counter, derived)
        self._counter = max(derived, self._counter) + 1
        return self._counter

    def requirements(self) -> List[str]:
        """Distinct requirements that have tasks, in first-seen order."""
        seen: dict[str, None] = {}
        for event in self.replay():
            if event.is_action(EventAction.CREATE_TASK) and event.requirement:
                seen.setdefault(event.requirement, None)
        return list(seen)


def highest_task_number(events: List[Event]) -> int:
    """Largest task number issued by task-creation or planning events, or 0."""
    highest = 0
    for event in events:
        if event.is_action(EventAction.CREATE_TASK):
            if event.task_number and event.task_number > highest:
                highest = event.task_number
        elif event.is_action(EventAction.PLANNING_COMPLETE):
            for task in event.tasks or []:
                number = task.get("taskNumber") if isinstance(task, dict) else None
                if isinstance(number, int) and not isinstance(number, bool) and number > highest:
                    highest = number
    return highest


__all__ = ["DEFAULT_STATE_DIR", "ProjectPaths", "ProjectState", "highest_task_number"]
