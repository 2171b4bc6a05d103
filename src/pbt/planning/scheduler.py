"""Dependency-aware backlog selection and status transitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from ..memory.backlog_store import BacklogNotFoundError, BacklogStore, BacklogStoreError
from ..memory.schema import Backlog, BacklogStatus

LOGGER = logging.getLogger(__name__)


class BacklogConflictError(BacklogStoreError):
    """Raised when starting a backlog while another one is in progress."""


class DecisionKind(str, Enum):
    RESUME = "resume"
    START = "start"
    BLOCKED = "blocked"
    EXHAUSTED = "exhausted"
    NOT_FOUND = "not_found"


@dataclass(slots=True)
class BlockedBacklog:
    """Pending backlog together with the dependency ids it still waits for."""

    backlog: Backlog
    waiting_for: List[int]


@dataclass(slots=True)
class ScheduleDecision:
    kind: DecisionKind
    backlog: Optional[Backlog] = None
    blocked: List[BlockedBacklog] = field(default_factory=list)

    @property
    def runnable(self) -> bool:
        return self.kind in (DecisionKind.RESUME, DecisionKind.START)


def unmet_dependencies(backlog: Backlog, by_id: Dict[int, Backlog]) -> List[int]:
    """Dependency ids that are not ``completed``; unknown ids count as unmet."""
    unmet: List[int] = []
    for dependency in backlog.dependencies:
        target = by_id.get(dependency)
        if target is None or target.status != BacklogStatus.COMPLETED:
            unmet.append(dependency)
    return unmet


def select_backlog(backlogs: Sequence[Backlog], backlog_id: Optional[int] = None) -> ScheduleDecision:
    """Pick the backlog to work on next.

    In order: an ``in_progress`` backlog is resumed; otherwise the first
    ``pending`` backlog whose dependencies are all completed is started;
    otherwise every pending backlog is reported with its unmet dependencies.
    An explicit ``backlog_id`` is subject to the same dependency check.
    """
    by_id = {item.id: item for item in backlogs}

    if backlog_id is not None:
        target = by_id.get(backlog_id)
        if target is None:
            return ScheduleDecision(kind=DecisionKind.NOT_FOUND)
        if target.status == BacklogStatus.IN_PROGRESS:
            return ScheduleDecision(kind=DecisionKind.RESUME, backlog=target)
        if target.status == BacklogStatus.COMPLETED:
            return ScheduleDecision(kind=DecisionKind.EXHAUSTED, backlog=target)
        waiting = unmet_dependencies(target, by_id)
        if waiting:
            return ScheduleDecision(
                kind=DecisionKind.BLOCKED,
                backlog=target,
                blocked=[BlockedBacklog(backlog=target, waiting_for=waiting)],
            )
        return ScheduleDecision(kind=DecisionKind.START, backlog=target)

    active = [item for item in backlogs if item.status == BacklogStatus.IN_PROGRESS]
    if active:
        if len(active) > 1:
            LOGGER.warning(
                "Multiple backlogs are in progress (%s); resuming %s",
                ", ".join(str(item.id) for item in active),
                active[0].id,
            )
        return ScheduleDecision(kind=DecisionKind.RESUME, backlog=active[0])

    pending = [item for item in backlogs if item.status == BacklogStatus.PENDING]
    if not pending:
        return ScheduleDecision(kind=DecisionKind.EXHAUSTED)

    blocked: List[BlockedBacklog] = []
    for item in pending:
        waiting = unmet_dependencies(item, by_id)
        if not waiting:
            return ScheduleDecision(kind=DecisionKind.START, backlog=item)
        blocked.append(BlockedBacklog(backlog=item, waiting_for=waiting))
    return ScheduleDecision(kind=DecisionKind.BLOCKED, blocked=blocked)


class BacklogScheduler:
    """Selection plus guarded status transitions over a :class:`BacklogStore`."""

    def __init__(self, store: BacklogStore) -> None:
        self._store = store

    def select(self, backlog_id: Optional[int] = None) -> ScheduleDecision:
        return select_backlog(self._store.list_backlogs(), backlog_id)

    def start(self, backlog_id: int) -> Backlog:
        """Move a backlog to ``in_progress``.

        Starting is refused while a different backlog is in progress, which
        keeps at most one backlog active at a time.
        """
        backlogs = self._store.list_backlogs()
        target = next((item for item in backlogs if item.id == backlog_id), None)
        if target is None:
            raise BacklogNotFoundError(f"Backlog {backlog_id} not found.")
        others = [
            item.id
            for item in backlogs
            if item.status == BacklogStatus.IN_PROGRESS and item.id != backlog_id
        ]
        if others:
            raise BacklogConflictError(
                f"Backlog {backlog_id} cannot start while backlog(s) "
                f"{', '.join(map(str, others))} are in progress."
            )
        if target.status == BacklogStatus.IN_PROGRESS:
            return target
        return self._store.update_status(backlog_id, BacklogStatus.IN_PROGRESS)

    def complete(self, backlog_id: int) -> Backlog:
        return self._store.update_status(backlog_id, BacklogStatus.COMPLETED)

    def reset(self, backlog_id: int) -> Backlog:
        return self._store.reset(backlog_id)


__all__ = [
    "BacklogConflictError",
    "BacklogScheduler",
    "BlockedBacklog",
    "DecisionKind",
    "ScheduleDecision",
    "select_backlog",
    "unmet_dependencies",
]
