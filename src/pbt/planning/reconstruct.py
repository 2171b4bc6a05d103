"""Rebuild the task list and per-task status by replaying the event log."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence

from ..memory.schema import Event, EventAction, ReconstructedTask, TaskStatus
from ..structured import DEFAULT_TEST_COMMAND

LOGGER = logging.getLogger(__name__)

ReconstructionSource = Literal["planning", "task-events", "empty"]


@dataclass(slots=True)
class TaskReconstruction:
    """Ordered task view for one requirement (or the whole project)."""

    requirement: Optional[str]
    tasks: List[ReconstructedTask] = field(default_factory=list)
    source: ReconstructionSource = "empty"

    @property
    def completed(self) -> List[ReconstructedTask]:
        return [task for task in self.tasks if task.status == TaskStatus.COMPLETED]

    @property
    def remaining(self) -> List[ReconstructedTask]:
        return [task for task in self.tasks if task.status != TaskStatus.COMPLETED]

    @property
    def resume_point(self) -> Optional[ReconstructedTask]:
        """First task that is not completed; building restarts here."""
        for task in self.tasks:
            if task.status != TaskStatus.COMPLETED:
                return task
        return None

    @property
    def all_completed(self) -> bool:
        return bool(self.tasks) and not self.remaining


@dataclass(slots=True)
class RequirementProgress:
    requirement: str
    total: int
    completed: int

    @property
    def percent(self) -> int:
        if not self.total:
            return 0
        return round(self.completed * 100 / self.total)


@dataclass(slots=True)
class _TaskSeed:
    task_number: int
    description: str
    test_command: str
    requirement: Optional[str]


class TaskReconstructor:
    """Derive tasks purely from an event sequence.

    The most recent planning-complete event for the requirement is the
    boundary: it carries the task list as it stood when planning finished.
    Task-creation events logged after it extend that list. Without such a
    boundary every task-creation event for the requirement is used instead,
    which cannot tell apart tasks from abandoned planning rounds.
    """

    def reconstruct(
        self,
        events: Sequence[Event],
        requirement: Optional[str] = None,
    ) -> TaskReconstruction:
        boundary_index = self._find_boundary(events, requirement)
        seeds: List[_TaskSeed] = []
        source: ReconstructionSource = "empty"

        if boundary_index is not None:
            seeds = self._seeds_from_boundary(events, boundary_index, requirement)
            source = "planning"
        if not seeds:
            seeds = self._seeds_from_task_events(events, 0, requirement)
            source = "task-events" if seeds else "empty"
            if seeds:
                LOGGER.debug("No planning boundary for %r; rebuilt from task events", requirement)

        if not seeds:
            return TaskReconstruction(requirement=requirement)

        seeds.sort(key=lambda seed: seed.task_number)
        statuses = self._overlay_status(events, seeds)
        tasks = [
            ReconstructedTask(
                task_number=seed.task_number,
                description=seed.description,
                test_command=seed.test_command,
                requirement=seed.requirement if seed.requirement is not None else requirement,
                status=statuses.get(seed.task_number, TaskStatus.PENDING),
            )
            for seed in seeds
        ]
        return TaskReconstruction(requirement=requirement, tasks=tasks, source=source)

    def summarize(self, events: Sequence[Event]) -> List[RequirementProgress]:
        """Per-requirement completion counts, in first-seen order."""
        requirements: Dict[str, None] = {}
        for event in events:
            if event.is_action(EventAction.CREATE_TASK) and event.requirement:
                requirements.setdefault(event.requirement, None)
        progress: List[RequirementProgress] = []
        for requirement in requirements:
            view = self.reconstruct(events, requirement)
            progress.append(
                RequirementProgress(
                    requirement=requirement,
                    total=len(view.tasks),
                    completed=len(view.completed),
                )
            )
        return progress

    def _find_boundary(self, events: Sequence[Event], requirement: Optional[str]) -> Optional[int]:
        created_for: Dict[int, Optional[str]] = {}
        for event in events:
            if event.is_action(EventAction.CREATE_TASK) and event.task_number is not None:
                created_for.setdefault(event.task_number, event.requirement)

        for index in range(len(events) - 1, -1, -1):
            event = events[index]
            if not event.is_action(EventAction.PLANNING_COMPLETE):
                continue
            if requirement is None or self._boundary_matches(event, requirement, created_for):
                return index
        return None

    @staticmethod
    def _boundary_matches(
        event: Event,
        requirement: str,
        created_for: Mapping[int, Optional[str]],
    ) -> bool:
        if event.requirement is not None:
            return event.requirement == requirement
        # Older planning events carry no requirement; infer it from their tasks.
        for task in event.tasks or []:
            if not isinstance(task, Mapping):
                continue
            if task.get("requirement") == requirement:
                return True
            number = _as_int(task.get("taskNumber"))
            if number is not None and created_for.get(number) == requirement:
                return True
        return False

    def _seeds_from_boundary(
        self,
        events: Sequence[Event],
        boundary_index: int,
        requirement: Optional[str],
    ) -> List[_TaskSeed]:
        boundary = events[boundary_index]
        created = {
            seed.task_number: seed
            for seed in self._seeds_from_task_events(events[:boundary_index], 0, None)
        }
        seeds: Dict[int, _TaskSeed] = {}
        for raw in boundary.tasks or []:
            seed = _seed_from_mapping(raw, boundary.requirement or requirement)
            if seed is None:
                continue
            origin = created.get(seed.task_number)
            if origin is not None:
                # Older boundaries only listed task numbers.
                if not seed.description:
                    seed.description = origin.description
                if seed.test_command == DEFAULT_TEST_COMMAND:
                    seed.test_command = origin.test_command
            seeds.setdefault(seed.task_number, seed)
        for seed in self._seeds_from_task_events(events, boundary_index + 1, requirement):
            seeds.setdefault(seed.task_number, seed)
        return list(seeds.values())

    @staticmethod
    def _seeds_from_task_events(
        events: Sequence[Event],
        start: int,
        requirement: Optional[str],
    ) -> List[_TaskSeed]:
        seeds: Dict[int, _TaskSeed] = {}
        for event in events[start:]:
            if not event.is_action(EventAction.CREATE_TASK) or event.task_number is None:
                continue
            if requirement is not None and event.requirement != requirement:
                continue
            seeds.setdefault(
                event.task_number,
                _TaskSeed(
                    task_number=event.task_number,
                    description=event.description or "",
                    test_command=event.test_command or DEFAULT_TEST_COMMAND,
                    requirement=event.requirement,
                ),
            )
        return list(seeds.values())

    @staticmethod
    def _overlay_status(events: Sequence[Event], seeds: Sequence[_TaskSeed]) -> Dict[int, TaskStatus]:
        """Apply completion and failure events in log order; the last one wins."""
        known = {seed.task_number for seed in seeds}
        statuses: Dict[int, TaskStatus] = {}
        current_round: List[int] = []
        created: Dict[Optional[str], List[int]] = {}
        for event in events:
            if event.is_action(EventAction.CREATE_TASK) and event.task_number is not None:
                created.setdefault(event.requirement, []).append(event.task_number)
            elif event.is_action(EventAction.PLANNING_COMPLETE):
                numbers = [_as_int(raw.get("taskNumber")) for raw in event.tasks or [] if isinstance(raw, Mapping)]
                current_round = sorted(number for number in numbers if number is not None)
            elif event.is_action(EventAction.COMPLETE_TASK):
                if event.task_number in known:
                    statuses[event.task_number] = TaskStatus.COMPLETED
            elif event.is_action(EventAction.TASK_FAILED):
                number = _failed_task_number(event, current_round or created.get(event.requirement, []))
                if number in known:
                    statuses[number] = TaskStatus.FAILED
        return statuses


def _failed_task_number(event: Event, planned_round: Sequence[int]) -> Optional[int]:
    """Resolve which task a failure event refers to.

    The recorded task number wins. Records without one fall back to the
    1-based ``taskIndex`` within the planning round the failure happened in.
    """
    if event.task_number is not None:
        return event.task_number
    if event.task_index is not None and 1 <= event.task_index <= len(planned_round):
        return planned_round[event.task_index - 1]
    return None


def _seed_from_mapping(raw: Any, requirement: Optional[str]) -> Optional[_TaskSeed]:
    if not isinstance(raw, Mapping):
        return None
    number = _as_int(raw.get("taskNumber", raw.get("task_number")))
    if number is None:
        return None
    test_command = raw.get("testCommand") or raw.get("test") or raw.get("test_command")
    return _TaskSeed(
        task_number=number,
        description=str(raw.get("description") or ""),
        test_command=str(test_command) if test_command else DEFAULT_TEST_COMMAND,
        requirement=raw.get("requirement") if isinstance(raw.get("requirement"), str) else requirement,
    )


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def task_records(tasks: Iterable[ReconstructedTask]) -> List[Dict[str, Any]]:
    """Serialise tasks in the shape stored on planning-complete events."""
    return [
        {
            "taskNumber": task.task_number,
            "description": task.description,
            "testCommand": task.test_command,
            "requirement": task.requirement,
        }
        for task in tasks
    ]


__all__ = [
    "RequirementProgress",
    "TaskReconstruction",
    "TaskReconstructor",
    "task_records",
]
