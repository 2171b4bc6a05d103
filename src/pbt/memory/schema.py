"""Typed records persisted by the plan-build-test project state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

EVENT_SCHEMA_VERSION = 2
"""Version stamped on every event written by this package.

Records without a ``version`` field come from the older whole-file JSON log and
are treated as version 1.
"""


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return utc_now().isoformat()


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class EventAction(str, Enum):
    """Actions recorded in the event log.

    Values match the names used by existing project logs so older files replay
    unchanged.
    """

    CREATE_TASK = "CREATE_TASK"
    PLANNING_COMPLETE = "ARCHITECT_COMPLETE"
    COMPLETE_TASK = "COMPLETE_TASK"
    TASK_FAILED = "TASK_FAILED"
    BACKLOGS_CREATED = "BACKLOGS_CREATED"
    BACKLOG_ADDED = "BACKLOG_ADDED"
    BACKLOG_STARTED = "BACKLOG_STARTED"
    BACKLOG_COMPLETED = "BACKLOG_COMPLETED"
    BACKLOG_RESET = "BACKLOG_RESET"
    BACKLOG_REMOVED = "BACKLOG_REMOVED"
    REVIEW_COMPLETED = "REVIEW_COMPLETED"
    TESTS_CREATED = "TESTS_CREATED"
    TESTS_PASSED = "TESTS_PASSED"
    TESTS_FAILED = "TESTS_FAILED"
    TESTS_FIXED = "TESTS_FIXED"


class TaskStatus(str, Enum):
    """Derived status of a task rebuilt from the event log."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BacklogStatus(str, Enum):
    """Lifecycle states for a backlog item."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Event(BaseModel):
    """Immutable log record.

    Field names on disk use camelCase (``taskNumber``, ``filesModified`` ...).
    Unknown fields are kept so that newer writers do not lose data when an
    older reader replays the log.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    action: str
    timestamp: str = ""
    version: int = 1
    task_number: Optional[int] = Field(default=None, alias="taskNumber")
    task_index: Optional[int] = Field(default=None, alias="taskIndex")
    total_tasks: Optional[int] = Field(default=None, alias="totalTasks")
    description: Optional[str] = None
    test_command: Optional[str] = Field(default=None, alias="testCommand")
    requirement: Optional[str] = None
    files_modified: Optional[List[str]] = Field(default=None, alias="filesModified")
    error: Optional[str] = None
    details: Optional[str] = None
    backlog_id: Optional[int] = Field(default=None, alias="backlogId")
    tasks: Optional[List[Dict[str, Any]]] = None

    def is_action(self, action: EventAction) -> bool:
        return self.action == action.value

    def to_record(self) -> Dict[str, Any]:
        """Return the JSON-compatible mapping written to disk."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Backlog(BaseModel):
    """Coarse unit of work tracked in the backlog store."""

    model_config = ConfigDict(extra="allow")

    id: int
    title: str = ""
    description: str = ""
    priority: str = "medium"
    estimated_effort: str = "medium"
    dependencies: List[int] = Field(default_factory=list)
    status: BacklogStatus = BacklogStatus.PENDING
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class BacklogDocument(BaseModel):
    """Whole-file payload of ``backlogs.json``."""

    model_config = ConfigDict(extra="allow")

    project_summary: str = ""
    runtime_requirements: Any = None
    technical_considerations: Any = None
    backlogs: List[Backlog] = Field(default_factory=list)
    next_id: Optional[int] = None

    def allocate_id(self) -> int:
        """Reserve the next backlog id; ids are never handed out twice."""
        highest = max((item.id for item in self.backlogs), default=0)
        candidate = max(self.next_id or 1, highest + 1)
        self.next_id = candidate + 1
        return candidate

    def find(self, backlog_id: int) -> Optional[Backlog]:
        for item in self.backlogs:
            if item.id == backlog_id:
                return item
        return None


class ReconstructedTask(RecordModel):
    """Task view derived from replaying the event log."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    task_number: int
    description: str
    test_command: str = "verify manually"
    requirement: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING

    @property
    def completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


__all__ = [
    "EVENT_SCHEMA_VERSION",
    "Backlog",
    "BacklogDocument",
    "BacklogStatus",
    "Event",
    "EventAction",
    "ReconstructedTask",
    "RecordModel",
    "TaskStatus",
    "utc_now",
    "utc_timestamp",
]
