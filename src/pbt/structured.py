"""Typed payloads extracted from agent responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

DEFAULT_TEST_COMMAND = "verify manually"


@dataclass(slots=True)
class PlannedTask:
    """Task proposed by a planning role, before it is numbered."""

    description: str
    test_command: str = DEFAULT_TEST_COMMAND


@dataclass(slots=True)
class FileArtifact:
    """Complete file payload emitted by an agent role."""

    path: str
    content: str


@dataclass(slots=True)
class BacklogDraft:
    """Backlog proposed by the project planning role.

    ``ref`` is the identifier the agent used for the item; dependencies point
    at those references until the store assigns real ids.
    """

    title: str
    description: str
    ref: int
    priority: str = "medium"
    estimated_effort: str = "medium"
    dependencies: List[int] = field(default_factory=list)


@dataclass(slots=True)
class BacklogPlan:
    project_summary: str = ""
    runtime_requirements: Any = None
    technical_considerations: Any = None
    backlogs: List[BacklogDraft] = field(default_factory=list)


@dataclass(slots=True)
class FixTestsResult:
    fixed_tests: List[FileArtifact] = field(default_factory=list)
    changes_made: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ReviewVerdict:
    """Advisory assessment; never blocks the pipeline."""

    description: str = ""
    current_status: Optional[str] = None
    next_action: Optional[str] = None


@dataclass(slots=True)
class RefactorPlan:
    assessment: str = ""
    tasks: List[PlannedTask] = field(default_factory=list)
