"""Planning roles: project backlogs, requirement task lists and refactoring."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..models.agent_client import AgentClient
from ..parsing.roles import backlogs_from, refactor_from, tasks_from
from ..prompts import backlogs_prompt, plan_prompt, refactor_prompt, render_file_snapshot
from ..structured import BacklogPlan, PlannedTask, RefactorPlan
from . import RoleName
from .base import invoke_role


@dataclass(slots=True)
class BacklogsRequest:
    """Input payload for splitting a project into backlogs."""

    requirement: str


@dataclass(slots=True)
class PlanRequest:
    """Input payload for planning one requirement."""

    requirement: str
    files: list[tuple[str, str]] = field(default_factory=list)


@dataclass(slots=True)
class RefactorRequest:
    focus: str = ""
    files: list[tuple[str, str]] = field(default_factory=list)


def run_backlogs(
    request: BacklogsRequest,
    *,
    client: AgentClient,
    role_logs: Optional[Path] = None,
) -> BacklogPlan:
    result = invoke_role(
        RoleName.BACKLOGS,
        backlogs_prompt(request.requirement),
        request,
        client=client,
        role_logs=role_logs,
    )
    return backlogs_from(result)


def run(
    request: PlanRequest,
    *,
    client: AgentClient,
    role_logs: Optional[Path] = None,
) -> list[PlannedTask]:
    """Ask the architect for an ordered task list; may be empty."""
    result = invoke_role(
        RoleName.PLAN,
        plan_prompt(request.requirement, render_file_snapshot(request.files)),
        request,
        client=client,
        role_logs=role_logs,
        metadata={"label": request.requirement},
    )
    return tasks_from(result)


def run_refactor(
    request: RefactorRequest,
    *,
    client: AgentClient,
    role_logs: Optional[Path] = None,
) -> RefactorPlan:
    result = invoke_role(
        RoleName.REFACTOR,
        refactor_prompt(request.focus, render_file_snapshot(request.files)),
        request,
        client=client,
        role_logs=role_logs,
    )
    return refactor_from(result)
