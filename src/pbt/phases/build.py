"""Build role: turn one planned task into file writes."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..models.agent_client import AgentClient
from ..parsing.roles import files_from
from ..prompts import build_prompt, render_file_snapshot
from ..structured import FileArtifact
from . import RoleName
from .base import invoke_role


@dataclass(slots=True)
class BuildRequest:
    """Input payload for implementing a single task."""

    requirement: str
    task_number: int
    task_index: int
    total_tasks: int
    description: str
    test_command: str
    files: list[tuple[str, str]] = field(default_factory=list)


def run(
    request: BuildRequest,
    *,
    client: AgentClient,
    role_logs: Optional[Path] = None,
) -> list[FileArtifact]:
    prompt = build_prompt(
        request.requirement,
        request.description,
        request.test_command,
        request.task_index,
        request.total_tasks,
        render_file_snapshot(request.files),
    )
    result = invoke_role(
        RoleName.BUILD,
        prompt,
        request,
        client=client,
        role_logs=role_logs,
        metadata={"label": f"task-{request.task_number}"},
    )
    return files_from(result)
