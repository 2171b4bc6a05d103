"""Tester roles: create a suite for finished work and repair failing tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..models.agent_client import AgentClient
from ..parsing.roles import files_from, fixes_from
from ..prompts import create_tests_prompt, fix_tests_prompt, render_file_snapshot
from ..structured import FileArtifact, FixTestsResult
from . import RoleName
from .base import invoke_role


@dataclass(slots=True)
class CreateTestsRequest:
    requirement: str
    test_command: str
    completed_tasks: list[str] = field(default_factory=list)
    files: list[tuple[str, str]] = field(default_factory=list)


@dataclass(slots=True)
class FixTestsRequest:
    test_output: str
    files: list[tuple[str, str]] = field(default_factory=list)


def run_create(
    request: CreateTestsRequest,
    *,
    client: AgentClient,
    role_logs: Optional[Path] = None,
) -> list[FileArtifact]:
    prompt = create_tests_prompt(
        request.requirement,
        request.completed_tasks,
        request.test_command,
        render_file_snapshot(request.files),
    )
    result = invoke_role(RoleName.CREATE_TESTS, prompt, request, client=client, role_logs=role_logs)
    return files_from(result)


def run_fix(
    request: FixTestsRequest,
    *,
    client: AgentClient,
    role_logs: Optional[Path] = None,
) -> FixTestsResult:
    prompt = fix_tests_prompt(request.test_output, render_file_snapshot(request.files))
    result = invoke_role(RoleName.FIX_TESTS, prompt, request, client=client, role_logs=role_logs)
    return fixes_from(result)
