"""Advisory review role run before resuming a partly built requirement."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..models.agent_client import AgentClient
from ..parsing.roles import review_from
from ..prompts import render_file_snapshot, review_prompt
from ..structured import ReviewVerdict
from . import RoleName
from .base import invoke_role


@dataclass(slots=True)
class ReviewRequest:
    requirement: str
    completed: list[str] = field(default_factory=list)
    remaining: list[str] = field(default_factory=list)
    files: list[tuple[str, str]] = field(default_factory=list)


def run(
    request: ReviewRequest,
    *,
    client: AgentClient,
    role_logs: Optional[Path] = None,
) -> ReviewVerdict:
    prompt = review_prompt(
        request.requirement,
        request.completed,
        request.remaining,
        render_file_snapshot(request.files),
    )
    result = invoke_role(RoleName.REVIEW, prompt, request, client=client, role_logs=role_logs)
    return review_from(result)
