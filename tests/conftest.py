from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from pbt.memory.project_state import ProjectState  # noqa: E402
from pbt.models.agent_client import AgentClient, AgentRequest  # noqa: E402

Responder = Union[str, Exception, Callable[[Dict[str, Any]], Union[str, Dict[str, Any]]]]


def envelope(payload: Dict[str, Any], *, status: str = "SUCCESS") -> str:
    """Wrap ``payload`` the way a well-behaved agent answers."""
    body = {"status": status, **payload}
    return "Here you go.\n\n```json\n" + json.dumps(body, indent=2) + "\n```\n"


class ScriptedAgentClient(AgentClient):
    """Agent stub answering per role from a script of responders.

    A responder may be a raw string, an exception to raise, or a callable
    receiving the request payload and returning a string or an envelope dict.
    Lists are consumed in order; the last entry repeats.
    """

    def __init__(self, script: Optional[Dict[str, Union[Responder, List[Responder]]]] = None) -> None:
        super().__init__("scripted", max_retries=0, retry_delay=0.0, sleep=lambda _: None)
        self.script: Dict[str, Any] = dict(script or {})
        self.calls: List[AgentRequest] = []

    def roles(self) -> List[str]:
        return [str(call.metadata.get("role")) for call in self.calls]

    def requests_for(self, role: str) -> List[Dict[str, Any]]:
        return [call.metadata.get("request") or {} for call in self.calls if call.metadata.get("role") == role]

    def _raw_invoke(self, request: AgentRequest) -> str:
        self.calls.append(request)
        role = str(request.metadata.get("role"))
        if role not in self.script:
            raise AssertionError(f"Unexpected agent call for role {role!r}")
        entry = self.script[role]
        if isinstance(entry, list):
            responder = entry.pop(0) if len(entry) > 1 else entry[0]
        else:
            responder = entry
        if isinstance(responder, Exception):
            raise responder
        if callable(responder):
            result = responder(request.metadata.get("request") or {})
            return envelope(result) if isinstance(result, dict) else result
        return responder


def build_files(request: Dict[str, Any]) -> Dict[str, Any]:
    """Default build responder: one file per task."""
    number = request.get("task_number")
    return {"files": [{"path": f"src/task_{number}.txt", "content": f"{request.get('description')}\n"}]}


def plan_tasks(count: int) -> Dict[str, Any]:
    return {
        "tasks": [
            {"description": f"Step {index}", "test_command": f"check {index}"}
            for index in range(1, count + 1)
        ]
    }


@pytest.fixture()
def project(tmp_path: Path) -> ProjectState:
    root = tmp_path / "project"
    root.mkdir()
    return ProjectState.open(root)
