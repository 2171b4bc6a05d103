"""Role-specific extraction on top of :func:`pbt.parsing.parse_response`.

Each helper accepts any :data:`ParseResult`. Structured results are read
field by field; when the envelope lacks the field the helper needs, the raw
text is re-parsed in free-text mode from scratch.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, List, Optional

from ..structured import (
    DEFAULT_TEST_COMMAND,
    BacklogDraft,
    BacklogPlan,
    FileArtifact,
    FixTestsResult,
    PlannedTask,
    RefactorPlan,
    ReviewVerdict,
)
from .freeform import extract_files, extract_tasks
from .result import Empty, Freeform, ParseResult, Structured

_TEST_KEYS = ("test_command", "testCommand", "test")
_PATH_KEYS = ("path", "file_path", "filePath", "filename")
_CONTENT_KEYS = ("content", "updated_content", "updatedContent", "code")


def _first_str(item: Mapping[str, Any], keys: tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _raw_text(result: ParseResult) -> str:
    if isinstance(result, (Structured, Freeform)):
        return result.text
    return ""


def _tasks_from_items(items: Any) -> List[PlannedTask]:
    tasks: List[PlannedTask] = []
    if not isinstance(items, list):
        return tasks
    for item in items:
        if isinstance(item, str) and item.strip():
            tasks.append(PlannedTask(description=item.strip()))
            continue
        if not isinstance(item, Mapping):
            continue
        description = _first_str(item, ("description", "title", "task"))
        if not description:
            continue
        test_command = _first_str(item, _TEST_KEYS) or DEFAULT_TEST_COMMAND
        tasks.append(PlannedTask(description=description.strip(), test_command=test_command.strip()))
    return tasks


def _files_from_items(items: Any, content_keys: tuple[str, ...] = _CONTENT_KEYS) -> List[FileArtifact]:
    files: List[FileArtifact] = []
    if not isinstance(items, list):
        return files
    for item in items:
        if not isinstance(item, Mapping):
            continue
        path = _first_str(item, _PATH_KEYS)
        if not path:
            continue
        content = None
        for key in content_keys:
            value = item.get(key)
            if isinstance(value, str):
                content = value
                break
        if content is None:
            continue
        files.append(FileArtifact(path=path.strip(), content=content))
    return files


def tasks_from(result: ParseResult, *, key: str = "tasks") -> List[PlannedTask]:
    if isinstance(result, Empty):
        return []
    if isinstance(result, Structured):
        tasks = _tasks_from_items(result.record.get(key))
        if tasks:
            return tasks
    return extract_tasks(_raw_text(result))


def files_from(result: ParseResult, *, key: str = "files") -> List[FileArtifact]:
    if isinstance(result, Empty):
        return []
    if isinstance(result, Structured) and key in result.record:
        return _files_from_items(result.record.get(key))
    return extract_files(_raw_text(result))


def _as_dependency_ids(value: Any) -> List[int]:
    if not isinstance(value, list):
        return []
    ids: List[int] = []
    for item in value:
        if isinstance(item, bool):
            continue
        if isinstance(item, int):
            ids.append(item)
        elif isinstance(item, str) and item.strip().isdigit():
            ids.append(int(item.strip()))
    return ids


def backlogs_from(result: ParseResult) -> BacklogPlan:
    """Project plan from the backlog planning role.

    Free-text answers are read as a numbered list, one backlog per line.
    """
    if isinstance(result, Empty):
        return BacklogPlan()
    if isinstance(result, Structured):
        record = result.record
        drafts: List[BacklogDraft] = []
        items = record.get("backlogs")
        for position, item in enumerate(items if isinstance(items, list) else [], start=1):
            if not isinstance(item, Mapping):
                continue
            description = _first_str(item, ("description", "title")) or ""
            title = _first_str(item, ("title",)) or description
            if not description.strip():
                continue
            ref = item.get("id")
            drafts.append(
                BacklogDraft(
                    title=title.strip(),
                    description=description.strip(),
                    ref=ref if isinstance(ref, int) and not isinstance(ref, bool) else position,
                    priority=str(item.get("priority") or "medium"),
                    estimated_effort=str(item.get("estimated_effort") or "medium"),
                    dependencies=_as_dependency_ids(item.get("dependencies")),
                )
            )
        if drafts:
            return BacklogPlan(
                project_summary=str(record.get("project_summary") or ""),
                runtime_requirements=record.get("runtime_requirements"),
                technical_considerations=record.get("technical_considerations"),
                backlogs=drafts,
            )
    drafts = [
        BacklogDraft(title=task.description, description=task.description, ref=position)
        for position, task in enumerate(extract_tasks(_raw_text(result)), start=1)
    ]
    return BacklogPlan(backlogs=drafts)


def fixes_from(result: ParseResult) -> FixTestsResult:
    if isinstance(result, Empty):
        return FixTestsResult()
    if isinstance(result, Structured):
        record = result.record
        fixed = _files_from_items(record.get("fixed_tests"))
        changes = record.get("changes_made")
        if isinstance(changes, str):
            changes = [changes]
        elif not isinstance(changes, list):
            changes = []
        return FixTestsResult(
            fixed_tests=fixed,
            changes_made=[str(item) for item in changes if str(item).strip()],
        )
    return FixTestsResult(fixed_tests=extract_files(_raw_text(result)))


def review_from(result: ParseResult) -> ReviewVerdict:
    if isinstance(result, Empty):
        return ReviewVerdict()
    if isinstance(result, Structured):
        record = result.record
        state = record.get("project_state")
        recommendation = record.get("recommendation")
        current_status = _optional_str(state.get("current_status")) if isinstance(state, Mapping) else None
        if isinstance(recommendation, Mapping):
            return ReviewVerdict(
                description=str(recommendation.get("description") or ""),
                current_status=current_status,
                next_action=_optional_str(recommendation.get("next_action")),
            )
        if isinstance(recommendation, str):
            return ReviewVerdict(description=recommendation, current_status=current_status)
    return ReviewVerdict(description=_raw_text(result).strip())


def refactor_from(result: ParseResult) -> RefactorPlan:
    if isinstance(result, Empty):
        return RefactorPlan()
    assessment = ""
    if isinstance(result, Structured):
        value = result.record.get("assessment")
        assessment = value if isinstance(value, str) else ""
    return RefactorPlan(assessment=assessment, tasks=tasks_from(result, key="refactor_tasks"))


__all__ = [
    "backlogs_from",
    "files_from",
    "refactor_from",
    "review_from",
    "fixes_from",
    "tasks_from",
]
