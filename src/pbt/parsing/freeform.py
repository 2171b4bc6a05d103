"""Free-text fallback parsing for numbered task lists and path-plus-code files."""

from __future__ import annotations

import re
from typing import List, Optional

from ..structured import DEFAULT_TEST_COMMAND, FileArtifact, PlannedTask

_TASK_HEADING_RE = re.compile(r"TASK LIST|REFACTORING TASKS|^#+\s*(?i:(?:refactoring\s+)?tasks)\b")
_SECTION_HEADING_RE = re.compile(
    r"^(?:#+\s*)?(?:\d+\)\s*)?[A-Z][A-Z0-9 &/_-]{2,}(?::|\s*\(.*\))?\s*$|^[A-Z][A-Z\s]+:"
)
_TASK_LINE_RE = re.compile(r"^\d+\.\s*(.+?)(?:\s*\(test:\s*(.+?)\))?$", re.IGNORECASE)

_FILE_EXTENSIONS = (
    "py|pyi|js|jsx|mjs|cjs|ts|tsx|json|md|txt|html|htm|css|scss|yml|yaml|toml|ini|cfg|"
    "sh|sql|go|rs|java|rb|php|vue|svelte|xml|csv|env|lock"
)
_PATH_TOKEN = r"`?((?:\./)?[\w@.\-]+(?:/[\w@.\-]+)*\.[A-Za-z0-9]+)`?"
_BOLD_PATH_RE = re.compile(rf"^\*\*(?:File:\s*)?{_PATH_TOKEN}:?\*\*:?$", re.IGNORECASE)
_HEADER_PATH_RE = re.compile(rf"^#+\s*(?:File:\s*)?{_PATH_TOKEN}:?$", re.IGNORECASE)
_BARE_PATH_RE = re.compile(
    rf"^`?((?:\./)?(?:[\w@.\-]+/)*[\w@\-][\w@.\-]*\.(?:{_FILE_EXTENSIONS}))`?:?$",
    re.IGNORECASE,
)


def _is_task_heading(line: str) -> bool:
    return not _TASK_LINE_RE.match(line) and bool(_TASK_HEADING_RE.search(line))


def _is_section_heading(line: str) -> bool:
    return bool(_SECTION_HEADING_RE.match(line))


def _task_from_line(line: str) -> Optional[PlannedTask]:
    match = _TASK_LINE_RE.match(line)
    if not match:
        return None
    description = match.group(1).strip().strip("*").strip()
    if not description:
        return None
    test_command = (match.group(2) or "").strip() or DEFAULT_TEST_COMMAND
    return PlannedTask(description=description, test_command=test_command)


def extract_tasks(text: str) -> List[PlannedTask]:
    """Collect ``N. description (test: command)`` lines.

    Lines are taken from the section introduced by a task-list heading and
    collection stops at the next all-caps heading that is not itself a task
    heading. A response with no task heading at all is scanned in full.
    Numbered lines are always tasks, even when they mention a heading.
    """
    lines = [line.strip() for line in (text or "").splitlines()]
    has_heading = any(_is_task_heading(line) for line in lines)

    tasks: List[PlannedTask] = []
    in_list = not has_heading
    for line in lines:
        if not line:
            continue
        if _TASK_LINE_RE.match(line):
            task = _task_from_line(line)
            if in_list and task is not None:
                tasks.append(task)
            continue
        if has_heading:
            if _is_task_heading(line):
                in_list = True
            elif _is_section_heading(line):
                in_list = False
    return tasks


def match_path_declaration(line: str) -> Optional[str]:
    """Return the path declared by a bold, heading or bare path line."""
    for pattern in (_BOLD_PATH_RE, _HEADER_PATH_RE, _BARE_PATH_RE):
        match = pattern.match(line)
        if match:
            return match.group(1)
    return None


def extract_files(text: str) -> List[FileArtifact]:
    """Pair each declared path with the fenced block that follows it.

    A new declaration replaces a pending one that never received content, so a
    path without a code block is dropped rather than merged into the next file.
    Fenced blocks with no pending path are ignored. A block left open at the
    end of the text still yields its file.
    """
    files: List[FileArtifact] = []
    pending: Optional[str] = None
    buffer: List[str] = []
    in_block = False

    for raw in (text or "").splitlines():
        stripped = raw.strip()
        if in_block:
            if stripped.startswith("```"):
                if pending is not None:
                    files.append(FileArtifact(path=pending, content=_join(buffer)))
                pending = None
                buffer = []
                in_block = False
            else:
                buffer.append(raw)
            continue

        if stripped.startswith("```"):
            in_block = True
            buffer = []
            if pending is None:
                # ```python:src/app.py
                info = stripped[3:].strip()
                pending = match_path_declaration(info.split(":", 1)[-1]) if info else None
            continue

        declared = match_path_declaration(stripped)
        if declared is not None:
            pending = declared

    if in_block and pending is not None:
        files.append(FileArtifact(path=pending, content=_join(buffer)))
    return files


def _join(lines: List[str]) -> str:
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


__all__ = ["extract_files", "extract_tasks", "match_path_declaration"]
