"""Prompt templates shared across plan-build-test agent roles."""

from __future__ import annotations

from typing import Iterable, Sequence

ENVELOPE_INSTRUCTION = (
    "Respond with a single ```json fenced block containing an object with a \"status\" field "
    "set to \"SUCCESS\" or \"FAILURE\". When the request is ambiguous or cannot be done, "
    "answer with status FAILURE and explain why in an \"error\" field. "
    "Do not use any tools; return everything in the response."
)

FILES_SHAPE = '"files": [{"path": "relative/path.ext", "content": "full file content"}]'


def render_role_brief(title: str) -> str:
    """Return the canonical opening line for a role prompt."""
    return f"You are the {title} in a plan, build and test loop."


def render_bullets(items: Iterable[str], *, empty: str = "(none)") -> str:
    lines = [f"- {item.strip()}" for item in items if item and item.strip()]
    return "\n".join(lines) if lines else empty


def render_file_snapshot(files: Sequence[tuple[str, str]], *, empty: str = "(no files yet)") -> str:
    """Render ``(path, content)`` pairs as path headings with fenced content."""
    if not files:
        return empty
    blocks = [f"**{path}**\n```\n{content.rstrip()}\n```" for path, content in files]
    return "\n\n".join(blocks)


def backlogs_prompt(requirement: str) -> str:
    return "\n\n".join(
        [
            render_role_brief("Architect"),
            f'Break this project into coarse, independently deliverable backlogs: "{requirement}".',
            "Each backlog needs an integer id (1, 2, 3 ...), a title, a description that can stand "
            "alone as a requirement, a priority (high|medium|low), an estimated_effort "
            "(small|medium|large) and a list of backlog ids it depends on.",
            ENVELOPE_INSTRUCTION,
            'Fields: "project_summary", "runtime_requirements", "technical_considerations", '
            '"backlogs": [{"id", "title", "description", "priority", "estimated_effort", "dependencies"}].',
        ]
    )


def plan_prompt(requirement: str, snapshot: str) -> str:
    return "\n\n".join(
        [
            render_role_brief("Architect"),
            f'Create a task-based blueprint for: "{requirement}".',
            "Each task must be independently testable, have clear success criteria and build "
            "towards the final goal. Order tasks so that each one only depends on earlier ones.",
            f"Current project files:\n{snapshot}",
            ENVELOPE_INSTRUCTION,
            'Fields: "tasks": [{"description", "test_command"}].',
            "If you cannot produce JSON, write a TASK LIST heading followed by lines of the form "
            "`1. <description> (test: <command>)`.",
        ]
    )


def refactor_prompt(focus: str, snapshot: str) -> str:
    return "\n\n".join(
        [
            render_role_brief("Refactoring Architect"),
            f"Review the project and propose refactoring tasks. Focus: {focus or 'overall code quality'}.",
            f"Current project files:\n{snapshot}",
            ENVELOPE_INSTRUCTION,
            'Fields: "assessment", "refactor_tasks": [{"description", "test_command"}].',
        ]
    )


def build_prompt(
    requirement: str,
    task_description: str,
    test_command: str,
    task_index: int,
    total_tasks: int,
    snapshot: str,
) -> str:
    return "\n\n".join(
        [
            render_role_brief("Coder"),
            f"Overall requirement: {requirement}",
            f"Implement task {task_index} of {total_tasks}: {task_description}",
            f"The task is verified with: {test_command}",
            f"Current project files:\n{snapshot}",
            "Return complete contents for every file you create or change.",
            ENVELOPE_INSTRUCTION,
            f"Fields: {FILES_SHAPE}.",
            "Without JSON, put each file path on its own line in bold (**path/to/file.ext**) "
            "followed by a fenced code block with the full content.",
        ]
    )


def create_tests_prompt(requirement: str, completed_tasks: Sequence[str], test_command: str, snapshot: str) -> str:
    return "\n\n".join(
        [
            render_role_brief("Tester"),
            f"Write automated tests for: {requirement}",
            f"Implemented tasks:\n{render_bullets(completed_tasks)}",
            f"The suite is run with: {test_command}",
            f"Current project files:\n{snapshot}",
            ENVELOPE_INSTRUCTION,
            f"Fields: {FILES_SHAPE}.",
        ]
    )


def fix_tests_prompt(test_output: str, snapshot: str) -> str:
    return "\n\n".join(
        [
            render_role_brief("Tester"),
            "The test suite is failing. Fix the tests so they match the actual implementation; "
            "only change application code when it is clearly wrong.",
            f"Test output:\n```\n{test_output.strip()[-6000:]}\n```",
            f"Current project files:\n{snapshot}",
            ENVELOPE_INSTRUCTION,
            'Fields: "fixed_tests": [{"file_path", "updated_content"}], "changes_made": [str].',
        ]
    )


def review_prompt(requirement: str, completed: Sequence[str], remaining: Sequence[str], snapshot: str) -> str:
    return "\n\n".join(
        [
            render_role_brief("Code Reviewer"),
            f"Review the current state of: {requirement}",
            f"Completed tasks:\n{render_bullets(completed)}",
            f"Remaining tasks:\n{render_bullets(remaining)}",
            f"Current code:\n{snapshot}",
            "Provide a brief assessment: is the code working so far? Any issues to fix before continuing?",
            ENVELOPE_INSTRUCTION,
            'Fields: "project_state": {"current_status"}, "recommendation": {"next_action", "description"}.',
        ]
    )


__all__ = [
    "ENVELOPE_INSTRUCTION",
    "backlogs_prompt",
    "build_prompt",
    "create_tests_prompt",
    "fix_tests_prompt",
    "plan_prompt",
    "refactor_prompt",
    "render_bullets",
    "render_file_snapshot",
    "render_role_brief",
    "review_prompt",
]
