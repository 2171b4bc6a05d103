from __future__ import annotations

import pytest

from conftest import envelope
from pbt.parsing import Empty, parse_response
from pbt.parsing.roles import backlogs_from, files_from, fixes_from, refactor_from, review_from, tasks_from
from pbt.structured import PlannedTask


def test_backlogs_keep_agent_references_and_dependencies() -> None:
    text = envelope(
        {
            "project_summary": "Todo app",
            "backlogs": [
                {"id": 1, "title": "API", "description": "Build the REST API", "priority": "high"},
                {"id": 2, "title": "UI", "description": "Build the UI", "dependencies": [1, "1", True]},
                {"id": 3, "title": "", "description": ""},
            ],
        }
    )

    plan = backlogs_from(parse_response(text))

    assert plan.project_summary == "Todo app"
    assert [(draft.ref, draft.title, draft.dependencies) for draft in plan.backlogs] == [
        (1, "API", []),
        (2, "UI", [1, 1]),
    ]
    assert plan.backlogs[0].priority == "high"
    assert plan.backlogs[1].estimated_effort == "medium"


def test_free_text_backlogs_are_numbered_by_position() -> None:
    plan = backlogs_from(parse_response("1. Set up storage\n2. Expose HTTP endpoints\n"))

    assert [(draft.ref, draft.title, draft.description) for draft in plan.backlogs] == [
        (1, "Set up storage", "Set up storage"),
        (2, "Expose HTTP endpoints", "Expose HTTP endpoints"),
    ]


def test_structured_tasks_accept_alternate_test_keys() -> None:
    text = envelope(
        {
            "tasks": [
                {"description": "One", "testCommand": "pytest -q"},
                {"title": "Two", "test": "make check"},
                {"description": "Three"},
                {"unrelated": True},
            ]
        }
    )

    assert tasks_from(parse_response(text)) == [
        PlannedTask(description="One", test_command="pytest -q"),
        PlannedTask(description="Two", test_command="make check"),
        PlannedTask(description="Three"),
    ]


def test_fix_result_reads_updated_content_and_single_change() -> None:
    text = envelope(
        {
            "fixed_tests": [{"file_path": "tests/test_app.py", "updated_content": "def test_ok():\n    pass\n"}],
            "changes_made": "Relaxed assertion",
        }
    )

    result = fixes_from(parse_response(text))

    assert [(item.path, item.content) for item in result.fixed_tests] == [
        ("tests/test_app.py", "def test_ok():\n    pass\n")
    ]
    assert result.changes_made == ["Relaxed assertion"]


def test_review_verdict_from_structured_and_free_text() -> None:
    structured = envelope(
        {
            "project_state": {"current_status": "half done"},
            "recommendation": {"description": "Finish the API first", "next_action": "continue"},
        }
    )

    verdict = review_from(parse_response(structured))

    assert verdict.description == "Finish the API first"
    assert verdict.current_status == "half done"
    assert verdict.next_action == "continue"
    assert review_from(parse_response("Looks fine so far.\n")).description == "Looks fine so far."
    assert review_from(Empty()).description == ""


def test_refactor_plan_reads_refactor_tasks_key() -> None:
    text = envelope(
        {
            "assessment": "Duplicated helpers",
            "refactor_tasks": [{"description": "Merge helpers", "test_command": "pytest -q"}],
        }
    )

    plan = refactor_from(parse_response(text))

    assert plan.assessment == "Duplicated helpers"
    assert plan.tasks == [PlannedTask(description="Merge helpers", test_command="pytest -q")]


def test_refactor_plan_from_free_text_heading() -> None:
    plan = refactor_from(parse_response("REFACTORING TASKS:\n1. Split cli module (test: pytest -q)\n"))

    assert plan.assessment == ""
    assert plan.tasks == [PlannedTask(description="Split cli module", test_command="pytest -q")]


@pytest.mark.parametrize("value", [5, "not a list", {"id": 1}, None, True])
def test_role_fields_with_wrong_types_yield_empty_results(value: object) -> None:
    result = parse_response(
        envelope(
            {
                "backlogs": value,
                "tasks": value,
                "refactor_tasks": value,
                "files": value,
                "fixed_tests": value,
            }
        )
    )

    assert backlogs_from(result).backlogs == []
    assert tasks_from(result) == []
    assert refactor_from(result).tasks == []
    assert files_from(result) == []
    assert fixes_from(result).fixed_tests == []


@pytest.mark.parametrize("value", [5, {"note": "x"}, None, 2.5])
def test_non_list_changes_are_dropped(value: object) -> None:
    assert fixes_from(parse_response(envelope({"changes_made": value}))).changes_made == []


def test_review_ignores_non_text_fields() -> None:
    text = envelope(
        {
            "project_state": {"current_status": 3},
            "recommendation": {"description": "Keep going", "next_action": ["a", "b"]},
        }
    )

    verdict = review_from(parse_response(text))

    assert verdict.description == "Keep going"
    assert verdict.current_status is None
    assert verdict.next_action is None


def test_deeply_nested_envelope_falls_back_to_free_text() -> None:
    text = "```json\n" + "[" * 100000 + "]" * 100000 + "\n```\n1. Still a task\n"

    result = parse_response(text)

    assert not isinstance(result, Empty)
    assert tasks_from(result) == [PlannedTask(description="Still a task")]
