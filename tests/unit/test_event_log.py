from __future__ import annotations

import json
import logging
from pathlib import Path

from pbt.memory.event_log import EventLog
from pbt.memory.schema import EVENT_SCHEMA_VERSION, Event, EventAction


def _event(action: EventAction, **fields) -> Event:
    return Event(action=action.value, timestamp="2024-01-01T00:00:00Z", version=EVENT_SCHEMA_VERSION, **fields)


def test_append_writes_one_json_line_per_event(tmp_path: Path) -> None:
    log = EventLog(tmp_path / "state" / "events.jsonl")
    log.append(_event(EventAction.CREATE_TASK, task_number=1, description="Scaffold", test_command="pytest"))
    log.append(_event(EventAction.COMPLETE_TASK, task_number=1, files_modified=["app.py"]))

    lines = (tmp_path / "state" / "events.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["action"] == "CREATE_TASK"
    assert first["taskNumber"] == 1
    assert first["testCommand"] == "pytest"
    assert first["version"] == EVENT_SCHEMA_VERSION
    assert json.loads(lines[1])["filesModified"] == ["app.py"]


def test_replay_is_repeatable(tmp_path: Path) -> None:
    log = EventLog(tmp_path / "events.jsonl")
    for number in range(1, 4):
        log.append(_event(EventAction.CREATE_TASK, task_number=number, description=f"task {number}"))

    first = [event.to_record() for event in log.replay()]
    second = [event.to_record() for event in log.replay()]
    assert first == second
    assert [record["taskNumber"] for record in first] == [1, 2, 3]


def test_replay_of_missing_log_is_empty(tmp_path: Path) -> None:
    assert EventLog(tmp_path / "nothing.jsonl").replay() == []


def test_corrupt_lines_are_skipped_and_left_in_place(tmp_path: Path, caplog) -> None:
    path = tmp_path / "events.jsonl"
    path.write_text(
        '{"action": "CREATE_TASK", "taskNumber": 1, "description": "ok"}\n'
        "{not json\n"
        "[1, 2, 3]\n"
        '{"action": "COMPLETE_TASK", "taskNumber": 1}\n',
        encoding="utf-8",
    )
    log = EventLog(path)

    with caplog.at_level(logging.WARNING, logger="pbt.memory.event_log"):
        events = log.replay()

    assert [event.action for event in events] == ["CREATE_TASK", "COMPLETE_TASK"]
    assert "{not json" in path.read_text(encoding="utf-8")
    assert any("malformed" in record.message for record in caplog.records)


def test_append_after_partial_line_keeps_new_record_readable(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    path.write_text('{"action": "CREATE_TASK", "taskNumber": 1}\n{"action": "COMP', encoding="utf-8")
    log = EventLog(path)

    log.append(_event(EventAction.CREATE_TASK, task_number=2, description="after crash"))

    events = log.replay()
    assert [event.task_number for event in events] == [1, 2]


def test_unreadable_log_counts_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    path.write_bytes(b"\xff\xfe\x00garbage")
    assert EventLog(path).replay() == []


def test_legacy_array_is_replayed_before_new_records(tmp_path: Path) -> None:
    legacy = tmp_path / "logs.json"
    legacy.write_text(
        json.dumps(
            [
                {"timestamp": "2023-01-01", "action": "CREATE_TASK", "taskNumber": 1, "description": "old"},
                {"timestamp": "2023-01-02", "action": "COMPLETE_TASK", "taskNumber": 1, "futureField": True},
            ]
        ),
        encoding="utf-8",
    )
    log = EventLog(tmp_path / "events.jsonl", legacy_path=legacy)
    log.append(_event(EventAction.CREATE_TASK, task_number=2, description="new"))

    events = log.replay()
    assert [event.task_number for event in events] == [1, 1, 2]
    assert events[0].version == 1
    assert events[2].version == EVENT_SCHEMA_VERSION
    assert events[1].model_extra == {"futureField": True}
    assert json.loads(legacy.read_text(encoding="utf-8"))[0]["description"] == "old"


def test_legacy_log_that_is_not_an_array_is_ignored(tmp_path: Path) -> None:
    legacy = tmp_path / "logs.json"
    legacy.write_text('{"action": "CREATE_TASK"}', encoding="utf-8")
    assert EventLog(tmp_path / "events.jsonl", legacy_path=legacy).replay() == []
