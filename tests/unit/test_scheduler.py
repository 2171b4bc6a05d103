from __future__ import annotations

import logging
from pathlib import Path

import pytest

from pbt.memory.backlog_store import BacklogNotFoundError, BacklogStore
from pbt.memory.schema import BacklogStatus
from pbt.planning.scheduler import (
    BacklogConflictError,
    BacklogScheduler,
    DecisionKind,
    select_backlog,
)


def _store(tmp_path: Path) -> BacklogStore:
    store = BacklogStore(tmp_path / "backlogs.json")
    store.add_backlog("Storage layer", title="Storage")
    store.add_backlog("HTTP API", title="API", dependencies=[1])
    store.add_backlog("Web UI", title="UI", dependencies=[1, 2])
    return store


def test_first_pending_backlog_without_dependencies_starts(tmp_path: Path) -> None:
    decision = BacklogScheduler(_store(tmp_path)).select()

    assert decision.kind == DecisionKind.START
    assert decision.runnable
    assert decision.backlog is not None and decision.backlog.id == 1


def test_blocked_backlogs_report_unmet_dependency_ids(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.remove(1)

    decision = BacklogScheduler(store).select()

    assert decision.kind == DecisionKind.BLOCKED
    assert not decision.runnable
    assert [(item.backlog.id, item.waiting_for) for item in decision.blocked] == [(2, [1]), (3, [1, 2])]


def test_backlog_starts_only_after_dependencies_complete(tmp_path: Path) -> None:
    store = _store(tmp_path)
    scheduler = BacklogScheduler(store)
    scheduler.start(1)
    scheduler.complete(1)

    decision = scheduler.select()

    assert decision.kind == DecisionKind.START
    assert decision.backlog is not None and decision.backlog.id == 2
    assert select_backlog(store.list_backlogs(), 3).blocked[0].waiting_for == [2]


def test_in_progress_backlog_is_resumed_first(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.update_status(1, BacklogStatus.COMPLETED)
    store.update_status(2, BacklogStatus.IN_PROGRESS)

    decision = BacklogScheduler(store).select()

    assert decision.kind == DecisionKind.RESUME
    assert decision.backlog is not None and decision.backlog.id == 2


def test_multiple_in_progress_backlogs_warn_and_resume_lowest(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    store = _store(tmp_path)
    store.update_status(3, BacklogStatus.IN_PROGRESS)
    store.update_status(2, BacklogStatus.IN_PROGRESS)

    with caplog.at_level(logging.WARNING, logger="pbt.planning.scheduler"):
        decision = BacklogScheduler(store).select()

    assert decision.kind == DecisionKind.RESUME
    assert decision.backlog is not None and decision.backlog.id == 2
    assert "Multiple backlogs are in progress" in caplog.text


def test_explicit_id_is_checked_against_dependencies(tmp_path: Path) -> None:
    scheduler = BacklogScheduler(_store(tmp_path))

    blocked = scheduler.select(3)
    missing = scheduler.select(42)
    ready = scheduler.select(1)

    assert blocked.kind == DecisionKind.BLOCKED
    assert blocked.blocked[0].waiting_for == [1, 2]
    assert missing.kind == DecisionKind.NOT_FOUND
    assert ready.kind == DecisionKind.START


def test_completed_explicit_id_and_empty_queue_are_exhausted(tmp_path: Path) -> None:
    store = _store(tmp_path)
    for backlog_id in (1, 2, 3):
        store.update_status(backlog_id, BacklogStatus.COMPLETED)
    scheduler = BacklogScheduler(store)

    assert scheduler.select().kind == DecisionKind.EXHAUSTED
    assert scheduler.select(2).kind == DecisionKind.EXHAUSTED
    assert BacklogScheduler(BacklogStore(tmp_path / "none.json")).select().kind == DecisionKind.EXHAUSTED


def test_start_refuses_second_active_backlog(tmp_path: Path) -> None:
    store = _store(tmp_path)
    scheduler = BacklogScheduler(store)
    scheduler.start(1)

    with pytest.raises(BacklogConflictError):
        scheduler.start(2)

    assert scheduler.start(1).status == BacklogStatus.IN_PROGRESS
    assert [item.status for item in store.list_backlogs()] == [
        BacklogStatus.IN_PROGRESS,
        BacklogStatus.PENDING,
        BacklogStatus.PENDING,
    ]


def test_start_unknown_backlog_raises(tmp_path: Path) -> None:
    with pytest.raises(BacklogNotFoundError):
        BacklogScheduler(_store(tmp_path)).start(9)


def test_complete_and_reset_round_trip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    scheduler = BacklogScheduler(store)
    scheduler.start(1)

    completed = scheduler.complete(1)
    assert completed.status == BacklogStatus.COMPLETED
    assert completed.completed_at

    reset = scheduler.reset(1)
    assert reset.status == BacklogStatus.PENDING
    assert reset.completed_at is None
    assert store.get(1).status == BacklogStatus.PENDING
