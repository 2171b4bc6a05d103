"""Task reconstruction and backlog scheduling built on the event log."""

from .reconstruct import TaskReconstruction, TaskReconstructor
from .scheduler import BacklogScheduler, DecisionKind, ScheduleDecision

__all__ = [
    "BacklogScheduler",
    "DecisionKind",
    "ScheduleDecision",
    "TaskReconstruction",
    "TaskReconstructor",
]
