"""Pipeline driver sequencing plan, build and test over a project."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from .memory.backlog_store import default_title
from .memory.project_state import ProjectState
from .memory.schema import Backlog, EventAction, ReconstructedTask
from .models.agent_client import AgentClient, AgentClientError
from .parsing import AgentFailureError
from .phases import build, plan, review, tester
from .planning.reconstruct import RequirementProgress, TaskReconstruction, TaskReconstructor, task_records
from .planning.scheduler import BacklogScheduler, DecisionKind, ScheduleDecision
from .structured import BacklogPlan, PlannedTask, RefactorPlan, ReviewVerdict
from .tools.server import ServerProcess
from .tools.test_runner import (
    DEFAULT_INSTALL_COMMAND,
    DEFAULT_TEST_RUN_COMMAND,
    Diagnostic,
    SuiteResult,
    diagnose_output,
    ensure_dependencies_installed,
    run_test_command,
)
from .tools.workspace import snapshot_files, write_files

LOGGER = logging.getLogger(__name__)
# Human-readable per-task progress lines; the CLI routes them to task-log.txt.
CYCLE_LOGGER = logging.getLogger("pbt.cycles")

_SNAPSHOT_EXCLUDES = ("backlogs.json", "config.yaml")


class PipelineError(RuntimeError):
    """Base error for pipeline runs that must be surfaced to the operator."""


class PlanningError(PipelineError):
    """The planning role produced no tasks."""


class TaskExecutionError(PipelineError):
    """A build step failed; the failure was logged and the run aborted."""

    def __init__(self, message: str, *, task_number: int, task_index: int) -> None:
        super().__init__(message)
        self.task_number = task_number
        self.task_index = task_index


def _coerce_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    return default


def _coerce_float(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)) and value > 0:
        return float(value)
    return default


def _coerce_str(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


@dataclass(slots=True)
class PipelineSettings:
    """Runtime configuration for the pipeline."""

    test_command: str = DEFAULT_TEST_RUN_COMMAND
    install_command: str = DEFAULT_INSTALL_COMMAND
    test_timeout: float = 120.0
    tests_dir: str = "tests"
    tests_enabled: bool = True
    review_on_resume: bool = True
    serve_command: Optional[str] = None
    serve_port: Optional[int] = None

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]]) -> "PipelineSettings":
        """Build settings from the ``testing`` and ``serve`` config sections.

        Wrongly typed values are ignored in favour of the defaults.
        """
        config = config or {}
        testing = config.get("testing")
        testing = testing if isinstance(testing, Mapping) else {}
        serve = config.get("serve")
        serve = serve if isinstance(serve, Mapping) else {}
        pipeline = config.get("pipeline")
        pipeline = pipeline if isinstance(pipeline, Mapping) else {}

        defaults = cls()
        enabled = testing.get("enabled")
        review_flag = pipeline.get("review_on_resume")
        serve_command = serve.get("command")
        port = serve.get("port")
        install = testing.get("install_command")
        return cls(
            test_command=_coerce_str(testing.get("command"), defaults.test_command),
            install_command=install.strip() if isinstance(install, str) else defaults.install_command,
            test_timeout=_coerce_float(testing.get("timeout"), defaults.test_timeout),
            tests_dir=_coerce_str(testing.get("tests_dir"), defaults.tests_dir),
            tests_enabled=enabled if isinstance(enabled, bool) else defaults.tests_enabled,
            review_on_resume=review_flag if isinstance(review_flag, bool) else defaults.review_on_resume,
            serve_command=serve_command.strip() if isinstance(serve_command, str) and serve_command.strip() else None,
            serve_port=_coerce_int(port, 0) or None,
        )


@dataclass(slots=True)
class TaskOutcome:
    task_number: int
    task_index: int
    description: str
    files: list[str] = field(default_factory=list)


@dataclass(slots=True)
class RequirementRun:
    """Result of planning (if needed) and building one requirement."""

    requirement: str
    planned: bool = False
    skipped: list[int] = field(default_factory=list)
    built: list[TaskOutcome] = field(default_factory=list)
    review: Optional[ReviewVerdict] = None
    tasks: list[ReconstructedTask] = field(default_factory=list)

    @property
    def all_completed(self) -> bool:
        return bool(self.tasks) and len(self.skipped) + len(self.built) == len(self.tasks)


@dataclass(slots=True)
class BacklogRun:
    decision: ScheduleDecision
    requirement: Optional[RequirementRun] = None
    tests: Optional[SuiteResult] = None
    completed: bool = False


@dataclass(slots=True)
class FixTestsOutcome:
    """Result of the fix-tests flow.

    ``diagnostics`` is populated instead of ``fixed_files`` when the agent was
    unavailable and remediation hints were derived from the test output.
    """

    before: SuiteResult
    after: Optional[SuiteResult] = None
    fixed_files: list[str] = field(default_factory=list)
    changes: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    agent_error: Optional[str] = None


Planner = Callable[[str], Sequence[PlannedTask]]


class PipelineDriver:
    """Run plan -> build -> test against a project, resumably.

    All progress is written to the event log before the next agent call, so
    re-running after a crash reconstructs the same task list and continues at
    the first task that is not completed.
    """

    def __init__(
        self,
        state: ProjectState,
        client: AgentClient,
        *,
        settings: Optional[PipelineSettings] = None,
        reconstructor: Optional[TaskReconstructor] = None,
    ) -> None:
        self.state = state
        self.client = client
        self.settings = settings or PipelineSettings()
        self.reconstructor = reconstructor or TaskReconstructor()
        self.scheduler = BacklogScheduler(state.backlogs)

    @property
    def role_logs(self) -> Path:
        return self.state.paths.role_logs

    # ------------------------------------------------------------------
    # Backlog management
    # ------------------------------------------------------------------
    def create_project(self, requirement: str) -> list[Backlog]:
        """Ask the architect to split ``requirement`` into backlogs and store them."""
        result: BacklogPlan = plan.run_backlogs(
            plan.BacklogsRequest(requirement=requirement),
            client=self.client,
            role_logs=self.role_logs,
        )
        if not result.backlogs:
            raise PlanningError("The architect returned no backlogs for the project.")
        drafts = [
            Backlog(
                id=draft.ref,
                title=draft.title or default_title(draft.description),
                description=draft.description,
                priority=draft.priority,
                estimated_effort=draft.estimated_effort,
                dependencies=list(draft.dependencies),
            )
            for draft in result.backlogs
        ]
        created = self.state.backlogs.extend(
            drafts,
            project_summary=result.project_summary,
            runtime_requirements=result.runtime_requirements,
            technical_considerations=result.technical_considerations,
        )
        self.state.append(
            EventAction.BACKLOGS_CREATED,
            requirement=requirement,
            details=f"{len(created)} backlogs created",
        )
        CYCLE_LOGGER.info("PROJECT: %d backlogs created for %s", len(created), requirement)
        return created

    def add_backlog(self, description: str, *, title: Optional[str] = None, dependencies: Iterable[int] = ()) -> Backlog:
        backlog = self.state.backlogs.add_backlog(description, title=title, dependencies=dependencies)
        self.state.append(EventAction.BACKLOG_ADDED, backlog_id=backlog.id, description=backlog.description)
        return backlog

    def list_backlogs(self) -> list[Backlog]:
        return self.state.backlogs.list_backlogs()

    def reset_backlog(self, backlog_id: int) -> Backlog:
        backlog = self.scheduler.reset(backlog_id)
        self.state.append(EventAction.BACKLOG_RESET, backlog_id=backlog_id)
        return backlog

    def remove_backlog(self, backlog_id: int) -> Backlog:
        backlog = self.state.backlogs.remove(backlog_id)
        self.state.append(EventAction.BACKLOG_REMOVED, backlog_id=backlog_id, description=backlog.description)
        return backlog

    def process_backlog(self, backlog_id: Optional[int] = None, *, run_tests: bool = True) -> BacklogRun:
        """Select, build and complete the next eligible backlog.

        A decision that is not runnable (blocked, exhausted, not found) is
        returned without side effects.
        """
        decision = self.scheduler.select(backlog_id)
        if not decision.runnable or decision.backlog is None:
            LOGGER.info("Nothing to process: %s", decision.kind.value)
            return BacklogRun(decision=decision)

        backlog = decision.backlog
        resuming = decision.kind == DecisionKind.RESUME
        if not resuming:
            backlog = self.scheduler.start(backlog.id)
            self.state.append(EventAction.BACKLOG_STARTED, backlog_id=backlog.id, description=backlog.description)
        LOGGER.info("%s backlog #%d: %s", "Resuming" if resuming else "Starting", backlog.id, backlog.title)

        run = self.run_requirement(backlog.description, review_on_resume=resuming and self.settings.review_on_resume)
        outcome = BacklogRun(decision=decision, requirement=run)
        if run.all_completed:
            self.scheduler.complete(backlog.id)
            self.state.append(EventAction.BACKLOG_COMPLETED, backlog_id=backlog.id, description=backlog.description)
            CYCLE_LOGGER.info("BACKLOG: #%d %s completed", backlog.id, backlog.title)
            outcome.completed = True

        if run_tests and outcome.completed and self.settings.tests_enabled:
            outcome.tests = self.run_tests(
                requirement=backlog.description,
                completed_tasks=[task.description for task in run.tasks],
            )
        return outcome

    # ------------------------------------------------------------------
    # Requirement execution
    # ------------------------------------------------------------------
    def reconstruct(self, requirement: Optional[str] = None) -> TaskReconstruction:
        return self.reconstructor.reconstruct(self.state.replay(), requirement)

    def status(self) -> list[RequirementProgress]:
        return self.reconstructor.summarize(self.state.replay())

    def run_requirement(
        self,
        requirement: str,
        *,
        planner: Optional[Planner] = None,
        review_on_resume: bool = False,
    ) -> RequirementRun:
        """Plan ``requirement`` if it has no tasks yet, then build every pending task."""
        events = self.state.replay()
        self.state.sync_counter(events)
        view = self.reconstructor.reconstruct(events, requirement)
        run = RequirementRun(requirement=requirement)

        if not view.tasks:
            planned = (planner or self._plan_tasks)(requirement)
            if not planned:
                raise PlanningError(f"No tasks were planned for: {requirement}")
            self._record_plan(requirement, planned)
            view = self.reconstruct(requirement)
            run.planned = True
        else:
            LOGGER.info(
                "Found %d existing task(s) for requirement; %d completed",
                len(view.tasks),
                len(view.completed),
            )
            if review_on_resume and view.completed and view.remaining:
                run.review = self._advisory_review(requirement, view)

        run.tasks = list(view.tasks)
        total = len(view.tasks)
        for index, task in enumerate(view.tasks, start=1):
            if task.completed:
                run.skipped.append(task.task_number)
                continue
            run.built.append(self._build_task(requirement, task, index, total))
        return run

    def add_task(self, requirement: str) -> RequirementRun:
        return self.run_requirement(requirement)

    def refactor(self, focus: str = "") -> RequirementRun:
        """Plan refactoring tasks for the current code and build them."""
        requirement = f"Refactor: {focus}" if focus.strip() else "Refactor: overall code quality"

        def _planner(_: str) -> Sequence[PlannedTask]:
            result: RefactorPlan = plan.run_refactor(
                plan.RefactorRequest(focus=focus, files=self._snapshot()),
                client=self.client,
                role_logs=self.role_logs,
            )
            if result.assessment:
                LOGGER.info("Refactoring assessment: %s", result.assessment)
            return result.tasks

        return self.run_requirement(requirement, planner=_planner)

    def _plan_tasks(self, requirement: str) -> Sequence[PlannedTask]:
        return plan.run(
            plan.PlanRequest(requirement=requirement, files=self._snapshot()),
            client=self.client,
            role_logs=self.role_logs,
        )

    def _record_plan(self, requirement: str, planned: Sequence[PlannedTask]) -> None:
        """Log one task-creation event per task, then the planning boundary."""
        created: list[ReconstructedTask] = []
        for planned_task in planned:
            number = self.state.next_task_number()
            self.state.append(
                EventAction.CREATE_TASK,
                task_number=number,
                description=planned_task.description,
                test_command=planned_task.test_command,
                requirement=requirement,
            )
            created.append(
                ReconstructedTask(
                    task_number=number,
                    description=planned_task.description,
                    test_command=planned_task.test_command,
                    requirement=requirement,
                )
            )
        self.state.append(
            EventAction.PLANNING_COMPLETE,
            requirement=requirement,
            total_tasks=len(created),
            tasks=task_records(created),
        )
        CYCLE_LOGGER.info("PLAN: %d task(s) for %s", len(created), requirement)

    def _build_task(self, requirement: str, task: ReconstructedTask, index: int, total: int) -> TaskOutcome:
        LOGGER.info("Task %d (%d/%d): %s", task.task_number, index, total, task.description)
        request = build.BuildRequest(
            requirement=requirement,
            task_number=task.task_number,
            task_index=index,
            total_tasks=total,
            description=task.description,
            test_command=task.test_command,
            files=self._snapshot(),
        )
        try:
            artifacts = build.run(request, client=self.client, role_logs=self.role_logs)
            written = write_files(self.state.root, artifacts)
        except Exception as error:
            self.state.append(
                EventAction.TASK_FAILED,
                task_number=task.task_number,
                task_index=index,
                total_tasks=total,
                requirement=requirement,
                error=str(error),
            )
            CYCLE_LOGGER.info("FAILED: task %d (%d/%d): %s", task.task_number, index, total, error)
            raise TaskExecutionError(
                f"Task {task.task_number} ({index}/{total}) failed: {error}",
                task_number=task.task_number,
                task_index=index,
            ) from error

        if not written:
            LOGGER.warning("Task %d produced no files", task.task_number)
        self.state.append(
            EventAction.COMPLETE_TASK,
            task_number=task.task_number,
            task_index=index,
            total_tasks=total,
            description=task.description,
            requirement=requirement,
            files_modified=written,
        )
        CYCLE_LOGGER.info("DONE: task %d (%d/%d) %s", task.task_number, index, total, task.description)
        return TaskOutcome(task_number=task.task_number, task_index=index, description=task.description, files=written)

    def _advisory_review(self, requirement: str, view: TaskReconstruction) -> Optional[ReviewVerdict]:
        """Review already-built work; failures are logged and never block."""
        request = review.ReviewRequest(
            requirement=requirement,
            completed=[task.description for task in view.completed],
            remaining=[task.description for task in view.remaining],
            files=self._snapshot(),
        )
        try:
            verdict = review.run(request, client=self.client, role_logs=self.role_logs)
        except (AgentClientError, AgentFailureError) as error:
            LOGGER.warning("Review skipped: %s", error)
            return None
        self.state.append(
            EventAction.REVIEW_COMPLETED,
            requirement=requirement,
            details=verdict.description or verdict.current_status,
        )
        return verdict

    # ------------------------------------------------------------------
    # Tests and serving
    # ------------------------------------------------------------------
    def run_tests(
        self,
        *,
        requirement: Optional[str] = None,
        completed_tasks: Sequence[str] = (),
    ) -> SuiteResult:
        """Create a suite when none exists, install dependencies and run it.

        A failing suite is returned and logged. Install or runner problems
        raise :class:`DependencyInstallError` / :class:`TestRunError`.
        """
        if requirement and not self._has_tests():
            files = tester.run_create(
                tester.CreateTestsRequest(
                    requirement=requirement,
                    test_command=self.settings.test_command,
                    completed_tasks=list(completed_tasks),
                    files=self._snapshot(),
                ),
                client=self.client,
                role_logs=self.role_logs,
            )
            written = write_files(self.state.root, files)
            if written:
                self.state.append(EventAction.TESTS_CREATED, requirement=requirement, files_modified=written)

        result = self._run_suite()
        if result.ok:
            self.state.append(EventAction.TESTS_PASSED, details=f"{result.passed} passed")
            CYCLE_LOGGER.info("TEST: all tests passed (%d)", result.passed)
        else:
            self.state.append(
                EventAction.TESTS_FAILED,
                error=f"exit code {result.exit_code}",
                details=f"{result.passed} passed, {result.failed} failed",
            )
            CYCLE_LOGGER.info("TEST: %d failed, %d passed", result.failed, result.passed)
        return result

    def fix_tests(self) -> FixTestsOutcome:
        """Run the suite; when it fails, ask the tester to repair it and re-run."""
        before = self._run_suite()
        outcome = FixTestsOutcome(before=before)
        if before.ok:
            return outcome

        try:
            fixes = tester.run_fix(
                tester.FixTestsRequest(test_output=before.output, files=self._snapshot()),
                client=self.client,
                role_logs=self.role_logs,
            )
        except (AgentClientError, AgentFailureError) as error:
            LOGGER.warning("Tester unavailable (%s); falling back to output diagnostics", error)
            outcome.agent_error = str(error)
            outcome.diagnostics = before.diagnostics or diagnose_output(before.output)
            return outcome

        outcome.fixed_files = write_files(self.state.root, fixes.fixed_tests)
        outcome.changes = list(fixes.changes_made)
        self.state.append(
            EventAction.TESTS_FIXED,
            files_modified=outcome.fixed_files,
            details="; ".join(outcome.changes) or None,
        )
        CYCLE_LOGGER.info("FIX: %d test file(s) updated", len(outcome.fixed_files))
        outcome.after = self._run_suite()
        return outcome

    def serve(self, *, server: Optional[ServerProcess] = None) -> int:
        """Start the configured server and block until interrupted."""
        if server is None:
            if not self.settings.serve_command:
                raise PipelineError("No serve.command configured.")
            server = ServerProcess(self.settings.serve_command, cwd=self.state.root)
        return server.wait_forever()

    def _run_suite(self) -> SuiteResult:
        ensure_dependencies_installed(
            self.state.root,
            command=self.settings.install_command,
            sentinel=self.state.paths.state_dir / "deps-installed.json",
        )
        result = run_test_command(
            self.state.root,
            self.settings.test_command,
            timeout=self.settings.test_timeout,
        )
        LOGGER.info("Test run finished with exit code %d", result.exit_code)
        return result

    def _has_tests(self) -> bool:
        tests_dir = self.state.root / self.settings.tests_dir
        if not tests_dir.is_dir():
            return False
        return any(path.is_file() for path in tests_dir.rglob("*"))

    def _snapshot(self) -> list[tuple[str, str]]:
        state_dir = self.state.paths.state_dir
        excludes = list(_SNAPSHOT_EXCLUDES)
        if state_dir.parent == self.state.root:
            excludes.append(state_dir.name)
        return snapshot_files(self.state.root, exclude=excludes)


__all__ = [
    "BacklogRun",
    "FixTestsOutcome",
    "PipelineDriver",
    "PipelineError",
    "PipelineSettings",
    "PlanningError",
    "RequirementRun",
    "TaskExecutionError",
    "TaskOutcome",
]
