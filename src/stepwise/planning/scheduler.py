"""Dependency-respecting sequential task executor."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..resolvers import AnalysisResolver, CodeResolver, Resolution
from ..telemetry import emit_event
from ..tools.commit import CommitError, CommitManager, CommitRecord
from ..tools.sandbox import DEFAULT_COMMAND_TIMEOUT, ProvisionError, Sandbox, SandboxError
from ..tools.vcs import GitError, GitRepository
from .schema import Task, TaskStatus

LOGGER = logging.getLogger(__name__)

SandboxFactory = Callable[[Task], Sandbox]


class TaskBatchError(RuntimeError):
    """Raised before any work when a task batch is malformed."""


class SchedulerDeadlockError(RuntimeError):
    """Raised when waiting tasks remain but none of them can ever run."""

    def __init__(self, stuck: Sequence[Task], report: "ExecutionReport") -> None:
        self.stuck_ids = [task.id for task in stuck]
        self.report = report
        details = "; ".join(
            f"{task.id} waits on {', '.join(task.dependencies) or '(nothing)'}" for task in stuck
        )
        super().__init__(f"No runnable task among {len(stuck)} waiting: {details}")


def validate_tasks(tasks: Sequence[Task]) -> None:
    """Reject duplicate ids and dependencies on unknown ids."""
    counts = Counter(task.id for task in tasks)
    duplicates = sorted(task_id for task_id, count in counts.items() if count > 1)
    if duplicates:
        raise TaskBatchError(f"Duplicate task id(s): {', '.join(duplicates)}")
    problems = [
        f"{task.id} -> {dependency}"
        for task in tasks
        for dependency in task.dependencies
        if dependency not in counts
    ]
    if problems:
        raise TaskBatchError(f"Unknown dependency id(s): {', '.join(problems)}")


def format_commit_message(task: Task) -> str:
    return f"{task.id} - {task.title}"


@dataclass(slots=True)
class TaskOutcome:
    """Summary of a single task attempt."""

    task: Task
    mutation: bool
    commit: Optional[CommitRecord] = None
    actions: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.task.status is TaskStatus.RESOLVED


@dataclass(slots=True)
class ExecutionReport:
    """Aggregated summary for one scheduler run."""

    tasks: List[Task] = field(default_factory=list)
    outcomes: List[TaskOutcome] = field(default_factory=list)
    commits: List[CommitRecord] = field(default_factory=list)
    blocked: List[str] = field(default_factory=list)
    halted: bool = False

    @property
    def ok(self) -> bool:
        return all(task.status is TaskStatus.RESOLVED for task in self.tasks)

    @property
    def failed(self) -> List[Task]:
        return [task for task in self.tasks if task.status is TaskStatus.FAILED]

    @property
    def resolved(self) -> List[Task]:
        return [task for task in self.tasks if task.status is TaskStatus.RESOLVED]


class TaskScheduler:
    """Resolve tasks one at a time in dependency order.

    Each iteration picks the first waiting task (in input order) whose
    dependencies have all resolved, gives it a fresh sandbox, and routes it
    to the code resolver when it requires mutation or to the analysis
    resolver otherwise. Mutations are committed and published before the
    next task starts, so later sandboxes see earlier work.
    """

    def __init__(
        self,
        repo: GitRepository,
        *,
        code_resolver: CodeResolver,
        analysis_resolver: AnalysisResolver,
        commit_manager: CommitManager | None = None,
        sandbox_factory: SandboxFactory | None = None,
        stop_on_failure: bool = True,
        workspace_parent: Path | str | None = None,
        command_timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.repo = repo
        self.code_resolver = code_resolver
        self.analysis_resolver = analysis_resolver
        self.commit_manager = commit_manager or CommitManager()
        self.stop_on_failure = stop_on_failure
        self._workspace_parent = workspace_parent
        self._command_timeout = command_timeout
        self._sandbox_factory = sandbox_factory or self._default_sandbox

    def _default_sandbox(self, task: Task) -> Sandbox:
        return Sandbox.create(
            self.repo,
            label=task.id,
            workspace_parent=self._workspace_parent,
            command_timeout=self._command_timeout,
        )

    @staticmethod
    def next_runnable(tasks: Sequence[Task]) -> Optional[Task]:
        resolved = {task.id for task in tasks if task.status is TaskStatus.RESOLVED}
        for task in tasks:
            if task.is_runnable(resolved):
                return task
        return None

    def run(self, tasks: List[Task], *, validate: bool = True) -> ExecutionReport:
        """Run every runnable task; returns the report or raises on deadlock."""
        if validate:
            validate_tasks(tasks)
        for task in tasks:
            if task.status is TaskStatus.RUNNING:
                # interrupted by a previous run
                task.status = TaskStatus.WAITING

        report = ExecutionReport(tasks=list(tasks))
        base_context = {task.id: task.background_context for task in tasks}
        base_commits = {task.id: task.related_commits for task in tasks}
        findings: List[str] = [
            _render_finding(task)
            for task in tasks
            if task.status is TaskStatus.RESOLVED and not task.requires_mutation and task.output
        ]

        while True:
            waiting = [task for task in tasks if task.status is TaskStatus.WAITING]
            if not waiting:
                break
            task = self.next_runnable(tasks)
            if task is None:
                stuck = _stuck_tasks(tasks, waiting)
                report.blocked = [item.id for item in waiting]
                if stuck:
                    raise SchedulerDeadlockError(stuck, report)
                break

            task.background_context = _join(base_context[task.id], *findings)
            task.related_commits = _join(
                base_commits[task.id], *(_render_commit(record) for record in report.commits)
            )
            outcome = self._run_task(task)
            report.outcomes.append(outcome)
            if outcome.commit is not None:
                report.commits.append(outcome.commit)
            if outcome.ok and not outcome.mutation and task.output:
                findings.append(_render_finding(task))
            if not outcome.ok and self.stop_on_failure:
                report.halted = True
                report.blocked = [item.id for item in tasks if item.status is TaskStatus.WAITING]
                break

        return report

    def _run_task(self, task: Task) -> TaskOutcome:
        mutation = task.requires_mutation
        outcome = TaskOutcome(task=task, mutation=mutation)
        self._set_status(task, TaskStatus.RUNNING)
        task.error = None

        try:
            sandbox = self._sandbox_factory(task)
        except ProvisionError as error:
            self._fail(task, f"Sandbox provisioning failed: {error}")
            return outcome

        with sandbox:
            resolver = self.code_resolver if mutation else self.analysis_resolver
            try:
                resolution: Resolution = resolver.resolve(task, sandbox)
                outcome.actions = list(resolution.actions)
                task.output = resolution.output
                if not resolution.success:
                    self._fail(task, resolution.error or "Resolution failed")
                    return outcome
                if mutation and sandbox.repo.has_changes():
                    record = self.commit_manager.commit(sandbox, format_commit_message(task))
                    outcome.commit = record
                    task.commit_hash = record.revision
                elif mutation:
                    LOGGER.info("Task %s produced no changes; nothing to commit", task.id)
            except (CommitError, SandboxError, GitError, OSError) as error:
                self._fail(task, str(error))
                return outcome

        self._set_status(task, TaskStatus.RESOLVED)
        return outcome

    def _fail(self, task: Task, diagnostic: str) -> None:
        task.error = diagnostic
        LOGGER.warning("Task %s failed: %s", task.id, diagnostic)
        self._set_status(task, TaskStatus.FAILED)

    @staticmethod
    def _set_status(task: Task, status: TaskStatus) -> None:
        task.status = status
        LOGGER.info("Task %s -> %s", task.id, status.value)
        emit_event("task.status", task_id=task.id, status=status, commit=task.commit_hash)


def _stuck_tasks(tasks: Sequence[Task], waiting: Sequence[Task]) -> List[Task]:
    """Waiting tasks that are not downstream of a failure (cycles, unknown ids)."""
    blocked: set[str] = {task.id for task in tasks if task.status is TaskStatus.FAILED}
    changed = True
    while changed:
        changed = False
        for task in waiting:
            if task.id not in blocked and any(dep in blocked for dep in task.dependencies):
                blocked.add(task.id)
                changed = True
    return [task for task in waiting if task.id not in blocked]


def _render_finding(task: Task) -> str:
    return f"### {task.id}: {task.title}\n{task.output.strip()}"


def _render_commit(record: CommitRecord) -> str:
    return f"### {record.short} {record.message}\n```diff\n{record.diff.rstrip()}\n```"


def _join(*parts: str) -> str:
    return "\n\n".join(part.strip() for part in parts if part and part.strip())


__all__ = [
    "ExecutionReport",
    "SchedulerDeadlockError",
    "TaskBatchError",
    "TaskOutcome",
    "TaskScheduler",
    "format_commit_message",
    "validate_tasks",
]
