from __future__ import annotations

from pathlib import Path

import pytest

from stepwise.planning import Task, TaskStatus
from stepwise.planning.scheduler import (
    SchedulerDeadlockError,
    TaskBatchError,
    TaskScheduler,
    format_commit_message,
    validate_tasks,
)
from stepwise.resolvers import AnalysisResolver, CodeResolver
from stepwise.structured import ActionPlan, CreateFile, EditCode, EditSet
from stepwise.tools.sandbox import ProvisionError, Sandbox


def _code_task(task_id: str, *deps: str, title: str | None = None) -> Task:
    return Task(
        id=task_id,
        title=title or f"Change {task_id}",
        description="Modify the calculator.",
        dependencies=list(deps),
        completion_criteria="- it works",
        pseudocode="edit the file",
    )


def _analysis_task(task_id: str, *deps: str) -> Task:
    return Task(
        id=task_id,
        title=f"Investigate {task_id}",
        dependencies=list(deps),
        pseudocode="N/A",
    )


def _scheduler(tiny_repo, generator, tmp_path: Path, **kwargs) -> TaskScheduler:
    return TaskScheduler(
        tiny_repo.repo,
        code_resolver=CodeResolver(generator, max_retries=1),
        analysis_resolver=AnalysisResolver(generator),
        workspace_parent=tmp_path / "sandboxes",
        **kwargs,
    )


def _edit_plan(path: str = "src/calculator.py") -> ActionPlan:
    return ActionPlan(summary="edit", actions=[EditCode(file_path=path, instructions="tweak")])


def test_tasks_run_in_dependency_order_and_commit(tiny_repo, scripted_generator, make_proposal, tmp_path) -> None:
    scripted_generator.plans["A"] = _edit_plan()
    scripted_generator.plans["C"] = ActionPlan(
        summary="new file",
        actions=[CreateFile(file_path="src/multiply.py", description="multiply helper")],
    )
    scripted_generator.files["src/multiply.py"] = "def multiply(a, b):\n    return a * b\n"
    scripted_generator.edit_sets.append(
        EditSet(edits=[make_proposal("1", "return left + right", "return right + left")])
    )
    tasks = [_code_task("C", "B"), _analysis_task("B", "A"), _code_task("A")]

    report = _scheduler(tiny_repo, scripted_generator, tmp_path).run(tasks)

    assert report.ok
    assert [outcome.task.id for outcome in report.outcomes] == ["A", "B", "C"]
    assert [task.status for task in tasks] == [TaskStatus.RESOLVED] * 3
    assert tiny_repo.log() == ["C - Change C", "A - Change A", "Initial tiny repo state"]
    assert "return right + left" in (tiny_repo.root / "src/calculator.py").read_text(encoding="utf-8")
    assert (tiny_repo.root / "src/multiply.py").exists()
    assert tasks[2].commit_hash == report.commits[0].revision
    assert tasks[1].commit_hash is None
    assert tasks[1].output == "notes for B"
    assert list((tmp_path / "sandboxes").iterdir()) == []


def test_findings_and_commits_flow_into_later_briefs(tiny_repo, scripted_generator, make_proposal, tmp_path) -> None:
    scripted_generator.plans["B"] = _edit_plan()
    scripted_generator.analyses["A"] = "The add function lives in src/calculator.py."
    scripted_generator.edit_sets.append(
        EditSet(edits=[make_proposal("1", "return left - right", "return -(right - left)")])
    )
    tasks = [
        _analysis_task("A"),
        _code_task("B", "A"),
        _code_task("C", "B"),
    ]
    tasks[2].background_context = "Original notes."

    report = _scheduler(tiny_repo, scripted_generator, tmp_path).run(tasks)

    assert report.ok
    briefs = {brief.task_id: brief for brief in scripted_generator.briefs}
    assert "The add function lives in src/calculator.py." in briefs["B"].background_context
    assert briefs["B"].related_commits == ""
    assert briefs["C"].background_context.startswith("Original notes.")
    assert "### A: Investigate A" in briefs["C"].background_context
    assert "B - Change B" in briefs["C"].related_commits
    assert "```diff" in briefs["C"].related_commits
    assert "return -(right - left)" in briefs["C"].related_commits


def test_cycle_raises_deadlock_without_commits(tiny_repo, scripted_generator, tmp_path) -> None:
    tasks = [_code_task("A", "B"), _code_task("B", "A")]

    with pytest.raises(SchedulerDeadlockError) as excinfo:
        _scheduler(tiny_repo, scripted_generator, tmp_path).run(tasks)

    assert excinfo.value.stuck_ids == ["A", "B"]
    assert excinfo.value.report.commits == []
    assert tiny_repo.log() == ["Initial tiny repo state"]
    assert all(task.status is TaskStatus.WAITING for task in tasks)


def test_empty_edit_list_resolves_without_commit(tiny_repo, scripted_generator, tmp_path) -> None:
    scripted_generator.plans["A"] = _edit_plan()
    tasks = [_code_task("A"), _analysis_task("B", "A")]

    report = _scheduler(tiny_repo, scripted_generator, tmp_path).run(tasks)

    assert report.ok
    assert report.commits == []
    assert tasks[0].commit_hash is None
    assert "No edits were necessary" in tasks[0].output
    assert tasks[1].status is TaskStatus.RESOLVED
    assert tiny_repo.log() == ["Initial tiny repo state"]


def test_failure_halts_run_by_default(tiny_repo, scripted_generator, make_proposal, tmp_path) -> None:
    scripted_generator.plans["A"] = _edit_plan()
    for _ in range(2):
        scripted_generator.edit_sets.append(EditSet(edits=[make_proposal("1", "no such code", "x")]))
    tasks = [_code_task("A"), _analysis_task("B"), _code_task("C", "A")]

    report = _scheduler(tiny_repo, scripted_generator, tmp_path).run(tasks)

    assert not report.ok
    assert report.halted
    assert tasks[0].status is TaskStatus.FAILED
    assert "unsuccessful" in (tasks[0].error or "")
    assert report.blocked == ["B", "C"]
    assert tiny_repo.log() == ["Initial tiny repo state"]
    assert (tiny_repo.root / "src/calculator.py").read_text(encoding="utf-8").count("left + right") == 1


def test_keep_going_runs_independent_tasks_and_blocks_dependents(
    tiny_repo, scripted_generator, make_proposal, tmp_path
) -> None:
    scripted_generator.plans["A"] = _edit_plan()
    for _ in range(2):
        scripted_generator.edit_sets.append(EditSet(edits=[make_proposal("1", "no such code", "x")]))
    tasks = [_code_task("A"), _code_task("C", "A"), _analysis_task("B")]

    report = _scheduler(tiny_repo, scripted_generator, tmp_path, stop_on_failure=False).run(tasks)

    assert not report.halted
    assert [task.id for task in report.failed] == ["A"]
    assert [task.id for task in report.resolved] == ["B"]
    assert report.blocked == ["C"]
    assert tasks[1].status is TaskStatus.WAITING


def test_provisioning_failure_fails_only_that_task(tiny_repo, scripted_generator, tmp_path) -> None:
    def factory(task: Task) -> Sandbox:
        if task.id == "A":
            raise ProvisionError("disk full")
        return Sandbox.create(tiny_repo.repo, label=task.id, workspace_parent=tmp_path / "boxes")

    tasks = [_analysis_task("A"), _analysis_task("B")]

    report = _scheduler(
        tiny_repo, scripted_generator, tmp_path, sandbox_factory=factory, stop_on_failure=False
    ).run(tasks)

    assert tasks[0].status is TaskStatus.FAILED
    assert "disk full" in (tasks[0].error or "")
    assert tasks[1].status is TaskStatus.RESOLVED
    assert not report.ok


def test_actions_naming_a_directory_fail_only_their_task(tiny_repo, scripted_generator, tmp_path) -> None:
    scripted_generator.plans["A"] = _edit_plan("src")
    scripted_generator.plans["B"] = ActionPlan(
        summary="overwrite",
        actions=[CreateFile(file_path="src", description="not a file")],
    )
    tasks = [_code_task("A"), _code_task("B"), _analysis_task("C")]

    report = _scheduler(tiny_repo, scripted_generator, tmp_path, stop_on_failure=False).run(tasks)

    assert [task.id for task in report.failed] == ["A", "B"]
    assert "Cannot read src" in (tasks[0].error or "")
    assert "Cannot write src" in (tasks[1].error or "")
    assert tasks[2].status is TaskStatus.RESOLVED
    assert report.commits == []
    assert tiny_repo.log() == ["Initial tiny repo state"]


def test_resumed_run_reuses_previous_findings(tiny_repo, scripted_generator, tmp_path) -> None:
    done = _analysis_task("A")
    done.status = TaskStatus.RESOLVED
    done.output = "Earlier findings."
    interrupted = _analysis_task("B", "A")
    interrupted.status = TaskStatus.RUNNING

    report = _scheduler(tiny_repo, scripted_generator, tmp_path).run([done, interrupted])

    assert report.ok
    assert [outcome.task.id for outcome in report.outcomes] == ["B"]
    assert "Earlier findings." in scripted_generator.briefs[0].background_context


def test_next_runnable_prefers_input_order() -> None:
    tasks = [_code_task("B", "A"), _code_task("C"), _code_task("A")]

    assert TaskScheduler.next_runnable(tasks).id == "C"
    tasks[1].status = TaskStatus.RESOLVED
    assert TaskScheduler.next_runnable(tasks).id == "A"


def test_validate_tasks_rejects_duplicates_and_unknown_ids() -> None:
    with pytest.raises(TaskBatchError, match="Duplicate"):
        validate_tasks([_code_task("A"), _code_task("A")])
    with pytest.raises(TaskBatchError, match="A -> Z"):
        validate_tasks([_code_task("A", "Z")])


def test_format_commit_message() -> None:
    assert format_commit_message(_code_task("T-7", title="Add tests")) == "T-7 - Add tests"
