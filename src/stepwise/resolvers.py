"""Resolvers turn one task into sandbox changes (or findings)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from .context import ContextProvider, NullContextProvider
from .editing import DEFAULT_MAX_RETRIES, EditSession
from .generator import ContentGenerator, FileRequest, TaskBrief
from .models.llm_client import LLMClientError
from .planning.schema import Task
from .structured import Action, CreateFile, DeleteFile, EditCode, Pass, RunCommand
from .tools.patch import PatchApplier
from .tools.sandbox import Sandbox, SandboxError
from .tools.vcs import GitError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ActionResult:
    ok: bool
    text: str


@dataclass(slots=True)
class Resolution:
    """What a resolver reports back to the scheduler."""

    success: bool
    output: str = ""
    error: str | None = None
    actions: List[str] = field(default_factory=list)


def build_brief(task: Task, sandbox: Sandbox, context: ContextProvider) -> TaskBrief:
    """Collect the task text plus repository hints for the generator."""
    try:
        files = [path.as_posix() for path in sandbox.repo.list_tracked_paths()]
    except GitError as error:
        LOGGER.warning("Could not list repository files for %s: %s", task.id, error)
        files = []
    query = "\n".join(part for part in (task.title, task.description, task.pseudocode or "") if part)
    related = context.select_related_code(sandbox.source.name, query, excluded_paths=())
    return TaskBrief(
        task_id=task.id,
        title=task.title,
        description=task.description,
        completion_criteria=task.completion_criteria,
        pseudocode=task.pseudocode,
        background_context=task.background_context,
        related_commits=task.related_commits,
        repository_files=files,
        related_code=related,
    )


class AnalysisResolver:
    """Read-only path: ask the generator to investigate and summarise."""

    def __init__(self, generator: ContentGenerator, *, context: ContextProvider | None = None) -> None:
        self.generator = generator
        self.context = context or NullContextProvider()

    def resolve(self, task: Task, sandbox: Sandbox) -> Resolution:
        brief = build_brief(task, sandbox, self.context)
        try:
            summary = self.generator.analyze(brief)
        except LLMClientError as error:
            return Resolution(False, error=f"Analysis failed: {error}")
        return Resolution(True, output=summary.strip())


class CodeResolver:
    """Mutation path: plan actions, then carry each one out in the sandbox."""

    def __init__(
        self,
        generator: ContentGenerator,
        *,
        context: ContextProvider | None = None,
        applier: PatchApplier | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.generator = generator
        self.context = context or NullContextProvider()
        self.applier = applier or PatchApplier()
        self.max_retries = max_retries

    def resolve(self, task: Task, sandbox: Sandbox) -> Resolution:
        brief = build_brief(task, sandbox, self.context)
        try:
            plan = self.generator.plan_actions(brief)
        except LLMClientError as error:
            return Resolution(False, error=f"Planning failed: {error}")

        LOGGER.info("Task %s: %d action(s) planned", task.id, len(plan.actions))
        outputs: List[str] = []
        kinds: List[str] = []
        for action in plan.actions:
            kinds.append(action.kind)
            result = self.dispatch(action, sandbox, brief)
            outputs.append(result.text)
            if not result.ok:
                return Resolution(False, output="\n\n".join(outputs), error=result.text, actions=kinds)
        return Resolution(True, output="\n\n".join(outputs), actions=kinds)

    def dispatch(self, action: Action, sandbox: Sandbox, brief: TaskBrief) -> ActionResult:
        """Carry out a single planned action."""
        try:
            if isinstance(action, CreateFile):
                return self._create_file(action, sandbox, brief)
            if isinstance(action, DeleteFile):
                removed = sandbox.delete(action.file_path)
                if removed:
                    return ActionResult(True, f"Deleted {action.file_path}.")
                return ActionResult(True, f"{action.file_path} did not exist; nothing deleted.")
            if isinstance(action, EditCode):
                session = EditSession(
                    sandbox,
                    self.generator,
                    applier=self.applier,
                    context=self.context,
                    task_id=brief.task_id,
                    max_retries=self.max_retries,
                )
                result = session.run(action.file_path, action.instructions, repo_context=brief.render())
                return ActionResult(result.success, result.output)
            if isinstance(action, RunCommand):
                output = sandbox.execute(action.command)
                return ActionResult(True, f"$ {action.command}\n{output}".rstrip())
            if isinstance(action, Pass):
                reason = action.reason.strip()
                return ActionResult(True, f"Passed: {reason}" if reason else "Passed.")
        except SandboxError as error:
            return ActionResult(False, f"{action.kind} rejected: {error}")
        raise TypeError(f"Unsupported action: {action!r}")

    def _create_file(self, action: CreateFile, sandbox: Sandbox, brief: TaskBrief) -> ActionResult:
        request = FileRequest(
            file_path=action.file_path,
            description=action.description,
            repo_context=brief.render(),
            related_code=brief.related_code,
            task_id=brief.task_id,
        )
        try:
            content = self.generator.generate_file(request)
        except LLMClientError as error:
            return ActionResult(False, f"Creating {action.file_path} failed: {error}")
        existed = sandbox.exists(action.file_path)
        sandbox.write_text(action.file_path, content.code)
        verb = "Overwrote" if existed else "Created"
        return ActionResult(True, f"{verb} {action.file_path}.")


__all__ = [
    "ActionResult",
    "AnalysisResolver",
    "CodeResolver",
    "Resolution",
    "build_brief",
]
