"""Content generator collaborator: the source of plans, edits and files.

:class:`ContentGenerator` is the seam the resolvers and edit sessions talk
to. :class:`LLMContentGenerator` implements it over an :class:`LLMClient`;
tests substitute scripted subclasses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Type, TypeVar

from .models.llm_client import ChatMessage, LLMClient, LLMRequest
from .prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    EDIT_SYSTEM_PROMPT,
    FILE_SYSTEM_PROMPT,
    PLAN_SYSTEM_PROMPT,
    render_file_block,
    render_related_code,
    render_task_brief,
)
from .structured import ActionPlan, AnalysisReport, EditSet, FileContent
from .tools.transcripts import TranscriptWriter

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

MAX_LISTED_FILES = 200


@dataclass(slots=True)
class TaskBrief:
    """Everything a generator is told about the task being resolved."""

    task_id: str
    title: str
    description: str
    completion_criteria: str = ""
    pseudocode: str | None = None
    background_context: str | None = None
    related_commits: str | None = None
    repository_files: List[str] = field(default_factory=list)
    related_code: Dict[str, List[str]] = field(default_factory=dict)

    def render(self) -> str:
        return render_task_brief(
            task_id=self.task_id,
            title=self.title,
            description=self.description,
            completion_criteria=self.completion_criteria,
            pseudocode=self.pseudocode,
            background_context=self.background_context,
            related_commits=self.related_commits,
        )


@dataclass(slots=True)
class EditRequest:
    """Inputs for one round of edit generation against a single file."""

    file_path: str
    instructions: str
    file_contents: str
    repo_context: str = ""
    related_code: Dict[str, List[str]] = field(default_factory=dict)
    history: List[ChatMessage] = field(default_factory=list)
    task_id: str | None = None


@dataclass(slots=True)
class FileRequest:
    file_path: str
    description: str
    repo_context: str = ""
    related_code: Dict[str, List[str]] = field(default_factory=dict)
    task_id: str | None = None


class ContentGenerator:
    """Interface for anything that can decide what code to write."""

    def generate_edits(self, request: EditRequest) -> EditSet:
        raise NotImplementedError("Subclasses must implement generate_edits().")

    def generate_file(self, request: FileRequest) -> FileContent:
        raise NotImplementedError("Subclasses must implement generate_file().")

    def plan_actions(self, brief: TaskBrief) -> ActionPlan:
        raise NotImplementedError("Subclasses must implement plan_actions().")

    def analyze(self, brief: TaskBrief) -> str:
        raise NotImplementedError("Subclasses must implement analyze().")


class LLMContentGenerator(ContentGenerator):
    """Generator backed by a schema-validating :class:`LLMClient`.

    Responses that fail JSON parsing or schema validation are re-queried by
    the client; once its budget is spent ``LLMRetryError`` propagates to the
    caller.
    """

    def __init__(
        self,
        client: LLMClient,
        *,
        transcripts: TranscriptWriter | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._client = client
        self._transcripts = transcripts
        self._max_attempts = max_attempts

    def generate_edits(self, request: EditRequest) -> EditSet:
        sections = [
            request.repo_context,
            render_related_code(request.related_code),
            render_file_block(request.file_path, request.file_contents),
            f"## Instructions for {request.file_path}\n{request.instructions.strip()}",
        ]
        return self._invoke(
            "generate_edits",
            request.task_id or request.file_path,
            _join(sections),
            EDIT_SYSTEM_PROMPT,
            EditSet,
            history=request.history,
        )

    def generate_file(self, request: FileRequest) -> FileContent:
        sections = [
            request.repo_context,
            render_related_code(request.related_code),
            f"## File to create: {request.file_path}\n{request.description.strip()}",
        ]
        return self._invoke(
            "generate_file",
            request.task_id or request.file_path,
            _join(sections),
            FILE_SYSTEM_PROMPT,
            FileContent,
        )

    def plan_actions(self, brief: TaskBrief) -> ActionPlan:
        return self._invoke(
            "plan_actions",
            brief.task_id,
            _brief_prompt(brief),
            PLAN_SYSTEM_PROMPT,
            ActionPlan,
        )

    def analyze(self, brief: TaskBrief) -> str:
        report = self._invoke(
            "analyze",
            brief.task_id,
            _brief_prompt(brief),
            ANALYSIS_SYSTEM_PROMPT,
            AnalysisReport,
        )
        return report.summary

    def _invoke(
        self,
        operation: str,
        subject: str,
        prompt: str,
        system_prompt: str,
        response_model: Type[T],
        *,
        history: Sequence[ChatMessage] = (),
    ) -> T:
        request = LLMRequest(
            prompt=prompt,
            response_model=response_model,
            system_prompt=system_prompt,
            history=list(history),
            operation=operation,
            subject=subject,
            max_attempts=self._max_attempts,
        )
        logger = self._transcripts.attempt_logger(operation, subject) if self._transcripts else None
        LOGGER.debug("Requesting %s for %s", operation, subject)
        result, _ = self._client.invoke_structured(request, logger=logger)
        return result


def _brief_prompt(brief: TaskBrief) -> str:
    listing = ""
    if brief.repository_files:
        shown = brief.repository_files[:MAX_LISTED_FILES]
        listing = "## Repository Files\n" + "\n".join(shown)
        if len(brief.repository_files) > len(shown):
            listing += f"\n... ({len(brief.repository_files) - len(shown)} more)"
    return _join([brief.render(), listing, render_related_code(brief.related_code)])


def _join(sections: Sequence[str]) -> str:
    return "\n\n".join(section.strip() for section in sections if section and section.strip()) + "\n"


__all__ = [
    "ContentGenerator",
    "EditRequest",
    "FileRequest",
    "LLMContentGenerator",
    "TaskBrief",
]
