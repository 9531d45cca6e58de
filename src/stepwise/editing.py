"""Bounded request → apply → feedback loop for editing one file."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from .context import ContextProvider, NullContextProvider
from .generator import ContentGenerator, EditRequest
from .models.llm_client import ChatMessage, LLMClientError
from .prompts import render_fix_edits_message, render_previous_answer
from .structured import Edit
from .telemetry import emit_event
from .tools.patch import PatchApplier
from .tools.sandbox import Sandbox, SandboxError

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


@dataclass(slots=True)
class EditSessionResult:
    """Outcome of an edit session; ``output`` is what the caller reports."""

    file_path: str
    success: bool
    output: str
    attempts: int
    applied: List[Edit] = field(default_factory=list)
    unresolved: List[Edit] = field(default_factory=list)


class EditSession:
    """Ask the generator for edits to one file and apply them, with retries.

    Each attempt re-reads the file so the generator always sees the current
    contents. Edits that fail to apply are reported back, together with the
    generator's previous answer, and the generator gets another attempt. The
    session makes at most ``retries + 1`` generator calls.
    """

    def __init__(
        self,
        sandbox: Sandbox,
        generator: ContentGenerator,
        *,
        applier: PatchApplier | None = None,
        context: ContextProvider | None = None,
        repo_id: str | None = None,
        task_id: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.sandbox = sandbox
        self.generator = generator
        self.applier = applier or PatchApplier()
        self.context = context or NullContextProvider()
        self.repo_id = repo_id or sandbox.source.name
        self.task_id = task_id
        self.max_retries = max_retries

    def run(
        self,
        file_path: str,
        spec: str,
        prior_messages: Sequence[ChatMessage] = (),
        repo_context: str = "",
        retries_remaining: int | None = None,
    ) -> EditSessionResult:
        retries = self.max_retries if retries_remaining is None else max(retries_remaining, 0)
        history: List[ChatMessage] = list(prior_messages)
        applied: List[Edit] = []
        pending: List[Edit] = []
        attempt = 0

        while True:
            attempt += 1
            try:
                contents = self.sandbox.read_text(file_path)
            except FileNotFoundError:
                message = f"Editing was unsuccessful: {file_path} does not exist."
                return EditSessionResult(file_path, False, message, attempt - 1, applied, pending)
            except SandboxError as error:
                message = f"Editing was unsuccessful: {error}."
                return EditSessionResult(file_path, False, message, attempt - 1, applied, pending)

            related = self.context.select_related_code(self.repo_id, spec, excluded_paths=[file_path])
            request = EditRequest(
                file_path=file_path,
                instructions=spec,
                file_contents=contents,
                repo_context=repo_context,
                related_code=related,
                history=list(history),
                task_id=self.task_id,
            )
            try:
                proposals = self.generator.generate_edits(request).edits
            except LLMClientError as error:
                LOGGER.warning("Generator failed while editing %s: %s", file_path, error)
                message = f"Editing was unsuccessful: the generator did not return valid edits ({error})."
                return EditSessionResult(file_path, False, message, attempt, applied, pending)

            edits = [Edit.from_proposal(proposal) for proposal in proposals]
            for edit in edits:
                outcome = self.applier.apply(self.sandbox, file_path, edit.original_code, edit.new_code)
                if outcome.applied:
                    applied.append(edit)
                elif outcome.diagnostic is not None:
                    edit.error = outcome.diagnostic.render()
                else:
                    edit.error = f"Edit {edit.id} was not applied."
            pending = [edit for edit in edits if edit.error]
            emit_event(
                "edit.attempt",
                path=file_path,
                attempt=attempt,
                proposed=len(edits),
                failed=len(pending),
            )

            if not pending:
                return EditSessionResult(
                    file_path,
                    True,
                    _success_output(file_path, applied),
                    attempt,
                    applied,
                    [],
                )
            if attempt > retries:
                break

            LOGGER.info(
                "%d edit(s) to %s failed on attempt %d; asking for corrections",
                len(pending),
                file_path,
                attempt,
            )
            history.append(
                ChatMessage("assistant", render_previous_answer([edit.to_payload() for edit in edits]))
            )
            history.append(
                ChatMessage(
                    "user",
                    render_fix_edits_message([(edit.id, edit.error or "") for edit in pending]),
                )
            )

        return EditSessionResult(
            file_path,
            False,
            _failure_output(file_path, applied, pending),
            attempt,
            applied,
            pending,
        )


def _success_output(file_path: str, applied: Sequence[Edit]) -> str:
    if not applied:
        return f"No edits were necessary for {file_path}."
    lines = [f"Edited {file_path}: {len(applied)} edit(s) applied."]
    for edit in applied:
        notes = []
        if edit.risk.strip():
            notes.append(f"The edit has the following risk: {edit.risk.strip()}")
        if edit.style.strip():
            notes.append(f"The edit has the following style deviation: {edit.style.strip()}")
        lines.append(f"- Edit {edit.id}" + (": " + " ".join(notes) if notes else ""))
    return "\n".join(lines)


def _failure_output(file_path: str, applied: Sequence[Edit], pending: Sequence[Edit]) -> str:
    summary = [{"id": edit.id, "error": edit.error} for edit in pending]
    lines = [f"Editing {file_path} was unsuccessful due to errors:"]
    lines.append(json.dumps(summary, indent=2, ensure_ascii=False))
    if applied:
        lines.append(f"{len(applied)} other edit(s) were applied: {', '.join(edit.id for edit in applied)}.")
    return "\n".join(lines)


__all__ = ["DEFAULT_MAX_RETRIES", "EditSession", "EditSessionResult"]
