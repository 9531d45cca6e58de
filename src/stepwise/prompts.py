"""Prompt templates shared by the content generator."""

from __future__ import annotations

import json
from typing import Mapping, Sequence

JSON_RESPONSE_INSTRUCTION = (
    "Return only JSON. Emit a single JSON object that satisfies the documented response schema. "
    "Do not include markdown fences, explanations, or trailing text. "
    "Use double-quoted keys and strings."
)

PLAN_SYSTEM_PROMPT = f"""You are a senior software engineer resolving one coding task inside a git repository.
Turn the task into an ordered list of actions. The available actions are:

1. `create_file`: create (or overwrite) a file. Describe what the file must contain; its contents are written in a follow-up step exactly as produced.
2. `delete_file`: delete a file that is no longer needed.
3. `edit_code`: change an existing file. Describe the change precisely; the exact replacement snippets are produced in a follow-up step.
4. `run_command`: run a shell command in the repository root, for example to install dependencies or run the test suite.
5. `pass`: take no action because the task is already satisfied or does not apply.

Prefer the simplest change that satisfies the completion criteria. Do not leave placeholders or TODO notes; nobody will follow up on them.
Return at least one action. Use `pass` when no work is required.

{JSON_RESPONSE_INSTRUCTION}"""

EDIT_SYSTEM_PROMPT = f"""You are a senior software engineer editing a single file.
Propose edits as exact text substitutions. Each edit has:
- `id`: a short identifier unique within your answer
- `original_code`: a snippet copied verbatim from the current file contents, including whitespace and comments
- `new_code`: the text that replaces it, written exactly as it should appear in the file
- `risk`: what could break because of this edit
- `style`: any deviation from the surrounding code style

Only the first occurrence of `original_code` is replaced, so include enough surrounding lines to make each snippet unique.
Do not bridge edits with comments such as "rest of code here"; use several edits instead.
Do not change code outside the snippets you replace. If you change a function signature, update its callers in the same file.
Return an empty `edits` list when the file already satisfies the instructions.

{JSON_RESPONSE_INSTRUCTION}"""

FILE_SYSTEM_PROMPT = f"""You are a senior software engineer writing a new file.
Return the complete file contents in `code`. The text is written to disk exactly as returned, so do not wrap it in markdown fences.

{JSON_RESPONSE_INSTRUCTION}"""

ANALYSIS_SYSTEM_PROMPT = f"""You are a senior software engineer investigating a repository for a task that does not change any code.
Gather what the task asks for and return a concise summary of the findings in `summary`. Later tasks rely on this summary as background context.

{JSON_RESPONSE_INSTRUCTION}"""

FIX_EDITS_INTRO = (
    "One or more of your edits contained errors. Usually this is because `original_code` does not match "
    "the file exactly. Review the file contents and resubmit corrected versions of the following edits:"
)


def render_task_brief(
    *,
    task_id: str,
    title: str,
    description: str,
    completion_criteria: str,
    pseudocode: str | None = None,
    background_context: str | None = None,
    related_commits: str | None = None,
) -> str:
    """Render a task as the markdown block every generator prompt starts with."""
    sections = [f"# {task_id} : '{title}'", description.strip()]
    if pseudocode and pseudocode.strip() and "N/A" not in pseudocode:
        sections.append(f"**Pseudocode:**\n```\n{pseudocode.strip()}\n```")
    sections.append(f"**Completion Criteria:**\n{completion_criteria.strip()}")
    if background_context and background_context.strip():
        sections.append(f"## Background Context\n\n{background_context.strip()}")
    if related_commits and related_commits.strip():
        sections.append(f"## Recent & Related Commits\n\n{related_commits.strip()}")
    return "\n\n".join(section for section in sections if section) + "\n"


def render_related_code(related: Mapping[str, Sequence[str]]) -> str:
    """Format advisory snippets from the context provider."""
    if not related:
        return ""
    blocks = ["## Related Code"]
    for path, snippets in related.items():
        for snippet in snippets:
            blocks.append(f"**{path}**\n```\n{snippet}\n```")
    return "\n\n".join(blocks)


def render_file_block(file_path: str, contents: str) -> str:
    return f"## Current contents of {file_path}\n```\n{contents}\n```"


def render_fix_edits_message(failures: Sequence[tuple[str, str]]) -> str:
    """Build the follow-up message listing each failed edit id with its diagnostic."""
    parts = [FIX_EDITS_INTRO]
    for edit_id, diagnostic in failures:
        parts.append(f"# Edit {edit_id}\n{diagnostic}")
    return "\n\n".join(parts)


def render_previous_answer(edits: Sequence[Mapping[str, object]]) -> str:
    return json.dumps({"edits": list(edits)}, indent=2, ensure_ascii=False)


__all__ = [
    "ANALYSIS_SYSTEM_PROMPT",
    "EDIT_SYSTEM_PROMPT",
    "FILE_SYSTEM_PROMPT",
    "FIX_EDITS_INTRO",
    "JSON_RESPONSE_INSTRUCTION",
    "PLAN_SYSTEM_PROMPT",
    "render_file_block",
    "render_fix_edits_message",
    "render_previous_answer",
    "render_related_code",
    "render_task_brief",
]
