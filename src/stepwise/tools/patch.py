"""Exact-text substitution with guard rails for generator-proposed edits.

An edit names a snippet that must already exist verbatim in the target file
and the text that replaces it. Only the first occurrence is replaced, so
snippets must be unique enough to land where intended.

When the snippet is missing, :func:`align_snippet` finds the closest window
in the file and reports where the two first diverge. That bounded diagnostic
is what the retry loop feeds back to the generator.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Iterator

from ..telemetry import emit_event
from .sandbox import Sandbox

LOGGER = logging.getLogger(__name__)

DIVERGENCE_CONTEXT_CHARS = 20
DIVERGENCE_PREVIEW_CHARS = 10
_COMMENT_MARKERS = ("#", "//", "/*")


class PatchError(RuntimeError):
    """Raised when an edit is malformed and cannot be attempted."""


class NoMatchError(PatchError):
    """Raised by :meth:`PatchOutcome.unwrap` when the snippet was not found."""

    def __init__(self, diagnostic: "NoMatchDiagnostic") -> None:
        super().__init__(diagnostic.render())
        self.diagnostic = diagnostic


@dataclass(slots=True)
class NoMatchDiagnostic:
    """Why an ``original_code`` snippet could not be located."""

    file_path: str
    reason: str
    anchor: str | None = None
    score: float = 0.0
    line: int | None = None
    column: int | None = None
    context: str = ""
    provided: str = ""
    actual: str = ""
    comment_hint: bool = False

    @property
    def found_similar(self) -> bool:
        return self.line is not None

    def render(self) -> str:
        """Human-readable diagnostic suitable for feeding back to a generator."""
        lines = [f"Error: {self.reason}"]
        if self.found_similar:
            lines.append(
                f"Closest match starts at line {self.line}, column {self.column} "
                f"({self.score:.0%} of characters in place). First difference after:"
            )
            lines.append(f"  context:  {_quote(self.context)}")
            lines.append(f"  provided: {_quote(self.provided)}")
            lines.append(f"  actual:   {_quote(self.actual)}")
        elif self.anchor is not None:
            lines.append(f"No similar snippet found: {_quote(self.anchor)} does not appear in {self.file_path}.")
        if self.comment_hint:
            lines.append(
                "The snippet contains comments; comments must match the file exactly, "
                "including spacing."
            )
        return "\n".join(lines)


@dataclass(slots=True)
class PatchOutcome:
    """Result of one substitution attempt."""

    file_path: str
    applied: bool
    delta: int = 0
    occurrences: int = 0
    diagnostic: NoMatchDiagnostic | None = None

    @property
    def ok(self) -> bool:
        return self.applied

    def unwrap(self) -> "PatchOutcome":
        """Return ``self`` when applied, otherwise raise :class:`NoMatchError`."""
        if not self.applied:
            diagnostic = self.diagnostic or NoMatchDiagnostic(
                file_path=self.file_path,
                reason=f"edit was not applied to {self.file_path}",
            )
            raise NoMatchError(diagnostic)
        return self


class PatchApplier:
    """Apply exact first-occurrence substitutions inside a sandbox."""

    def apply(
        self,
        sandbox: Sandbox,
        file_path: str,
        original_code: str,
        new_code: str,
    ) -> PatchOutcome:
        if not original_code:
            raise PatchError("original_code must be a non-empty snippet")
        if new_code is None:
            raise PatchError("new_code must be provided (use an empty string to delete)")

        try:
            contents = sandbox.read_text(file_path)
        except FileNotFoundError:
            diagnostic = NoMatchDiagnostic(
                file_path=file_path,
                reason=f"{file_path} does not exist in the repository",
            )
            emit_event("patch.no_match", path=file_path, reason="missing_file")
            return PatchOutcome(file_path=file_path, applied=False, diagnostic=diagnostic)

        index = contents.find(original_code)
        if index < 0:
            diagnostic = align_snippet(contents, original_code, file_path=file_path)
            LOGGER.debug("Snippet not found in %s: %s", file_path, diagnostic.reason)
            emit_event(
                "patch.no_match",
                path=file_path,
                similar=diagnostic.found_similar,
                score=round(diagnostic.score, 3),
                line=diagnostic.line,
            )
            return PatchOutcome(file_path=file_path, applied=False, diagnostic=diagnostic)

        occurrences = contents.count(original_code)
        if occurrences > 1:
            LOGGER.warning(
                "Snippet occurs %d times in %s; replacing the first occurrence only",
                occurrences,
                file_path,
            )
        updated = contents[:index] + new_code + contents[index + len(original_code) :]
        sandbox.write_text(file_path, updated)
        delta = len(new_code) - len(original_code)
        emit_event("patch.applied", path=file_path, delta=delta, occurrences=occurrences)
        return PatchOutcome(
            file_path=file_path,
            applied=True,
            delta=delta,
            occurrences=occurrences,
        )


def align_snippet(contents: str, snippet: str, *, file_path: str = "<file>") -> NoMatchDiagnostic:
    """Explain why ``snippet`` is not a substring of ``contents``.

    Every occurrence of the snippet's first whitespace-delimited token anchors
    a candidate window as long as the snippet. Windows are scored by the share
    of characters that match position for position; the best (earliest on a
    tie) is walked to its first difference.
    """
    comment_hint = any(marker in snippet for marker in _COMMENT_MARKERS)
    reason = f"original_code does not match the contents of {file_path} exactly"
    tokens = snippet.split()
    if not tokens:
        return NoMatchDiagnostic(file_path=file_path, reason=reason, comment_hint=comment_hint)

    anchor = tokens[0]
    anchor_offset = snippet.find(anchor)

    best_start: int | None = None
    best_score = -1.0
    for position in _occurrences(contents, anchor):
        start = position - anchor_offset
        score = _match_ratio(contents, start, snippet)
        if score > best_score:
            best_start, best_score = start, score

    if best_start is None:
        return NoMatchDiagnostic(
            file_path=file_path,
            reason=reason,
            anchor=anchor,
            comment_hint=comment_hint,
        )

    divergence = _first_difference(contents, best_start, snippet)
    context_from = max(divergence - DIVERGENCE_CONTEXT_CHARS, 0)
    context = snippet[context_from:divergence]
    if context_from > 0:
        context = "..." + context
    actual_from = max(best_start + divergence, 0)
    line_start = max(best_start, 0)
    line = contents.count("\n", 0, line_start) + 1
    column = line_start - (contents.rfind("\n", 0, line_start) + 1) + 1

    return NoMatchDiagnostic(
        file_path=file_path,
        reason=reason,
        anchor=anchor,
        score=best_score,
        line=line,
        column=column,
        context=context,
        provided=snippet[divergence : divergence + DIVERGENCE_PREVIEW_CHARS],
        actual=contents[actual_from : actual_from + DIVERGENCE_PREVIEW_CHARS],
        comment_hint=comment_hint,
    )


def _occurrences(text: str, token: str) -> Iterator[int]:
    position = text.find(token)
    while position >= 0:
        yield position
        position = text.find(token, position + 1)


def _char_at(text: str, index: int) -> str | None:
    if 0 <= index < len(text):
        return text[index]
    return None


def _match_ratio(contents: str, start: int, snippet: str) -> float:
    matched = sum(1 for offset, char in enumerate(snippet) if _char_at(contents, start + offset) == char)
    return matched / len(snippet)


def _first_difference(contents: str, start: int, snippet: str) -> int:
    for offset, char in enumerate(snippet):
        if _char_at(contents, start + offset) != char:
            return offset
    return len(snippet)


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


__all__ = [
    "NoMatchDiagnostic",
    "NoMatchError",
    "PatchApplier",
    "PatchError",
    "PatchOutcome",
    "align_snippet",
]
