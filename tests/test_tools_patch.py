from __future__ import annotations

import pytest

from stepwise.tools.patch import NoMatchError, PatchApplier, PatchError, align_snippet
from stepwise.tools.sandbox import Sandbox


@pytest.fixture()
def sandbox(tiny_repo):
    with Sandbox.create(tiny_repo.repo, label="patch-tests") as box:
        yield box


def test_apply_replaces_snippet_and_reports_delta(sandbox) -> None:
    outcome = PatchApplier().apply(
        sandbox,
        "src/calculator.py",
        "    return left + right\n",
        "    return int(left) + int(right)\n",
    )

    assert outcome.applied
    assert outcome.occurrences == 1
    assert outcome.delta == len("int(left) + int(right)") - len("left + right")
    assert "return int(left) + int(right)" in sandbox.read_text("src/calculator.py")


def test_reapplying_the_same_edit_no_longer_matches(sandbox) -> None:
    original = "const a = 1;"
    replacement = "const a = 10;"
    sandbox.write_text("consts.js", "const a = 1;\nconst b = 2;")
    before = len(sandbox.read_text("consts.js"))
    applier = PatchApplier()

    first = applier.apply(sandbox, "consts.js", original, replacement)
    assert first.applied
    assert len(sandbox.read_text("consts.js")) - before == len(replacement) - len(original)

    second = applier.apply(sandbox, "consts.js", original, replacement)
    assert not second.applied
    assert second.diagnostic is not None
    assert second.diagnostic.context == "const a = 1"
    assert second.diagnostic.provided == ";"
    assert second.diagnostic.actual.startswith("0;")
    assert sandbox.read_text("consts.js") == "const a = 10;\nconst b = 2;"
    with pytest.raises(NoMatchError):
        second.unwrap()


def test_apply_only_replaces_first_occurrence(sandbox) -> None:
    sandbox.write_text("values.py", "x = 1\nx = 1\n")

    outcome = PatchApplier().apply(sandbox, "values.py", "x = 1", "x = 2")

    assert outcome.applied
    assert outcome.occurrences == 2
    assert sandbox.read_text("values.py") == "x = 2\nx = 1\n"


def test_apply_leaves_file_untouched_when_snippet_is_missing(sandbox) -> None:
    sandbox.write_text("consts.js", "const a = 1;\nconst b = 2;")

    outcome = PatchApplier().apply(sandbox, "consts.js", "const a = 2;", "const a = 3;")

    assert not outcome.applied
    assert sandbox.read_text("consts.js") == "const a = 1;\nconst b = 2;"
    diagnostic = outcome.diagnostic
    assert diagnostic is not None
    assert diagnostic.context == "const a = "
    assert diagnostic.provided == "2;"
    assert diagnostic.actual.startswith("1;")


def test_apply_reports_missing_file(sandbox) -> None:
    outcome = PatchApplier().apply(sandbox, "nope.py", "anything", "else")

    assert not outcome.applied
    assert outcome.diagnostic is not None
    assert "does not exist" in outcome.diagnostic.render()


def test_apply_rejects_empty_original(sandbox) -> None:
    with pytest.raises(PatchError):
        PatchApplier().apply(sandbox, "README.md", "", "text")


def test_apply_accepts_empty_replacement(sandbox) -> None:
    outcome = PatchApplier().apply(sandbox, "README.md", "# Tiny repo\n", "")

    assert outcome.applied
    assert sandbox.read_text("README.md") == ""


def test_unwrap_raises_with_diagnostic(sandbox) -> None:
    outcome = PatchApplier().apply(sandbox, "README.md", "# Huge repo", "# Tiny")

    with pytest.raises(NoMatchError) as excinfo:
        outcome.unwrap()

    assert excinfo.value.diagnostic is outcome.diagnostic
    assert "README.md" in str(excinfo.value)


def test_align_snippet_prefers_earliest_window_on_ties() -> None:
    diagnostic = align_snippet("const a = 1;\nconst b = 2;", "const a = 2;", file_path="consts.js")

    assert diagnostic.found_similar
    assert diagnostic.line == 1
    assert diagnostic.column == 1
    assert diagnostic.score == pytest.approx(11 / 12)
    assert diagnostic.context == "const a = "
    assert diagnostic.provided == "2;"
    assert diagnostic.actual == "1;\nconst b"


def test_align_snippet_truncates_context() -> None:
    contents = "value = alpha_beta_gamma_delta_epsilon + 1\n"
    snippet = "value = alpha_beta_gamma_delta_epsilon + 2"

    diagnostic = align_snippet(contents, snippet)

    assert diagnostic.context == "...mma_delta_epsilon + "
    assert diagnostic.provided == "2"
    assert diagnostic.actual == "1\n"


def test_align_snippet_reports_line_of_best_window() -> None:
    contents = "import os\n\ndef handler(event):\n    return event\n"

    diagnostic = align_snippet(contents, "def handler(evt):\n    return evt")

    assert diagnostic.line == 3
    assert diagnostic.context == "def handler(ev"
    assert diagnostic.provided.startswith("t)")
    assert diagnostic.actual.startswith("ent)")


def test_align_snippet_without_anchor_in_file() -> None:
    diagnostic = align_snippet("print('hello')\n", "unknown_call()")

    assert not diagnostic.found_similar
    assert "No similar snippet found" in diagnostic.render()


def test_align_snippet_adds_comment_reminder() -> None:
    diagnostic = align_snippet("def add(a, b):\n    return a + b\n", "def add(a, b):  # sum\n    return a + b")

    assert diagnostic.comment_hint
    assert "comments must match the file exactly" in diagnostic.render()
