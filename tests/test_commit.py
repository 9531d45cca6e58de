from __future__ import annotations

import pytest

from stepwise.tools.commit import CommitError, CommitManager
from stepwise.tools.sandbox import Sandbox


def test_commit_is_published_to_primary(tiny_repo) -> None:
    with Sandbox.create(tiny_repo.repo) as sandbox:
        sandbox.write_text("NOTES.md", "remember\n")
        record = CommitManager().commit(sandbox, "  T1 - Add notes  ")

    assert record.message == "T1 - Add notes"
    assert len(record.short) == 7
    assert "+remember" in record.diff
    assert tiny_repo.repo.head() == record.revision
    assert tiny_repo.log()[0] == "T1 - Add notes"
    assert (tiny_repo.root / "NOTES.md").read_text(encoding="utf-8") == "remember\n"


def test_commit_without_publish_leaves_primary_alone(tiny_repo) -> None:
    before = tiny_repo.repo.head()
    with Sandbox.create(tiny_repo.repo) as sandbox:
        sandbox.delete("README.md")
        record = CommitManager(publish=False).commit(sandbox, "Drop readme")
        assert sandbox.repo.head() == record.revision

    assert tiny_repo.repo.head() == before
    assert (tiny_repo.root / "README.md").exists()


def test_commit_rejects_empty_diff(tiny_repo) -> None:
    with Sandbox.create(tiny_repo.repo) as sandbox:
        with pytest.raises(CommitError, match="No changes"):
            CommitManager().commit(sandbox, "Nothing")


def test_commit_rejects_empty_message(tiny_repo) -> None:
    with Sandbox.create(tiny_repo.repo) as sandbox:
        sandbox.write_text("x.txt", "x\n")
        with pytest.raises(CommitError, match="message"):
            CommitManager().commit(sandbox, "   ")


def test_commit_fails_when_primary_moved(tiny_repo) -> None:
    with Sandbox.create(tiny_repo.repo) as sandbox:
        tiny_repo.write("CHANGELOG.md", "moved on\n")
        moved = tiny_repo.commit_all("Concurrent change")
        sandbox.write_text("NOTES.md", "late\n")

        with pytest.raises(CommitError, match="could not be published"):
            CommitManager().commit(sandbox, "T2 - Late notes")

    assert tiny_repo.repo.head() == moved
    assert not (tiny_repo.root / "NOTES.md").exists()
