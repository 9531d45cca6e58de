"""Commit sandbox changes and publish them to the primary repository."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..telemetry import emit_event
from .sandbox import Sandbox
from .vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)


class CommitError(GitError):
    """Raised when sandbox changes cannot be committed or published."""


@dataclass(frozen=True, slots=True)
class CommitRecord:
    """An immutable record of one commit produced by a task."""

    revision: str
    message: str
    diff: str

    @property
    def short(self) -> str:
        return self.revision[:7]


class CommitManager:
    """Stage everything in a sandbox, commit it, and publish the commit.

    Publishing fetches the new commit from the clone into the primary
    repository and fast-forwards its checked-out branch. The primary branch
    must not have moved since the sandbox was created. Failures are never
    retried.
    """

    def __init__(self, *, publish: bool = True) -> None:
        self.publish = publish

    def commit(self, sandbox: Sandbox, message: str) -> CommitRecord:
        repo = sandbox.repo
        message = message.strip()
        if not message:
            raise CommitError("Commit message must not be empty")
        try:
            staged = repo.staged_diff()
            if not staged.strip():
                raise CommitError("No changes to commit")
            revision = repo.commit_all(message)
            if not revision:
                raise CommitError("No changes to commit")
            diff = repo.commit_diff(revision)
        except CommitError:
            raise
        except GitError as error:
            raise CommitError(f"Failed to commit sandbox changes: {error}") from error

        record = CommitRecord(revision=revision, message=message, diff=diff)
        if self.publish:
            self._publish(sandbox.source, repo, record)
        LOGGER.info("Committed %s %s", record.short, message)
        emit_event("commit.created", revision=revision, message=message, published=self.publish)
        return record

    def _publish(self, primary: GitRepository, clone: GitRepository, record: CommitRecord) -> None:
        try:
            primary.git("fetch", "--quiet", clone.root.as_posix(), "HEAD")
            primary.git("merge", "--ff-only", "--quiet", "FETCH_HEAD")
        except GitError as error:
            raise CommitError(
                f"Commit {record.short} could not be published to {primary.root}: {error}"
            ) from error
        head = primary.head()
        if head != record.revision:
            raise CommitError(
                f"Primary repository is at {head or '(no commit)'} after publishing {record.revision}"
            )


__all__ = ["CommitError", "CommitManager", "CommitRecord"]
