"""Minimal git helpers.

The helpers below provide just enough structure to inspect a checkout,
stage and commit its changes, and read back the resulting diffs.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Sequence, Set


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


COMMITTER_NAME = "stepwise"
COMMITTER_EMAIL = "stepwise@example.com"


def run_git(args: Sequence[str], *, cwd: Path, check: bool = True) -> subprocess.CompletedProcess[str]:
    """Run ``git`` in ``cwd`` and decode its output leniently."""
    command = ["git", *args]
    try:
        process = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=False,
            check=False,
        )
    except FileNotFoundError as error:
        raise GitError("git executable not found on PATH") from error
    stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {message}")
    return result


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @property
    def name(self) -> str:
        """Directory name of the checkout, used as the repository identifier."""
        return self.root.name

    # ------------------------------------------------------------------ git IO
    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return run_git(list(args), cwd=self.root, check=check)

    def list_tracked_paths(self, *patterns: str) -> List[Path]:
        """Return tracked paths that match the supplied git pathspec patterns.

        When no patterns are supplied the entire tracked file list is returned.
        Paths are reported relative to the repository root.
        """

        args: List[str] = ["ls-files", "-z"]
        if patterns:
            args.extend(["--", *patterns])

        result = self.git(*args, check=False)
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unable to list tracked paths"
            raise GitError(f"git ls-files failed: {message}")

        entries = [entry for entry in result.stdout.split("\0") if entry]
        return [Path(entry) for entry in entries]

    # ------------------------------------------------------------------ state
    def head(self) -> str | None:
        """Return the commit SHA at ``HEAD`` or ``None`` for an unborn branch."""

        result = self.git("rev-parse", "--verify", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    # ------------------------------------------------------------- repo status
    def _status_entries(self) -> List[tuple[str, Path]]:
        result = self.git("status", "--porcelain")
        entries: List[tuple[str, Path]] = []
        for line in result.stdout.splitlines():
            if not line:
                continue
            status = line[:2]
            raw_path = line[3:]
            if status[0] in {"R", "C"} and " -> " in raw_path:
                raw_path = raw_path.split(" -> ", 1)[1]
            status_clean = status.strip() or status
            entries.append((status_clean, Path(raw_path.strip())))
        return entries

    def working_tree_changes(self, *, include_untracked: bool = True) -> List[Path]:
        """Return the set of paths with pending modifications."""

        paths: Set[Path] = set()
        for status, path in self._status_entries():
            if status == "??" and not include_untracked:
                continue
            paths.add(path)
        return sorted(paths, key=lambda item: item.as_posix())

    def has_changes(self, *, include_untracked: bool = True) -> bool:
        """Return ``True`` when there are working tree changes."""

        return bool(self.working_tree_changes(include_untracked=include_untracked))

    # ----------------------------------------------------------- diff helpers
    def diff(self, *paths: str) -> str:
        """Return the unified diff for ``paths`` (defaults to the whole repo)."""

        result = self.git("diff", *paths)
        return result.stdout

    def staged_diff(self) -> str:
        """Stage everything and return the staged diff against ``HEAD``."""

        self.git("add", "--all")
        return self.git("--no-pager", "diff", "--staged").stdout

    def commit_diff(self, revision: str) -> str:
        """Return the patch introduced by ``revision``."""

        result = self.git("show", "--format=", "--patch", revision)
        return result.stdout

    # ---------------------------------------------------------------- commits
    def ensure_identity(self) -> None:
        """Configure a local committer identity when none is set."""

        for key, value in (("user.name", COMMITTER_NAME), ("user.email", COMMITTER_EMAIL)):
            probe = self.git("config", "--get", key, check=False)
            if probe.returncode != 0 or not probe.stdout.strip():
                self.git("config", "--local", key, value)

    def commit_all(self, message: str, *, allow_empty: bool = False) -> str | None:
        """Add all changes to the index and create a commit.

        Returns the new commit SHA when a commit was created.  Returns ``None`` when
        there were no changes to commit (and ``allow_empty`` is ``False``).
        """

        self.git("add", "--all")

        commit_args: List[str] = ["commit", "-m", message]
        if allow_empty:
            commit_args.append("--allow-empty")

        commit = self.git(*commit_args, check=False)
        if commit.returncode != 0:
            output = commit.stderr.strip() or commit.stdout.strip() or ""
            if "nothing to commit" in output.lower() or "nothing added to commit" in output.lower():
                return None
            raise GitError(f"git commit failed: {output}")

        return self.head()


__all__ = ["COMMITTER_EMAIL", "COMMITTER_NAME", "GitError", "GitRepository", "run_git"]
