"""Disposable git clones used as isolated execution environments.

A :class:`Sandbox` owns one throwaway clone of the primary repository. It is
the only place where task work touches files: shell commands, reads, writes
and deletes all go through it and are logged before they run. Clones are
created with ``git clone --local --no-hardlinks`` so that nothing done inside
the sandbox can leak into the primary checkout until a commit is published.

Use :func:`provision` (or ``with Sandbox.create(repo) as sandbox``) so the
clone is removed on every exit path.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator

from ..telemetry import emit_event
from ..utils.slug import slugify
from .vcs import GitError, GitRepository, run_git

LOGGER = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 120.0


class ProvisionError(RuntimeError):
    """Raised when a sandbox cannot be created."""


class SandboxError(RuntimeError):
    """Raised when a sandbox is misused (inactive, or a path escapes the clone)."""


class SandboxState(str, Enum):
    """Lifecycle states for a sandbox."""

    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    DESTROYED = "DESTROYED"


class Sandbox:
    """One disposable clone of ``source`` with a shell command channel."""

    def __init__(
        self,
        source: GitRepository,
        *,
        label: str | None = None,
        workspace_parent: Path | str | None = None,
        command_timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.source = source
        self.label = slugify(label, fallback="sandbox", max_length=40)
        self.state = SandboxState.CREATED
        self._workspace_parent = Path(workspace_parent) if workspace_parent else None
        self._command_timeout = command_timeout
        self._base_dir: Path | None = None
        self._repo: GitRepository | None = None

    @classmethod
    def create(
        cls,
        source: GitRepository,
        *,
        label: str | None = None,
        workspace_parent: Path | str | None = None,
        command_timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
    ) -> "Sandbox":
        """Provision a sandbox with ``source`` checked out."""
        sandbox = cls(
            source,
            label=label,
            workspace_parent=workspace_parent,
            command_timeout=command_timeout,
        )
        sandbox._activate()
        return sandbox

    # ------------------------------------------------------------- lifecycle
    def _activate(self) -> None:
        if self.state is not SandboxState.CREATED:
            raise SandboxError(f"Sandbox cannot be activated from state {self.state.value}")

        try:
            if self._workspace_parent is not None:
                self._workspace_parent.mkdir(parents=True, exist_ok=True)
            base_dir = Path(
                tempfile.mkdtemp(
                    prefix=f"stepwise-{self.label}-",
                    dir=self._workspace_parent,
                )
            )
        except OSError as error:
            raise ProvisionError(f"Unable to allocate a sandbox directory: {error}") from error

        checkout = base_dir / "checkout"
        try:
            run_git(
                [
                    "clone",
                    "--local",
                    "--no-hardlinks",
                    "--quiet",
                    self.source.root.as_posix(),
                    checkout.as_posix(),
                ],
                cwd=base_dir,
            )
            repo = GitRepository(checkout)
            repo.ensure_identity()
        except GitError as error:
            shutil.rmtree(base_dir, ignore_errors=True)
            raise ProvisionError(f"Failed to create isolated workspace: {error}") from error

        self._base_dir = base_dir
        self._repo = repo
        self.state = SandboxState.ACTIVE
        LOGGER.debug("Provisioned sandbox %s at %s", self.label, checkout)
        emit_event("sandbox.created", label=self.label, root=checkout, source=self.source.root)

    def destroy(self) -> None:
        """Remove the clone. Safe to call more than once."""
        if self.state is SandboxState.DESTROYED:
            return
        base_dir = self._base_dir
        self.state = SandboxState.DESTROYED
        self._repo = None
        self._base_dir = None
        if base_dir is not None:
            shutil.rmtree(base_dir, ignore_errors=True)
            LOGGER.debug("Destroyed sandbox %s", self.label)
            emit_event("sandbox.destroyed", label=self.label, root=base_dir)

    def __enter__(self) -> "Sandbox":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.destroy()

    # ------------------------------------------------------------ properties
    @property
    def repo(self) -> GitRepository:
        """Git wrapper for the clone."""
        if self.state is not SandboxState.ACTIVE or self._repo is None:
            raise SandboxError(f"Sandbox {self.label} is not active ({self.state.value})")
        return self._repo

    @property
    def root(self) -> Path:
        return self.repo.root

    def resolve(self, path: str | Path) -> Path:
        """Map a repository-relative ``path`` into the clone."""
        root = self.root
        candidate = Path(path)
        if candidate.is_absolute():
            raise SandboxError(f"Sandbox paths must be repository-relative: {path}")
        target = (root / candidate).resolve()
        if target != root and not target.is_relative_to(root):
            raise SandboxError(f"Path escapes the sandbox: {path}")
        return target

    # --------------------------------------------------------- command channel
    def execute(self, command: str) -> str:
        """Run ``command`` through the shell and return stdout followed by stderr.

        Non-zero exit codes are not errors here; callers inspect the text.
        """
        root = self.root
        LOGGER.info("[%s] $ %s", self.label, command)
        emit_event("sandbox.execute", label=self.label, command=command)
        try:
            process = subprocess.run(
                command,
                shell=True,
                cwd=root,
                capture_output=True,
                timeout=self._command_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as error:
            partial = _decode(error.stdout) + _decode(error.stderr)
            return f"{partial}\nError: command timed out after {self._command_timeout:g}s"
        return _decode(process.stdout) + _decode(process.stderr)

    # ------------------------------------------------------------- file access
    def exists(self, path: str | Path) -> bool:
        return self.resolve(path).is_file()

    def read_text(self, path: str | Path) -> str:
        """Return the exact contents of ``path``.

        A missing file raises ``FileNotFoundError``; any other I/O failure
        (a directory, unreadable permissions) raises :class:`SandboxError`.
        """
        target = self.resolve(path)
        try:
            payload = target.read_bytes()
        except FileNotFoundError:
            raise
        except OSError as error:
            raise SandboxError(f"Cannot read {path}: {error.strerror or error}") from error
        return payload.decode("utf-8", errors="surrogateescape")

    def write_text(self, path: str | Path, content: str) -> None:
        """Replace ``path`` with ``content`` byte for byte, creating parents."""
        target = self.resolve(path)
        LOGGER.info("[%s] write %s (%d chars)", self.label, path, len(content))
        emit_event("sandbox.write", label=self.label, path=str(path), chars=len(content))
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content.encode("utf-8", errors="surrogateescape"))
        except OSError as error:
            raise SandboxError(f"Cannot write {path}: {error.strerror or error}") from error

    def delete(self, path: str | Path) -> bool:
        """Delete ``path``; returns ``False`` when it did not exist."""
        target = self.resolve(path)
        LOGGER.info("[%s] delete %s", self.label, path)
        emit_event("sandbox.delete", label=self.label, path=str(path))
        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
                return True
            if target.exists() or target.is_symlink():
                target.unlink()
                return True
        except OSError as error:
            raise SandboxError(f"Cannot delete {path}: {error.strerror or error}") from error
        return False


@contextmanager
def provision(
    source: GitRepository,
    *,
    label: str | None = None,
    workspace_parent: Path | str | None = None,
    command_timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
) -> Iterator[Sandbox]:
    """Create a sandbox for the duration of the ``with`` block."""
    sandbox = Sandbox.create(
        source,
        label=label,
        workspace_parent=workspace_parent,
        command_timeout=command_timeout,
    )
    try:
        yield sandbox
    finally:
        sandbox.destroy()


def _decode(payload: bytes | str | None) -> str:
    if not payload:
        return ""
    if isinstance(payload, str):
        return payload
    return payload.decode("utf-8", errors="replace")


__all__ = [
    "DEFAULT_COMMAND_TIMEOUT",
    "ProvisionError",
    "Sandbox",
    "SandboxError",
    "SandboxState",
    "provision",
]
