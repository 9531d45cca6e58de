"""Sandbox, patch, commit and git helpers used while resolving tasks."""

from .commit import CommitError, CommitManager, CommitRecord
from .patch import NoMatchDiagnostic, NoMatchError, PatchApplier, PatchError, PatchOutcome, align_snippet
from .sandbox import ProvisionError, Sandbox, SandboxError, SandboxState, provision
from .vcs import GitError, GitRepository

__all__ = [
    "CommitError",
    "CommitManager",
    "CommitRecord",
    "GitError",
    "GitRepository",
    "NoMatchDiagnostic",
    "NoMatchError",
    "PatchApplier",
    "PatchError",
    "PatchOutcome",
    "ProvisionError",
    "Sandbox",
    "SandboxError",
    "SandboxState",
    "align_snippet",
    "provision",
]
