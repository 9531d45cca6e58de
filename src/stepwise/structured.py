"""Typed payloads exchanged with the content generator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, List, Literal, Union

from pydantic import Field


@dataclass(slots=True)
class EditProposal:
    """One substitution as proposed by the generator."""

    id: Annotated[str, Field(min_length=1)]
    original_code: Annotated[str, Field(min_length=1)]
    new_code: str
    risk: str
    style: str


@dataclass(slots=True)
class EditSet:
    edits: List[EditProposal] = field(default_factory=list)


@dataclass(slots=True)
class FileContent:
    """Complete contents for a file that is about to be created."""

    code: str


@dataclass(slots=True)
class AnalysisReport:
    summary: str


@dataclass(slots=True)
class Edit:
    """A proposal being applied; ``error`` holds the last failure diagnostic."""

    id: str
    original_code: str
    new_code: str
    risk: str = ""
    style: str = ""
    error: str | None = None

    @classmethod
    def from_proposal(cls, proposal: EditProposal) -> "Edit":
        return cls(
            id=proposal.id,
            original_code=proposal.original_code,
            new_code=proposal.new_code,
            risk=proposal.risk,
            style=proposal.style,
        )

    def to_payload(self) -> dict[str, str | None]:
        return {
            "id": self.id,
            "original_code": self.original_code,
            "new_code": self.new_code,
            "risk": self.risk,
            "style": self.style,
            "error": self.error,
        }


# ----------------------------------------------------------------- actions
@dataclass(slots=True)
class CreateFile:
    file_path: str
    description: str
    kind: Literal["create_file"] = "create_file"


@dataclass(slots=True)
class DeleteFile:
    file_path: str
    kind: Literal["delete_file"] = "delete_file"


@dataclass(slots=True)
class EditCode:
    file_path: str
    instructions: str
    kind: Literal["edit_code"] = "edit_code"


@dataclass(slots=True)
class RunCommand:
    command: str
    kind: Literal["run_command"] = "run_command"


@dataclass(slots=True)
class Pass:
    """Declare the task complete without further changes."""

    reason: str
    kind: Literal["pass"] = "pass"


Action = Annotated[
    Union[CreateFile, DeleteFile, EditCode, RunCommand, Pass],
    Field(discriminator="kind"),
]


@dataclass(slots=True)
class ActionPlan:
    """Ordered actions the code resolver should carry out for a task."""

    summary: str
    actions: List[Action] = field(default_factory=list)


__all__ = [
    "Action",
    "ActionPlan",
    "AnalysisReport",
    "CreateFile",
    "DeleteFile",
    "Edit",
    "EditCode",
    "EditProposal",
    "EditSet",
    "FileContent",
    "Pass",
    "RunCommand",
]
