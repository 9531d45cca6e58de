"""Typed task records driven through the scheduler."""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False, populate_by_name=True)


class TaskStatus(str, Enum):
    """Lifecycle states for a task."""

    WAITING = "WAITING"
    RUNNING = "RUNNING"
    RESOLVED = "RESOLVED"
    FAILED = "FAILED"


class Task(RecordModel):
    """A unit of work. Tasks are only ever mutated by the scheduler."""

    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "taskId", "task_id"))
    title: str
    description: str = ""
    dependencies: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("dependencies", "depends_on", "dependsOn"),
    )
    completion_criteria: str = Field(
        default="",
        validation_alias=AliasChoices("completion_criteria", "completionCriteria"),
    )
    pseudocode: Optional[str] = None
    background_context: str = Field(
        default="",
        validation_alias=AliasChoices("background_context", "backgroundContext"),
    )
    related_commits: str = Field(
        default="",
        validation_alias=AliasChoices("related_commits", "relatedCommits"),
    )
    commit_hash: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("commit_hash", "commitHash"),
    )
    status: TaskStatus = TaskStatus.WAITING
    output: str = ""
    error: Optional[str] = None

    @field_validator("id", "title", mode="before")
    @classmethod
    def _strip_identifier(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        return value.strip() if isinstance(value, str) else value

    @field_validator("dependencies", mode="before")
    @classmethod
    def _coerce_dependencies(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (str, int)):
            value = [value]
        if isinstance(value, list):
            return [str(item).strip() for item in value]
        return value

    @field_validator("completion_criteria", "background_context", "related_commits", mode="before")
    @classmethod
    def _join_lines(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, list):
            return "\n".join(f"- {item}" for item in value)
        return value

    @property
    def requires_mutation(self) -> bool:
        """Tasks with real pseudocode change code; the rest only gather information."""
        pseudocode = (self.pseudocode or "").strip()
        return bool(pseudocode) and "N/A" not in pseudocode

    def is_runnable(self, resolved: set[str]) -> bool:
        return self.status is TaskStatus.WAITING and all(dep in resolved for dep in self.dependencies)


__all__ = ["RecordModel", "Task", "TaskStatus"]
