"""Read task batches from YAML or JSON files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List

import yaml
from pydantic import ValidationError

from .schema import Task


class TaskFileError(ValueError):
    """Raised when a task file cannot be read or does not describe tasks."""


def parse_tasks(data: Any, *, source: str = "<tasks>") -> List[Task]:
    """Validate already-decoded task data.

    ``data`` is either a list of task mappings or a mapping with a ``tasks``
    key holding that list.
    """
    if isinstance(data, dict):
        if "tasks" not in data:
            raise TaskFileError(f"{source}: expected a list of tasks or a mapping with a 'tasks' key")
        data = data["tasks"]
    if data is None:
        return []
    if not isinstance(data, list):
        raise TaskFileError(f"{source}: 'tasks' must be a list")

    tasks: List[Task] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise TaskFileError(f"{source}: task #{index + 1} must be a mapping")
        try:
            tasks.append(Task.model_validate(entry))
        except ValidationError as error:
            label = entry.get("id") or entry.get("taskId") or f"#{index + 1}"
            raise TaskFileError(f"{source}: task {label} is invalid:\n{error}") from error
    return tasks


def load_tasks(path: Path | str) -> List[Task]:
    """Load tasks from ``path``. JSON is read through the YAML parser."""
    task_path = Path(path)
    try:
        with task_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as error:
        raise TaskFileError(f"Unable to read task file {task_path}: {error}") from error
    except yaml.YAMLError as error:
        raise TaskFileError(f"Failed to parse task file {task_path}: {error}") from error
    return parse_tasks(data, source=task_path.as_posix())


def dump_tasks(tasks: List[Task], path: Path | str) -> None:
    """Write tasks, including their current status, back to ``path`` as YAML."""
    payload = {"tasks": [task.model_dump(mode="json") for task in tasks]}
    with Path(path).open("w", encoding="utf-8") as handle:
        yaml.safe_dump(payload, handle, sort_keys=False, allow_unicode=True)


__all__ = ["TaskFileError", "dump_tasks", "load_tasks", "parse_tasks"]
