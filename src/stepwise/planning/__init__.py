"""
Task records, task-file loading and the dependency scheduler.
"""

from importlib import import_module
from typing import Any

from .loader import TaskFileError, dump_tasks, load_tasks, parse_tasks
from .schema import Task, TaskStatus

_SCHEDULER_EXPORTS = (
    "ExecutionReport",
    "SchedulerDeadlockError",
    "TaskBatchError",
    "TaskScheduler",
    "validate_tasks",
)

__all__ = [
    "Task",
    "TaskFileError",
    "TaskStatus",
    "dump_tasks",
    "load_tasks",
    "parse_tasks",
    *_SCHEDULER_EXPORTS,
]


def __getattr__(name: str) -> Any:
    """Lazily import the scheduler, which pulls in the resolver stack."""
    if name in _SCHEDULER_EXPORTS:
        module = import_module("stepwise.planning.scheduler")
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
