"""CLI commands for running stepwise task batches."""

from __future__ import annotations

import copy
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from .context import ContextProvider, KeywordContextProvider
from .editing import DEFAULT_MAX_RETRIES
from .generator import LLMContentGenerator
from .models import LLMClient, OfflineLLMClient, ResponsesClient, is_offline_model
from .planning.loader import TaskFileError, dump_tasks, load_tasks
from .planning.scheduler import (
    ExecutionReport,
    SchedulerDeadlockError,
    TaskBatchError,
    TaskScheduler,
    validate_tasks,
)
from .planning.schema import Task, TaskStatus
from .resolvers import AnalysisResolver, CodeResolver
from .tools.commit import CommitError, CommitManager
from .tools.patch import NoMatchError, PatchApplier, PatchError
from .tools.sandbox import DEFAULT_COMMAND_TIMEOUT, ProvisionError, SandboxError, provision
from .tools.transcripts import TranscriptWriter
from .tools.vcs import GitError, GitRepository

APP_HELP = "Resolve dependent code-change tasks inside disposable git sandboxes."
DEFAULT_CONFIG_NAME = "stepwise.yaml"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "repo_root": ".",
    },
    "models": {
        "default": "gpt-5-mini",
        "timeout": 120,
        "max_attempts": 3,
    },
    "editing": {
        "max_retries": DEFAULT_MAX_RETRIES,
    },
    "sandbox": {
        "command_timeout": DEFAULT_COMMAND_TIMEOUT,
        "workspace_root": "",
    },
    "scheduler": {
        "stop_on_failure": True,
    },
    "context": {
        "max_files": 5,
        "max_snippets": 3,
    },
    "paths": {
        "data": ".stepwise",
        "logs": ".stepwise/logs",
    },
}

app = typer.Typer(help=APP_HELP)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log sandbox commands and telemetry events."),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


# ---------------------------------------------------------------- config
def _copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist ``config_data`` to ``config_path`` as YAML."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk; a missing file yields the defaults."""
    if not config_path.exists():
        return _copy_config_template()

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}")
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Configuration must be a mapping at the top level.")
        raise typer.Exit(code=1)

    return data


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = config.get(name)
    return value if isinstance(value, dict) else {}


def _positive_number(value: Any, default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return default


def _non_negative_int(value: Any, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return default


def _resolve_repo_root(config: Dict[str, Any], config_path: Path) -> Path:
    """Resolve the repository root from configuration."""
    repo_root_value = _section(config, "project").get("repo_root") or "."
    repo_root_path = Path(str(repo_root_value))
    if not repo_root_path.is_absolute():
        repo_root_path = (config_path.parent / repo_root_path).resolve()
    return repo_root_path


def _resolve_path(value: Any, repo_root: Path, default: Path) -> Path:
    if isinstance(value, str) and value.strip():
        candidate = Path(value.strip())
        if not candidate.is_absolute():
            candidate = (repo_root / candidate).resolve()
        return candidate
    return default


def _open_repository(config: Dict[str, Any], config_path: Path) -> GitRepository:
    repo_root = _resolve_repo_root(config, config_path)
    try:
        return GitRepository(repo_root)
    except GitError as error:
        typer.echo(f"Repository error: {error}")
        raise typer.Exit(code=1) from error


def _build_client(config: Dict[str, Any], *, use_remote: bool) -> LLMClient:
    """Select either the HTTP responses client or the offline stub."""
    models_cfg = _section(config, "models")
    model_name = str(models_cfg.get("default", "gpt-5-mini"))
    offline_model = is_offline_model(model_name.lower())

    if use_remote and not offline_model:
        client_kwargs: Dict[str, Any] = {"timeout": _positive_number(models_cfg.get("timeout"), 120.0)}
        max_attempts_value = models_cfg.get("max_attempts")
        if isinstance(max_attempts_value, int) and max_attempts_value > 0:
            client_kwargs["max_attempts"] = max_attempts_value
        base_url_value = models_cfg.get("base_url")
        if isinstance(base_url_value, str) and base_url_value.strip():
            client_kwargs["base_url"] = base_url_value.strip()
        try:
            return ResponsesClient(model=model_name, **client_kwargs)
        except ValueError as error:
            if "api key" in str(error).lower():
                typer.echo(
                    "No API key given. Set STEPWISE_API_KEY or OPENAI_API_KEY, "
                    "or re-run with --no-use-remote to use the offline stub."
                )
            else:
                typer.echo(f"Failed to initialise model client: {error}")
            raise typer.Exit(code=1) from error

    if use_remote and offline_model:
        typer.echo(f"Model '{model_name}' is offline-only; using offline stub client.")
    else:
        typer.echo("Using offline stub client.")
    return OfflineLLMClient(model_name)


def _build_context(config: Dict[str, Any], repo: GitRepository) -> ContextProvider:
    context_cfg = _section(config, "context")
    return KeywordContextProvider.for_repository(
        repo,
        max_files=_non_negative_int(context_cfg.get("max_files"), 5),
        max_snippets=_non_negative_int(context_cfg.get("max_snippets"), 3),
    )


def _build_scheduler(
    config: Dict[str, Any],
    repo: GitRepository,
    *,
    use_remote: bool,
    stop_on_failure: Optional[bool],
) -> TaskScheduler:
    paths_cfg = _section(config, "paths")
    data_root = _resolve_path(paths_cfg.get("data"), repo.root, repo.root / ".stepwise")
    logs_root = _resolve_path(paths_cfg.get("logs"), repo.root, data_root / "logs")
    sandbox_cfg = _section(config, "sandbox")
    workspace_value = sandbox_cfg.get("workspace_root")
    workspace_root = (
        _resolve_path(workspace_value, repo.root, repo.root)
        if isinstance(workspace_value, str) and workspace_value.strip()
        else None
    )

    models_cfg = _section(config, "models")
    generator = LLMContentGenerator(
        _build_client(config, use_remote=use_remote),
        transcripts=TranscriptWriter(logs_root),
        max_attempts=models_cfg.get("max_attempts") if isinstance(models_cfg.get("max_attempts"), int) else None,
    )
    context = _build_context(config, repo)
    max_retries = _non_negative_int(_section(config, "editing").get("max_retries"), DEFAULT_MAX_RETRIES)

    if stop_on_failure is None:
        stop_on_failure = bool(_section(config, "scheduler").get("stop_on_failure", True))

    return TaskScheduler(
        repo,
        code_resolver=CodeResolver(generator, context=context, max_retries=max_retries),
        analysis_resolver=AnalysisResolver(generator, context=context),
        commit_manager=CommitManager(),
        stop_on_failure=stop_on_failure,
        workspace_parent=workspace_root,
        command_timeout=_positive_number(sandbox_cfg.get("command_timeout"), DEFAULT_COMMAND_TIMEOUT),
    )


def _load_task_file(tasks_path: Path) -> List[Task]:
    try:
        tasks = load_tasks(tasks_path)
        validate_tasks(tasks)
    except (TaskFileError, TaskBatchError) as error:
        typer.echo(f"Invalid task file: {error}")
        raise typer.Exit(code=1) from error
    return tasks


# ------------------------------------------------------------- rendering
def _render_task_line(task: Task) -> str:
    depends = f" (waits on {', '.join(task.dependencies)})" if task.dependencies else ""
    kind = "code" if task.requires_mutation else "analysis"
    return f"[{task.status.value}] {task.id}: {task.title} <{kind}>{depends}"


def _render_execution_report(report: ExecutionReport) -> None:
    """Render a concise summary for a scheduler run."""
    if not report.outcomes:
        typer.echo("No runnable tasks.")

    for outcome in report.outcomes:
        task = outcome.task
        typer.echo(f"- {task.id}: {task.title} -> {task.status.value}")
        if outcome.actions:
            typer.echo(f"    actions: {', '.join(outcome.actions)}")
        if outcome.commit is not None:
            typer.echo(f"    commit: {outcome.commit.short} {outcome.commit.message[:80]}")
        elif outcome.ok and outcome.mutation:
            typer.echo("    commit: (no changes)")
        if task.error:
            for line in task.error.splitlines():
                typer.echo(f"    ! {line}")

    if report.blocked:
        typer.echo("Not run:")
        for task in report.tasks:
            if task.id in report.blocked:
                typer.echo(f"    - {_render_task_line(task)}")

    resolved = len(report.resolved)
    typer.echo(f"Resolved {resolved}/{len(report.tasks)} task(s); {len(report.commits)} commit(s).")


# -------------------------------------------------------------- commands
@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file to create.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration template."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"{config_path} already exists; use --force to overwrite it.")
        raise typer.Exit(code=1)
    _write_config(config_path, _copy_config_template())
    typer.echo(f"Wrote {config_path}")


@app.command()
def validate(
    tasks_file: Path = typer.Argument(..., help="YAML or JSON task file."),
) -> None:
    """Check a task file without running anything."""
    tasks = _load_task_file(tasks_file)
    typer.echo(f"{len(tasks)} task(s) in {tasks_file}")
    for task in tasks:
        typer.echo(f"- {_render_task_line(task)}")


@app.command()
def run(
    tasks_file: Path = typer.Argument(..., help="YAML or JSON task file."),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
    state: Optional[Path] = typer.Option(
        None,
        "--state",
        help="Write task statuses here after the run (reused on the next run when present).",
    ),
    stop_on_failure: Optional[bool] = typer.Option(
        None,
        "--stop-on-failure/--keep-going",
        help="Override scheduler.stop_on_failure from the configuration.",
    ),
    use_remote: bool = typer.Option(
        True,
        "--use-remote/--no-use-remote",
        help="Call the model API instead of the offline stub (requires API key).",
    ),
) -> None:
    """Resolve every task in dependency order, committing each change."""
    config_path = Path(config)
    config_data = load_config(config_path)
    repo = _open_repository(config_data, config_path)

    source = state if state is not None and state.exists() else tasks_file
    tasks = _load_task_file(source)
    scheduler = _build_scheduler(config_data, repo, use_remote=use_remote, stop_on_failure=stop_on_failure)

    exit_code = 0
    try:
        report = scheduler.run(tasks)
    except SchedulerDeadlockError as error:
        _render_execution_report(error.report)
        typer.echo(f"Deadlock: {error}")
        report = error.report
        exit_code = 1
    finally:
        if state is not None:
            dump_tasks(tasks, state)

    if exit_code == 0:
        _render_execution_report(report)
        if not report.ok:
            exit_code = 1
    if exit_code:
        raise typer.Exit(code=exit_code)


@app.command()
def apply(
    file_path: str = typer.Argument(..., help="Repository-relative file to edit."),
    original: Path = typer.Option(..., "--original", help="File holding the exact snippet to replace."),
    replacement: Path = typer.Option(..., "--replacement", help="File holding the new snippet."),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
    message: Optional[str] = typer.Option(
        None,
        "--commit",
        "-m",
        help="Commit and publish the change with this message instead of only printing the diff.",
    ),
) -> None:
    """Apply one exact substitution in a sandbox and show the resulting diff."""
    config_path = Path(config)
    config_data = load_config(config_path)
    repo = _open_repository(config_data, config_path)
    original_code = original.read_text(encoding="utf-8")
    new_code = replacement.read_text(encoding="utf-8")

    try:
        with provision(repo, label="apply") as sandbox:
            PatchApplier().apply(sandbox, file_path, original_code, new_code).unwrap()
            typer.echo(sandbox.repo.diff(), nl=False)
            if message:
                record = CommitManager().commit(sandbox, message)
                typer.echo(f"commit: {record.short} {record.message}")
    except NoMatchError as error:
        typer.echo(error.diagnostic.render())
        raise typer.Exit(code=1) from error
    except (PatchError, ProvisionError, SandboxError, CommitError) as error:
        typer.echo(f"Apply failed: {error}")
        raise typer.Exit(code=1) from error


@app.command()
def status(
    state: Path = typer.Argument(..., help="State file written by `stepwise run --state`."),
) -> None:
    """Summarise task statuses from a saved run."""
    try:
        tasks = load_tasks(state)
    except TaskFileError as error:
        typer.echo(f"Invalid state file: {error}")
        raise typer.Exit(code=1) from error

    counts = {value: sum(1 for task in tasks if task.status is value) for value in TaskStatus}
    typer.echo(" | ".join(f"{value.value} {count}" for value, count in counts.items()))
    for task in tasks:
        typer.echo(f"- {_render_task_line(task)}")
        if task.commit_hash:
            typer.echo(f"    commit: {task.commit_hash[:7]}")
        if task.error:
            typer.echo(f"    ! {task.error.splitlines()[0]}")


if __name__ == "__main__":
    app()
