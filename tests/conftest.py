from __future__ import annotations

import os
import subprocess
import sys
import textwrap
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from stepwise.generator import ContentGenerator, EditRequest, FileRequest, TaskBrief  # noqa: E402
from stepwise.models.llm_client import LLMClient, LLMClientError  # noqa: E402
from stepwise.structured import ActionPlan, EditProposal, EditSet, FileContent, Pass  # noqa: E402
from stepwise.tools.vcs import GitRepository  # noqa: E402


def git(root: Path, *cmd: str) -> str:
    result = subprocess.run(
        ["git", *cmd],
        cwd=root,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


@dataclass(slots=True)
class TinyRepo:
    """Fixture payload representing the synthetic repository under test."""

    root: Path

    @property
    def repo(self) -> GitRepository:
        return GitRepository(self.root)

    def write(self, relative: str, content: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def commit_all(self, message: str) -> str:
        git(self.root, "add", "--all")
        git(self.root, "commit", "-q", "-m", message)
        return git(self.root, "rev-parse", "HEAD").strip()

    def log(self) -> List[str]:
        return [line for line in git(self.root, "log", "--format=%s").splitlines() if line]

    def run_cli(self, *args: str) -> subprocess.CompletedProcess[str]:
        """Invoke ``python -m stepwise.cli`` with the provided arguments."""

        env = os.environ.copy()
        pythonpath = str(SRC)
        if env.get("PYTHONPATH"):
            pythonpath = os.pathsep.join([pythonpath, env["PYTHONPATH"]])
        env["PYTHONPATH"] = pythonpath
        env.pop("OPENAI_API_KEY", None)
        env.pop("STEPWISE_API_KEY", None)

        command = [sys.executable, "-m", "stepwise.cli", *args]
        return subprocess.run(  # noqa: S603 - command constructed from known values
            command,
            cwd=self.root,
            env=env,
            capture_output=True,
            text=True,
            check=False,
        )


@pytest.fixture()
def tiny_repo(tmp_path: Path) -> TinyRepo:
    """Create a tiny committed git repository."""

    repo_root = tmp_path / "tiny-repo"
    repo_root.mkdir()
    git(repo_root, "init", "-q")
    git(repo_root, "config", "user.email", "tests@example.com")
    git(repo_root, "config", "user.name", "Stepwise Tests")
    git(repo_root, "checkout", "-q", "-b", "main")

    fixture = TinyRepo(root=repo_root)
    fixture.write(
        "src/calculator.py",
        textwrap.dedent(
            """
            def add(left, right):
                return left + right


            def subtract(left, right):
                return left - right
            """
        ).lstrip(),
    )
    fixture.write("README.md", "# Tiny repo\n")
    fixture.commit_all("Initial tiny repo state")
    return fixture


# ------------------------------------------------------------------ fakes
class ScriptedClient(LLMClient):
    """LLM client that replays canned raw responses and records payloads."""

    def __init__(self, responses: List[str], *, max_attempts: int = 3) -> None:
        super().__init__("scripted", max_attempts=max_attempts, retry_delay=0.0)
        self.responses: Deque[str] = deque(responses)
        self.payloads: List[Dict[str, Any]] = []

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        self.payloads.append(payload)
        if not self.responses:
            raise AssertionError("ScriptedClient ran out of responses")
        return self.responses.popleft()


@dataclass
class ScriptedGenerator(ContentGenerator):
    """Generator with per-task plans, queued edit sets and canned analyses."""

    plans: Dict[str, ActionPlan] = field(default_factory=dict)
    edit_sets: Deque[Any] = field(default_factory=deque)
    files: Dict[str, str] = field(default_factory=dict)
    analyses: Dict[str, str] = field(default_factory=dict)
    edit_requests: List[EditRequest] = field(default_factory=list)
    briefs: List[TaskBrief] = field(default_factory=list)
    on_plan: Callable[[TaskBrief], None] | None = None

    def generate_edits(self, request: EditRequest) -> EditSet:
        self.edit_requests.append(request)
        if not self.edit_sets:
            return EditSet(edits=[])
        item = self.edit_sets.popleft()
        if isinstance(item, LLMClientError):
            raise item
        return item

    def generate_file(self, request: FileRequest) -> FileContent:
        return FileContent(code=self.files.get(request.file_path, ""))

    def plan_actions(self, brief: TaskBrief) -> ActionPlan:
        self.briefs.append(brief)
        if self.on_plan is not None:
            self.on_plan(brief)
        return self.plans.get(brief.task_id, ActionPlan(summary="nothing", actions=[Pass(reason="done")]))

    def analyze(self, brief: TaskBrief) -> str:
        self.briefs.append(brief)
        return self.analyses.get(brief.task_id, f"notes for {brief.task_id}")


def proposal(edit_id: str, original: str, new: str, *, risk: str = "low", style: str = "none") -> EditProposal:
    return EditProposal(id=edit_id, original_code=original, new_code=new, risk=risk, style=style)


@pytest.fixture()
def scripted_generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture()
def make_client() -> Callable[..., ScriptedClient]:
    return ScriptedClient


@pytest.fixture()
def make_proposal() -> Callable[..., EditProposal]:
    return proposal
