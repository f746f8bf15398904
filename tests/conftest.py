from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pytest

from agent_relay.config import AgentConfig
from agent_relay.invoker import AgentInvoker, InvocationResult
from agent_relay.orchestrator import PipelineRunner
from agent_relay.steps import StepExecutor
from agent_relay.workspace import WorkspaceManager


@dataclass
class AgentCall:
    prompt: str
    cwd: Optional[Path]
    stdout_path: Optional[Path]
    workspaces: List[str]


def context_value(prompt: str, label: str) -> str:
    prefix = f"- {label}: "
    for line in prompt.splitlines():
        if line.startswith(prefix):
            return line[len(prefix):]
    raise AssertionError(f"{label!r} not found in prompt context")


Action = Callable[[AgentCall], InvocationResult]


class FakeInvoker(AgentInvoker):
    """Scripted stand-in for the agent: one action per expected invocation."""

    def __init__(self, actions: Sequence[Action], work_root: Optional[Path] = None) -> None:
        super().__init__(AgentConfig(binary="fake-agent", model="test-model"))
        self.actions = list(actions)
        self.work_root = work_root
        self.calls: List[AgentCall] = []

    def invoke(self, prompt, cwd=None, stdout_path=None):
        workspaces = sorted(p.name for p in self.work_root.iterdir()) if self.work_root else []
        call = AgentCall(prompt=prompt, cwd=cwd, stdout_path=stdout_path, workspaces=workspaces)
        self.calls.append(call)
        return self.actions[len(self.calls) - 1](call)


def _ok() -> InvocationResult:
    return InvocationResult(command=["fake-agent"], return_code=0)


def writes(*labels: str, content: str = "# notes\n") -> Action:
    def _action(call: AgentCall) -> InvocationResult:
        for label in labels:
            Path(context_value(call.prompt, label)).write_text(content, encoding="utf-8")
        return _ok()

    return _action


def prints(text: str) -> Action:
    def _action(call: AgentCall) -> InvocationResult:
        assert call.stdout_path is not None
        Path(call.stdout_path).write_text(text, encoding="utf-8")
        return _ok()

    return _action


def silent() -> Action:
    return lambda call: _ok()


def exits(code: int) -> Action:
    return lambda call: InvocationResult(command=["fake-agent"], return_code=code)


def cannot_launch() -> Action:
    return lambda call: InvocationResult(
        command=["fake-agent"],
        return_code=127,
        launched=False,
        reason="missing-executable",
        error="No such file or directory: 'fake-agent'",
    )


@pytest.fixture()
def work_root(tmp_path: Path) -> Path:
    root = tmp_path / "work"
    root.mkdir()
    return root


@pytest.fixture()
def make_runner(work_root: Path):
    def _make(invoker: AgentInvoker, retain: bool = False, prefix: str = "test") -> PipelineRunner:
        return PipelineRunner(
            executor=StepExecutor(invoker),
            workspace_manager=WorkspaceManager(prefix=prefix),
            work_root=work_root,
            retain=retain,
        )

    return _make


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


def git(repo: Path, *args: str) -> str:
    completed = subprocess.run(
        [
            "git",
            "-c",
            "user.name=Test User",
            "-c",
            "user.email=test@example.com",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=repo,
        capture_output=True,
        text=True,
        check=True,
    )
    return completed.stdout.strip()


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """A repository with one commit on ``main`` and one more on ``feature-x``."""

    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    (repo / "README.md").write_text("hello\n", encoding="utf-8")
    git(repo, "add", "README.md")
    git(repo, "commit", "-q", "-m", "initial")
    git(repo, "checkout", "-q", "-b", "feature-x")
    (repo / "feature.py").write_text("print('x')\n", encoding="utf-8")
    git(repo, "add", "feature.py")
    git(repo, "commit", "-q", "-m", "add feature")
    return repo
