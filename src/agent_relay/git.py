"""Read-only git queries resolved once before a run, plus the few writes the CLI performs."""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .errors import (
    DetachedHeadError,
    GitCommandError,
    NoCommitsError,
    NotAGitRepository,
    UnknownBaseBranch,
)

logger = logging.getLogger(__name__)

GIT = "git"


@dataclass(frozen=True)
class BranchInfo:
    """The checked-out branch, or the short commit when HEAD is detached."""

    name: str
    detached: bool = False
    short_sha: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.detached:
            return f"detached at {self.short_sha}"
        return self.name


def _git(args: List[str], cwd: Optional[Path]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [GIT, *args],
        cwd=cwd,
        stdin=subprocess.DEVNULL,
        capture_output=True,
        text=True,
        check=False,
    )


class GitRepository:
    """Thin wrapper around the ``git`` executable for one working tree."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @classmethod
    def discover(cls, cwd: Optional[Path] = None) -> "GitRepository":
        """Locate the repository containing *cwd*, raising :class:`NotAGitRepository` otherwise."""

        try:
            completed = _git(["rev-parse", "--show-toplevel"], cwd)
        except OSError as exc:
            logger.debug("git could not be launched: %s", exc)
            raise NotAGitRepository(cwd) from exc
        if completed.returncode != 0 or not completed.stdout.strip():
            raise NotAGitRepository(cwd)
        return cls(Path(completed.stdout.strip()))

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        return _git(list(args), self.root)

    def current_branch(self) -> BranchInfo:
        completed = self._run("rev-parse", "--abbrev-ref", "HEAD")
        if completed.returncode != 0:
            raise NoCommitsError()
        name = completed.stdout.strip()
        if name != "HEAD":
            return BranchInfo(name=name)
        short = self._run("rev-parse", "--short", "HEAD").stdout.strip()
        return BranchInfo(name="HEAD", detached=True, short_sha=short or None)

    def require_branch(self) -> BranchInfo:
        """Return the current branch, refusing a detached HEAD."""

        branch = self.current_branch()
        if branch.detached:
            raise DetachedHeadError()
        return branch

    def verify_ref(self, ref: str) -> None:
        completed = self._run("rev-parse", "--verify", "--quiet", ref)
        if completed.returncode != 0:
            raise UnknownBaseBranch(ref)

    def has_changes(self) -> bool:
        """True when there are unstaged, staged, or untracked (non-ignored) changes."""

        if self._run("diff", "--quiet").returncode != 0:
            return True
        if self._run("diff", "--cached", "--quiet").returncode != 0:
            return True
        untracked = self._run("ls-files", "--others", "--exclude-standard")
        return bool(untracked.stdout.strip())

    def stage_all(self) -> None:
        self._check(self._run("add", "-A"))

    def push(self, branch: str, remote: str = "origin") -> None:
        # Output is streamed so the operator sees remote messages.
        command = [GIT, "push", "-u", remote, branch]
        completed = subprocess.run(command, cwd=self.root, stdin=subprocess.DEVNULL, check=False)
        if completed.returncode != 0:
            raise GitCommandError(command, completed.returncode)

    def last_commit(self) -> str:
        completed = self._run("log", "--oneline", "-1")
        self._check(completed)
        return completed.stdout.strip()

    @staticmethod
    def _check(completed: subprocess.CompletedProcess) -> None:
        if completed.returncode != 0:
            raise GitCommandError(list(completed.args), completed.returncode, completed.stderr or "")


__all__ = ["BranchInfo", "GitRepository"]
