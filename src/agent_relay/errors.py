"""Exceptions raised before or around a run.

Agent failures and missing outputs are not exceptions: they surface as failed
step results so the runner can stop cleanly and report which step broke.
"""

from __future__ import annotations


class AgentRelayError(Exception):
    """Base class for every error the CLI reports as ``ERROR: ...``."""


class PreconditionError(AgentRelayError):
    """The environment does not satisfy what the pipeline needs."""


class ConfigurationError(PreconditionError):
    """An environment variable holds a value that cannot be used."""

    def __init__(self, variable: str, problem: str) -> None:
        self.variable = variable
        super().__init__(f"invalid value for {variable}: {problem}.")


class NotAGitRepository(PreconditionError):
    def __init__(self, path: object = None) -> None:
        where = f" ({path})" if path else ""
        super().__init__(f"must be run inside a git repository{where}.")


class NoCommitsError(PreconditionError):
    def __init__(self) -> None:
        super().__init__("no commits on current branch.")


class UnknownBaseBranch(PreconditionError):
    def __init__(self, ref: str) -> None:
        self.ref = ref
        super().__init__(f"base branch '{ref}' does not exist.")


class DetachedHeadError(PreconditionError):
    def __init__(self) -> None:
        super().__init__("detached HEAD state. Cannot commit.")


class WorkspaceCreateError(AgentRelayError):
    """The scratch directory for a run could not be created."""


class GitCommandError(AgentRelayError):
    """A git command run by the tool itself (not by the agent) failed."""

    def __init__(self, command: list, return_code: int, stderr: str = "") -> None:
        self.command = list(command)
        self.return_code = return_code
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"'{' '.join(self.command)}' exited with status {return_code}{detail}")


class RunInterrupted(AgentRelayError):
    """A termination signal arrived while a run was in progress."""

    def __init__(self, signum: int) -> None:
        self.signum = signum
        super().__init__(f"run interrupted by signal {signum}.")


__all__ = [
    "AgentRelayError",
    "PreconditionError",
    "ConfigurationError",
    "NotAGitRepository",
    "NoCommitsError",
    "UnknownBaseBranch",
    "DetachedHeadError",
    "WorkspaceCreateError",
    "GitCommandError",
    "RunInterrupted",
]
