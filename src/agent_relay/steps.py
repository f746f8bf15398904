"""Step definitions and the executor that runs one step against the agent."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from .invoker import CAPTURE_ERROR, AgentInvoker, InvocationResult
from .prompts import compose_prompt
from .schemas import FailureKind, StepResult, StepState, StepStatus

logger = logging.getLogger(__name__)

ContextBuilder = Callable[[Mapping[str, str], Path], Mapping[str, str]]


class ArtifactSource(str, Enum):
    """Where an artifact comes from: a file the agent writes, or the agent's captured stdout."""

    FILE = "file"
    STDOUT = "stdout"


@dataclass(frozen=True)
class ArtifactSpec:
    """
    A file a step must leave behind in the run workspace.

    ``label`` is shown to the producing step (where to write it), ``input_label``
    to every later step (where to read it).
    """

    name: str
    label: str
    input_label: str
    source: ArtifactSource = ArtifactSource.FILE

    def __post_init__(self) -> None:
        if not self.name or self.name in {".", ".."} or "/" in self.name or "\\" in self.name:
            raise ValueError(f"artifact name must be a bare file name, got {self.name!r}")


@dataclass(frozen=True)
class StepDefinition:
    """Static description of one pipeline step."""

    name: str
    title: str
    instructions: str
    outputs: Tuple[ArtifactSpec, ...] = ()
    context_builder: Optional[ContextBuilder] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "outputs", tuple(self.outputs))
        captured = [spec for spec in self.outputs if spec.source is ArtifactSource.STDOUT]
        if len(captured) > 1:
            raise ValueError(f"step {self.name!r} captures stdout into more than one artifact")

    @property
    def captured_output(self) -> Optional[ArtifactSpec]:
        return next((spec for spec in self.outputs if spec.source is ArtifactSource.STDOUT), None)

    def artifact_path(self, workspace: Path, spec: ArtifactSpec) -> Path:
        return Path(workspace) / spec.name

    def build_context(self, available: Mapping[str, str], workspace: Path) -> Dict[str, str]:
        """Return the context fields for this step's prompt, in display order."""
        if self.context_builder is not None:
            return {str(k): str(v) for k, v in self.context_builder(available, workspace).items()}

        fields = dict(available)
        for spec in self.outputs:
            if spec.source is ArtifactSource.FILE:
                fields.setdefault(spec.label, str(self.artifact_path(workspace, spec)))
        return fields


@dataclass(frozen=True)
class Pipeline:
    """An ordered, named sequence of steps plus the model it runs with by default."""

    name: str
    description: str
    default_model: str
    steps: Tuple[StepDefinition, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        _check_unique([step.name for step in self.steps], "step name", self.name)
        _check_unique([spec.name for step in self.steps for spec in step.outputs], "artifact", self.name)

    def __len__(self) -> int:
        return len(self.steps)


def _check_unique(values: Sequence[str], kind: str, pipeline: str) -> None:
    seen = set()
    for value in values:
        if value in seen:
            raise ValueError(f"duplicate {kind} {value!r} in pipeline {pipeline!r}")
        seen.add(value)


class StepExecutor:
    """
    Build the prompt, invoke the agent, and verify the declared outputs for one step.

    Any failure is terminal for the step: there is no retry. On failure a single
    diagnostic naming the step and the reason is logged at ERROR.
    """

    def __init__(self, invoker: AgentInvoker) -> None:
        self.invoker = invoker

    def execute(
        self,
        step: StepDefinition,
        available: Mapping[str, str],
        workspace: Path,
        index: int = 1,
        total: int = 1,
        cwd: Optional[Path] = None,
    ) -> StepResult:
        started_at = datetime.now(timezone.utc)
        label = f"Step {index}/{total} ({step.name})"
        state = StepState.NOT_STARTED

        state = self._advance(step, state, StepState.BUILDING)
        context = step.build_context(available, workspace)
        prompt = compose_prompt(context, step.instructions)

        state = self._advance(step, state, StepState.INVOKING)
        captured = step.captured_output
        invocation = self.invoker.invoke(
            prompt.render(),
            cwd=cwd,
            stdout_path=step.artifact_path(workspace, captured) if captured else None,
        )
        if not invocation.succeeded:
            self._advance(step, state, StepState.FAILED)
            return self._failed(
                step,
                started_at,
                context,
                FailureKind.AGENT_ERROR,
                f"{label} failed: {self._describe_agent_failure(invocation)}",
                return_code=invocation.return_code,
            )

        state = self._advance(step, state, StepState.VERIFYING)
        artifacts: Dict[str, Path] = {}
        for spec in step.outputs:
            path = step.artifact_path(workspace, spec)
            problem = self._check_artifact(path, spec)
            if problem:
                self._advance(step, state, StepState.FAILED)
                return self._failed(
                    step,
                    started_at,
                    context,
                    FailureKind.MISSING_OUTPUT,
                    f"{label} failed: {problem}",
                    return_code=invocation.return_code,
                )
            artifacts[spec.name] = path

        self._advance(step, state, StepState.SUCCEEDED)
        for path in artifacts.values():
            logger.info("%s complete: %s", label, path)
        if not artifacts:
            logger.info("%s complete", label)
        return StepResult(
            step_name=step.name,
            status=StepStatus.SUCCEEDED,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            artifacts=artifacts,
            context=context,
            return_code=invocation.return_code,
        )

    def _advance(self, step: StepDefinition, current: StepState, target: StepState) -> StepState:
        logger.debug("%s: %s -> %s", step.name, current.value, target.value)
        return target

    @staticmethod
    def _check_artifact(path: Path, spec: ArtifactSpec) -> Optional[str]:
        if spec.source is ArtifactSource.STDOUT:
            if not path.is_file() or path.stat().st_size == 0:
                return f"agent produced no output for {spec.name} ({path})."
            return None
        if not path.is_file():
            return f"{spec.name} was not created ({path})."
        if path.stat().st_size == 0:
            return f"{spec.name} is empty ({path})."
        return None

    def _describe_agent_failure(self, invocation: InvocationResult) -> str:
        binary = self.invoker.config.binary
        if invocation.reason == CAPTURE_ERROR:
            return f"could not open the output capture file: {invocation.error}"
        if not invocation.launched:
            detail = f": {invocation.error}" if invocation.error else ""
            return f"could not launch agent '{binary}' ({invocation.reason}){detail}"
        return f"'{binary}' exited with a non-zero status ({invocation.return_code})."

    def _failed(
        self,
        step: StepDefinition,
        started_at: datetime,
        context: Dict[str, str],
        kind: FailureKind,
        reason: str,
        return_code: Optional[int] = None,
    ) -> StepResult:
        logger.error("ERROR: %s", reason)
        return StepResult(
            step_name=step.name,
            status=StepStatus.FAILED,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            context=context,
            return_code=return_code,
            failure=kind,
            reason=reason,
        )
