from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from rich.console import Console

from .errors import RunInterrupted
from .schemas import RunResult, RunStatus, StepResult
from .steps import StepDefinition, StepExecutor
from .workspace import WorkspaceManager, generate_run_id


LOGGER = logging.getLogger("agent_relay.orchestrator")

INTERRUPT_SIGNALS = tuple(
    sig for sig in (getattr(signal, "SIGTERM", None), getattr(signal, "SIGHUP", None)) if sig is not None
)


@dataclass
class Run:
    """Mutable state of one pipeline execution, owned by the runner."""

    run_id: str
    pipeline: str
    started_at: datetime
    status: RunStatus = RunStatus.PENDING
    workspace: Optional[Path] = None
    context: Dict[str, str] = field(default_factory=dict)
    artifacts: Dict[str, Path] = field(default_factory=dict)
    results: List[StepResult] = field(default_factory=list)
    failed_step: Optional[str] = None
    reason: Optional[str] = None

    def add_context(self, label: str, value: str) -> None:
        """Add a context field; values already present are never replaced."""
        if label in self.context:
            LOGGER.warning("Context field %r already set; keeping %r", label, self.context[label])
            return
        self.context[label] = value


class InterruptGuard:
    """
    Turn SIGTERM/SIGHUP into :class:`RunInterrupted` while the guard is active.

    Inside :meth:`deferred` those signals, and SIGINT, are held instead of
    raised, then re-delivered as an exception once the block has finished. Signal handlers can only be installed from
    the main thread; elsewhere the guard does nothing.
    """

    def __init__(self) -> None:
        self._previous: Dict[int, object] = {}
        self._pending: Optional[int] = None

    @staticmethod
    def _enabled() -> bool:
        return threading.current_thread() is threading.main_thread()

    def _raise(self, signum, _frame) -> None:
        raise RunInterrupted(signum)

    def _hold(self, signum, _frame) -> None:
        if self._pending is None:
            self._pending = signum

    def __enter__(self) -> "InterruptGuard":
        if self._enabled():
            self._previous = {sig: signal.signal(sig, self._raise) for sig in INTERRUPT_SIGNALS}
        return self

    def __exit__(self, *exc_info) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous = {}

    @contextmanager
    def deferred(self) -> Iterator[None]:
        if not self._enabled():
            yield
            return

        held = {sig: signal.signal(sig, self._hold) for sig in (*INTERRUPT_SIGNALS, signal.SIGINT)}
        try:
            yield
        finally:
            for sig, handler in held.items():
                signal.signal(sig, handler)
        signum, self._pending = self._pending, None
        if signum == signal.SIGINT:
            raise KeyboardInterrupt
        if signum is not None:
            raise RunInterrupted(signum)


class PipelineRunner:
    """Coordinate step execution inside a scratch workspace that lives exactly as long as the run."""

    def __init__(
        self,
        executor: StepExecutor,
        workspace_manager: WorkspaceManager,
        work_root: Path,
        retain: bool = False,
        console: Optional[Console] = None,
    ) -> None:
        self._executor = executor
        self._workspace = workspace_manager
        self._work_root = Path(work_root)
        self._retain = retain
        self._console = console
        self._logger = LOGGER

    def run(
        self,
        steps: Sequence[StepDefinition],
        initial_context: Mapping[str, str],
        name: str = "pipeline",
        cwd: Optional[Path] = None,
        run_id: Optional[str] = None,
        on_success: Optional[Callable[[RunResult], None]] = None,
    ) -> RunResult:
        """
        Execute *steps* in order and stop at the first failure.

        The workspace is created before the first step and released after the
        last one, on failure, and when the run is interrupted. ``on_success`` is
        called with the final result while the workspace still exists.
        """
        steps = list(steps)
        run = Run(
            run_id=run_id or generate_run_id(),
            pipeline=name,
            started_at=datetime.now(timezone.utc),
            context={str(k): str(v) for k, v in initial_context.items()},
        )
        self._logger.debug("Starting run %s of %s", run.run_id, name)

        with InterruptGuard() as guard:
            run.workspace = self._workspace.acquire(self._work_root, run.run_id)
            try:
                run.status = RunStatus.RUNNING
                try:
                    self._execute_steps(run, steps, cwd)
                except BaseException:
                    run.status = RunStatus.FAILED
                    self._logger.debug("Run %s aborted during step %d", run.run_id, len(run.results) + 1)
                    raise
                result = self._result(run)
                if result.status is RunStatus.SUCCEEDED and on_success is not None:
                    on_success(result)
            finally:
                with guard.deferred():
                    self._workspace.release(run.workspace, retain=self._retain)

        self._logger.debug("Run %s finished with status %s", run.run_id, result.status.value)
        return result

    def _execute_steps(self, run: Run, steps: List[StepDefinition], cwd: Optional[Path]) -> None:
        total = len(steps)
        for index, step in enumerate(steps, start=1):
            if self._console is not None:
                self._console.rule(f"Step {index}/{total}: {step.title}", align="left")
            result = self._executor.execute(
                step,
                dict(run.context),
                run.workspace,
                index=index,
                total=total,
                cwd=cwd,
            )
            run.results.append(result)
            if not result.succeeded:
                run.status = RunStatus.FAILED
                run.failed_step = step.name
                run.reason = result.reason
                return

            for spec in step.outputs:
                path = result.artifacts[spec.name]
                run.artifacts[spec.name] = path
                run.add_context(spec.input_label, str(path))

        run.status = RunStatus.SUCCEEDED

    def _result(self, run: Run) -> RunResult:
        return RunResult(
            run_id=run.run_id,
            pipeline=run.pipeline,
            status=run.status,
            workspace=run.workspace,
            retained=self._retain,
            started_at=run.started_at,
            completed_at=datetime.now(timezone.utc),
            steps=list(run.results),
            artifacts=dict(run.artifacts),
            failed_step=run.failed_step,
            reason=run.reason,
        )
