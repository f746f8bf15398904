import os
import signal
from pathlib import Path

import pytest

from agent_relay.errors import RunInterrupted, WorkspaceCreateError
from agent_relay.invoker import InvocationResult
from agent_relay.orchestrator import PipelineRunner
from agent_relay.pipelines import get_pipeline
from agent_relay.pipelines.code_review import DRAFT_FILE, RESEARCH_FILE, REVIEW_FILE
from agent_relay.schemas import FailureKind, RunStatus, StepStatus
from agent_relay.steps import StepExecutor
from agent_relay.workspace import WorkspaceManager
from conftest import FakeInvoker, context_value, exits, prints, silent, writes


CONTEXT = {"Repository root": "/repo", "Current branch": "feature-x", "Base branch": "main"}


def _review_steps():
    return get_pipeline("code-review").steps


def test_successful_run_threads_artifacts_and_removes_workspace(make_runner, work_root: Path):
    invoker = FakeInvoker(
        [
            writes("Research output file"),
            writes("Draft output file"),
            prints("# Final review\n"),
        ],
        work_root=work_root,
    )
    seen = {}
    result = make_runner(invoker).run(
        _review_steps(),
        CONTEXT,
        name="code-review",
        run_id="r1",
        on_success=lambda res: seen.update(text=res.final_artifact.read_text(encoding="utf-8")),
    )

    assert result.status is RunStatus.SUCCEEDED
    assert [step.status for step in result.steps] == [StepStatus.SUCCEEDED] * 3
    assert result.final_artifact == work_root / "test-r1" / REVIEW_FILE
    assert set(result.artifacts) == {RESEARCH_FILE, DRAFT_FILE, REVIEW_FILE}
    assert seen["text"] == "# Final review\n"

    # workspace existed during every step and is gone afterwards
    assert all(call.workspaces == ["test-r1"] for call in invoker.calls)
    assert not result.workspace.exists()
    assert list(work_root.iterdir()) == []


def test_later_steps_only_see_earlier_artifacts(make_runner, work_root: Path):
    invoker = FakeInvoker(
        [writes("Research output file"), writes("Draft output file"), prints("done")],
        work_root=work_root,
    )
    result = make_runner(invoker).run(_review_steps(), CONTEXT, run_id="r2")

    research, draft, audit = (step.context for step in result.steps)
    assert "Research file" not in research
    assert "Draft review file" not in research
    assert research["Research output file"].endswith(RESEARCH_FILE)

    assert draft["Research file"] == research["Research output file"]
    assert "Draft review file" not in draft

    assert audit["Research file"] == research["Research output file"]
    assert audit["Draft review file"] == draft["Draft output file"]
    assert list(audit)[:3] == ["Repository root", "Current branch", "Base branch"]

    assert context_value(invoker.calls[2].prompt, "Draft review file").endswith(DRAFT_FILE)


def test_failure_stops_the_run(make_runner, work_root: Path):
    invoker = FakeInvoker([writes("Research output file"), exits(1), prints("never")], work_root=work_root)
    result = make_runner(invoker).run(_review_steps(), CONTEXT, run_id="r3")

    assert result.status is RunStatus.FAILED
    assert result.failed_step == "draft"
    assert "Step 2/3 (draft)" in result.reason
    assert len(invoker.calls) == 2
    assert [step.step_name for step in result.steps] == ["research", "draft"]
    assert not result.workspace.exists()


@pytest.mark.parametrize("failing_index", [0, 1, 2])
def test_no_step_after_a_failure_is_invoked(make_runner, work_root: Path, failing_index: int):
    actions = [writes("Research output file"), writes("Draft output file"), prints("x")]
    actions[failing_index] = exits(2)
    invoker = FakeInvoker(actions, work_root=work_root)
    result = make_runner(invoker).run(_review_steps(), CONTEXT, run_id=f"k{failing_index}")

    assert result.status is RunStatus.FAILED
    assert len(invoker.calls) == failing_index + 1


def test_missing_output_is_not_reported_as_process_error(make_runner, work_root: Path):
    invoker = FakeInvoker([silent()], work_root=work_root)
    result = make_runner(invoker).run(_review_steps(), CONTEXT, run_id="r4")

    assert result.status is RunStatus.FAILED
    step = result.steps[0]
    assert step.failure is FailureKind.MISSING_OUTPUT
    assert RESEARCH_FILE in result.reason
    assert "non-zero" not in result.reason
    assert len(invoker.calls) == 1


def test_retained_workspace_keeps_earlier_artifacts_on_failure(make_runner, work_root: Path):
    invoker = FakeInvoker([writes("Research output file"), exits(1)], work_root=work_root)
    result = make_runner(invoker, retain=True).run(_review_steps(), CONTEXT, run_id="r5")

    assert result.status is RunStatus.FAILED
    assert result.retained
    assert result.workspace.is_dir()
    assert sorted(p.name for p in result.workspace.iterdir()) == [RESEARCH_FILE]


def test_retained_workspace_on_success(make_runner, work_root: Path):
    invoker = FakeInvoker(
        [writes("Research output file"), writes("Draft output file"), prints("ok")],
        work_root=work_root,
    )
    result = make_runner(invoker, retain=True).run(_review_steps(), CONTEXT, run_id="r6")
    assert result.status is RunStatus.SUCCEEDED
    assert result.workspace.is_dir()


def test_on_success_not_called_for_failed_run(make_runner, work_root: Path):
    called = []
    invoker = FakeInvoker([exits(1)], work_root=work_root)
    make_runner(invoker).run(_review_steps(), CONTEXT, run_id="r7", on_success=called.append)
    assert called == []


def test_interrupt_releases_workspace(make_runner, work_root: Path):
    def interrupted(call):
        os.kill(os.getpid(), signal.SIGTERM)
        return InvocationResult(command=["fake-agent"], return_code=0)

    invoker = FakeInvoker([interrupted], work_root=work_root)
    with pytest.raises(RunInterrupted):
        make_runner(invoker).run(_review_steps(), CONTEXT, run_id="r8")

    assert list(work_root.iterdir()) == []
    assert signal.getsignal(signal.SIGTERM) is not None


def test_keyboard_interrupt_releases_workspace(make_runner, work_root: Path):
    def interrupted(call):
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        make_runner(FakeInvoker([interrupted], work_root=work_root)).run(_review_steps(), CONTEXT, run_id="r9")
    assert list(work_root.iterdir()) == []


def test_unusable_work_root_runs_no_step(tmp_path: Path):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("", encoding="utf-8")
    invoker = FakeInvoker([silent()])
    runner = PipelineRunner(StepExecutor(invoker), WorkspaceManager(prefix="test"), work_root=blocker)

    with pytest.raises(WorkspaceCreateError):
        runner.run(_review_steps(), CONTEXT, run_id="w1")

    assert invoker.calls == []


class _SignalDuringRelease(WorkspaceManager):
    def __init__(self, signum: int) -> None:
        super().__init__(prefix="test")
        self.signum = signum
        self.released = []

    def release(self, workspace, retain=False):
        os.kill(os.getpid(), self.signum)
        self.released.append(super().release(workspace, retain=retain))
        return self.released[-1]


def test_termination_during_release_waits_for_cleanup(work_root: Path):
    previous = signal.getsignal(signal.SIGTERM)
    manager = _SignalDuringRelease(signal.SIGTERM)
    runner = PipelineRunner(StepExecutor(FakeInvoker([silent()], work_root=work_root)), manager, work_root=work_root)

    with pytest.raises(RunInterrupted) as excinfo:
        runner.run(get_pipeline("commit").steps, {}, run_id="s1")

    assert excinfo.value.signum == signal.SIGTERM
    assert manager.released == [None]
    assert list(work_root.iterdir()) == []
    assert signal.getsignal(signal.SIGTERM) == previous


def test_ctrl_c_during_release_waits_for_cleanup(work_root: Path):
    previous = signal.getsignal(signal.SIGINT)
    manager = _SignalDuringRelease(signal.SIGINT)
    runner = PipelineRunner(StepExecutor(FakeInvoker([silent()], work_root=work_root)), manager, work_root=work_root)

    with pytest.raises(KeyboardInterrupt):
        runner.run(get_pipeline("commit").steps, {}, run_id="s2")

    assert manager.released == [None]
    assert list(work_root.iterdir()) == []
    assert signal.getsignal(signal.SIGINT) == previous


def test_commit_pipeline_runs_single_step_without_artifacts(make_runner, work_root: Path):
    invoker = FakeInvoker([silent()], work_root=work_root)
    steps = get_pipeline("commit").steps
    result = make_runner(invoker).run(steps, {"Repository root": "/repo", "Current branch": "feature-x"}, run_id="c1")

    assert result.status is RunStatus.SUCCEEDED
    assert result.final_artifact is None
    assert invoker.calls[0].prompt.startswith("CONTEXT:\n- Repository root: /repo\n- Current branch: feature-x\n\n")
