from __future__ import annotations

import sys
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import click
from rich.console import Console
from rich.table import Table

from .config import Settings, load_settings
from .errors import AgentRelayError, RunInterrupted
from .git import GitRepository
from .invoker import AgentInvoker
from .logging_config import configure_logging
from .orchestrator import PipelineRunner
from .pipelines import code_review, commit, get_pipeline
from .render import render_markdown
from .schemas import RunResult, RunStatus
from .steps import Pipeline, StepExecutor
from .workspace import WorkspaceManager, generate_run_id

console = Console()

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="Agent Relay %(version)s")
@click.option("--verbose", is_flag=True, default=False, help="Increase logging verbosity.")
def main(verbose: bool) -> None:
    """Drive a coding agent through multi-step git workflows."""

    configure_logging(verbose=verbose)


def _agent_options(func):
    func = click.option(
        "--keep-work-dir",
        is_flag=True,
        default=False,
        help="Keep the scratch working directory after the run (same as KEEP_WORK_DIR=1).",
    )(func)
    func = click.option("--agent-cmd", type=str, default=None, help="Agent executable (overrides CLAUDE_CMD).")(func)
    func = click.option("--model", type=str, default=None, help="Model identifier (overrides CLAUDE_MODEL).")(func)
    return func


@main.command()
@click.argument("base_branch", required=False, default=code_review.DEFAULT_BASE_BRANCH)
@_agent_options
def review(base_branch: str, model: Optional[str], agent_cmd: Optional[str], keep_work_dir: bool) -> None:
    """Research, draft, and audit a code review of this branch against BASE_BRANCH (default: main)."""

    with _reported_errors():
        settings = load_settings(agent_cmd=agent_cmd, model=model, keep_work_dir=keep_work_dir)
        repo = GitRepository.discover()
        repo.verify_ref(base_branch)
        branch = repo.current_branch()
        if branch.detached:
            click.echo(f"WARNING: detached HEAD state. Using: {branch.display_name}", err=True)

        pipeline = get_pipeline(code_review.NAME)
        context = code_review.initial_context(repo.root, branch.display_name, base_branch)
        result = _run_pipeline(
            pipeline,
            settings,
            repo,
            context,
            on_success=_show_review,
        )
        _finish(result)


@main.command("commit")
@click.option("--no-push", is_flag=True, default=False, help="Commit only; do not push to origin.")
@_agent_options
def commit_command(no_push: bool, model: Optional[str], agent_cmd: Optional[str], keep_work_dir: bool) -> None:
    """Stage everything, let the agent write a conventional commit, then push."""

    with _reported_errors():
        settings = load_settings(agent_cmd=agent_cmd, model=model, keep_work_dir=keep_work_dir)
        repo = GitRepository.discover()
        branch = repo.require_branch()
        if not repo.has_changes():
            click.echo("Nothing to commit: working tree is clean.")
            return

        pipeline = get_pipeline(commit.NAME)
        context = commit.initial_context(repo.root, branch.name)
        repo.stage_all()
        result = _run_pipeline(pipeline, settings, repo, context)
        if result.status is not RunStatus.SUCCEEDED:
            _finish(result)

        if no_push:
            console.rule("Skipping push (--no-push)", align="left")
        else:
            console.rule(f"Pushing to {branch.name}", align="left")
            repo.push(branch.name)

        console.rule("Complete", align="left")
        console.print(repo.last_commit(), markup=False, highlight=False)


def _run_pipeline(
    pipeline: Pipeline,
    settings: Settings,
    repo: GitRepository,
    context: Dict[str, str],
    on_success=None,
) -> RunResult:
    agent_config = settings.agent_config(pipeline.default_model)
    workspace = WorkspaceManager(prefix=pipeline.name)
    run_id = generate_run_id()

    rows = {k: v for k, v in context.items() if k != "Repository root"}
    rows = {"Repo root": str(repo.root), **rows}
    rows.update(
        {
            "Agent cmd": agent_config.binary,
            "Model": agent_config.model,
            "Working dir": str(workspace.path_for(settings.work_root, run_id)),
        }
    )
    _print_banner(pipeline, rows)

    runner = PipelineRunner(
        executor=StepExecutor(AgentInvoker(agent_config)),
        workspace_manager=workspace,
        work_root=settings.work_root,
        retain=settings.keep_work_dir,
        console=console,
    )
    return runner.run(
        pipeline.steps,
        context,
        name=pipeline.name,
        cwd=repo.root,
        run_id=run_id,
        on_success=on_success,
    )


def _print_banner(pipeline: Pipeline, rows: Dict[str, str]) -> None:
    console.rule(pipeline.description, align="left")
    width = max(len(label) for label in rows)
    for label, value in rows.items():
        console.print(f"  {label.ljust(width)} : {value}", markup=False, highlight=False)
    console.rule()
    console.print()


def _show_review(result: RunResult) -> None:
    console.rule("Code Review Complete", align="left")
    for name in (code_review.RESEARCH_FILE, code_review.DRAFT_FILE):
        if name in result.artifacts:
            console.print(f"  {name} : {result.artifacts[name]}", markup=False, highlight=False)
    console.rule()
    console.print()
    if result.final_artifact is not None:
        render_markdown(result.final_artifact)


def _finish(result: RunResult) -> None:
    table = Table(title=f"Run {result.run_id}", show_lines=False)
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Details")
    for step in result.steps:
        details = step.reason or ", ".join(sorted(step.artifacts)) or ""
        table.add_row(step.step_name, step.status.value, details)
    console.print(table)
    if result.retained:
        console.print(f"Working dir kept: {result.workspace}", markup=False, highlight=False)
    if result.status is not RunStatus.SUCCEEDED:
        sys.exit(EXIT_FAILURE)


@contextmanager
def _reported_errors() -> Iterator[None]:
    try:
        yield
    except RunInterrupted as exc:
        click.echo(f"ERROR: {exc}", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except KeyboardInterrupt:
        click.echo("ERROR: interrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except AgentRelayError as exc:
        click.echo(f"ERROR: {exc}", err=True)
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":  # pragma: no cover
    main()
