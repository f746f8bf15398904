"""Single-step commit: the agent writes a conventional commit message and commits the staged changes."""
from __future__ import annotations

from ..steps import Pipeline, StepDefinition

NAME = "commit"
DEFAULT_MODEL = "claude-sonnet-4-6"

COMMIT_INSTRUCTIONS = """\
You are generating a git commit message for staged changes.

INSTRUCTIONS:

1. Run `git diff --cached` and `git diff --cached --stat` to understand what is staged.

2. Write a single conventional commit message for all the staged changes.
   - Format: `type(scope): description`
   - Types: feat, fix, refactor, docs, style, test, chore, ci, perf, build
   - Scope is optional but recommended
   - Description should be imperative, lowercase, no period at the end
   - Keep the first line under 72 characters
   - If the changes need more explanation, add a body after a blank line

3. Commit the changes using `git commit -m "<your message>"`. If the message has a body, use multiple -m flags or a heredoc.

4. Your ONLY deliverable is creating the git commit. Do NOT write any files."""


def build_commit_pipeline() -> Pipeline:
    return Pipeline(
        name=NAME,
        description="Generate a conventional commit message and commit all staged changes.",
        default_model=DEFAULT_MODEL,
        steps=(
            StepDefinition(
                name="commit",
                title="Committing",
                instructions=COMMIT_INSTRUCTIONS,
            ),
        ),
    )


def initial_context(repo_root, branch: str):
    return {
        "Repository root": str(repo_root),
        "Current branch": branch,
    }
