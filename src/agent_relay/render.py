"""Display a markdown artifact with the best viewer installed."""
from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import click

logger = logging.getLogger(__name__)

# Preference order; the path is appended to each command.
RENDERERS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("glow", ("glow",)),
    ("bat", ("bat", "--language", "md", "--style", "plain", "--paging", "never")),
)


def render_markdown(
    path: Path,
    which: Callable[[str], Optional[str]] = shutil.which,
    renderers: Sequence[Tuple[str, Tuple[str, ...]]] = RENDERERS,
) -> str:
    """
    Show *path* on stdout and return the name of the renderer used.

    Falls back to a plain dump when no renderer is installed or every one fails.
    """
    path = Path(path)
    for name, command in renderers:
        if which(command[0]) is None:
            continue
        args: List[str] = [*command, str(path)]
        try:
            completed = subprocess.run(args, stdin=subprocess.DEVNULL, check=False)
        except OSError as exc:
            logger.debug("Renderer %s could not be launched: %s", name, exc)
            continue
        if completed.returncode == 0:
            return name
        logger.debug("Renderer %s exited with %s; trying the next one", name, completed.returncode)

    click.echo(path.read_text(encoding="utf-8", errors="replace"), nl=False)
    return "plain"
