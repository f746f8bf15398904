from __future__ import annotations

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import WorkspaceCreateError


LOGGER = logging.getLogger("agent_relay.workspace")


def generate_run_id(now: Optional[datetime] = None, pid: Optional[int] = None) -> str:
    """Return a run identifier built from a high-resolution timestamp and the process id."""
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S-%f")
    return f"{stamp}-{pid if pid is not None else os.getpid()}"


class WorkspaceManager:
    """Create and remove the scratch directory that holds a run's artifacts."""

    def __init__(self, prefix: str = "agent-relay") -> None:
        self._prefix = prefix

    def path_for(self, base_dir: Path, run_id: str) -> Path:
        return Path(base_dir) / f"{self._prefix}-{run_id}"

    def acquire(self, base_dir: Path, run_id: str) -> Path:
        """
        Create ``<base_dir>/<prefix>-<run_id>`` and return it.

        The directory must not exist yet; two runs are never handed the same path.
        """
        workspace = self.path_for(base_dir, run_id)
        try:
            workspace.mkdir(parents=True, exist_ok=False)
        except FileExistsError as exc:
            raise WorkspaceCreateError(f"workspace {workspace} already exists") from exc
        except OSError as exc:
            raise WorkspaceCreateError(f"cannot create workspace {workspace}: {exc}") from exc
        LOGGER.debug("Created workspace %s", workspace)
        return workspace

    def release(self, workspace: Path, retain: bool = False) -> Optional[Path]:
        """
        Remove *workspace* recursively unless *retain* is set.

        Returns the path when it was kept so callers can report it.
        """
        workspace = Path(workspace)
        if retain:
            LOGGER.info("Keeping working directory %s", workspace)
            return workspace
        if workspace.exists():
            shutil.rmtree(workspace)
            LOGGER.debug("Removed workspace %s", workspace)
        return None
