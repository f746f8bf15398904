from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, List, Optional

from .config import AgentConfig


LOGGER = logging.getLogger("agent_relay.invoker")

MISSING_EXECUTABLE = "missing-executable"
OS_ERROR = "os-error"
CAPTURE_ERROR = "capture-error"


@dataclass
class InvocationResult:
    command: List[str] = field(repr=False)
    return_code: int
    launched: bool = True
    reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.launched and self.return_code == 0


class AgentInvoker:
    """
    Run the external agent once, unattended, and wait for it to exit.

    The child never sees our stdin. Its stdout and stderr are inherited so the
    operator watches progress live, unless ``stdout_path`` asks for stdout to be
    captured into a file. No retries happen here.
    """

    def __init__(self, config: AgentConfig) -> None:
        self._config = config

    @property
    def config(self) -> AgentConfig:
        return self._config

    def build_command(self, prompt: str) -> List[str]:
        return [
            self._config.binary,
            "-p",
            prompt,
            "--model",
            self._config.model,
            *self._config.flags,
        ]

    def invoke(self, prompt: str, cwd: Optional[Path] = None, stdout_path: Optional[Path] = None) -> InvocationResult:
        command = self.build_command(prompt)
        LOGGER.debug("Launching %s (model %s)", self._config.binary, self._config.model)

        handle: Optional[BinaryIO] = None
        if stdout_path is not None:
            try:
                handle = Path(stdout_path).open("wb")
            except OSError as exc:
                LOGGER.debug("Cannot open capture file %s: %s", stdout_path, exc)
                return InvocationResult(
                    command=command,
                    return_code=getattr(exc, "errno", 1) or 1,
                    launched=False,
                    reason=CAPTURE_ERROR,
                    error=str(exc),
                )

        try:
            completed = subprocess.run(
                command,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=handle,
                check=False,
            )
        except FileNotFoundError as exc:
            LOGGER.debug("Agent binary %s not found: %s", self._config.binary, exc)
            return InvocationResult(
                command=command,
                return_code=127,
                launched=False,
                reason=MISSING_EXECUTABLE,
                error=str(exc),
            )
        except OSError as exc:
            LOGGER.debug("Agent binary %s could not be launched: %s", self._config.binary, exc)
            return InvocationResult(
                command=command,
                return_code=getattr(exc, "errno", 1) or 1,
                launched=False,
                reason=OS_ERROR,
                error=str(exc),
            )
        finally:
            if handle is not None:
                handle.close()

        LOGGER.debug("Agent exited with status %s", completed.returncode)
        return InvocationResult(command=command, return_code=completed.returncode)
