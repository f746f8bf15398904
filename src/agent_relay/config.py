"""Application configuration using Pydantic settings."""

from __future__ import annotations

import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


DEFAULT_AGENT_CMD = "claude"
UNATTENDED_FLAGS: Tuple[str, ...] = ("--dangerously-skip-permissions",)


@dataclass(frozen=True)
class AgentConfig:
    """How the external agent is launched for every step of a run."""

    binary: str
    model: str
    flags: Tuple[str, ...] = UNATTENDED_FLAGS


class Settings(BaseSettings):
    """
    Process-level settings, read once from the environment at start-up.

    The legacy variable names (``CLAUDE_CMD``, ``CLAUDE_MODEL``, ``KEEP_WORK_DIR``)
    are honoured as-is; everything else uses the ``AGENT_RELAY_`` prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENT_RELAY_",
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    agent_cmd: str = Field(default=DEFAULT_AGENT_CMD, validation_alias="CLAUDE_CMD")
    model: Optional[str] = Field(default=None, validation_alias="CLAUDE_MODEL")
    keep_work_dir: bool = Field(default=False, validation_alias="KEEP_WORK_DIR")
    work_root: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))

    def agent_config(self, default_model: str) -> AgentConfig:
        """Return the immutable agent configuration, falling back to *default_model*."""

        return AgentConfig(binary=self.agent_cmd, model=self.model or default_model)


def load_settings(
    agent_cmd: Optional[str] = None,
    model: Optional[str] = None,
    keep_work_dir: Optional[bool] = None,
) -> Settings:
    """
    Build settings from the environment, then apply command-line overrides.

    Only overrides that were actually supplied replace environment values.
    """
    try:
        settings = Settings()
    except ValidationError as exc:
        error = exc.errors()[0]
        raise ConfigurationError(_variable_name(error["loc"]), error["msg"]) from exc
    updates: Dict[str, Any] = {}
    if agent_cmd:
        updates["agent_cmd"] = agent_cmd
    if model:
        updates["model"] = model
    if keep_work_dir:
        updates["keep_work_dir"] = True
    if updates:
        settings = settings.model_copy(update=updates)
    return settings


def _variable_name(loc: Sequence[Any]) -> str:
    key = str(loc[0]) if loc else ""
    for name, info in Settings.model_fields.items():
        if key in (name, info.validation_alias):
            return str(info.validation_alias or f"AGENT_RELAY_{name.upper()}")
    return key or "environment"


__all__ = ["AgentConfig", "Settings", "load_settings", "DEFAULT_AGENT_CMD", "UNATTENDED_FLAGS"]
