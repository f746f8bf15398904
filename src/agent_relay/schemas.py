"""Shared data models for pipeline runs."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RunStatus(str, Enum):
    """Lifecycle states tracked for a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Terminal outcome of one step."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepState(str, Enum):
    """States a step moves through while it executes."""

    NOT_STARTED = "not_started"
    BUILDING = "building"
    INVOKING = "invoking"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Why a step failed: the agent process itself, or its declared outputs."""

    AGENT_ERROR = "agent-error"
    MISSING_OUTPUT = "missing-output"


class StepResult(BaseModel):
    """Envelope recorded for each executed step. Never mutated once appended to a run."""

    model_config = ConfigDict(frozen=True)

    step_name: str
    status: StepStatus
    started_at: datetime
    completed_at: datetime
    artifacts: Dict[str, Path] = Field(default_factory=dict)
    context: Dict[str, str] = Field(
        default_factory=dict,
        description="Context fields that were rendered into the step's prompt.",
    )
    return_code: Optional[int] = None
    failure: Optional[FailureKind] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is StepStatus.SUCCEEDED


class RunResult(BaseModel):
    """Finalized result that aggregates step outcomes."""

    run_id: str
    pipeline: str
    status: RunStatus
    workspace: Path
    retained: bool = False
    started_at: datetime
    completed_at: datetime
    steps: List[StepResult] = Field(default_factory=list)
    artifacts: Dict[str, Path] = Field(default_factory=dict)
    failed_step: Optional[str] = None
    reason: Optional[str] = None

    @property
    def final_artifact(self) -> Optional[Path]:
        """Path of the last artifact produced by the last step, if any."""

        if not self.steps or not self.steps[-1].artifacts:
            return None
        return list(self.steps[-1].artifacts.values())[-1]
