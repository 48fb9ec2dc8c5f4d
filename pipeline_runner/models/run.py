"""
Run Models
==========
Pydantic models for one execution of a Pipeline.

State machine:
    pending → running → succeeded | failed | cancelled
    pending → cancelled            (cancelled before the first step started)

No transition leaves a terminal state.

Outcome:
    success                      — every step succeeded
    failure(step, label, output) — first step that did not succeed;
                                   nothing recorded after it
    cancelled(step, label)       — run terminated externally
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from pipeline_runner.core.constants import FAILURE_KIND_ENVIRONMENT, FAILURE_KIND_STEP
from pipeline_runner.core.errors import InvalidRunTransition
from pipeline_runner.models.event import TriggerEvent


class RunState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = {RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELLED}

_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.PENDING: {RunState.RUNNING, RunState.CANCELLED},
    RunState.RUNNING: {RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELLED},
}


class Annotation(BaseModel):
    """One structured diagnostic reported by a packaged task."""
    path: str = ""
    line: int = 0
    column: int = 0
    level: Literal["error", "warning", "notice"] = "warning"
    message: str
    code: str = ""


class StepResult(BaseModel):
    index: int
    label: str
    exit_code: int = -1
    output: str = ""
    duration_seconds: float = 0.0
    annotations: List[Annotation] = []
    success: bool = False
    error: Optional[str] = None           # infrastructure problem, not a tool failure
    failure_kind: Literal["step", "environment"] = FAILURE_KIND_STEP

    @property
    def warning_count(self) -> int:
        return sum(1 for a in self.annotations if a.level == "warning")


class Outcome(BaseModel):
    status: Literal["success", "failure", "cancelled"]
    step_index: Optional[int] = None
    step_label: Optional[str] = None
    exit_code: Optional[int] = None
    output: str = ""
    kind: Optional[Literal["step", "environment"]] = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(status="success")

    @classmethod
    def failure(cls, result: StepResult) -> "Outcome":
        return cls(
            status="failure",
            step_index=result.index,
            step_label=result.label,
            exit_code=result.exit_code,
            output=result.output,
            kind=result.failure_kind,
        )

    @classmethod
    def environment_failure(cls, index: Optional[int], label: Optional[str], message: str) -> "Outcome":
        return cls(
            status="failure",
            step_index=index,
            step_label=label,
            output=message,
            kind=FAILURE_KIND_ENVIRONMENT,
        )

    @classmethod
    def cancelled(cls, index: Optional[int] = None, label: Optional[str] = None) -> "Outcome":
        return cls(status="cancelled", step_index=index, step_label=label)


class RunOptions(BaseModel):
    warnings_are_errors: bool = False
    backend: Literal["local", "docker"] = "local"
    keep_workspace: bool = False


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Run(BaseModel):
    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    pipeline_name: str
    job_name: str
    event: Optional[TriggerEvent] = None
    options: RunOptions = Field(default_factory=RunOptions)
    state: RunState = RunState.PENDING
    working_directory: str = ""
    step_count: int = 0
    step_results: List[StepResult] = []
    outcome: Optional[Outcome] = None
    created_at: datetime = Field(default_factory=_now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def transition(self, target: RunState) -> None:
        allowed = _TRANSITIONS.get(self.state, set())
        if target not in allowed:
            raise InvalidRunTransition(self.state.value, target.value)
        self.state = target
        if target == RunState.RUNNING:
            self.started_at = _now()
        elif target.is_terminal:
            self.finished_at = _now()

    def finish(self, outcome: Outcome) -> None:
        """Record the terminal Outcome and move to the matching state."""
        target = {
            "success": RunState.SUCCEEDED,
            "failure": RunState.FAILED,
            "cancelled": RunState.CANCELLED,
        }[outcome.status]
        self.transition(target)
        self.outcome = outcome

    @property
    def duration_seconds(self) -> float:
        if not self.started_at:
            return 0.0
        end = self.finished_at or _now()
        return round((end - self.started_at).total_seconds(), 3)
