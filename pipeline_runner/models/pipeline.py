"""
Pipeline Models
===============
Pydantic models for the workflow document and the executable Pipeline built
from it.

Two layers:
    - Definition models mirror the workflow YAML (``name``, ``on``, ``jobs``,
      step descriptors) and validate it at load time.
    - ``Pipeline`` / ``Step`` are the explicit ordered structure the runner
      executes. Each Step carries exactly one Action: ``ShellCommand`` or
      ``PackagedTask``.

Validation rules (load time, never deferred to execution):
    - a job has at least one step
    - a step has exactly one of ``run`` / ``uses``
    - a workflow has at least one job
"""
import fnmatch
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _stringify_mapping(value: Any) -> Any:
    # YAML turns `true` / `1` into bool / int; env and `with` values are strings.
    if isinstance(value, dict):
        return {str(k): _stringify_scalar(v) for k, v in value.items()}
    return value


def _stringify_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------
class ShellCommand(BaseModel):
    """An opaque shell command executed by a subprocess backend."""
    kind: Literal["shell"] = "shell"
    command: str

    def describe(self) -> str:
        return self.command.strip().splitlines()[0] if self.command.strip() else ""


class PackagedTask(BaseModel):
    """A reference to a pre-packaged task resolved through the task registry."""
    kind: Literal["task"] = "task"
    reference: str
    params: Dict[str, str] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        """Reference without its ``@version`` suffix, lower-cased."""
        return self.reference.split("@", 1)[0].strip().lower()

    @property
    def version(self) -> str:
        return self.reference.split("@", 1)[1] if "@" in self.reference else ""

    def describe(self) -> str:
        return self.reference


Action = Union[ShellCommand, PackagedTask]


# ---------------------------------------------------------------------------
# Definition layer (workflow YAML)
# ---------------------------------------------------------------------------
class StepDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    id: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, str] = Field(default_factory=dict, alias="with")
    env: Dict[str, str] = Field(default_factory=dict)
    working_directory: str = Field(default="", alias="working-directory")

    @field_validator("with_", "env", mode="before")
    @classmethod
    def _stringify(cls, v):
        return _stringify_mapping(v) if v is not None else {}

    @model_validator(mode="after")
    def _exactly_one_action(self):
        has_run = bool(self.run and self.run.strip())
        has_uses = bool(self.uses and self.uses.strip())
        if has_run == has_uses:
            raise ValueError("step must define exactly one of 'run' or 'uses'")
        if has_run and self.with_:
            raise ValueError("'with' is only valid on 'uses' steps")
        return self

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        if self.run and self.run.strip():
            return f"Run {self.run.strip().splitlines()[0]}"
        return f"Run {self.uses.strip()}"

    def to_action(self) -> Action:
        if self.run and self.run.strip():
            return ShellCommand(command=self.run)
        return PackagedTask(reference=self.uses.strip(), params=dict(self.with_))


class JobDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    runs_on: Any = Field(default=None, alias="runs-on")
    env: Dict[str, str] = Field(default_factory=dict)
    steps: List[StepDefinition]

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, v):
        return _stringify_mapping(v) if v is not None else {}

    @field_validator("steps")
    @classmethod
    def _non_empty(cls, steps: List[StepDefinition]) -> List[StepDefinition]:
        if not steps:
            raise ValueError("job must declare at least one step")
        return steps

    @property
    def runs_on_label(self) -> str:
        """First runs-on label; the descriptor is otherwise opaque."""
        if isinstance(self.runs_on, list):
            return str(self.runs_on[0]) if self.runs_on else ""
        return "" if self.runs_on is None else str(self.runs_on)


class BranchFilter(BaseModel):
    """
    Branch filter for one event kind.

    ``branches`` None means any branch. Entries are exact names or glob
    patterns (``release/*``). ``branches_ignore`` excludes matches.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    branches: Optional[List[str]] = None
    branches_ignore: List[str] = Field(default_factory=list, alias="branches-ignore")

    @field_validator("branches", "branches_ignore", mode="before")
    @classmethod
    def _as_list(cls, v):
        if isinstance(v, str):
            return [v]
        return v

    def matches(self, branch: str) -> bool:
        if any(fnmatch.fnmatchcase(branch, pat) for pat in self.branches_ignore):
            return False
        if self.branches is None:
            return True
        return any(fnmatch.fnmatchcase(branch, pat) for pat in self.branches)


class WorkflowDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = ""
    on: Dict[str, BranchFilter] = Field(default_factory=dict)
    env: Dict[str, str] = Field(default_factory=dict)
    jobs: Dict[str, JobDefinition]

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, v):
        return _stringify_mapping(v) if v is not None else {}

    @field_validator("jobs")
    @classmethod
    def _has_jobs(cls, jobs: Dict[str, JobDefinition]) -> Dict[str, JobDefinition]:
        if not jobs:
            raise ValueError("workflow must declare at least one job")
        return jobs

    def accepts(self, event_kind: str, branch: str) -> bool:
        branch_filter = self.on.get(event_kind)
        if branch_filter is None:
            return False
        return branch_filter.matches(branch)

    def build_pipelines(self) -> List["Pipeline"]:
        return [self.build_pipeline(job_name) for job_name in self.jobs]

    def build_pipeline(self, job_name: str) -> "Pipeline":
        job = self.jobs[job_name]
        steps = [
            Step(
                index=i,
                label=step_def.label,
                action=step_def.to_action(),
                env=dict(step_def.env),
                working_directory=step_def.working_directory,
            )
            for i, step_def in enumerate(job.steps, 1)
        ]
        return Pipeline(
            name=self.name or job_name,
            job=job_name,
            runs_on=job.runs_on_label,
            env={**self.env, **job.env},
            steps=steps,
        )


# ---------------------------------------------------------------------------
# Executable layer
# ---------------------------------------------------------------------------
class Step(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    label: str
    action: Action = Field(discriminator="kind")
    env: Dict[str, str] = Field(default_factory=dict)
    working_directory: str = ""


class Pipeline(BaseModel):
    """An ordered, non-empty sequence of Steps for one job."""
    model_config = ConfigDict(frozen=True)

    name: str
    job: str
    runs_on: str = ""
    env: Dict[str, str] = Field(default_factory=dict)
    steps: List[Step]

    @field_validator("steps")
    @classmethod
    def _non_empty(cls, steps: List[Step]) -> List[Step]:
        if not steps:
            raise ValueError("pipeline must contain at least one step")
        return steps

    @property
    def labels(self) -> List[str]:
        return [s.label for s in self.steps]
