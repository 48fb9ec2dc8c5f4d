"""
Executor Base
=============
Shared types for execution backends.

BOUNDARY RULES:
    - A backend ONLY runs a command and observes it.
    - A backend NEVER decides step success; the runner does.
    - A backend NEVER raises for tool failures: non-zero exit codes and
      infrastructure errors come back inside ExecutionResult.
    - Cancellation is the one exception: asyncio.CancelledError propagates
      after the in-flight process / container has been terminated.
"""
import abc
from dataclasses import dataclass, field
from typing import Optional

from pipeline_runner.models.run import Annotation


@dataclass
class ExecutionResult:
    """
    Structured output from a single command or packaged task.

    Fields
    ------
    exit_code : int
        Process exit code (0 = success, -1 = never produced one).
    output : str
        Combined stdout + stderr, in the order the tool wrote them.
    execution_time_seconds : float
        Wall clock duration.
    annotations : list[Annotation]
        Diagnostics reported by a packaged task (empty for shell commands).
    error : str | None
        Infrastructure failure (missing shell, docker error). Not a build error.
    environment_metadata : dict
        Backend details: image, container id, shell used.
    """
    exit_code: int = -1
    output: str = ""
    execution_time_seconds: float = 0.0
    annotations: list[Annotation] = field(default_factory=list)
    error: Optional[str] = None
    environment_metadata: dict = field(default_factory=dict)

    @property
    def environment_failure(self) -> bool:
        return self.error is not None


@dataclass
class ExecutionContext:
    """What a step executes against: its working copy and environment."""
    run_id: str
    working_directory: str
    env: dict[str, str] = field(default_factory=dict)
    runs_on: str = ""
    repository: Optional[str] = None
    sha: Optional[str] = None


class ExecutionBackend(abc.ABC):
    """Runs one shell command inside a working copy."""

    name: str = "abstract"

    @abc.abstractmethod
    async def run_command(
        self,
        command: str,
        context: ExecutionContext,
        cwd: str = "",
    ) -> ExecutionResult:
        """Run ``command`` with ``cwd`` relative to the working copy."""
