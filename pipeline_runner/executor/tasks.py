"""
Packaged Tasks
==============
Adapters for ``uses:`` step references, resolved through a registry.

A reference ``owner/name@version`` is looked up by ``owner/name``
(lower-cased); the version is informational. Unknown references raise
UnknownTaskError, which the runner records as an environment failure.

Built-in adapters:
    actions/checkout          — populate the working copy
    actions-rs/cargo          — cargo <command> <args>
    actions-rs/clippy-check   — cargo clippy, diagnostics reported as annotations

Adapters run their commands through the run's ExecutionBackend, so they
behave the same on the local and docker backends.
"""
import os
import asyncio
import abc
import shlex
import logging
from typing import Optional

from pipeline_runner.core.errors import UnknownTaskError
from pipeline_runner.executor.base import ExecutionBackend, ExecutionContext, ExecutionResult
from pipeline_runner.models.pipeline import PackagedTask
from pipeline_runner.parser.diagnostics import parse_diagnostics, summarize
from pipeline_runner.services.annotation_reporter import AnnotationReporter

logger = logging.getLogger(__name__)


class TaskAdapter(abc.ABC):
    """Executes one kind of packaged task."""

    @abc.abstractmethod
    async def run(self, task: PackagedTask, context: ExecutionContext,
                  backend: ExecutionBackend, cwd: str = "") -> ExecutionResult:
        ...


# ---------------------------------------------------------------------------
# actions/checkout
# ---------------------------------------------------------------------------
class CheckoutTask(TaskAdapter):
    """
    Populate the working copy.

    When the workspace service already copied the source tree in, checkout
    is a no-op. Otherwise ``with.repository`` (or the event's repository) is
    cloned into the working copy, authenticated with ``with.token`` when
    given.
    """

    def __init__(self, server_url: str = "https://github.com") -> None:
        self.server_url = server_url.rstrip("/")

    def _clone_url(self, repository: str, token: str) -> str:
        if "://" in repository or repository.startswith("git@"):
            url = repository
        else:
            url = f"{self.server_url}/{repository}.git"
        if token and url.startswith("https://"):
            url = url.replace("https://", f"https://x-access-token:{token}@", 1)
        return url

    async def run(self, task, context, backend, cwd=""):
        if await asyncio.to_thread(os.listdir, context.working_directory):
            return ExecutionResult(
                exit_code=0,
                output=f"Working copy already populated at {context.working_directory}\n",
            )

        repository = task.params.get("repository") or context.repository
        if not repository:
            return ExecutionResult(
                error="checkout: no repository given and the working copy is empty",
                output="checkout: no repository given and the working copy is empty\n",
            )

        url = self._clone_url(repository, task.params.get("token", ""))
        command = f"git clone --quiet {shlex.quote(url)} ."
        ref = task.params.get("ref") or context.sha
        if ref:
            command += f" && git checkout --quiet {shlex.quote(ref)}"
        logger.info("[RUN:%s] Checking out %s", context.run_id, repository)
        return await backend.run_command(command, context)


# ---------------------------------------------------------------------------
# actions-rs/cargo
# ---------------------------------------------------------------------------
class CargoTask(TaskAdapter):
    async def run(self, task, context, backend, cwd=""):
        subcommand = task.params.get("command", "").strip()
        if not subcommand:
            return ExecutionResult(
                error="cargo: 'command' parameter is required",
                output="cargo: 'command' parameter is required\n",
            )
        toolchain = task.params.get("toolchain", "").strip()
        parts = ["cargo"]
        if toolchain:
            parts.append(f"+{toolchain}")
        parts.append(subcommand)
        command = " ".join(parts)
        args = task.params.get("args", "").strip()
        if args:
            command = f"{command} {args}"
        return await backend.run_command(command, context, cwd)


# ---------------------------------------------------------------------------
# actions-rs/clippy-check
# ---------------------------------------------------------------------------
class ClippyCheckTask(TaskAdapter):
    """
    Run clippy and report its diagnostics as annotations.

    The step's exit status is clippy's. Whether warning annotations also fail
    the step is the runner's warnings policy, not this adapter's.
    """

    def __init__(self, reporter: Optional[AnnotationReporter] = None) -> None:
        self.reporter = reporter or AnnotationReporter()

    async def run(self, task, context, backend, cwd=""):
        command = "cargo clippy --message-format=short"
        args = task.params.get("args", "").strip()
        if args:
            command = f"{command} {args}"

        result = await backend.run_command(command, context, cwd)
        if result.environment_failure:
            return result

        result.annotations = parse_diagnostics(result.output, context.working_directory)
        counts = summarize(result.annotations)
        logger.info(
            "[RUN:%s] clippy exit=%d | errors=%d warnings=%d",
            context.run_id, result.exit_code, counts["error"], counts["warning"],
        )

        status = await self.reporter.publish(
            result.annotations,
            name=task.params.get("name", "clippy"),
            token=task.params.get("token"),
            repository=context.repository,
            head_sha=context.sha,
            failed=result.exit_code != 0,
        )
        result.environment_metadata["annotation_report"] = status
        return result


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class TaskRegistry:
    def __init__(self) -> None:
        self._adapters: dict[str, TaskAdapter] = {}

    def register(self, name: str, adapter: TaskAdapter) -> None:
        self._adapters[name.strip().lower()] = adapter

    def get(self, task: PackagedTask) -> TaskAdapter:
        adapter = self._adapters.get(task.name)
        if adapter is None:
            raise UnknownTaskError(task.reference)
        return adapter

    def names(self) -> list[str]:
        return sorted(self._adapters)


def default_registry(reporter: Optional[AnnotationReporter] = None) -> TaskRegistry:
    registry = TaskRegistry()
    registry.register("actions/checkout", CheckoutTask())
    registry.register("actions-rs/cargo", CargoTask())
    registry.register("actions-rs/clippy-check", ClippyCheckTask(reporter))
    return registry
