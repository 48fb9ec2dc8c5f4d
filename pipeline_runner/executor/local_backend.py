"""
Local Backend
=============
Runs shell commands as host subprocesses inside the run's working copy.

Shell semantics match hosted runners: ``bash --noprofile --norc -eo pipefail``
when bash exists, ``sh -e`` otherwise. stderr is merged into stdout so the
captured output keeps the tool's own interleaving.

Cancellation:
    The command runs in its own process group. When the awaiting task is
    cancelled the whole group receives SIGTERM, then SIGKILL after
    CANCEL_GRACE_SECONDS, and CancelledError is re-raised.
"""
import os
import time
import signal
import shutil
import asyncio
import logging
from typing import Optional

from pipeline_runner.core.config import CANCEL_GRACE_SECONDS
from pipeline_runner.executor.base import ExecutionBackend, ExecutionContext, ExecutionResult

logger = logging.getLogger(__name__)


def _shell_argv(command: str) -> list[str]:
    bash = shutil.which("bash")
    if bash:
        return [bash, "--noprofile", "--norc", "-eo", "pipefail", "-c", command]
    return ["sh", "-e", "-c", command]


def resolve_cwd(working_directory: str, cwd: str) -> str:
    """Join ``cwd`` onto the working copy, refusing paths that escape it."""
    root = os.path.realpath(working_directory)
    if not cwd:
        return root
    target = os.path.realpath(os.path.join(root, cwd))
    if target != root and not target.startswith(root + os.sep):
        raise ValueError(f"working-directory '{cwd}' escapes the working copy")
    return target


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass


class LocalShellBackend(ExecutionBackend):
    name = "local"

    def __init__(self, grace_seconds: float = CANCEL_GRACE_SECONDS,
                 inherit_env: bool = True) -> None:
        self.grace_seconds = grace_seconds
        self.inherit_env = inherit_env

    def _build_env(self, context: ExecutionContext) -> dict[str, str]:
        env = dict(os.environ) if self.inherit_env else {}
        env["CI"] = "true"
        env.update(context.env)
        return env

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        logger.warning("Terminating process group %d", proc.pid)
        _signal_group(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("Process group %d ignored SIGTERM, killing", proc.pid)
            _signal_group(proc, signal.SIGKILL)
            await proc.wait()

    async def run_command(self, command: str, context: ExecutionContext,
                          cwd: str = "") -> ExecutionResult:
        result = ExecutionResult()
        start_time = time.monotonic()
        proc: Optional[asyncio.subprocess.Process] = None

        try:
            workdir = resolve_cwd(context.working_directory, cwd)
        except ValueError as e:
            result.error = str(e)
            result.output = str(e)
            return result

        argv = _shell_argv(command)
        result.environment_metadata = {"backend": self.name, "shell": argv[0], "cwd": workdir}

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=workdir,
                env=self._build_env(context),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
            stdout, _ = await proc.communicate()
            result.exit_code = proc.returncode
            result.output = stdout.decode("utf-8", errors="replace")

        except asyncio.CancelledError:
            if proc is not None:
                await self._terminate(proc)
            raise

        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            result.error = f"Cannot start shell: {e}"
            result.output = result.error
            logger.error(result.error)

        finally:
            result.execution_time_seconds = round(time.monotonic() - start_time, 3)

        logger.debug(
            "[RUN:%s] local exit=%d time=%.2fs cwd=%s",
            context.run_id, result.exit_code, result.execution_time_seconds, workdir,
        )
        return result
