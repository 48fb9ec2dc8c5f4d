"""
Container Backend
=================
Runs each step command inside an ephemeral Docker sandbox container.

DOCKER STRATEGY:
    - One container per step (ephemeral).
    - The run's working copy is mounted read-write at /workspace, so build
      artifacts produced by one step are visible to the next.
    - No cloning inside the container.
    - Container destroyed after the step, whatever the result.
    - Image chosen from the job's runs-on label via RUNS_ON_IMAGE_MAP,
      falling back to the backend's default image.

Cancellation:
    The blocking docker SDK calls run in worker threads. When the awaiting
    task is cancelled the container is killed, removed, and CancelledError is
    re-raised.
"""
import time
import asyncio
import logging

import docker
from docker.errors import APIError, DockerException, ImageNotFound
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import ReadTimeout

from pipeline_runner.core.config import (
    DEFAULT_EXECUTION_TIMEOUT,
    DOCKER_IMAGE,
    RUNS_ON_IMAGE_MAP,
)
from pipeline_runner.executor.base import ExecutionBackend, ExecutionContext, ExecutionResult
from pipeline_runner.executor.local_backend import resolve_cwd

logger = logging.getLogger(__name__)

_CONTAINER_ROOT = "/workspace"

# Docker resource limits
_MEMORY_LIMIT = "4g"
_CPU_COUNT = 2


def image_for(runs_on: str, default: str = DOCKER_IMAGE) -> str:
    """Map a runs-on label to a sandbox image."""
    return RUNS_ON_IMAGE_MAP.get(runs_on, default)


class DockerBackend(ExecutionBackend):
    name = "docker"

    def __init__(self, client=None, default_image: str = DOCKER_IMAGE,
                 timeout_seconds: int = DEFAULT_EXECUTION_TIMEOUT) -> None:
        self._client = client
        self.default_image = default_image
        self.timeout_seconds = timeout_seconds

    @property
    def client(self):
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def _start(self, image: str, command: str, context: ExecutionContext, container_workdir: str):
        return self.client.containers.run(
            image=image,
            command=["bash", "-eo", "pipefail", "-c", command],
            volumes={
                context.working_directory: {"bind": _CONTAINER_ROOT, "mode": "rw"},
            },
            environment={"CI": "true", **context.env},
            working_dir=container_workdir,
            mem_limit=_MEMORY_LIMIT,
            nano_cpus=_CPU_COUNT * 1_000_000_000,
            name=f"pipeline-{context.run_id}-{int(time.time() * 1000)}",
            labels={"project": "pipeline-runner", "run_id": context.run_id},
            detach=True,
            stdout=True,
            stderr=True,
        )

    def _wait(self, container) -> int:
        wait_result = container.wait(timeout=self.timeout_seconds)
        return wait_result.get("StatusCode", -1)

    @staticmethod
    def _logs(container) -> str:
        log_bytes = container.logs(stdout=True, stderr=True)
        return log_bytes.decode("utf-8", errors="replace")

    @staticmethod
    def _kill(container) -> None:
        try:
            container.kill()
        except APIError:
            logger.warning("Container %s already stopped", container.short_id)

    @staticmethod
    def _remove(container) -> None:
        try:
            container.remove(force=True)
            logger.info("Container %s destroyed", container.short_id)
        except DockerException:
            logger.warning("Failed to remove container", exc_info=True)

    @staticmethod
    async def _started_container(start: asyncio.Future, context: ExecutionContext):
        """Wait for an in-flight start call and return its container, if any."""
        try:
            return await start
        except (DockerException, ReadTimeout, RequestsConnectionError) as e:
            logger.warning("[RUN:%s] Container start failed during cancellation: %s", context.run_id, e)
            return None

    async def run_command(self, command: str, context: ExecutionContext,
                          cwd: str = "") -> ExecutionResult:
        result = ExecutionResult()
        start_time = time.monotonic()
        image = image_for(context.runs_on, self.default_image)
        container = None

        try:
            resolve_cwd(context.working_directory, cwd)
        except ValueError as e:
            result.error = str(e)
            result.output = str(e)
            return result

        container_workdir = _CONTAINER_ROOT
        if cwd:
            container_workdir = f"{_CONTAINER_ROOT}/{cwd.strip('/')}"

        logger.info(
            "[RUN:%s] Starting container | image=%s | timeout=%ds | workdir=%s",
            context.run_id, image, self.timeout_seconds, container_workdir,
        )

        start = asyncio.ensure_future(
            asyncio.to_thread(self._start, image, command, context, container_workdir)
        )
        try:
            container = await asyncio.shield(start)
            result.exit_code = await asyncio.to_thread(self._wait, container)
            result.output = await asyncio.to_thread(self._logs, container)
            result.environment_metadata = {
                "backend": self.name,
                "image": image,
                "container_id": container.short_id,
                "timeout_applied": self.timeout_seconds,
            }

        except asyncio.CancelledError:
            if container is None:
                # Cancelled while the container was being created
                container = await self._started_container(start, context)
            if container is not None:
                logger.warning("[RUN:%s] Cancelled, killing container %s", context.run_id, container.short_id)
                await asyncio.to_thread(self._kill, container)
            raise

        except ImageNotFound:
            result.error = f"Docker image '{image}' not found"
            logger.error(result.error)

        except (ReadTimeout, RequestsConnectionError) as e:
            result.error = f"Container did not finish within {self.timeout_seconds}s: {e}"
            logger.error(result.error)

        except DockerException as e:
            result.error = f"Docker error: {e}"
            logger.error(result.error)

        finally:
            if container is not None:
                await asyncio.to_thread(self._remove, container)
            result.execution_time_seconds = round(time.monotonic() - start_time, 3)

        if result.error and not result.output:
            result.output = result.error

        logger.info(
            "[RUN:%s] Container step complete | exit=%d | time=%.2fs",
            context.run_id, result.exit_code, result.execution_time_seconds,
        )
        return result
