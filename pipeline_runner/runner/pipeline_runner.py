"""
Pipeline Runner
===============
Executes a Pipeline's steps, in declared order, against one working copy and
records the Run's Outcome.

Contract:
    1. Each step's action is invoked against the working copy.
    2. Exit status and combined output are captured into a StepResult.
    3. The first step that does not succeed stops the Run: no later step is
       invoked, and Outcome = failure(index, label, output).
    4. Every step succeeded → Outcome = success.
    5. Cancellation of the awaiting task terminates the in-flight step and
       ends the Run in ``cancelled`` (never failed / succeeded).

Step success:
    exit code 0 and no infrastructure error. For packaged tasks with
    ``warnings_are_errors`` set, any warning annotation also fails the step.

Failure kinds:
    step         — the tool ran and reported failure
    environment  — missing secret, unknown task, missing toolchain (exit 127),
                   backend error

No retries, no skipping, no rollback.
"""
import time
import asyncio
import logging
from typing import Mapping, Optional

from pydantic import SecretStr

from pipeline_runner.core.config import GITHUB_REPOSITORY, KEEP_WORKSPACES, SOURCE_PATH, WORKSPACE_ROOT
from pipeline_runner.core.constants import FAILURE_KIND_ENVIRONMENT
from pipeline_runner.core.errors import EnvironmentFailure
from pipeline_runner.core.output_formatter import create_log_excerpt, format_outcome
from pipeline_runner.executor.base import ExecutionBackend, ExecutionContext
from pipeline_runner.executor.container_backend import DockerBackend
from pipeline_runner.executor.local_backend import LocalShellBackend
from pipeline_runner.executor.tasks import TaskRegistry, default_registry
from pipeline_runner.models.event import TriggerEvent
from pipeline_runner.models.pipeline import PackagedTask, Pipeline, Step
from pipeline_runner.models.run import Outcome, Run, RunOptions, RunState, StepResult
from pipeline_runner.services.secrets import SecretProvider, interpolate, mask, referenced_secrets
from pipeline_runner.services.workspace import create_working_copy, release_working_copy

logger = logging.getLogger(__name__)

# Shell "command not found"
_EXIT_COMMAND_NOT_FOUND = 127


class PipelineRunner:
    """
    Runs Pipelines.

    Parameters
    ----------
    backend : ExecutionBackend | None
        Fixed backend for every run. None picks one per run from
        ``RunOptions.backend``.
    registry : TaskRegistry | None
        Packaged-task adapters. Defaults to the built-in registry.
    secret_provider : SecretProvider | None
        Resolves secret handles at run start.
    workspace_root : str
        Parent directory of per-run working copies.
    """

    def __init__(
        self,
        backend: Optional[ExecutionBackend] = None,
        registry: Optional[TaskRegistry] = None,
        secret_provider: Optional[SecretProvider] = None,
        workspace_root: str = WORKSPACE_ROOT,
    ) -> None:
        self._backend = backend
        self._backends: dict[str, ExecutionBackend] = {}
        self.registry = registry or default_registry()
        self.secret_provider = secret_provider or SecretProvider()
        self.workspace_root = workspace_root

    def backend_for(self, options: RunOptions) -> ExecutionBackend:
        if self._backend is not None:
            return self._backend
        if options.backend not in self._backends:
            if options.backend == "docker":
                self._backends["docker"] = DockerBackend()
            else:
                self._backends["local"] = LocalShellBackend()
        return self._backends[options.backend]

    # ------------------------------------------------------------------
    # Full run: working copy → steps → release
    # ------------------------------------------------------------------
    async def run_pipeline(
        self,
        pipeline: Pipeline,
        run: Optional[Run] = None,
        source_path: str = SOURCE_PATH,
        event: Optional[TriggerEvent] = None,
        options: Optional[RunOptions] = None,
    ) -> Run:
        """Create an isolated working copy, execute the pipeline, release it."""
        if run is None:
            run = Run(
                pipeline_name=pipeline.name,
                job_name=pipeline.job,
                event=event,
                options=options or RunOptions(),
            )
        run.step_count = len(pipeline.steps)
        run.transition(RunState.RUNNING)
        logger.info("[RUN:%s] Started %s / %s (%d steps)", run.run_id, pipeline.name, pipeline.job, run.step_count)

        keep = run.options.keep_workspace or KEEP_WORKSPACES
        copy = asyncio.ensure_future(asyncio.to_thread(
            create_working_copy, run.run_id, source_path, self.workspace_root,
        ))
        try:
            working_directory = await asyncio.shield(copy)
        except EnvironmentFailure as e:
            first = pipeline.steps[0]
            logger.error("[RUN:%s] %s", run.run_id, e)
            run.finish(Outcome.environment_failure(first.index, first.label, str(e)))
            return run
        except asyncio.CancelledError:
            run.finish(Outcome.cancelled())
            await self._discard_working_copy(copy, keep)
            raise

        run.working_directory = working_directory
        try:
            await self.execute(pipeline, run, working_directory)
        finally:
            await asyncio.to_thread(release_working_copy, working_directory, keep)
        return run

    @staticmethod
    async def _discard_working_copy(copy: asyncio.Future, keep: bool) -> None:
        """Release a working copy whose creation was still in flight at cancellation."""
        await asyncio.wait({copy})
        if copy.cancelled() or copy.exception() is not None:
            return
        await asyncio.to_thread(release_working_copy, copy.result(), keep)

    # ------------------------------------------------------------------
    # Step loop
    # ------------------------------------------------------------------
    async def execute(self, pipeline: Pipeline, run: Run, working_directory: str) -> Outcome:
        """Run every step in order against ``working_directory`` (fail-fast)."""
        if run.state == RunState.PENDING:
            run.transition(RunState.RUNNING)
        run.step_count = len(pipeline.steps)
        run.working_directory = working_directory

        secrets = self.secret_provider.resolve(referenced_secrets(pipeline))
        try:
            return await self._execute_steps(pipeline, run, working_directory, secrets)
        finally:
            self.secret_provider.release(secrets)

    async def _execute_steps(
        self,
        pipeline: Pipeline,
        run: Run,
        working_directory: str,
        secrets: Mapping[str, SecretStr],
    ) -> Outcome:
        backend = self.backend_for(run.options)
        total = len(pipeline.steps)
        current: Optional[Step] = None

        try:
            for step in pipeline.steps:
                current = step
                logger.info("[RUN:%s] [STEP %d/%d] %s", run.run_id, step.index, total, step.label)

                result = await self._run_step(step, pipeline, run, working_directory, secrets, backend)
                run.step_results.append(result)

                if not result.success:
                    outcome = Outcome.failure(result)
                    logger.error(
                        "[RUN:%s] [STEP %d/%d] %s failed (exit %d, %s)\n%s",
                        run.run_id, step.index, total, step.label,
                        result.exit_code, result.failure_kind, create_log_excerpt(result.output, 20, 20),
                    )
                    break
                logger.info(
                    "[RUN:%s] [STEP %d/%d] %s passed in %.2fs",
                    run.run_id, step.index, total, step.label, result.duration_seconds,
                )
            else:
                outcome = Outcome.success()

        except asyncio.CancelledError:
            outcome = Outcome.cancelled(
                current.index if current else None,
                current.label if current else None,
            )
            run.finish(outcome)
            logger.warning("[RUN:%s] %s", run.run_id, format_outcome(outcome, total))
            raise

        run.finish(outcome)
        logger.info("[RUN:%s] %s in %.2fs", run.run_id, format_outcome(outcome, total), run.duration_seconds)
        return outcome

    async def _run_step(
        self,
        step: Step,
        pipeline: Pipeline,
        run: Run,
        working_directory: str,
        secrets: Mapping[str, SecretStr],
        backend: ExecutionBackend,
    ) -> StepResult:
        result = StepResult(index=step.index, label=step.label)
        start_time = time.monotonic()
        event = run.event

        try:
            env = {
                key: interpolate(value, secrets, pipeline.env)
                for key, value in {**pipeline.env, **step.env}.items()
            }
            context = ExecutionContext(
                run_id=run.run_id,
                working_directory=working_directory,
                env=env,
                runs_on=pipeline.runs_on,
                repository=(event.repository if event else None) or GITHUB_REPOSITORY or None,
                sha=event.sha if event else None,
            )

            if isinstance(step.action, PackagedTask):
                task = step.action.model_copy(update={
                    "params": {k: interpolate(v, secrets, env) for k, v in step.action.params.items()},
                })
                adapter = self.registry.get(task)
                execution = await adapter.run(task, context, backend, step.working_directory)
            else:
                command = interpolate(step.action.command, secrets, env)
                execution = await backend.run_command(command, context, step.working_directory)

        except EnvironmentFailure as e:
            result.error = str(e)
            result.output = f"{e}\n"
            result.failure_kind = FAILURE_KIND_ENVIRONMENT
            result.duration_seconds = round(time.monotonic() - start_time, 3)
            return result

        result.exit_code = execution.exit_code
        result.output = mask(execution.output)
        result.annotations = execution.annotations
        result.error = mask(execution.error) if execution.error else None
        result.duration_seconds = round(time.monotonic() - start_time, 3)
        result.success = execution.exit_code == 0 and execution.error is None

        if execution.error is not None or execution.exit_code == _EXIT_COMMAND_NOT_FOUND:
            result.failure_kind = FAILURE_KIND_ENVIRONMENT

        if (result.success
                and isinstance(step.action, PackagedTask)
                and run.options.warnings_are_errors
                and result.warning_count):
            result.success = False
            result.output += f"\n>>> {result.warning_count} warning(s) treated as errors\n"

        return result
