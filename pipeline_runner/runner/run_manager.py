"""
Run Manager
===========
Turns trigger events into Runs and tracks them until they finish.

Responsibilities:
    - Branch filtering: an event whose branch does not match a workflow's
      filter for that event kind creates no Run.
    - One Run per matching job; every Run executes as its own asyncio task
      with its own working copy.
    - Cancellation on request, and supersession: a newer event for the same
      workflow, job and branch cancels the older in-flight Run
      (CANCEL_SUPERSEDED_RUNS).

State lives in memory only; nothing survives a restart.
"""
import asyncio
import logging
from typing import Iterable, Optional

from pipeline_runner.core.config import CANCEL_SUPERSEDED_RUNS, RESULTS_DIR, SOURCE_PATH
from pipeline_runner.models.event import TriggerEvent
from pipeline_runner.models.pipeline import Pipeline, WorkflowDefinition
from pipeline_runner.models.run import Outcome, Run, RunOptions, RunState
from pipeline_runner.runner.pipeline_runner import PipelineRunner
from pipeline_runner.services.results_writer import ResultsWriter

logger = logging.getLogger(__name__)


def plan_runs(workflows: Iterable[WorkflowDefinition], event: TriggerEvent) -> list[Pipeline]:
    """Pipelines (one per job) that should run for ``event``."""
    pipelines: list[Pipeline] = []
    for workflow in workflows:
        if not workflow.accepts(event.kind, event.branch):
            logger.debug(
                "Workflow '%s' does not accept %s on '%s'", workflow.name, event.kind, event.branch,
            )
            continue
        pipelines.extend(workflow.build_pipelines())
    return pipelines


def _concurrency_key(pipeline: Pipeline, event: Optional[TriggerEvent]) -> tuple:
    if event is None:
        return (pipeline.name, pipeline.job, None, None)
    return (pipeline.name, pipeline.job, event.kind, event.head_branch or event.branch)


class RunManager:
    def __init__(
        self,
        workflows: list[WorkflowDefinition],
        runner: Optional[PipelineRunner] = None,
        source_path: str = SOURCE_PATH,
        default_options: Optional[RunOptions] = None,
        cancel_superseded: bool = CANCEL_SUPERSEDED_RUNS,
        results_dir: Optional[str] = RESULTS_DIR,
    ) -> None:
        self.workflows = workflows
        self.runner = runner or PipelineRunner()
        self.source_path = source_path
        self.default_options = default_options or RunOptions()
        self.cancel_superseded = cancel_superseded
        self.results_dir = results_dir
        self.runs: dict[str, Run] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._keys: dict[str, tuple] = {}

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    async def dispatch(self, event: TriggerEvent, options: Optional[RunOptions] = None) -> list[Run]:
        """Create and start a Run for every job that accepts ``event``."""
        pipelines = plan_runs(self.workflows, event)
        if not pipelines:
            logger.info("No pipeline accepts %s on '%s'; no run created", event.kind, event.branch)
            return []

        created: list[Run] = []
        for pipeline in pipelines:
            key = _concurrency_key(pipeline, event)
            if self.cancel_superseded:
                self._cancel_superseded(key)

            run = Run(
                pipeline_name=pipeline.name,
                job_name=pipeline.job,
                event=event,
                options=options or self.default_options,
                step_count=len(pipeline.steps),
            )
            self.runs[run.run_id] = run
            self._keys[run.run_id] = key
            task = asyncio.get_running_loop().create_task(
                self._execute(pipeline, run), name=f"run-{run.run_id}",
            )
            self._tasks[run.run_id] = task
            task.add_done_callback(lambda _t, run_id=run.run_id: self._tasks.pop(run_id, None))
            created.append(run)
            logger.info(
                "[RUN:%s] Queued %s / %s for %s on '%s'",
                run.run_id, pipeline.name, pipeline.job, event.kind, event.branch,
            )
        return created

    async def _execute(self, pipeline: Pipeline, run: Run) -> None:
        try:
            await self.runner.run_pipeline(pipeline, run, source_path=self.source_path)
        except asyncio.CancelledError:
            if not run.state.is_terminal:
                run.finish(Outcome.cancelled())
            raise
        except Exception as e:
            logger.exception("[RUN:%s] Runner crashed", run.run_id)
            if not run.state.is_terminal:
                if run.state == RunState.PENDING:
                    run.transition(RunState.RUNNING)
                run.finish(Outcome.environment_failure(None, None, f"Runner error: {type(e).__name__}: {e}"))
        finally:
            if run.state.is_terminal:
                self._write_results(run)

    def _write_results(self, run: Run) -> None:
        if not self.results_dir:
            return
        try:
            ResultsWriter.write_results(run, self.results_dir)
        except OSError as e:
            logger.error("[RUN:%s] Failed to write results: %s", run.run_id, e)

    def _cancel_superseded(self, key: tuple) -> None:
        for run_id, task in list(self._tasks.items()):
            if self._keys.get(run_id) == key and not task.done():
                logger.info("[RUN:%s] Superseded by a newer event; cancelling", run_id)
                self.cancel(run_id)

    # ------------------------------------------------------------------
    # Queries / control
    # ------------------------------------------------------------------
    def get(self, run_id: str) -> Run:
        return self.runs[run_id]

    def list_runs(self) -> list[Run]:
        return sorted(self.runs.values(), key=lambda r: r.created_at)

    def cancel(self, run_id: str) -> bool:
        """
        Request cancellation.

        Returns False when the run is already terminal. A pending run is
        marked cancelled immediately; a running one becomes cancelled once
        its in-flight step has been terminated.
        """
        run = self.runs[run_id]
        if run.state.is_terminal:
            return False
        if run.state == RunState.PENDING:
            # The task never starts
            run.finish(Outcome.cancelled())
            self._write_results(run)
        task = self._tasks.get(run_id)
        if task is not None:
            task.cancel()
        return True

    async def wait(self, run_id: str, timeout: Optional[float] = None) -> Run:
        """Wait until the run's task has finished (or ``timeout`` elapses)."""
        run = self.runs[run_id]
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return run

    async def shutdown(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        for run_id in list(self._tasks):
            self.cancel(run_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
