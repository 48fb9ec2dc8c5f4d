"""
Command-line entry point.

    pipeline-runner run WORKFLOW [--job NAME] [--source DIR]
                    [--event push|pull_request] [--branch NAME]
                    [--warnings-are-errors] [--backend local|docker]
                    [--workspace-root DIR] [--results-dir DIR]
    pipeline-runner serve [--host HOST] [--port PORT]

Exit status: 0 success, 1 failure, 2 no job matched, 130 cancelled.
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional

from pipeline_runner.core.config import (
    EXECUTION_BACKEND,
    KEEP_WORKSPACES,
    RESULTS_DIR,
    SOURCE_PATH,
    WARNINGS_ARE_ERRORS,
    WORKSPACE_ROOT,
)
from pipeline_runner.core.constants import (
    EVENT_KINDS,
    EXIT_CANCELLED,
    EXIT_FAILURE,
    EXIT_NO_RUN,
    EXIT_SUCCESS,
)
from pipeline_runner.core.errors import PipelineDefinitionError
from pipeline_runner.core.output_formatter import format_run_summary
from pipeline_runner.models.event import TriggerEvent
from pipeline_runner.models.pipeline import Pipeline
from pipeline_runner.models.run import Outcome, Run, RunOptions, RunState
from pipeline_runner.parser.workflow_reader import load_workflow
from pipeline_runner.runner.pipeline_runner import PipelineRunner
from pipeline_runner.services.results_writer import ResultsWriter
from pipeline_runner.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _select_pipelines(args: argparse.Namespace) -> list[Pipeline]:
    workflow = load_workflow(args.workflow)
    if args.job:
        if args.job not in workflow.jobs:
            raise PipelineDefinitionError(f"no job named '{args.job}'", args.workflow)
        jobs = [args.job]
    else:
        jobs = list(workflow.jobs)

    if args.branch and not workflow.accepts(args.event, args.branch):
        logger.warning("Workflow does not run for %s on '%s'", args.event, args.branch)
        return []
    return [workflow.build_pipeline(job) for job in jobs]


async def _run_all(pipelines: list[Pipeline], args: argparse.Namespace, runs: list[Run]) -> None:
    runner = PipelineRunner(workspace_root=args.workspace_root)
    options = RunOptions(
        warnings_are_errors=args.warnings_are_errors,
        backend=args.backend,
        keep_workspace=args.keep_workspace,
    )
    event = TriggerEvent(kind=args.event, branch=args.branch) if args.branch else None

    for pipeline in pipelines:
        run = Run(pipeline_name=pipeline.name, job_name=pipeline.job, event=event, options=options)
        runs.append(run)
        await runner.run_pipeline(pipeline, run, source_path=args.source)
        if run.state != RunState.SUCCEEDED:
            break


def cmd_run(args: argparse.Namespace) -> int:
    try:
        pipelines = _select_pipelines(args)
    except PipelineDefinitionError as e:
        logger.error("%s", e)
        print(f"error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    if not pipelines:
        return EXIT_NO_RUN

    runs: list[Run] = []
    try:
        asyncio.run(_run_all(pipelines, args, runs))
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        for run in runs:
            if not run.state.is_terminal:
                run.finish(Outcome.cancelled())

    for run in runs:
        print(format_run_summary(run))
        if args.results_dir:
            ResultsWriter.write_results(run, args.results_dir)

    last = runs[-1] if runs else None
    if last is None or last.state == RunState.CANCELLED:
        return EXIT_CANCELLED
    if last.state == RunState.SUCCEEDED:
        return EXIT_SUCCESS
    return EXIT_FAILURE


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("main:app", host=args.host, port=args.port)
    return EXIT_SUCCESS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pipeline-runner", description="Run staged build-validation pipelines")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a workflow against a local source tree")
    run.add_argument("workflow", help="Path to the workflow YAML file")
    run.add_argument("--job", help="Only run this job")
    run.add_argument("--source", default=SOURCE_PATH, help="Source tree copied into the working copy")
    run.add_argument("--event", choices=EVENT_KINDS, default="push", help="Event kind used for the branch filter")
    run.add_argument("--branch", help="Branch name; when given the workflow's branch filter applies")
    run.add_argument("--warnings-are-errors", action="store_true", default=WARNINGS_ARE_ERRORS,
                     help="Fail packaged lint steps that report warnings")
    run.add_argument("--backend", choices=("local", "docker"), default=EXECUTION_BACKEND)
    run.add_argument("--keep-workspace", action="store_true", default=KEEP_WORKSPACES)
    run.add_argument("--workspace-root", default=WORKSPACE_ROOT, help="Parent directory of per-run working copies")
    run.add_argument("--results-dir", default=RESULTS_DIR, help="Write <run_id>.json here ('' to disable)")
    run.set_defaults(func=cmd_run)

    serve = sub.add_parser("serve", help="Start the HTTP service")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.INFO)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
