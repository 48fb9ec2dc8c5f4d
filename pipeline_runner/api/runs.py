"""
GET  /runs
GET  /runs/{run_id}
POST /runs/{run_id}/cancel

Progress polling and cancellation for Runs tracked by the RunManager.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from pipeline_runner.api.dependencies import get_run_manager
from pipeline_runner.core.config import CANCEL_GRACE_SECONDS
from pipeline_runner.core.output_formatter import create_log_excerpt, format_outcome
from pipeline_runner.models.run import Outcome, Run
from pipeline_runner.runner.run_manager import RunManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["Runs"])


class StepSummary(BaseModel):
    index: int
    label: str
    success: bool
    exit_code: int
    duration_seconds: float
    annotation_count: int
    log_excerpt: str


class RunSummary(BaseModel):
    run_id: str
    pipeline: str
    job: str
    branch: Optional[str]
    state: str
    step_count: int
    steps: List[StepSummary]
    outcome: Optional[Outcome]
    summary: str
    created_at: datetime
    finished_at: Optional[datetime]


def _summarize(run: Run) -> RunSummary:
    return RunSummary(
        run_id=run.run_id,
        pipeline=run.pipeline_name,
        job=run.job_name,
        branch=run.event.branch if run.event else None,
        state=run.state.value,
        step_count=run.step_count,
        steps=[
            StepSummary(
                index=r.index,
                label=r.label,
                success=r.success,
                exit_code=r.exit_code,
                duration_seconds=r.duration_seconds,
                annotation_count=len(r.annotations),
                log_excerpt=create_log_excerpt(r.output, 10, 10),
            )
            for r in run.step_results
        ],
        outcome=run.outcome,
        summary=format_outcome(run.outcome, run.step_count) if run.outcome else run.state.value,
        created_at=run.created_at,
        finished_at=run.finished_at,
    )


def _get_run(manager: RunManager, run_id: str) -> Run:
    try:
        return manager.get(run_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown run '{run_id}'")


@router.get("", response_model=List[RunSummary])
async def list_runs(manager: RunManager = Depends(get_run_manager)):
    return [_summarize(r) for r in manager.list_runs()]


@router.get("/{run_id}", response_model=RunSummary)
async def get_run(run_id: str, manager: RunManager = Depends(get_run_manager)):
    return _summarize(_get_run(manager, run_id))


@router.post("/{run_id}/cancel", response_model=RunSummary)
async def cancel_run(run_id: str, manager: RunManager = Depends(get_run_manager)):
    run = _get_run(manager, run_id)
    if not manager.cancel(run_id):
        raise HTTPException(status_code=409, detail=f"Run '{run_id}' already {run.state.value}")

    logger.info("[RUN:%s] Cancellation requested via API", run_id)
    run = await manager.wait(run_id, timeout=CANCEL_GRACE_SECONDS + 5)
    return _summarize(run)
