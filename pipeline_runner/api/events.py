"""
POST /events
POST /webhooks/github

Accept a trigger event and start a Run for every job whose branch filter
matches. An event on a non-matching branch is accepted and creates no Run.
"""
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from pipeline_runner.api.dependencies import get_run_manager
from pipeline_runner.models.event import TriggerEvent
from pipeline_runner.models.run import RunOptions
from pipeline_runner.runner.run_manager import RunManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Events"])


class EventRequest(BaseModel):
    event: Literal["push", "pull_request"]
    branch: str
    head_branch: Optional[str] = None
    sha: Optional[str] = None
    repository: Optional[str] = None
    warnings_are_errors: Optional[bool] = None   # per-run override


class EventResponse(BaseModel):
    accepted: bool
    run_ids: List[str]


def _options_for(manager: RunManager, warnings_are_errors: Optional[bool]) -> RunOptions:
    if warnings_are_errors is None:
        return manager.default_options
    return manager.default_options.model_copy(update={"warnings_are_errors": warnings_are_errors})


@router.post("/events", response_model=EventResponse)
async def post_event(request: EventRequest, manager: RunManager = Depends(get_run_manager)):
    event = TriggerEvent(
        kind=request.event,
        branch=request.branch,
        head_branch=request.head_branch,
        sha=request.sha,
        repository=request.repository,
    )
    runs = await manager.dispatch(event, _options_for(manager, request.warnings_are_errors))
    return EventResponse(accepted=bool(runs), run_ids=[r.run_id for r in runs])


@router.post("/webhooks/github", response_model=EventResponse)
async def github_webhook(
    payload: dict,
    x_github_event: str = Header(...),
    manager: RunManager = Depends(get_run_manager),
):
    if x_github_event == "ping":
        return EventResponse(accepted=False, run_ids=[])

    event = TriggerEvent.from_github_payload(x_github_event, payload)
    if event is None:
        logger.info("Ignoring GitHub event '%s'", x_github_event)
        return EventResponse(accepted=False, run_ids=[])

    if not event.branch:
        raise HTTPException(status_code=422, detail="Event carries no branch")

    runs = await manager.dispatch(event)
    return EventResponse(accepted=bool(runs), run_ids=[r.run_id for r in runs])
