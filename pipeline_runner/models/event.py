"""
Trigger Event Model
Pydantic model for a push / pull-request event that may start Runs.
"""
from typing import Literal, Optional

from pydantic import BaseModel

from pipeline_runner.core.constants import EVENT_PULL_REQUEST, EVENT_PUSH


class TriggerEvent(BaseModel):
    kind: Literal["push", "pull_request"]
    branch: str
    head_branch: Optional[str] = None     # pull requests: source branch
    sha: Optional[str] = None
    repository: Optional[str] = None

    @classmethod
    def from_github_payload(cls, event_name: str, payload: dict) -> Optional["TriggerEvent"]:
        """
        Build an event from a GitHub webhook payload.

        Push events carry ``refs/heads/<branch>``; tag pushes return None.
        Pull-request events are filtered on the PR's base branch.
        Any other event name returns None.
        """
        repository = (payload.get("repository") or {}).get("full_name")

        if event_name == EVENT_PUSH:
            ref = payload.get("ref", "")
            if not ref.startswith("refs/heads/"):
                return None
            return cls(
                kind=EVENT_PUSH,
                branch=ref[len("refs/heads/"):],
                sha=payload.get("after"),
                repository=repository,
            )

        if event_name == EVENT_PULL_REQUEST:
            pr = payload.get("pull_request") or {}
            base = pr.get("base") or {}
            head = pr.get("head") or {}
            if not base.get("ref"):
                return None
            return cls(
                kind=EVENT_PULL_REQUEST,
                branch=base["ref"],
                head_branch=head.get("ref"),
                sha=head.get("sha"),
                repository=repository,
            )

        return None
