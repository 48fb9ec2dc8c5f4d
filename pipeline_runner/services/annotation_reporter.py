"""
Annotation Reporter
===================
Publishes annotations from a packaged lint task to the GitHub Checks API.

One check run is created per step. GitHub accepts at most 50 annotations per
request, so the first batch goes with the create call and the rest are
appended with PATCH calls.

Reporting is best effort: HTTP problems are logged and returned as a
status string, they never change the step's own result.
"""
import logging
from typing import Literal, Optional

import httpx

from pipeline_runner.core.config import GITHUB_API_URL
from pipeline_runner.models.run import Annotation

logger = logging.getLogger(__name__)

ReportStatus = Literal["published", "skipped", "error"]

_BATCH_SIZE = 50

_LEVEL_MAP = {
    "error": "failure",
    "warning": "warning",
    "notice": "notice",
}


def to_check_annotation(annotation: Annotation) -> dict:
    line = max(annotation.line, 1)
    payload = {
        "path": annotation.path or ".",
        "start_line": line,
        "end_line": line,
        "annotation_level": _LEVEL_MAP[annotation.level],
        "message": annotation.message,
    }
    if annotation.code:
        payload["title"] = annotation.code
    return payload


def _conclusion(annotations: list[Annotation], failed: bool) -> str:
    if failed or any(a.level == "error" for a in annotations):
        return "failure"
    if annotations:
        return "neutral"
    return "success"


def _summary(annotations: list[Annotation]) -> str:
    errors = sum(1 for a in annotations if a.level == "error")
    warnings = sum(1 for a in annotations if a.level == "warning")
    return f"{errors} error(s), {warnings} warning(s)"


class AnnotationReporter:
    """Posts annotations as a GitHub check run."""

    def __init__(self, api_url: str = GITHUB_API_URL, timeout: float = 20.0) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def _headers(self, token: str) -> dict:
        return {
            "Accept": "application/vnd.github+json",
            "User-Agent": "pipeline-runner",
            "Authorization": f"token {token}",
        }

    async def publish(
        self,
        annotations: list[Annotation],
        *,
        name: str,
        token: Optional[str],
        repository: Optional[str],
        head_sha: Optional[str],
        failed: bool = False,
    ) -> ReportStatus:
        if not token or not repository or not head_sha:
            logger.info(
                "Annotation reporting skipped for '%s' (token/repository/sha missing) | %s",
                name, _summary(annotations),
            )
            for a in annotations:
                logger.info("  %s:%d:%d [%s] %s", a.path, a.line, a.column, a.level, a.message)
            return "skipped"

        url = f"{self.api_url}/repos/{repository}/check-runs"
        batches = [annotations[i:i + _BATCH_SIZE] for i in range(0, len(annotations), _BATCH_SIZE)] or [[]]
        output = {"title": name, "summary": _summary(annotations)}

        try:
            async with httpx.AsyncClient(headers=self._headers(token), timeout=self.timeout) as client:
                response = await client.post(url, json={
                    "name": name,
                    "head_sha": head_sha,
                    "status": "completed",
                    "conclusion": _conclusion(annotations, failed),
                    "output": {**output, "annotations": [to_check_annotation(a) for a in batches[0]]},
                })
                response.raise_for_status()
                check_run_id = response.json().get("id")

                for batch in batches[1:]:
                    response = await client.patch(f"{url}/{check_run_id}", json={
                        "output": {**output, "annotations": [to_check_annotation(a) for a in batch]},
                    })
                    response.raise_for_status()

        except httpx.HTTPStatusError as http_err:
            logger.error(
                "Annotation publishing failed — HTTP %d: %s",
                http_err.response.status_code, http_err,
            )
            return "error"
        except httpx.HTTPError as e:
            logger.error("Annotation publishing failed: %s", e)
            return "error"

        logger.info("Published %d annotation(s) to %s as '%s'", len(annotations), repository, name)
        return "published"
