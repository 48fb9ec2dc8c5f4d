"""
Workflow Reader
===============
Loads workflow YAML documents (GitHub Actions layout) into validated
``WorkflowDefinition`` models.

Strategy:
    The workflow document is the source of truth: name, triggers, jobs and
    their ordered steps. Everything is validated at load time, so a broken
    document is rejected before any Run exists.

Supported trigger forms:
    on: push
    on: [push, pull_request]
    on:
      push:
        branches: [ main ]
      pull_request:
        branches: [ main ]

Only push and pull_request triggers are kept; other event kinds
(schedule, workflow_dispatch, ...) are ignored with a debug log.

Deterministic:
    Same document → same WorkflowDefinition, always.
"""
import os
import logging
from typing import Any

import yaml
from pydantic import ValidationError

from pipeline_runner.core.constants import EVENT_KINDS
from pipeline_runner.core.errors import PipelineDefinitionError
from pipeline_runner.models.pipeline import WorkflowDefinition

logger = logging.getLogger(__name__)

_WORKFLOW_SUFFIXES = (".yml", ".yaml")


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------
def discover_workflows(path: str) -> list[str]:
    """
    Return workflow files found at ``path``.

    A file path is returned as-is. A directory is scanned (non-recursively)
    for *.yml / *.yaml files in sorted order.
    """
    if os.path.isfile(path):
        return [path]
    if not os.path.isdir(path):
        return []
    return [
        os.path.join(path, fname)
        for fname in sorted(os.listdir(path))
        if fname.endswith(_WORKFLOW_SUFFIXES)
    ]


# ---------------------------------------------------------------------------
# Trigger normalisation
# ---------------------------------------------------------------------------
def normalize_triggers(raw: Any, source: str = "") -> dict[str, dict]:
    """Convert every accepted ``on:`` form into {event_kind: filter_mapping}."""
    if raw is None:
        return {}
    if isinstance(raw, str):
        raw = [raw]
    if isinstance(raw, list):
        raw = {str(kind): None for kind in raw}
    if not isinstance(raw, dict):
        raise PipelineDefinitionError("'on' must be a string, list or mapping", source)

    triggers: dict[str, dict] = {}
    for kind, branch_filter in raw.items():
        kind = str(kind)
        if kind not in EVENT_KINDS:
            logger.debug("Ignoring unsupported trigger '%s' in %s", kind, source or "<string>")
            continue
        if branch_filter is None:
            triggers[kind] = {}
        elif isinstance(branch_filter, dict):
            triggers[kind] = branch_filter
        else:
            raise PipelineDefinitionError(f"trigger '{kind}' must be a mapping", source)
    return triggers


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------
def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_workflow(content: str, source: str = "") -> WorkflowDefinition:
    """
    Parse and validate one workflow document.

    Raises
    ------
    PipelineDefinitionError
        YAML syntax error, non-mapping document, missing jobs, a job with no
        steps, or a step without exactly one of run / uses.
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise PipelineDefinitionError(f"invalid YAML: {e}", source) from e

    if not isinstance(data, dict):
        raise PipelineDefinitionError("workflow document must be a mapping", source)

    # YAML 1.1 reads a bare `on` key as boolean True
    raw_on = data.pop("on", data.pop(True, None))
    data["on"] = normalize_triggers(raw_on, source)

    if not isinstance(data.get("jobs"), dict):
        raise PipelineDefinitionError("'jobs' must be a mapping of job name to job", source)

    try:
        workflow = WorkflowDefinition.model_validate(data)
    except ValidationError as e:
        raise PipelineDefinitionError(_format_validation_error(e), source) from e

    logger.info(
        "Loaded workflow '%s' from %s | jobs=%s | triggers=%s",
        workflow.name, source or "<string>", list(workflow.jobs), list(workflow.on),
    )
    return workflow


def load_workflow(path: str) -> WorkflowDefinition:
    """Read and parse a single workflow file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise PipelineDefinitionError(f"cannot read workflow: {e}", path) from e
    return parse_workflow(content, source=path)


def load_workflows(path: str) -> list[WorkflowDefinition]:
    """
    Discover and parse every workflow at ``path``.

    Any invalid document aborts loading.
    """
    files = discover_workflows(path)
    workflows = [load_workflow(f) for f in files]
    logger.info(
        "Found %d workflow(s) with %d total jobs under %s",
        len(workflows), sum(len(w.jobs) for w in workflows), path,
    )
    return workflows
