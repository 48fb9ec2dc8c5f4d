"""
Shared API dependencies.

The RunManager is built lazily on first use from WORKFLOW_PATH, so importing
the app never touches the filesystem. Tests override ``get_run_manager``
through ``app.dependency_overrides``.
"""
import logging
from functools import lru_cache

from pipeline_runner.core.config import (
    EXECUTION_BACKEND,
    KEEP_WORKSPACES,
    SOURCE_PATH,
    WARNINGS_ARE_ERRORS,
    WORKFLOW_PATH,
)
from pipeline_runner.models.run import RunOptions
from pipeline_runner.parser.workflow_reader import load_workflows
from pipeline_runner.runner.run_manager import RunManager

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_run_manager() -> RunManager:
    workflows = load_workflows(WORKFLOW_PATH)
    if not workflows:
        logger.warning("No workflows found under %s; every event will be ignored", WORKFLOW_PATH)
    return RunManager(
        workflows=workflows,
        source_path=SOURCE_PATH,
        default_options=RunOptions(
            warnings_are_errors=WARNINGS_ARE_ERRORS,
            backend=EXECUTION_BACKEND,
            keep_workspace=KEEP_WORKSPACES,
        ),
    )
