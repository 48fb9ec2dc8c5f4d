"""
Workspace Service
=================
Manages per-run working copies on the host machine.

Philosophy:
    - Every Run gets its OWN working copy under WORKSPACE_ROOT/<run_id>/.
    - Runs never share a directory, so concurrent Runs cannot observe each
      other's side effects.
    - The working copy is released when the Run reaches a terminal state,
      unless KEEP_WORKSPACES is set.
"""
import os
import shutil
import logging

from pipeline_runner.core.config import KEEP_WORKSPACES, WORKSPACE_ROOT
from pipeline_runner.core.constants import WORKSPACE_IGNORE
from pipeline_runner.core.errors import EnvironmentFailure

logger = logging.getLogger(__name__)


def working_copy_path(run_id: str, root: str = WORKSPACE_ROOT) -> str:
    return os.path.abspath(os.path.join(root, run_id))


def create_working_copy(run_id: str, source_path: str = "", root: str = WORKSPACE_ROOT) -> str:
    """
    Create an isolated working copy for a run.

    Parameters
    ----------
    run_id : str
        Unique run identifier; becomes the directory name.
    source_path : str
        Source tree to copy. Empty means an empty working copy (a checkout
        step is expected to populate it).
    root : str
        Parent directory of all working copies.

    Returns
    -------
    str
        Absolute path to the working copy.
    """
    dest_path = working_copy_path(run_id, root)
    if os.path.exists(dest_path):
        raise EnvironmentFailure(f"Working copy already exists for run {run_id}: {dest_path}")

    os.makedirs(root, exist_ok=True)

    if not source_path:
        os.makedirs(dest_path)
        logger.info("[RUN:%s] Created empty working copy at %s", run_id, dest_path)
        return dest_path

    source = os.path.abspath(source_path)
    if not os.path.isdir(source):
        raise EnvironmentFailure(f"Source tree not found: {source}")

    # Never copy the workspace root into itself
    ignore_names = set(WORKSPACE_IGNORE)
    ignore_names.add(os.path.basename(os.path.abspath(root)))

    try:
        shutil.copytree(
            source,
            dest_path,
            ignore=shutil.ignore_patterns(*sorted(ignore_names)),
            symlinks=True,
        )
    except (OSError, shutil.Error) as e:
        raise EnvironmentFailure(f"Could not create working copy: {e}") from e

    logger.info("[RUN:%s] Copied %s into working copy %s", run_id, source, dest_path)
    return dest_path


def release_working_copy(path: str, keep: bool = KEEP_WORKSPACES) -> None:
    """Remove a run's working copy."""
    if not path or not os.path.exists(path):
        return
    if keep:
        logger.info("Keeping working copy %s", path)
        return
    shutil.rmtree(path, ignore_errors=True)
    logger.info("Released working copy %s", path)


def clean_workspace_root(root: str = WORKSPACE_ROOT) -> None:
    """Wipe every working copy (use with caution)."""
    if os.path.exists(root):
        logger.info("Cleaning workspace root: %s", root)
        shutil.rmtree(root)
    os.makedirs(root, exist_ok=True)
