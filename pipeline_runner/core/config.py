"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    WORKFLOW_PATH           — Workflow file or directory loaded by the server
                              (default: .github/workflows)
    SOURCE_PATH             — Source tree copied into every working copy (default: .)
    WORKSPACE_ROOT          — Parent directory for per-run working copies
    EXECUTION_BACKEND       — "local" (subprocess) or "docker" (sandbox container)
    DOCKER_IMAGE            — Default sandbox image (default: rust:1.77-slim)
    RUNS_ON_IMAGE_UBUNTU_*  — Per-label image override (e.g. RUNS_ON_IMAGE_UBUNTU_LATEST)
    WARNINGS_ARE_ERRORS     — Fail packaged lint steps on warning annotations (default: false)
    CANCEL_SUPERSEDED_RUNS  — Cancel an older in-flight run of the same job/branch (default: true)
    KEEP_WORKSPACES         — Keep working copies after a run finishes (default: false)
    RESULTS_DIR             — Directory for <run_id>.json reports (default: results)
    GITHUB_TOKEN            — Used by the annotation reporter (Checks API)
    GITHUB_REPOSITORY       — owner/repo the annotations are posted to
    SECRET_PREFIX           — Env prefix holding secret values (default: PIPELINE_SECRET_)

Warnings Policy:
    WARNINGS_ARE_ERRORS only affects annotations reported by packaged tasks
    (e.g. a clippy-check step). Shell steps are judged by exit status alone;
    pass -Dwarnings to the tool itself to make warnings fatal there.

Execution Timeout:
    The runner does not time out steps. DEFAULT_EXECUTION_TIMEOUT is only the
    wait ceiling for a sandbox container on the docker backend.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

WORKFLOW_PATH = os.getenv("WORKFLOW_PATH", ".github/workflows")
SOURCE_PATH = os.getenv("SOURCE_PATH", ".")
WORKSPACE_ROOT = os.getenv("WORKSPACE_ROOT", os.path.join(_PROJECT_ROOT, "workspace"))
RESULTS_DIR = os.getenv("RESULTS_DIR", "results")

EXECUTION_BACKEND = os.getenv("EXECUTION_BACKEND", "local")
DOCKER_IMAGE = os.getenv("DOCKER_IMAGE", "rust:1.77-slim")

# runs-on label → sandbox image, set per label via env var
# (e.g. RUNS_ON_IMAGE_UBUNTU_LATEST=rust:1.80). Unset labels use the
# backend's default image.
_RUNS_ON_IMAGE_ENV = {
    "ubuntu-latest": "RUNS_ON_IMAGE_UBUNTU_LATEST",
    "ubuntu-22.04": "RUNS_ON_IMAGE_UBUNTU_22_04",
    "ubuntu-20.04": "RUNS_ON_IMAGE_UBUNTU_20_04",
}
RUNS_ON_IMAGE_MAP: dict[str, str] = {
    label: os.environ[var] for label, var in _RUNS_ON_IMAGE_ENV.items() if os.getenv(var)
}

# Container wait ceiling (docker backend only)
DEFAULT_EXECUTION_TIMEOUT = int(os.getenv("DEFAULT_EXECUTION_TIMEOUT", 1800))

# Grace period between SIGTERM and SIGKILL when a step is cancelled
CANCEL_GRACE_SECONDS = float(os.getenv("CANCEL_GRACE_SECONDS", 5))

WARNINGS_ARE_ERRORS = _env_flag("WARNINGS_ARE_ERRORS", "false")
CANCEL_SUPERSEDED_RUNS = _env_flag("CANCEL_SUPERSEDED_RUNS", "true")
KEEP_WORKSPACES = _env_flag("KEEP_WORKSPACES", "false")

# Annotation reporter
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")
GITHUB_REPOSITORY = os.getenv("GITHUB_REPOSITORY", "")
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")

# Secret provider
SECRET_PREFIX = os.getenv("SECRET_PREFIX", "PIPELINE_SECRET_")
