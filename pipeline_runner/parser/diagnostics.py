"""
Diagnostics Parser
==================
Converts compiler / linter output into structured Annotation objects for
packaged tasks that report annotations (e.g. the clippy-check task).

Recognised shapes:
    Short format (``--message-format=short``):
        src/lib.rs:10:5: warning: unused variable: `x`
        src/lib.rs:3:1: error[E0425]: cannot find value `y` in this scope
    Human format:
        warning: unused variable: `x`
         --> src/lib.rs:10:5

Summary lines (``warning: `crate` (lib) generated 3 warnings``,
``error: could not compile``) have no location and are not annotations.

Contract:
    - DETERMINISTIC: same output → same annotations, in output order.
    - Duplicates (same path, line, column, level, message) are dropped.
    - Tolerant: unrecognised lines are skipped, never raises.
"""
import re
import logging
from typing import Optional

from pipeline_runner.models.run import Annotation

logger = logging.getLogger(__name__)


_SHORT = re.compile(
    r"^(?P<path>[^\s:][^:]*):(?P<line>\d+):(?P<col>\d+):\s*"
    r"(?P<level>error|warning|note|help)(?:\[(?P<code>[^\]]+)\])?:\s*(?P<msg>.+)$"
)

_HEADER = re.compile(
    r"^(?P<level>error|warning)(?:\[(?P<code>[^\]]+)\])?:\s*(?P<msg>.+)$"
)

_LOCATION = re.compile(r"^\s*-->\s*(?P<path>[^:]+):(?P<line>\d+):(?P<col>\d+)")

_CLIPPY_LINT = re.compile(r"#\[(?:warn|deny)\((?P<lint>clippy::[\w_]+)\)\]|(?P<url>clippy/master/index\.html#(?P<anchor>[\w_]+))")


def _level(raw: str) -> str:
    if raw == "error":
        return "error"
    if raw == "warning":
        return "warning"
    return "notice"


def normalize_path(raw_path: str, workspace_path: str = "") -> str:
    """Workspace-relative path with forward slashes (container prefix stripped)."""
    path = raw_path.strip().strip("'\"").replace("\\", "/")
    if workspace_path:
        ws = workspace_path.replace("\\", "/").rstrip("/")
        if path.startswith(ws + "/"):
            path = path[len(ws) + 1:]
    if path.startswith("/workspace/"):
        path = path[len("/workspace/"):]
    if path.startswith("./"):
        path = path[2:]
    return path


def parse_diagnostics(output: str, workspace_path: str = "") -> list[Annotation]:
    """Extract annotations from tool output."""
    annotations: list[Annotation] = []
    seen: set[tuple] = set()
    pending: Optional[dict] = None
    located: Optional[Annotation] = None

    def _emit(entry: dict) -> Optional[Annotation]:
        key = (entry["path"], entry["line"], entry["column"], entry["level"], entry["message"])
        if key in seen:
            return None
        seen.add(key)
        annotation = Annotation(**entry)
        annotations.append(annotation)
        return annotation

    for raw_line in output.splitlines():
        line = raw_line.rstrip()

        m = _SHORT.match(line)
        if m:
            pending = None
            located = None
            _emit({
                "path": normalize_path(m.group("path"), workspace_path),
                "line": int(m.group("line")),
                "column": int(m.group("col")),
                "level": _level(m.group("level")),
                "message": m.group("msg").strip(),
                "code": m.group("code") or "",
            })
            continue

        m = _HEADER.match(line)
        if m:
            located = None
            pending = {
                "level": _level(m.group("level")),
                "message": m.group("msg").strip(),
                "code": m.group("code") or "",
            }
            continue

        if pending is not None:
            loc = _LOCATION.match(line)
            if loc:
                located = _emit({
                    **pending,
                    "path": normalize_path(loc.group("path"), workspace_path),
                    "line": int(loc.group("line")),
                    "column": int(loc.group("col")),
                })
                pending = None
                continue

        if located is not None and not located.code:
            # Lint name follows the location block in human output
            lint = _CLIPPY_LINT.search(line)
            if lint:
                located.code = lint.group("lint") or f"clippy::{lint.group('anchor')}"

    logger.debug("Parsed %d annotation(s) from %d chars of output", len(annotations), len(output))
    return annotations


def summarize(annotations: list[Annotation]) -> dict[str, int]:
    counts = {"error": 0, "warning": 0, "notice": 0}
    for a in annotations:
        counts[a.level] += 1
    return counts
