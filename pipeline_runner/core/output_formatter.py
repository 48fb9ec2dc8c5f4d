"""
Output Formatter
================
Single place for every human-readable string the runner prints about a Run.

DETERMINISM CONTRACT:
  - Never reads environment variables.
  - Given the same inputs, always returns the same string.

Outcome lines:
  PASSED (4/4 steps)
  FAILED at step 2/4 (Static analysis) → exit 101
  FAILED at step 3/4 (Build) → environment: Secret 'TOKEN' is not available
  CANCELLED at step 2/4 (Static analysis)
"""
from pipeline_runner.core.constants import ARROW
from pipeline_runner.models.run import Outcome, Run, StepResult


_EXCERPT_HEAD_LINES = 30
_EXCERPT_TAIL_LINES = 30


def create_log_excerpt(full_log: str,
                       head: int = _EXCERPT_HEAD_LINES,
                       tail: int = _EXCERPT_TAIL_LINES) -> str:
    """
    Create an abbreviated log showing the first and last N lines.

    If the log is short enough, returns it as-is.
    """
    lines = full_log.splitlines()
    total = len(lines)

    if total <= head + tail:
        return full_log

    omitted = total - head - tail
    return "\n".join(
        lines[:head]
        + [f"\n... ({omitted} lines omitted) ...\n"]
        + lines[-tail:]
    )


def format_step_line(result: StepResult, total: int) -> str:
    status = "ok" if result.success else "FAILED"
    line = f"[{result.index}/{total}] {result.label} {ARROW} {status} ({result.duration_seconds:.2f}s)"
    if result.annotations:
        line += f" [{len(result.annotations)} annotation(s)]"
    return line


def format_outcome(outcome: Outcome, total: int) -> str:
    if outcome.status == "success":
        return f"PASSED ({total}/{total} steps)"

    where = ""
    if outcome.step_index is not None:
        where = f" at step {outcome.step_index}/{total} ({outcome.step_label})"

    if outcome.status == "cancelled":
        return f"CANCELLED{where}"

    if outcome.kind == "environment":
        first_line = outcome.output.strip().splitlines()[0] if outcome.output.strip() else "unavailable"
        return f"FAILED{where} {ARROW} environment: {first_line}"
    return f"FAILED{where} {ARROW} exit {outcome.exit_code}"


def format_run_summary(run: Run) -> str:
    """Multi-line summary: one line per executed step plus the outcome."""
    lines = [f"Run {run.run_id} | {run.pipeline_name} / {run.job_name}"]
    for result in run.step_results:
        lines.append("  " + format_step_line(result, run.step_count))
    if run.outcome is not None:
        lines.append(format_outcome(run.outcome, run.step_count))
    else:
        lines.append(run.state.value.upper())
    return "\n".join(lines)
