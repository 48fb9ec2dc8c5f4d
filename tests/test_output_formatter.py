"""
Unit Tests — Output Formatter & Results Writer
==============================================
Exact-string checks for outcome lines, log excerpts and the JSON report.
"""
import json
import pytest

from pipeline_runner.core.constants import ARROW
from pipeline_runner.core.output_formatter import (
    create_log_excerpt,
    format_outcome,
    format_run_summary,
    format_step_line,
)
from pipeline_runner.models.run import Annotation, Outcome, Run, RunState, StepResult
from pipeline_runner.services.results_writer import ResultsWriter


def _failed_run() -> Run:
    run = Run(pipeline_name="Rust", job_name="build", step_count=4)
    run.transition(RunState.RUNNING)
    run.step_results = [
        StepResult(index=1, label="Format check", exit_code=0, success=True, duration_seconds=0.5),
        StepResult(index=2, label="Static analysis", exit_code=101, duration_seconds=1.25,
                   output="\n".join(f"line {i}" for i in range(100))),
    ]
    run.finish(Outcome.failure(run.step_results[-1]))
    return run


# ---------------------------------------------------------------------------
# 1. Arrow constant
# ---------------------------------------------------------------------------
class TestArrowConstant:

    def test_arrow_is_unicode_2192(self):
        assert ord(ARROW) == 0x2192

    def test_arrow_is_not_ascii(self):
        assert ARROW != "->"


# ---------------------------------------------------------------------------
# 2. Outcome lines
# ---------------------------------------------------------------------------
class TestFormatOutcome:

    def test_success(self):
        assert format_outcome(Outcome.success(), 4) == "PASSED (4/4 steps)"

    def test_step_failure(self):
        result = StepResult(index=2, label="Static analysis", exit_code=101)
        assert format_outcome(Outcome.failure(result), 4) == "FAILED at step 2/4 (Static analysis) → exit 101"

    def test_environment_failure_uses_first_line(self):
        outcome = Outcome.environment_failure(3, "Build", "Secret 'TOKEN' is not available\nmore")
        assert format_outcome(outcome, 4) == "FAILED at step 3/4 (Build) → environment: Secret 'TOKEN' is not available"

    def test_environment_failure_without_step(self):
        outcome = Outcome.environment_failure(None, None, "Runner error: boom")
        assert format_outcome(outcome, 4) == "FAILED → environment: Runner error: boom"

    def test_cancelled_mid_run(self):
        assert format_outcome(Outcome.cancelled(2, "Static analysis"), 4) == "CANCELLED at step 2/4 (Static analysis)"

    def test_cancelled_before_start(self):
        assert format_outcome(Outcome.cancelled(), 4) == "CANCELLED"


class TestStepLines:

    def test_passed_step(self):
        result = StepResult(index=1, label="Format check", success=True, duration_seconds=0.5)
        assert format_step_line(result, 4) == "[1/4] Format check → ok (0.50s)"

    def test_annotation_count(self):
        result = StepResult(index=4, label="Static analysis", success=True, duration_seconds=2,
                            annotations=[Annotation(message="a"), Annotation(message="b")])
        assert format_step_line(result, 4) == "[4/4] Static analysis → ok (2.00s) [2 annotation(s)]"

    def test_run_summary(self):
        run = _failed_run()
        lines = format_run_summary(run).splitlines()
        assert lines[0] == f"Run {run.run_id} | Rust / build"
        assert lines[1] == "  [1/4] Format check → ok (0.50s)"
        assert lines[2] == "  [2/4] Static analysis → FAILED (1.25s)"
        assert lines[3] == "FAILED at step 2/4 (Static analysis) → exit 101"


# ---------------------------------------------------------------------------
# 3. Log excerpts
# ---------------------------------------------------------------------------
class TestLogExcerpt:

    def test_short_log_unchanged(self):
        log = "a\nb\nc"
        assert create_log_excerpt(log) == log

    def test_long_log_truncated(self):
        log = "\n".join(f"line {i}" for i in range(100))
        excerpt = create_log_excerpt(log, head=2, tail=2)
        assert excerpt.startswith("line 0\nline 1\n")
        assert "(96 lines omitted)" in excerpt
        assert excerpt.endswith("line 98\nline 99")


# ---------------------------------------------------------------------------
# 4. Results writer
# ---------------------------------------------------------------------------
class TestResultsWriter:

    def test_report_contents(self):
        report = ResultsWriter.build_report(_failed_run())
        assert report["state"] == "failed"
        assert report["summary"] == "FAILED at step 2/4 (Static analysis) → exit 101"
        assert [s["label"] for s in report["steps"]] == ["Format check", "Static analysis"]
        assert "output" not in report["steps"][1]
        assert "omitted" in report["steps"][1]["log_excerpt"]
        assert report["outcome"]["output"].count("\n") == 99

    def test_write_results(self, tmp_path):
        run = _failed_run()
        path = ResultsWriter.write_results(run, str(tmp_path / "out"))
        assert path.endswith(f"{run.run_id}.json")
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        assert data["run_id"] == run.run_id
        assert data["outcome"]["step_label"] == "Static analysis"

    def test_write_failure_propagates(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(OSError):
            ResultsWriter.write_results(_failed_run(), str(blocker))
