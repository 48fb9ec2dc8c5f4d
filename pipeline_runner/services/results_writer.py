"""
Results Writer
==============
Serializes a finished Run into ``<results_dir>/<run_id>.json``.

The report is an export of the Outcome. The runner never reads it back.
Step output is stored as a head/tail excerpt; the failing step's full output
is kept on the outcome.
"""
import json
import logging
import os
from typing import Any, Dict

from pipeline_runner.core.config import RESULTS_DIR
from pipeline_runner.core.output_formatter import create_log_excerpt, format_outcome
from pipeline_runner.models.run import Run

logger = logging.getLogger(__name__)


class ResultsWriter:
    """
    Service responsible for compiling a Run into a structured JSON report.
    """

    @staticmethod
    def build_report(run: Run) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "run_id": run.run_id,
            "pipeline": run.pipeline_name,
            "job": run.job_name,
            "event": run.event.model_dump() if run.event else None,
            "options": run.options.model_dump(),
            "state": run.state.value,
            "created_at": run.created_at.isoformat(),
            "started_at": run.started_at.isoformat() if run.started_at else None,
            "finished_at": run.finished_at.isoformat() if run.finished_at else None,
            "duration_seconds": run.duration_seconds,
            "steps": [],
            "outcome": run.outcome.model_dump() if run.outcome else None,
            "summary": format_outcome(run.outcome, run.step_count) if run.outcome else run.state.value,
        }

        for result in run.step_results:
            step = result.model_dump(exclude={"output"})
            step["log_excerpt"] = create_log_excerpt(result.output)
            data["steps"].append(step)

        return data

    @staticmethod
    def write_results(run: Run, output_dir: str = RESULTS_DIR) -> str:
        """
        Write the report and return its absolute path.

        Raises
        ------
        OSError
            The report could not be written.
        """
        os.makedirs(output_dir, exist_ok=True)
        abs_output = os.path.abspath(os.path.join(output_dir, f"{run.run_id}.json"))
        logger.info("[RUN:%s] Writing results to %s", run.run_id, abs_output)

        with open(abs_output, "w", encoding="utf-8") as f:
            json.dump(ResultsWriter.build_report(run), f, indent=2)

        return abs_output
