"""
Unit Tests — CLI
================
``pipeline-runner run`` exit codes with the runner's backend patched out.
"""
import json
import os
import pytest
from unittest.mock import patch

from pipeline_runner import cli
from pipeline_runner.executor.base import ExecutionBackend, ExecutionResult
from pipeline_runner.models.run import Run, RunState


WORKFLOW = """
name: Rust
on:
  push:
    branches: [ main ]
jobs:
  build:
    steps:
      - name: Format check
        run: cargo fmt -- --check
      - name: Static analysis
        run: cargo clippy -- -Dwarnings
"""


class ScriptedBackend(ExecutionBackend):
    name = "scripted"

    def __init__(self, failing=()):
        self.failing = set(failing)

    async def run_command(self, command, context, cwd=""):
        if command in self.failing:
            return ExecutionResult(exit_code=101, output="warning: unused variable\n")
        return ExecutionResult(exit_code=0, output="ok\n")


@pytest.fixture
def workflow_file(tmp_path):
    path = tmp_path / "rust.yml"
    path.write_text(WORKFLOW)
    return str(path)


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("pipeline_runner.cli.setup_logging"):
        yield


def _main(args, tmp_path, backend):
    source = tmp_path / "src"
    source.mkdir(exist_ok=True)
    with patch("pipeline_runner.runner.pipeline_runner.PipelineRunner.backend_for", return_value=backend):
        return cli.main(["run", *args, "--source", str(source),
                         "--workspace-root", str(tmp_path / "ws"), "--results-dir", str(tmp_path / "results")])


def test_success_exit_code(workflow_file, tmp_path, capsys):
    code = _main([workflow_file], tmp_path, ScriptedBackend())
    assert code == 0
    assert "PASSED (2/2 steps)" in capsys.readouterr().out


def test_failure_exit_code_and_report(workflow_file, tmp_path, capsys):
    code = _main([workflow_file], tmp_path, ScriptedBackend(failing={"cargo clippy -- -Dwarnings"}))
    assert code == 1
    assert "FAILED at step 2/2 (Static analysis)" in capsys.readouterr().out
    reports = os.listdir(tmp_path / "results")
    assert len(reports) == 1
    with open(tmp_path / "results" / reports[0]) as f:
        assert json.load(f)["outcome"]["step_label"] == "Static analysis"


def test_branch_filter_no_run(workflow_file, tmp_path):
    assert _main([workflow_file, "--branch", "feature-x"], tmp_path, ScriptedBackend()) == 2


def test_invalid_workflow(tmp_path, capsys):
    bad = tmp_path / "bad.yml"
    bad.write_text("on: push\njobs:\n  j:\n    steps: []\n")
    assert _main([str(bad)], tmp_path, ScriptedBackend()) == 1
    assert "at least one step" in capsys.readouterr().err


def test_unknown_job(workflow_file, tmp_path):
    assert _main([workflow_file, "--job", "deploy"], tmp_path, ScriptedBackend()) == 1


def test_interrupt_mid_run_exits_cancelled(workflow_file, tmp_path, capsys):
    async def interrupted(pipelines, args, runs):
        run = Run(pipeline_name="Rust", job_name="build")
        run.transition(RunState.RUNNING)
        runs.append(run)
        raise KeyboardInterrupt

    with patch("pipeline_runner.cli._run_all", interrupted):
        code = _main([workflow_file], tmp_path, ScriptedBackend())

    assert code == 130
    assert "CANCELLED" in capsys.readouterr().out
    reports = os.listdir(tmp_path / "results")
    with open(tmp_path / "results" / reports[0]) as f:
        assert json.load(f)["state"] == "cancelled"
