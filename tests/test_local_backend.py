"""
Unit Tests — Local Backend
==========================
Real subprocesses (POSIX shell only; no cargo needed).
"""
import asyncio
import os
import time
import pytest

from pipeline_runner.executor.base import ExecutionContext
from pipeline_runner.executor.local_backend import LocalShellBackend, resolve_cwd


@pytest.fixture
def context(tmp_path):
    return ExecutionContext(run_id="r1", working_directory=str(tmp_path), env={"GREETING": "hello"})


@pytest.fixture
def backend():
    return LocalShellBackend(grace_seconds=1)


class TestRunCommand:

    def test_exit_code_and_output(self, backend, context):
        result = asyncio.run(backend.run_command("echo out; echo err >&2; exit 3", context))
        assert result.exit_code == 3
        assert "out" in result.output
        assert "err" in result.output
        assert result.error is None

    def test_runs_in_working_copy(self, backend, context, tmp_path):
        result = asyncio.run(backend.run_command("pwd", context))
        assert os.path.realpath(result.output.strip()) == os.path.realpath(str(tmp_path))

    def test_env_and_ci_flag(self, backend, context):
        result = asyncio.run(backend.run_command('echo "$GREETING $CI"', context))
        assert result.output.strip() == "hello true"

    def test_errexit_stops_script(self, backend, context):
        result = asyncio.run(backend.run_command("false\necho after", context))
        assert result.exit_code != 0
        assert "after" not in result.output

    def test_missing_command_is_127(self, backend, context):
        result = asyncio.run(backend.run_command("definitely-not-a-real-tool-xyz", context))
        assert result.exit_code == 127

    def test_subdirectory(self, backend, context, tmp_path):
        (tmp_path / "crate").mkdir()
        result = asyncio.run(backend.run_command("pwd", context, "crate"))
        assert result.output.strip().endswith("crate")

    def test_escaping_cwd_is_error(self, backend, context):
        result = asyncio.run(backend.run_command("pwd", context, "../.."))
        assert result.environment_failure

    def test_missing_working_copy_is_error(self, backend, tmp_path):
        context = ExecutionContext(run_id="r1", working_directory=str(tmp_path / "gone"))
        result = asyncio.run(backend.run_command("true", context))
        assert result.environment_failure


def test_cancel_terminates_process(backend, context, tmp_path):
    marker = tmp_path / "finished"

    async def run_test():
        task = asyncio.create_task(backend.run_command(f"sleep 30; touch {marker}", context))
        await asyncio.sleep(0.3)
        started = time.monotonic()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return time.monotonic() - started

    elapsed = asyncio.run(run_test())
    assert elapsed < 5
    assert not marker.exists()


def test_resolve_cwd(tmp_path):
    assert resolve_cwd(str(tmp_path), "") == os.path.realpath(str(tmp_path))
    with pytest.raises(ValueError):
        resolve_cwd(str(tmp_path), "../elsewhere")
