"""
Unit Tests — HTTP API
=====================
Endpoints exercised through FastAPI's TestClient with the RunManager
replaced via dependency_overrides. No pipeline is executed.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient

from main import app
from pipeline_runner.api.dependencies import get_run_manager
from pipeline_runner.models.event import TriggerEvent
from pipeline_runner.models.run import Outcome, Run, RunOptions, RunState, StepResult
from pipeline_runner.runner.run_manager import RunManager


def _finished_run() -> Run:
    run = Run(pipeline_name="Rust", job_name="build",
              event=TriggerEvent(kind="push", branch="main"), step_count=4)
    run.transition(RunState.RUNNING)
    run.step_results = [
        StepResult(index=1, label="Format check", exit_code=0, output="", success=True),
        StepResult(index=2, label="Static analysis", exit_code=101, output="warning: unused\n"),
    ]
    run.finish(Outcome.failure(run.step_results[-1]))
    return run


@pytest.fixture
def manager():
    mock = MagicMock(spec=RunManager)
    mock.default_options = RunOptions()
    mock.dispatch = AsyncMock(return_value=[])
    mock.wait = AsyncMock()
    return mock


@pytest.fixture
def client(manager):
    app.dependency_overrides[get_run_manager] = lambda: manager
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
class TestEvents:

    def test_matching_event_returns_run_ids(self, client, manager):
        run = Run(pipeline_name="Rust", job_name="build")
        manager.dispatch.return_value = [run]

        resp = client.post("/events", json={"event": "push", "branch": "main"})

        assert resp.status_code == 200
        assert resp.json() == {"accepted": True, "run_ids": [run.run_id]}
        event = manager.dispatch.call_args.args[0]
        assert event.kind == "push"
        assert event.branch == "main"

    def test_non_matching_event_accepted_without_runs(self, client):
        resp = client.post("/events", json={"event": "push", "branch": "feature-x"})
        assert resp.status_code == 200
        assert resp.json() == {"accepted": False, "run_ids": []}

    def test_per_request_warnings_override(self, client, manager):
        client.post("/events", json={"event": "push", "branch": "main", "warnings_are_errors": True})
        options = manager.dispatch.call_args.args[1]
        assert options.warnings_are_errors is True

    def test_unknown_event_kind_rejected(self, client):
        resp = client.post("/events", json={"event": "schedule", "branch": "main"})
        assert resp.status_code == 422

    def test_github_push_webhook(self, client, manager):
        resp = client.post(
            "/webhooks/github",
            json={"ref": "refs/heads/main", "after": "abc", "repository": {"full_name": "o/r"}},
            headers={"X-GitHub-Event": "push"},
        )
        assert resp.status_code == 200
        event = manager.dispatch.call_args.args[0]
        assert event.branch == "main"
        assert event.sha == "abc"

    def test_github_ping_ignored(self, client, manager):
        resp = client.post("/webhooks/github", json={"zen": "hi"}, headers={"X-GitHub-Event": "ping"})
        assert resp.json()["accepted"] is False
        manager.dispatch.assert_not_called()


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------
class TestRuns:

    def test_get_run_summary(self, client, manager):
        run = _finished_run()
        manager.get.return_value = run

        body = client.get(f"/runs/{run.run_id}").json()

        assert body["state"] == "failed"
        assert body["branch"] == "main"
        assert [s["label"] for s in body["steps"]] == ["Format check", "Static analysis"]
        assert body["outcome"]["step_index"] == 2
        assert body["summary"] == "FAILED at step 2/4 (Static analysis) → exit 101"

    def test_unknown_run_is_404(self, client, manager):
        manager.get.side_effect = KeyError("nope")
        assert client.get("/runs/nope").status_code == 404

    def test_list_runs(self, client, manager):
        manager.list_runs.return_value = [_finished_run(), _finished_run()]
        assert len(client.get("/runs").json()) == 2

    def test_cancel_terminal_run_conflicts(self, client, manager):
        manager.get.return_value = _finished_run()
        manager.cancel.return_value = False
        assert client.post("/runs/abc/cancel").status_code == 409

    def test_cancel_running_run(self, client, manager):
        run = Run(pipeline_name="Rust", job_name="build", step_count=4)
        run.transition(RunState.RUNNING)
        manager.get.return_value = run
        manager.cancel.return_value = True

        def finish(run_id, timeout=None):
            run.finish(Outcome.cancelled(2, "Static analysis"))
            return run

        manager.wait.side_effect = finish

        body = client.post(f"/runs/{run.run_id}/cancel").json()
        assert body["state"] == "cancelled"
        assert body["summary"] == "CANCELLED at step 2/4 (Static analysis)"
        manager.cancel.assert_called_once_with(run.run_id)
