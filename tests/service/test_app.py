"""Tests for the FastAPI service mode."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from docsync.config import ConfigError
from docsync.models import Action, RunSummary, UpdateDecision
from docsync.orchestrator import RunOptions, RunOutcome, RunStatus, SyncError
from docsync.service import create_app


class _StubOrchestrator:
    def __init__(self) -> None:
        self.calls: list[dict[str, object]] = []
        self.error: Exception | None = None

    def run(self, repo_path: str, options: RunOptions) -> RunOutcome:
        self.calls.append({"path": repo_path, "options": options})
        if self.error is not None:
            raise self.error
        summary = RunSummary(commit_range=options.commit_range, head="4f2c9e1")
        decision = UpdateDecision(
            doc_id="server.doc", action=Action.AUTO_UPDATE, reasons=["lines moved"]
        )
        if options.dry_run:
            return RunOutcome(
                status=RunStatus.DRY_RUN,
                summary=summary,
                decisions=[decision],
                diffs={".knowledge/server.doc": "--- a\n+++ b\n"},
            )
        summary.written = [".knowledge/server.doc"]
        summary.review_request = "https://example.test/pulls/7"
        return RunOutcome(status=RunStatus.PUBLISHED, summary=summary, decisions=[decision])


@pytest.fixture
def orchestrator() -> _StubOrchestrator:
    return _StubOrchestrator()


@pytest.fixture
def client(orchestrator: _StubOrchestrator) -> TestClient:
    app = create_app(lambda: orchestrator)  # type: ignore[arg-type, return-value]
    return TestClient(app)


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_sync_dry_run_endpoint(client: TestClient, orchestrator: _StubOrchestrator) -> None:
    response = client.post(
        "/sync",
        json={"path": "/work/repo", "commit_range": "origin/main..HEAD", "dry_run": True},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "dry-run"
    assert data["exit_code"] == 0
    assert data["diffs"] == {".knowledge/server.doc": "--- a\n+++ b\n"}
    assert data["decisions"][0] == {
        "doc_id": "server.doc",
        "action": "auto-update",
        "reason": "lines moved",
        "kinds": [],
    }
    options = orchestrator.calls[0]["options"]
    assert isinstance(options, RunOptions)
    assert options.commit_range == "origin/main..HEAD"
    assert options.dry_run is True


def test_sync_publish_endpoint(client: TestClient) -> None:
    response = client.post("/sync", json={"path": "/work/repo", "budget_override": 2048})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "published"
    assert data["summary"]["review_request"] == "https://example.test/pulls/7"
    assert data["summary"]["written"] == [".knowledge/server.doc"]


def test_sync_reports_config_errors(client: TestClient, orchestrator: _StubOrchestrator) -> None:
    orchestrator.error = ConfigError(".docsync.yml must contain a mapping at the root")

    response = client.post("/sync", json={"path": "/work/repo"})

    assert response.status_code == 400
    assert "mapping at the root" in response.json()["detail"]


def test_sync_reports_fatal_errors_with_summary(
    client: TestClient, orchestrator: _StubOrchestrator
) -> None:
    orchestrator.error = SyncError("git diff failed", RunSummary(commit_range="a..b"))

    response = client.post("/sync", json={"path": "/work/repo"})

    assert response.status_code == 502
    body = response.json()
    assert body["detail"] == "git diff failed"
    assert body["summary"]["commit_range"] == "a..b"
