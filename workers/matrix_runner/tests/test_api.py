"""Tests for the HTTP API (pipelines router)."""
import sys

import pytest
from fastapi.testclient import TestClient

from app.main import app

PY = sys.executable


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _document(exit_for_musl=1):
    return {
        "name": "api",
        "groups": {
            "build": {
                "matrix": {
                    "axes": {"toolchain": ["stable", "nightly"], "target": ["linux", "musl"]},
                    "exclude": [{"toolchain": "stable", "target": "musl"}],
                },
                "soft_fail": {"when": {"toolchain": "nightly"}},
                "steps": [{
                    "name": "Test",
                    "run": [PY, "-c", f"import sys; sys.exit({exit_for_musl} if '{{target}}' == 'musl' else 0)"],
                }],
            },
        },
    }


class TestApi:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["service"] == "matrix-runner-api"

    def test_expand(self, client):
        resp = client.post("/pipelines/expand", json={"document": _document()})
        assert resp.status_code == 200
        body = resp.json()
        group = body["groups"][0]
        assert group["job_count"] == 3
        assert [j["job_id"] for j in group["jobs"]] == [
            "build (stable, linux)", "build (nightly, linux)", "build (nightly, musl)",
        ]
        assert [j["soft_fail"] for j in group["jobs"]] == [False, True, True]

    def test_expand_config_error(self, client):
        doc = _document()
        doc["groups"]["build"]["matrix"]["axes"]["target"] = []
        resp = client.post("/pipelines/expand", json={"document": doc})
        assert resp.status_code == 422
        assert "no values" in resp.json()["detail"]

    def test_run(self, client):
        resp = client.post("/pipelines/run", json={"document": _document(), "max_parallel": 2})
        assert resp.status_code == 200
        report = resp.json()
        assert report["status"] == "success"
        assert report["groups"][0]["counts"]["tolerated"] == 1

    def test_run_unknown_group(self, client):
        resp = client.post("/pipelines/run", json={"document": _document(), "groups": ["deploy"]})
        assert resp.status_code == 422

    def test_request_validation(self, client):
        resp = client.post("/pipelines/run", json={"groups": ["build"]})
        assert resp.status_code == 422

    def test_run_uses_runner_settings(self, client, monkeypatch):
        """MATRIX_RUNNER_* variables reach runs started over HTTP."""
        monkeypatch.setenv("MATRIX_RUNNER_STEP_TIMEOUT", "0.5")
        doc = {"groups": {"slow": {
            "matrix": {"axes": {"x": ["1"]}},
            "steps": [{"name": "Sleep", "run": [PY, "-c", "import time; time.sleep(10)"]}],
        }}}
        resp = client.post("/pipelines/run", json={"document": doc})
        assert resp.status_code == 200
        job = resp.json()["groups"][0]["jobs"][0]
        assert job["status"] == "failed"
        assert job["first_failure"]["reason"] == "TIMEOUT"

    def test_expand_rejects_bad_template(self, client):
        """Expansion runs the same template check as a real run."""
        doc = _document()
        doc["groups"]["build"]["steps"][0]["run"] = ["echo", "{undefined}"]
        resp = client.post("/pipelines/expand", json={"document": doc})
        assert resp.status_code == 422
        assert "undefined" in resp.json()["detail"]
