"""Tests for the coverage reporter and the upload client."""
import asyncio

import httpx
import pytest

from fakes import FakeExecutor, has
from matrix_runner.core.coverage import CoverageConfig, CoverageReporter, upload_metadata
from matrix_runner.core.matrix import IncludeRule, MatrixConfig, expand
from matrix_runner.core.pipeline import run_pipeline
from matrix_runner.core.step import Step, StepRole
from matrix_runner.errors import ConfigError, UploadError
from matrix_runner.io.uploader import CoverageUploader
from matrix_runner.policy.verdict import JobStatus, PipelineStatus, StepReason, StepStatus

URL = "https://coverage.test/upload"

BUILD = [Step.build("Build", ["cargo", "build", "--target", "{target}"], role=StepRole.BUILD)]


def _jobs():
    cfg = MatrixConfig.build(
        {"toolchain": ["stable"], "target": ["x86_64-unknown-linux-gnu"]},
        include=[IncludeRule.build({"target": "x86_64-unknown-linux-gnu"}, {"os": "ubuntu-latest"})],
    )
    return expand(cfg, group="coverage")


def _config(fatal=True, report_path="lcov.info"):
    return CoverageConfig(
        step=Step.build("Measure coverage", ["cargo", "llvm-cov", "--lcov"], role=StepRole.COVERAGE),
        report_path=report_path,
        upload_url=URL,
        fail_on_upload_error=fatal,
        flags=("unittests",),
    )


class Collector:
    """httpx handler recording requests and answering with a fixed status."""

    def __init__(self, status_code=200):
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": self.status_code < 400})


def _reporter(tmp_path, collector, executor=None, fatal=True):
    uploader = CoverageUploader(URL, token="s3cret", transport=httpx.MockTransport(collector))
    return CoverageReporter(
        _config(fatal), executor or FakeExecutor(),
        uploader=uploader, workdir=str(tmp_path),
    )


def _run(reporter):
    return asyncio.run(run_pipeline(_jobs(), BUILD, True, runner=reporter))


class TestMetadata:

    def test_tags_from_job_variables(self):
        meta = upload_metadata(_jobs()[0], _config())
        assert meta == {
            "name": "stable-x86_64-unknown-linux-gnu",
            "job": "coverage",
            "OS": "ubuntu-latest",
            "TARGET": "x86_64-unknown-linux-gnu",
            "TOOLCHAIN": "stable",
            "JOB": "coverage",
            "flags": "unittests",
        }

    def test_bad_name_template_fails_preflight(self, tmp_path):
        config = CoverageConfig(
            step=_config().step, report_path="lcov.info", upload_url=URL,
            fail_on_upload_error=True, upload_name="{arch}",
        )
        with pytest.raises(ConfigError):
            CoverageReporter(config, FakeExecutor()).preflight(_jobs(), BUILD)


class TestReporter:

    def test_success_uploads_once(self, tmp_path):
        (tmp_path / "lcov.info").write_text("TN:\nend_of_record\n")
        collector = Collector(200)
        result = _run(_reporter(tmp_path, collector))

        assert result.status == PipelineStatus.SUCCESS
        job = result.jobs[0]
        assert [o.name for o in job.outcomes] == ["Build", "Measure coverage", "Upload coverage"]
        assert all(o.status == StepStatus.SUCCEEDED for o in job.outcomes)
        assert len(collector.requests) == 1
        request = collector.requests[0]
        assert request.headers["Authorization"] == "Bearer s3cret"
        body = request.content
        assert b"end_of_record" in body
        assert b"stable-x86_64-unknown-linux-gnu" in body

    def test_fatal_upload_failure_fails_pipeline(self, tmp_path):
        (tmp_path / "lcov.info").write_text("TN:\n")
        result = _run(_reporter(tmp_path, Collector(503), fatal=True))

        job = result.jobs[0]
        assert job.status == JobStatus.FAILED
        assert not job.tolerated
        assert job.first_failure().reason == StepReason.UPLOAD_FAILED
        assert result.status == PipelineStatus.FAILED

    def test_tolerated_upload_failure(self, tmp_path):
        (tmp_path / "lcov.info").write_text("TN:\n")
        result = _run(_reporter(tmp_path, Collector(503), fatal=False))

        job = result.jobs[0]
        assert job.status == JobStatus.FAILED
        assert job.tolerated
        assert result.status == PipelineStatus.SUCCESS

    def test_missing_report(self, tmp_path):
        collector = Collector(200)
        result = _run(_reporter(tmp_path, collector, fatal=False))

        job = result.jobs[0]
        cov = job.outcomes[1]
        assert cov.status == StepStatus.FAILED
        assert cov.reason == StepReason.REPORT_MISSING
        assert job.outcomes[2].status == StepStatus.SKIPPED
        assert collector.requests == []
        # only upload errors are covered by fail_on_upload_error
        assert result.status == PipelineStatus.FAILED

    def test_build_failure_skips_coverage(self, tmp_path):
        collector = Collector(200)
        ex = FakeExecutor().fail_when(has("build"))
        result = _run(_reporter(tmp_path, collector, ex))

        job = result.jobs[0]
        assert [o.status for o in job.outcomes] == [
            StepStatus.FAILED, StepStatus.SKIPPED, StepStatus.SKIPPED,
        ]
        assert not any(has("llvm-cov")(argv) for argv in ex.argvs())
        assert collector.requests == []


class TestUploader:

    def test_missing_file(self, tmp_path):
        uploader = CoverageUploader(URL, transport=httpx.MockTransport(Collector(200)))
        with pytest.raises(UploadError):
            asyncio.run(uploader.upload(tmp_path / "nope.info", {}))

    def test_http_error_status(self, tmp_path):
        report = tmp_path / "lcov.info"
        report.write_text("x")
        uploader = CoverageUploader(URL, transport=httpx.MockTransport(Collector(401)))
        with pytest.raises(UploadError) as exc_info:
            asyncio.run(uploader.upload(report, {"name": "x"}))
        assert exc_info.value.status_code == 401

    def test_transport_error(self, tmp_path):
        report = tmp_path / "lcov.info"
        report.write_text("x")

        def _refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        uploader = CoverageUploader(URL, transport=httpx.MockTransport(_refuse))
        with pytest.raises(UploadError):
            asyncio.run(uploader.upload(report, {}))

    def test_no_token_no_auth_header(self, tmp_path):
        report = tmp_path / "lcov.info"
        report.write_text("x")
        collector = Collector(201)
        uploader = CoverageUploader(URL, transport=httpx.MockTransport(collector))
        assert asyncio.run(uploader.upload(report, {})) == 201
        assert "Authorization" not in collector.requests[0].headers
