"""
Test fixtures for matrix_runner.

Provides a scripted fake executor (no subprocesses) and sample pipeline
documents modelled on a Rust cross-compilation CI workflow.
"""
from __future__ import annotations

import copy
import textwrap
from pathlib import Path

import pytest

from fakes import FakeExecutor


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


# ── Sample documents ────────────────────────────────────────────────────────

CROSS_YAML = textwrap.dedent("""\
    name: openat2
    env:
      RUST_BACKTRACE: "1"
    groups:
      build:
        name: Cross build
        fail_fast: false
        matrix:
          axes:
            toolchain: [stable, beta, nightly]
            target: [x86_64-unknown-linux-gnu, x86_64-unknown-linux-musl, i686-unknown-linux-musl]
          exclude:
            - {toolchain: beta, target: i686-unknown-linux-musl}
        soft_fail:
          when: {toolchain: nightly}
        steps:
          - name: Build
            run: [cargo, "+{toolchain}", build, --target, "{target}"]
          - name: Test
            run: "cargo +{toolchain} test --target {target}"
""")

COVERAGE_DOC = {
    "name": "coverage",
    "groups": {
        "coverage": {
            "matrix": {
                "axes": {"toolchain": ["stable"], "target": ["x86_64-unknown-linux-gnu"]},
                "include": [
                    {"values": {"target": "x86_64-unknown-linux-gnu"},
                     "extra": {"os": "ubuntu-latest"}},
                ],
            },
            "steps": [{"name": "Build", "run": ["cargo", "build"]}],
            "coverage": {
                "run": ["cargo", "llvm-cov", "--lcov", "--output-path", "lcov.info"],
                "report_path": "lcov.info",
                "upload": {"url": "https://coverage.test/upload"},
                "fail_on_upload_error": True,
            },
        },
    },
}


@pytest.fixture
def cross_yaml(tmp_path: Path) -> Path:
    """A 9-combination matrix with one exclude and a nightly soft-fail."""
    p = tmp_path / "pipeline.yaml"
    p.write_text(CROSS_YAML)
    return p


@pytest.fixture
def coverage_doc() -> dict:
    """Fresh copy of the single-job coverage document."""
    return copy.deepcopy(COVERAGE_DOC)
