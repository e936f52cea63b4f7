"""
Schema — Pydantic models for the pipeline document and the run report.

Input: one pipeline document (YAML or JSON) declaring job groups.
Output: ``pipeline_report.json`` — every job's terminal status per group.

Runtime contract fields (present in every report):
  package_name, runner_version, schema_version, profile_id.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from matrix_runner import PACKAGE_NAME, RUNNER_VERSION, SCHEMA_VERSION
from matrix_runner.core.coverage import DEFAULT_ENV_VARS, DEFAULT_UPLOAD_NAME
from matrix_runner.core.step import StepRole

Scalar = Union[str, bool, int, float]
Command = Union[str, List[Scalar]]


class _Strict(BaseModel):
    """Unknown keys are an error, not silently ignored."""

    model_config = ConfigDict(extra="forbid")


# ═══════════════════════════════════════════════════════════════════════════════
# Pipeline document
# ═══════════════════════════════════════════════════════════════════════════════

class ConditionModel(_Strict):
    """``{when: {key: value|[values]}, unless: {…}}``"""

    when: Dict[str, Union[Scalar, List[Scalar]]] = Field(default_factory=dict)
    unless: Dict[str, Union[Scalar, List[Scalar]]] = Field(default_factory=dict)


class IncludeModel(_Strict):
    values: Dict[str, Scalar]
    extra: Dict[str, Scalar] = Field(default_factory=dict)


class MatrixModel(_Strict):
    axes: Dict[str, List[Scalar]]                       # ordered: outermost first
    include: List[IncludeModel] = Field(default_factory=list)
    exclude: List[Dict[str, Scalar]] = Field(default_factory=list)


class StepModel(_Strict):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    run: Command
    env: Dict[str, Scalar] = Field(default_factory=dict)
    guard: Optional[ConditionModel] = Field(None, alias="if")
    workdir: Optional[str] = None
    timeout: Optional[float] = Field(None, gt=0)
    role: StepRole = StepRole.STEP


class UploadModel(_Strict):
    url: str
    name: str = DEFAULT_UPLOAD_NAME
    env_vars: List[str] = Field(default_factory=lambda: list(DEFAULT_ENV_VARS))
    flags: List[str] = Field(default_factory=list)
    token_env: Optional[str] = Field(
        None,
        description="Environment variable holding the collector token",
    )


class CoverageModel(_Strict):
    name: str = "Measure coverage"
    run: Command
    report_path: str
    env: Dict[str, Scalar] = Field(default_factory=dict)
    workdir: Optional[str] = None
    timeout: Optional[float] = Field(None, gt=0)
    upload: UploadModel
    fail_on_upload_error: bool                           # required: no implicit policy


class GroupModel(_Strict):
    name: Optional[str] = None                           # display name
    fail_fast: bool = True
    max_parallel: Optional[int] = Field(None, ge=1)
    matrix: MatrixModel
    soft_fail: Optional[Union[bool, ConditionModel]] = None
    env: Dict[str, Scalar] = Field(default_factory=dict)
    workdir: Optional[str] = None
    steps: List[StepModel] = Field(default_factory=list)
    coverage: Optional[CoverageModel] = None


class PipelineDocument(_Strict):
    name: str = "pipeline"
    env: Dict[str, Scalar] = Field(default_factory=dict)
    groups: Dict[str, GroupModel] = Field(..., min_length=1)


# ═══════════════════════════════════════════════════════════════════════════════
# Run report
# ═══════════════════════════════════════════════════════════════════════════════

class StepOutcomeModel(BaseModel):
    name: str
    role: str = StepRole.STEP.value
    status: str                                          # succeeded | failed | skipped
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    duration_ms: int = 0
    error: Optional[str] = None


class FailureModel(BaseModel):
    """First failing step of a job, with the tail of its output."""

    step: str
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    stdout_tail: str = ""
    stderr_tail: str = ""
    error: Optional[str] = None


class JobResultModel(BaseModel):
    job_id: str
    index: int
    values: Dict[str, str] = Field(default_factory=dict)
    extra: Dict[str, str] = Field(default_factory=dict)
    soft_fail: bool = False
    status: str                                          # success | failed | cancelled
    tolerated: bool = False
    display: str                                         # success | tolerated | failed | cancelled
    duration_ms: int = 0
    steps: List[StepOutcomeModel] = Field(default_factory=list)
    first_failure: Optional[FailureModel] = None


class GroupReport(BaseModel):
    group: str
    name: str
    status: str                                          # success | failed
    fail_fast: bool
    duration_ms: int = 0
    counts: Dict[str, int] = Field(default_factory=dict)
    jobs: List[JobResultModel] = Field(default_factory=list)


class PipelineReport(BaseModel):
    """pipeline_report.json — aggregate result of one run."""

    package_name: str = PACKAGE_NAME
    runner_version: str = RUNNER_VERSION
    schema_version: str = SCHEMA_VERSION
    profile_id: str = "matrix-runner-v0"

    pipeline: str = ""
    status: str = "success"
    groups: List[GroupReport] = Field(default_factory=list)

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
