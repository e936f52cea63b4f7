"""
Verdict — step, job and pipeline status vocabulary.

Three layers:
  1. Step outcome   (StepStatus + StepReason)  — what happened to one step.
  2. Job status     (judge_job)                — did the job pass, and is a
                                                 failure tolerated?
  3. Pipeline gate  (gate_pipeline)            — does the group fail?

Policy rules never import core/; they operate on plain values.
"""
from enum import Enum, unique
from typing import Iterable, Tuple


# ── Status enums ─────────────────────────────────────────────────────────────

@unique
class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@unique
class StepReason(str, Enum):
    """Why a step ended up failed or skipped."""

    GUARD_FALSE = "GUARD_FALSE"
    PREVIOUS_STEP_FAILED = "PREVIOUS_STEP_FAILED"
    NON_ZERO_EXIT = "NON_ZERO_EXIT"
    TIMEOUT = "TIMEOUT"
    LAUNCH_FAILED = "LAUNCH_FAILED"
    REPORT_MISSING = "REPORT_MISSING"
    UPLOAD_FAILED = "UPLOAD_FAILED"


@unique
class JobStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@unique
class PipelineStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@unique
class DisplayStatus(str, Enum):
    """How a job is shown in reports: tolerated failures stand apart."""

    SUCCESS = "success"
    TOLERATED = "tolerated"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ── Job judge ────────────────────────────────────────────────────────────────

def judge_job(
    step_statuses: Iterable[StepStatus],
    soft_fail: bool,
) -> Tuple[JobStatus, bool]:
    """
    Classify a finished job from its step statuses.

    Returns (status, tolerated).  A job succeeds iff no step failed.
    A failed soft-fail job stays FAILED but is tagged tolerated.
    """
    failed = any(s == StepStatus.FAILED for s in step_statuses)
    if not failed:
        return JobStatus.SUCCESS, False
    return JobStatus.FAILED, bool(soft_fail)


def display_status(status: JobStatus, tolerated: bool) -> DisplayStatus:
    if status == JobStatus.FAILED:
        return DisplayStatus.TOLERATED if tolerated else DisplayStatus.FAILED
    return DisplayStatus(status.value)


# ── Pipeline gate ────────────────────────────────────────────────────────────

def gate_pipeline(jobs: Iterable[Tuple[JobStatus, bool]]) -> PipelineStatus:
    """FAILED iff at least one job failed without being tolerated."""
    for status, tolerated in jobs:
        if status == JobStatus.FAILED and not tolerated:
            return PipelineStatus.FAILED
    return PipelineStatus.SUCCESS
