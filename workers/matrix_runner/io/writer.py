"""
Writer — turn pipeline results into a report and serialize it.

Filesystem layout:
    <output_dir>/pipeline_report.json

``render_summary`` produces the human-readable version printed by the
CLI: one line per job with a distinct marker for success, tolerated
failure, hard failure and cancelled jobs, followed by the output tail of
each failed job's first failing step.
"""
import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from matrix_runner.core.job import JobResult
from matrix_runner.core.pipeline import PipelineResult
from matrix_runner.io.schema import (
    FailureModel,
    GroupReport,
    JobResultModel,
    PipelineReport,
    StepOutcomeModel,
)
from matrix_runner.policy.profile import RunProfile
from matrix_runner.policy.verdict import DisplayStatus, PipelineStatus

REPORT_FILENAME = "pipeline_report.json"

MARKERS: Dict[str, str] = {
    DisplayStatus.SUCCESS.value: "[ ok ]",
    DisplayStatus.TOLERATED.value: "[warn]",
    DisplayStatus.FAILED.value: "[FAIL]",
    DisplayStatus.CANCELLED.value: "[ -- ]",
}


def tail(text: str, lines: int) -> str:
    """Last *lines* lines of *text* (everything if lines == 0)."""
    if lines == 0:
        return text
    return "\n".join(text.splitlines()[-lines:])


# ── Conversion ───────────────────────────────────────────────────────────────

def _job_model(job: JobResult, tail_lines: int) -> JobResultModel:
    steps = [
        StepOutcomeModel(
            name=o.name,
            role=o.role.value,
            status=o.status.value,
            reason=o.reason.value if o.reason else None,
            exit_code=o.result.exit_code if o.result else None,
            duration_ms=o.result.duration_ms if o.result else 0,
            error=o.error,
        )
        for o in job.outcomes
    ]

    failure: Optional[FailureModel] = None
    first = job.first_failure()
    if first is not None:
        failure = FailureModel(
            step=first.name,
            reason=first.reason.value if first.reason else None,
            exit_code=first.result.exit_code if first.result else None,
            stdout_tail=tail(first.result.stdout, tail_lines) if first.result else "",
            stderr_tail=tail(first.result.stderr, tail_lines) if first.result else "",
            error=first.error,
        )

    return JobResultModel(
        job_id=job.spec.id,
        index=job.spec.index,
        values=job.spec.axis_values(),
        extra=dict(job.spec.extra),
        soft_fail=job.spec.soft_fail,
        status=job.status.value,
        tolerated=job.tolerated,
        display=job.display.value,
        duration_ms=job.duration_ms,
        steps=steps,
        first_failure=failure,
    )


def build_report(
    results: Iterable[PipelineResult],
    *,
    pipeline: str = "",
    names: Optional[Dict[str, str]] = None,
    profile: Optional[RunProfile] = None,
) -> PipelineReport:
    """Assemble the run report from per-group results (in run order)."""
    profile = profile or RunProfile.v0()
    names = names or {}
    groups: List[GroupReport] = []
    for res in results:
        groups.append(GroupReport(
            group=res.group,
            name=names.get(res.group, res.group),
            status=res.status.value,
            fail_fast=res.fail_fast,
            duration_ms=res.duration_ms,
            counts=res.counts(),
            jobs=[_job_model(j, profile.output_tail_lines) for j in res.jobs],
        ))

    failed = any(g.status == PipelineStatus.FAILED.value for g in groups)
    return PipelineReport(
        profile_id=profile.profile_id,
        pipeline=pipeline,
        status=PipelineStatus.FAILED.value if failed else PipelineStatus.SUCCESS.value,
        groups=groups,
    )


# ── Output ───────────────────────────────────────────────────────────────────

def write_report(report: PipelineReport, output_dir: Path) -> Path:
    """
    Write pipeline_report.json into *output_dir*.

    Creates *output_dir* if it does not exist.
    Returns the report path.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / REPORT_FILENAME
    path.write_text(
        json.dumps(
            report.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n"
    )
    return path


def render_summary(report: PipelineReport) -> str:
    """Plain-text summary of every job, grouped, failures with output."""
    lines: List[str] = []
    for group in report.groups:
        counts = ", ".join(f"{k}={v}" for k, v in group.counts.items() if v)
        lines.append(f"== {group.name} [{group.status}] {counts}")
        for job in group.jobs:
            lines.append(f"  {MARKERS.get(job.display, '[ ?? ]')} {job.job_id}")

        for job in group.jobs:
            failure = job.first_failure
            if failure is None:
                continue
            label = "tolerated failure" if job.tolerated else "failure"
            detail = f"exit {failure.exit_code}" if failure.exit_code is not None else failure.reason
            lines.append("")
            lines.append(f"  -- {label}: {job.job_id} / {failure.step} ({detail})")
            for chunk in (failure.error, failure.stdout_tail, failure.stderr_tail):
                if chunk:
                    lines.extend(f"     {line}" for line in chunk.splitlines())
        lines.append("")

    lines.append(f"pipeline {report.pipeline or '-'}: {report.status}")
    return "\n".join(lines)
