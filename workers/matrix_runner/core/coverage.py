"""
Coverage — a job runner that measures and uploads coverage.

After the group's own steps (build, test …) all succeed, the reporter
runs the coverage command, checks that it produced the report artifact,
and uploads the artifact tagged with the job's axis values and group
name.

Upload failure handling is an explicit per-group flag
(``fail_on_upload_error``): fatal failures count against the pipeline,
non-fatal ones leave the job ``failed`` but tolerated.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from matrix_runner.core.executor import Executor, run_command
from matrix_runner.core.job import JobRunner
from matrix_runner.core.matrix import JobSpec
from matrix_runner.core.sequencer import StepOutcome, run_step, skipped
from matrix_runner.core.step import Step, StepRole, render_step, render_template
from matrix_runner.errors import UploadError
from matrix_runner.io.uploader import CoverageUploader
from matrix_runner.policy.verdict import StepReason, StepStatus

logger = logging.getLogger(__name__)

DEFAULT_ENV_VARS: Tuple[str, ...] = ("OS", "TARGET", "TOOLCHAIN", "JOB")
DEFAULT_UPLOAD_NAME = "{toolchain}-{target}"
UPLOAD_STEP_NAME = "Upload coverage"


@dataclass(frozen=True)
class CoverageConfig:
    """Coverage measurement + upload settings for one group."""

    step: Step
    report_path: str
    upload_url: str
    fail_on_upload_error: bool
    upload_name: str = DEFAULT_UPLOAD_NAME
    env_vars: Tuple[str, ...] = DEFAULT_ENV_VARS
    flags: Tuple[str, ...] = ()
    token: Optional[str] = None


def upload_metadata(spec: JobSpec, config: CoverageConfig) -> Dict[str, str]:
    """
    Metadata sent along with the report.

    ``env_vars`` entries are upper-case names of job variables
    (``TARGET`` → the ``target`` axis value, ``JOB`` → the group name);
    a variable the job does not define is sent empty.
    """
    variables = spec.variables()
    meta = {
        "name": render_template(config.upload_name, variables, "coverage upload name"),
        "job": spec.group,
    }
    for var in config.env_vars:
        meta[var] = variables.get(var.lower(), "")
    if config.flags:
        meta["flags"] = ",".join(config.flags)
    return meta


class CoverageReporter(JobRunner):
    """JobRunner that appends a coverage step and an upload step."""

    def __init__(
        self,
        config: CoverageConfig,
        executor: Executor = run_command,
        *,
        uploader: Optional[CoverageUploader] = None,
        upload_timeout: float = 60.0,
        base_env: Optional[Mapping[str, str]] = None,
        workdir: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(executor, base_env=base_env, workdir=workdir, timeout=timeout)
        self.config = config
        self.uploader = uploader or CoverageUploader(
            config.upload_url, token=config.token, timeout=upload_timeout,
        )

    def preflight(self, specs: Sequence[JobSpec], steps: Sequence[Step]) -> None:
        super().preflight(specs, [*steps, self.config.step])
        for spec in specs:
            self._report_path(spec)
            upload_metadata(spec, self.config)

    def _report_path(self, spec: JobSpec) -> Path:
        path = Path(render_template(self.config.report_path, spec.variables(), "coverage report_path"))
        if path.is_absolute():
            return path
        base = render_step(self.config.step, spec).workdir or self.workdir
        return Path(base) / path if base else path

    async def _run_outcomes(self, spec: JobSpec, steps: Sequence[Step]) -> List[StepOutcome]:
        outcomes = list(await super()._run_outcomes(spec, steps))
        cov_step = self.config.step

        if any(o.failed for o in outcomes):
            outcomes.append(skipped(cov_step, StepReason.PREVIOUS_STEP_FAILED))
            outcomes.append(self._upload_outcome(StepStatus.SKIPPED, StepReason.PREVIOUS_STEP_FAILED))
            return outcomes

        cov = await run_step(
            cov_step, spec, self.executor,
            base_env=self.base_env, workdir=self.workdir, timeout=self.timeout,
        )
        report = self._report_path(spec)
        if not cov.failed and not report.is_file():
            logger.warning("[%s] coverage report missing: %s", spec.id, report)
            cov = StepOutcome(
                name=cov.name, status=StepStatus.FAILED, reason=StepReason.REPORT_MISSING,
                result=cov.result, error=f"coverage report not found: {report}", role=cov.role,
            )
        outcomes.append(cov)
        if cov.failed:
            outcomes.append(self._upload_outcome(StepStatus.SKIPPED, StepReason.PREVIOUS_STEP_FAILED))
            return outcomes

        try:
            await self.uploader.upload(report, upload_metadata(spec, self.config))
        except UploadError as exc:
            logger.error("[%s] coverage upload failed (fatal=%s): %s",
                         spec.id, self.config.fail_on_upload_error, exc)
            outcomes.append(self._upload_outcome(StepStatus.FAILED, StepReason.UPLOAD_FAILED, str(exc)))
            return outcomes

        outcomes.append(self._upload_outcome(StepStatus.SUCCEEDED))
        return outcomes

    def _upload_outcome(
        self,
        status: StepStatus,
        reason: Optional[StepReason] = None,
        error: Optional[str] = None,
    ) -> StepOutcome:
        return StepOutcome(
            name=UPLOAD_STEP_NAME, status=status, reason=reason,
            error=error, role=StepRole.UPLOAD,
        )

    def _tolerated(self, spec: JobSpec, outcomes: Sequence[StepOutcome]) -> bool:
        if spec.soft_fail:
            return True
        first = next((o for o in outcomes if o.failed), None)
        return (
            first is not None
            and first.reason == StepReason.UPLOAD_FAILED
            and not self.config.fail_on_upload_error
        )
