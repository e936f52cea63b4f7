"""
Job — run one expanded job and classify its terminal status.

A soft-fail job that fails still reports ``failed``; it is only tagged
``tolerated`` so the pipeline does not count it.  "Did not pass" and
"counted against the build" stay two separate facts.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

from matrix_runner.core.executor import Executor, run_command
from matrix_runner.core.matrix import JobSpec
from matrix_runner.core.sequencer import StepOutcome, run_steps
from matrix_runner.core.step import Step, check_templates
from matrix_runner.policy.verdict import DisplayStatus, JobStatus, display_status, judge_job

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobResult:
    """Terminal state of one job: its spec, step outcomes and status."""

    spec: JobSpec
    outcomes: Tuple[StepOutcome, ...]
    status: JobStatus
    tolerated: bool = False
    duration_ms: int = 0

    @property
    def counts_as_failure(self) -> bool:
        return self.status == JobStatus.FAILED and not self.tolerated

    @property
    def display(self) -> DisplayStatus:
        return display_status(self.status, self.tolerated)

    def first_failure(self) -> Optional[StepOutcome]:
        return next((o for o in self.outcomes if o.failed), None)

    @classmethod
    def cancelled(cls, spec: JobSpec) -> JobResult:
        """A job that was never started because the group failed fast."""
        return cls(spec=spec, outcomes=(), status=JobStatus.CANCELLED)


class JobRunner:
    """
    Runs a job's steps through the sequencer and judges the result.

    Subclasses (see core.coverage) extend ``_run_outcomes`` and
    ``_tolerated`` to add steps or tolerance rules.
    """

    def __init__(
        self,
        executor: Executor = run_command,
        *,
        base_env: Optional[Mapping[str, str]] = None,
        workdir: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.executor = executor
        self.base_env = dict(base_env or {})
        self.workdir = workdir
        self.timeout = timeout

    def preflight(self, specs: Sequence[JobSpec], steps: Sequence[Step]) -> None:
        """Raise ConfigError now if any step cannot be rendered for any job."""
        check_templates(steps, specs)

    async def run_job(self, spec: JobSpec, steps: Sequence[Step]) -> JobResult:
        logger.info("[%s] started", spec.id)
        start = time.monotonic()

        outcomes = await self._run_outcomes(spec, steps)

        status, _ = judge_job((o.status for o in outcomes), spec.soft_fail)
        tolerated = status == JobStatus.FAILED and self._tolerated(spec, outcomes)
        result = JobResult(
            spec=spec,
            outcomes=tuple(outcomes),
            status=status,
            tolerated=tolerated,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        logger.info("[%s] %s (%d ms)", spec.id, result.display.value, result.duration_ms)
        return result

    async def _run_outcomes(self, spec: JobSpec, steps: Sequence[Step]) -> List[StepOutcome]:
        return await run_steps(
            steps, spec, self.executor,
            base_env=self.base_env, workdir=self.workdir, timeout=self.timeout,
        )

    def _tolerated(self, spec: JobSpec, outcomes: Sequence[StepOutcome]) -> bool:
        return spec.soft_fail


async def run_job(
    spec: JobSpec,
    steps: Sequence[Step],
    executor: Executor = run_command,
) -> JobResult:
    """Run a single job with default runner settings."""
    return await JobRunner(executor).run_job(spec, steps)
