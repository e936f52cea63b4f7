"""
Pipeline — run every job of one group with bounded concurrency.

Jobs are dispatched in emission order to at most ``max_parallel``
workers sharing one event loop.  Results land in a pre-sized list by
emission index, so reporting order never depends on completion order.

Fail-fast is cooperative: once a job fails without being tolerated, no
further job is started.  Jobs already running finish normally so their
processes are torn down cleanly; unstarted jobs are recorded cancelled.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from matrix_runner.core.job import JobResult, JobRunner
from matrix_runner.core.matrix import JobSpec
from matrix_runner.core.step import Step
from matrix_runner.policy.verdict import DisplayStatus, PipelineStatus, gate_pipeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Ordered job results of one group plus the aggregate status."""

    group: str
    jobs: Tuple[JobResult, ...]
    status: PipelineStatus
    fail_fast: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == PipelineStatus.SUCCESS

    def counts(self) -> Dict[str, int]:
        """Number of jobs per display status (every status present)."""
        tally = Counter(j.display for j in self.jobs)
        return {s.value: tally.get(s, 0) for s in DisplayStatus}


async def run_pipeline(
    job_specs: Sequence[JobSpec],
    steps: Sequence[Step],
    fail_fast: bool,
    *,
    max_parallel: int = 4,
    runner: Optional[JobRunner] = None,
    group: Optional[str] = None,
) -> PipelineResult:
    """
    Run *job_specs* and aggregate their results.

    Parameters
    ----------
    job_specs : Sequence[JobSpec]
        Jobs in emission order (as returned by ``expand``).
    steps : Sequence[Step]
        Ordered steps every job runs.
    fail_fast : bool
        Stop dispatching new jobs after the first non-tolerated failure.
    max_parallel : int
        Upper bound on concurrently running jobs.
    runner : JobRunner, optional
        Job runner to use (e.g. a CoverageReporter).  Defaults to a plain
        JobRunner with the real command executor.
    group : str, optional
        Group name for the result; defaults to the jobs' group.

    Raises ConfigError (before any job starts) if a step template cannot
    be rendered for some job.
    """
    if max_parallel < 1:
        raise ValueError(f"max_parallel must be >= 1, got {max_parallel}")

    specs = list(job_specs)
    runner = runner or JobRunner()
    group = group or (specs[0].group if specs else "default")

    runner.preflight(specs, steps)

    results: List[Optional[JobResult]] = [None] * len(specs)
    stop = asyncio.Event()
    pending = iter(enumerate(specs))

    async def _worker() -> None:
        # workers share one iterator: next() never interleaves on a single loop
        for index, spec in pending:
            if stop.is_set():
                logger.info("[%s] cancelled (fail-fast)", spec.id)
                results[index] = JobResult.cancelled(spec)
                continue
            try:
                result = await runner.run_job(spec, steps)
            except Exception:
                logger.exception("[%s] job runner crashed", spec.id)
                stop.set()
                raise
            results[index] = result
            if fail_fast and result.counts_as_failure:
                if not stop.is_set():
                    logger.warning("[%s] failed, cancelling unstarted jobs in %s", spec.id, group)
                stop.set()

    logger.info(
        "group %s: %d jobs, max_parallel=%d, fail_fast=%s",
        group, len(specs), max_parallel, fail_fast,
    )
    start = time.monotonic()
    # every worker is awaited to completion before an error propagates
    outcomes = await asyncio.gather(
        *(_worker() for _ in range(min(max_parallel, len(specs)))),
        return_exceptions=True,
    )
    errors = [o for o in outcomes if isinstance(o, BaseException)]
    if errors:
        raise errors[0]

    jobs = tuple(r for r in results if r is not None)
    status = gate_pipeline((j.status, j.tolerated) for j in jobs)
    pipeline = PipelineResult(
        group=group,
        jobs=jobs,
        status=status,
        fail_fast=fail_fast,
        duration_ms=int((time.monotonic() - start) * 1000),
    )
    logger.info("group %s: %s %s", group, status.value, pipeline.counts())
    return pipeline
