"""
Sequencer — run a job's steps strictly in order.

Steps are not independent: ``test`` assumes ``build`` left its output
on disk.  The first failure therefore stops the job and every later step
is recorded as skipped without being invoked.  Nothing here raises: a
launch failure becomes a failed outcome like any non-zero exit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from matrix_runner.core.executor import CommandResult, Executor, run_command
from matrix_runner.core.matrix import JobSpec
from matrix_runner.core.step import Step, StepRole, render_step
from matrix_runner.errors import ConfigError, ExecutionError
from matrix_runner.policy.verdict import StepReason, StepStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepOutcome:
    """What happened to one step of one job."""

    name: str
    status: StepStatus
    reason: Optional[StepReason] = None
    result: Optional[CommandResult] = None
    error: Optional[str] = None
    role: StepRole = StepRole.STEP

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED


def skipped(step: Step, reason: StepReason) -> StepOutcome:
    return StepOutcome(name=step.name, status=StepStatus.SKIPPED, reason=reason, role=step.role)


async def run_step(
    step: Step,
    spec: JobSpec,
    executor: Executor = run_command,
    *,
    base_env: Optional[Mapping[str, str]] = None,
    workdir: Optional[str] = None,
    timeout: Optional[float] = None,
) -> StepOutcome:
    """
    Run one step for *spec*, ignoring its guard.

    *base_env*, *workdir* and *timeout* are the defaults the step's own
    settings override.
    """
    try:
        rendered = render_step(step, spec)
    except ConfigError as exc:
        # templates are checked before a run starts; only direct callers get here
        return StepOutcome(
            name=step.name, status=StepStatus.FAILED,
            reason=StepReason.LAUNCH_FAILED, error=str(exc), role=step.role,
        )

    env = dict(base_env or {})
    env.update(rendered.env)
    try:
        result = await executor(
            rendered.command,
            rendered.args,
            env,
            rendered.workdir or workdir,
            step.timeout if step.timeout is not None else timeout,
        )
    except ExecutionError as exc:
        logger.warning("[%s] %s: %s", spec.id, step.name, exc)
        return StepOutcome(
            name=step.name, status=StepStatus.FAILED,
            reason=StepReason.LAUNCH_FAILED, error=str(exc), role=step.role,
        )

    if result.ok:
        return StepOutcome(name=step.name, status=StepStatus.SUCCEEDED, result=result, role=step.role)

    reason = StepReason.TIMEOUT if result.timed_out else StepReason.NON_ZERO_EXIT
    logger.warning("[%s] %s failed (exit %d)", spec.id, step.name, result.exit_code)
    return StepOutcome(
        name=step.name, status=StepStatus.FAILED,
        reason=reason, result=result, role=step.role,
    )


async def run_steps(
    steps: Sequence[Step],
    spec: JobSpec,
    executor: Executor = run_command,
    *,
    base_env: Optional[Mapping[str, str]] = None,
    workdir: Optional[str] = None,
    timeout: Optional[float] = None,
) -> List[StepOutcome]:
    """
    Run *steps* in order for *spec*; return one outcome per step.

    - guard false          → skipped (GUARD_FALSE), continue
    - exit 0               → succeeded, continue
    - non-zero / no launch → failed, every later step skipped
    """
    outcomes: List[StepOutcome] = []
    failed = False
    variables = spec.variables()

    for step in steps:
        if failed:
            outcomes.append(skipped(step, StepReason.PREVIOUS_STEP_FAILED))
            continue
        if not step.guard(variables):
            logger.debug("[%s] %s skipped: guard false", spec.id, step.name)
            outcomes.append(skipped(step, StepReason.GUARD_FALSE))
            continue

        outcome = await run_step(
            step, spec, executor,
            base_env=base_env, workdir=workdir, timeout=timeout,
        )
        outcomes.append(outcome)
        failed = outcome.failed

    return outcomes
