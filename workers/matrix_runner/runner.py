"""
Runner — top-level orchestration: pipeline document → report + exit code.

Ties together the loader, matrix expansion, the per-group pipeline
orchestrator and the writer.  Called from the API endpoint, from the
CLI, or programmatically.

Every group is expanded and its templates checked before the first job
of the first group starts, so a configuration error never leaves a run
half done.  Groups then run one after another in document order, each
with its own orchestrator run.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from matrix_runner.core.coverage import CoverageReporter
from matrix_runner.core.executor import Executor, run_command
from matrix_runner.core.job import JobRunner
from matrix_runner.core.matrix import JobSpec, expand
from matrix_runner.core.pipeline import PipelineResult, run_pipeline
from matrix_runner.errors import ConfigError
from matrix_runner.io.loader import GroupPlan, build_groups, load_document
from matrix_runner.io.schema import PipelineDocument, PipelineReport
from matrix_runner.io.uploader import CoverageUploader
from matrix_runner.io.writer import build_report, render_summary, write_report
from matrix_runner.policy.profile import RunProfile
from matrix_runner.policy.verdict import PipelineStatus
from matrix_runner.settings import Settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2


@dataclass(frozen=True)
class PreparedGroup:
    """A group with its jobs expanded and its runner built and checked."""

    plan: GroupPlan
    jobs: List[JobSpec]
    runner: JobRunner
    max_parallel: int


# ── Preparation ──────────────────────────────────────────────────────────────

def select_groups(plans: Sequence[GroupPlan], names: Optional[Sequence[str]]) -> List[GroupPlan]:
    """Keep only *names* (document order preserved); all groups if None."""
    if not names:
        return list(plans)
    known = {p.key for p in plans}
    unknown = sorted(set(names) - known)
    if unknown:
        raise ConfigError(f"unknown groups {unknown}; document has {sorted(known)}")
    return [p for p in plans if p.key in set(names)]


def expand_group(plan: GroupPlan) -> List[JobSpec]:
    try:
        return expand(plan.matrix, plan.soft_fail, group=plan.key)
    except ConfigError as exc:
        raise ConfigError(f"{plan.key}: {exc}") from exc


def prepare_group(
    plan: GroupPlan,
    profile: RunProfile,
    executor: Executor = run_command,
    uploader: Optional[CoverageUploader] = None,
) -> PreparedGroup:
    """Expand *plan*, build its job runner and check its step templates."""
    jobs = expand_group(plan)
    common = dict(
        base_env=dict(plan.env),
        workdir=plan.workdir or profile.workdir,
        timeout=profile.step_timeout,
    )
    if plan.coverage is not None:
        runner: JobRunner = CoverageReporter(
            plan.coverage, executor,
            uploader=uploader, upload_timeout=profile.upload_timeout, **common,
        )
    else:
        runner = JobRunner(executor, **common)

    try:
        runner.preflight(jobs, plan.steps)
    except ConfigError as exc:
        raise ConfigError(f"{plan.key}: {exc}") from exc

    return PreparedGroup(
        plan=plan,
        jobs=jobs,
        runner=runner,
        max_parallel=plan.max_parallel or profile.max_parallel,
    )


# ── Execution ────────────────────────────────────────────────────────────────

async def run_groups(
    plans: Sequence[GroupPlan],
    profile: Optional[RunProfile] = None,
    executor: Executor = run_command,
    uploader: Optional[CoverageUploader] = None,
) -> List[PipelineResult]:
    """Prepare every group, then run them in order.  Raises ConfigError."""
    profile = profile or RunProfile.v0()
    prepared = [prepare_group(p, profile, executor, uploader) for p in plans]

    results: List[PipelineResult] = []
    for group in prepared:
        logger.info("=== %s (%d jobs) ===", group.plan.name, len(group.jobs))
        results.append(await run_pipeline(
            group.jobs,
            group.plan.steps,
            group.plan.fail_fast,
            max_parallel=group.max_parallel,
            runner=group.runner,
            group=group.plan.key,
        ))
    return results


async def run_document(
    doc: PipelineDocument,
    *,
    profile: Optional[RunProfile] = None,
    groups: Optional[Sequence[str]] = None,
    executor: Executor = run_command,
    uploader: Optional[CoverageUploader] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PipelineReport:
    """Run a validated document and return its report."""
    profile = profile or RunProfile.v0()
    plans = select_groups(build_groups(doc, environ), groups)
    results = await run_groups(plans, profile, executor, uploader)
    return build_report(
        results,
        pipeline=doc.name,
        names={p.key: p.name for p in plans},
        profile=profile,
    )


def run_pipeline_from_path(
    path: Path,
    *,
    profile: Optional[RunProfile] = None,
    groups: Optional[Sequence[str]] = None,
    output_dir: Optional[Path] = None,
    executor: Executor = run_command,
) -> PipelineReport:
    """
    Run the pipeline document at *path*.

    Parameters
    ----------
    path : Path
        YAML or JSON pipeline document.
    profile : RunProfile, optional
        Run configuration.  Defaults to RunProfile.v0().
    groups : sequence of str, optional
        Group keys to run.  Defaults to every group.
    output_dir : Path, optional
        Directory to write pipeline_report.json.  If None, nothing is
        written to disk (API-only usage).

    Raises ConfigError before any job runs if the document is invalid.
    """
    doc = load_document(path)
    report = asyncio.run(run_document(doc, profile=profile, groups=groups, executor=executor))
    if output_dir:
        written = write_report(report, output_dir)
        logger.info("report written to %s", written)
    return report


def exit_code(report: PipelineReport) -> int:
    """Non-zero iff the aggregate status is failed."""
    return EXIT_OK if report.status == PipelineStatus.SUCCESS.value else EXIT_FAILED


def describe_jobs(
    plans: Sequence[GroupPlan],
    profile: Optional[RunProfile] = None,
) -> Dict[str, List[JobSpec]]:
    """
    Expanded jobs per group, without running anything (dry run).

    Runs the same preflight as a real run, so a document accepted here is
    accepted by ``run_groups``.  Raises ConfigError.
    """
    profile = profile or RunProfile.v0()
    return {p.key: prepare_group(p, profile).jobs for p in plans}


# ── CLI ──────────────────────────────────────────────────────────────────────

def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point for matrix_runner."""
    parser = argparse.ArgumentParser(
        description="matrix-runner — expand build matrices and run build/test/coverage jobs",
    )
    parser.add_argument("document", type=Path, help="Pipeline document (.yaml, .yml or .json)")
    parser.add_argument(
        "-g", "--group",
        action="append",
        default=None,
        help="Run only this group (repeatable; default: all groups)",
    )
    parser.add_argument("--max-parallel", type=int, default=None,
                        help="Default concurrent jobs per group")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Default per-step timeout in seconds")
    parser.add_argument("--workdir", default=None, help="Default working directory for steps")
    parser.add_argument("-o", "--output-dir", type=Path, default=None,
                        help="Directory to write pipeline_report.json")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print the expanded jobs and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )

    settings = Settings()
    try:
        profile = RunProfile.from_settings(settings).with_overrides(
            max_parallel=args.max_parallel,
            step_timeout=args.timeout,
            workdir=args.workdir,
        )
    except ValueError as exc:
        logger.error("%s", exc)
        sys.exit(EXIT_CONFIG_ERROR)

    output_dir = args.output_dir or (Path(settings.OUTPUT_DIR) if settings.OUTPUT_DIR else None)

    try:
        if args.dry_run:
            doc = load_document(args.document)
            plans = select_groups(build_groups(doc), args.group)
            for key, jobs in describe_jobs(plans, profile).items():
                print(f"{key}: {len(jobs)} jobs")
                for job in jobs:
                    flag = "  (soft-fail)" if job.soft_fail else ""
                    print(f"  {job.id}{flag}")
            sys.exit(EXIT_OK)

        report = run_pipeline_from_path(
            args.document,
            profile=profile,
            groups=args.group,
            output_dir=output_dir,
        )
    except ConfigError as exc:
        logger.error("configuration error: %s", exc)
        sys.exit(EXIT_CONFIG_ERROR)

    print()
    print(render_summary(report))
    sys.exit(exit_code(report))


if __name__ == "__main__":
    main()
