"""
Pipelines Router
Expand and run matrix build/test/coverage pipelines.

The request carries the pipeline document inline (the same structure as
the YAML/JSON file the CLI reads).  Configuration errors are reported as
422 before any job runs.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from matrix_runner import PACKAGE_NAME, RUNNER_VERSION, SCHEMA_VERSION  # type: ignore
from matrix_runner.errors import ConfigError  # type: ignore
from matrix_runner.io.loader import build_groups, parse_document  # type: ignore
from matrix_runner.io.schema import PipelineReport  # type: ignore
from matrix_runner.policy.profile import RunProfile  # type: ignore
from matrix_runner.runner import describe_jobs, run_document, select_groups  # type: ignore
from matrix_runner.settings import Settings as RunnerSettings  # type: ignore

logger = logging.getLogger(__name__)


# =============================================================================
# Request/Response Models
# =============================================================================

class PipelineRequest(BaseModel):
    """Request to expand or run a pipeline document."""
    document: Dict[str, Any] = Field(..., description="Pipeline document (groups, matrices, steps)")
    groups: Optional[List[str]] = Field(
        None,
        description="Group keys to include (default: all)",
    )
    max_parallel: Optional[int] = Field(
        None, ge=1,
        description="Override the default per-group job concurrency",
    )


class ExpandedJob(BaseModel):
    job_id: str
    index: int
    values: Dict[str, str]
    extra: Dict[str, str] = Field(default_factory=dict)
    soft_fail: bool = False


class ExpandedGroup(BaseModel):
    group: str
    job_count: int
    jobs: List[ExpandedJob] = Field(default_factory=list)


class ExpandResponse(BaseModel):
    package_name: str = PACKAGE_NAME  # type: ignore
    runner_version: str = RUNNER_VERSION  # type: ignore
    schema_version: str = SCHEMA_VERSION  # type: ignore
    pipeline: str
    groups: List[ExpandedGroup] = Field(default_factory=list)


# =============================================================================
# Helpers
# =============================================================================

def _profile(request: PipelineRequest) -> RunProfile:
    try:
        return RunProfile.from_settings(RunnerSettings()).with_overrides(
            max_parallel=request.max_parallel,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Invalid runner settings: {exc}",
        )


def _config_error(exc: ConfigError) -> HTTPException:
    logger.warning("rejected pipeline document: %s", exc)
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=f"Configuration error: {exc}",
    )


# =============================================================================
# Router
# =============================================================================

router = APIRouter()


@router.post("/expand", response_model=ExpandResponse)
async def expand_pipeline(request: PipelineRequest):
    """
    Expand every group's matrix without running anything.

    Returns the concrete jobs in run order, with their soft-fail flags.
    """
    try:
        doc = parse_document(request.document)
        plans = select_groups(build_groups(doc), request.groups)
        expanded = describe_jobs(plans, _profile(request))
    except ConfigError as exc:
        raise _config_error(exc)

    return ExpandResponse(
        pipeline=doc.name,
        groups=[
            ExpandedGroup(
                group=key,
                job_count=len(jobs),
                jobs=[
                    ExpandedJob(
                        job_id=j.id,
                        index=j.index,
                        values=j.axis_values(),
                        extra=dict(j.extra),
                        soft_fail=j.soft_fail,
                    )
                    for j in jobs
                ],
            )
            for key, jobs in expanded.items()
        ],
    )


@router.post("/run", response_model=PipelineReport)
async def run_pipeline_document(request: PipelineRequest):
    """
    Run a pipeline document and return its report.

    The HTTP status is 200 whether the pipeline passed or failed; check
    ``status`` in the body.  A configuration error is a 422.
    """
    try:
        doc = parse_document(request.document)
        report = await run_document(doc, profile=_profile(request), groups=request.groups)
    except ConfigError as exc:
        raise _config_error(exc)

    logger.info("pipeline %s finished: %s", doc.name, report.status)
    return report
