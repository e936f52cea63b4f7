"""
Loader — read, validate and convert the pipeline document.

Three stages, each raising ConfigError on failure:
  1. read      — YAML (.yaml/.yml) or JSON (.json) into a dict
  2. validate  — pydantic schema (unknown keys rejected)
  3. convert   — immutable core values, one GroupPlan per group, with
                 cross-field checks (conditions may only name known
                 variables, the matrix must be expandable)

Everything here runs before any job starts.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

import yaml
from pydantic import ValidationError

from matrix_runner.core.coverage import CoverageConfig
from matrix_runner.core.matrix import ExcludeRule, IncludeRule, MatrixConfig, validate_matrix
from matrix_runner.core.step import Step, StepRole
from matrix_runner.errors import ConfigError
from matrix_runner.io.schema import (
    ConditionModel,
    CoverageModel,
    GroupModel,
    MatrixModel,
    PipelineDocument,
    StepModel,
)
from matrix_runner.policy.conditions import Condition, Predicate, never

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupPlan:
    """Everything needed to run one job group, read-only for the run."""

    key: str
    name: str
    matrix: MatrixConfig
    soft_fail: Predicate
    steps: Tuple[Step, ...]
    fail_fast: bool
    max_parallel: Optional[int] = None
    env: Tuple[Tuple[str, str], ...] = ()
    workdir: Optional[str] = None
    coverage: Optional[CoverageConfig] = None


# ── Stage 1: read ────────────────────────────────────────────────────────────

def read_document(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML or JSON pipeline document into a dict."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"pipeline document not found: {path}")

    suffix = path.suffix.lower()
    try:
        text = path.read_text(encoding="utf-8")
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        elif suffix == ".json":
            data = json.loads(text)
        else:
            raise ConfigError(f"unsupported document format: {path.suffix or '(none)'}")
    except (OSError, UnicodeDecodeError, yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigError(f"cannot parse {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"document root must be a mapping, got {type(data).__name__}")
    return data


# ── Stage 2: validate ────────────────────────────────────────────────────────

def parse_document(data: Mapping[str, Any]) -> PipelineDocument:
    try:
        return PipelineDocument.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid pipeline document: {exc}") from exc


def load_document(path: Union[str, Path]) -> PipelineDocument:
    """Read + validate.  Raises ConfigError."""
    doc = parse_document(read_document(path))
    logger.debug("loaded pipeline %r with groups %s", doc.name, list(doc.groups))
    return doc


# ── Stage 3: convert ─────────────────────────────────────────────────────────

def _text(value: Any) -> str:
    """Scalar → string, with YAML booleans spelled the way they were written."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _text_map(mapping: Mapping[str, Any]) -> Dict[str, str]:
    return {str(k): _text(v) for k, v in mapping.items()}


def _argv(run: Union[str, List[Any]]) -> Union[str, List[str]]:
    return run if isinstance(run, str) else [_text(a) for a in run]


def _condition(model: ConditionModel) -> Condition:
    def _values(v):
        return [_text(x) for x in v] if isinstance(v, list) else _text(v)

    return Condition.build(
        when={k: _values(v) for k, v in model.when.items()},
        unless={k: _values(v) for k, v in model.unless.items()},
    )


def _check_condition_keys(condition: Condition, known: Set[str], label: str) -> None:
    unknown = sorted(condition.keys() - known)
    if unknown:
        raise ConfigError(f"{label} references unknown variables: {unknown}")


def _matrix(model: MatrixModel) -> MatrixConfig:
    return MatrixConfig.build(
        axes={name: [_text(v) for v in values] for name, values in model.axes.items()},
        include=[IncludeRule.build(_text_map(r.values), _text_map(r.extra)) for r in model.include],
        exclude=[ExcludeRule.build(_text_map(r)) for r in model.exclude],
    )


def _step(model: StepModel, known: Set[str], group: str) -> Step:
    guard = None
    if model.guard is not None:
        guard = _condition(model.guard)
        _check_condition_keys(guard, known, f"{group}: step '{model.name}' if")
    return Step.build(
        model.name,
        _argv(model.run),
        env=_text_map(model.env),
        guard=guard,
        workdir=model.workdir,
        timeout=model.timeout,
        role=model.role,
    )


def _coverage(model: CoverageModel, environ: Mapping[str, str]) -> CoverageConfig:
    token = None
    if model.upload.token_env:
        token = environ.get(model.upload.token_env)
        if not token:
            logger.warning("coverage token variable %s is not set; uploading without a token",
                           model.upload.token_env)
    return CoverageConfig(
        step=Step.build(
            model.name,
            _argv(model.run),
            env=_text_map(model.env),
            workdir=model.workdir,
            timeout=model.timeout,
            role=StepRole.COVERAGE,
        ),
        report_path=model.report_path,
        upload_url=model.upload.url,
        fail_on_upload_error=model.fail_on_upload_error,
        upload_name=model.upload.name,
        env_vars=tuple(model.upload.env_vars),
        flags=tuple(model.upload.flags),
        token=token,
    )


def _group(
    key: str,
    model: GroupModel,
    doc_env: Mapping[str, str],
    environ: Mapping[str, str],
) -> GroupPlan:
    matrix = _matrix(model.matrix)
    try:
        validate_matrix(matrix)
    except ConfigError as exc:
        raise ConfigError(f"{key}: {exc}") from exc

    known = set(matrix.axis_names()) | {"job"}
    for rule in matrix.include:
        known.update(k for k, _ in rule.extra)

    if model.soft_fail is None or model.soft_fail is False:
        soft_fail: Predicate = never
    elif model.soft_fail is True:
        soft_fail = Condition()
    else:
        soft_fail = _condition(model.soft_fail)
        _check_condition_keys(soft_fail, known, f"{key}: soft_fail")

    env = dict(doc_env)
    env.update(_text_map(model.env))

    steps = tuple(_step(s, known, key) for s in model.steps)
    coverage = _coverage(model.coverage, environ) if model.coverage else None
    if not steps and coverage is None:
        raise ConfigError(f"{key}: group has neither steps nor coverage")

    return GroupPlan(
        key=key,
        name=model.name or key,
        matrix=matrix,
        soft_fail=soft_fail,
        steps=steps,
        fail_fast=model.fail_fast,
        max_parallel=model.max_parallel,
        env=tuple(env.items()),
        workdir=model.workdir,
        coverage=coverage,
    )


def build_groups(
    doc: PipelineDocument,
    environ: Optional[Mapping[str, str]] = None,
) -> List[GroupPlan]:
    """Convert a validated document into GroupPlans, in document order."""
    environ = os.environ if environ is None else environ
    doc_env = _text_map(doc.env)
    return [_group(key, model, doc_env, environ) for key, model in doc.groups.items()]


def load_groups(path: Union[str, Path], environ: Optional[Mapping[str, str]] = None) -> Tuple[PipelineDocument, List[GroupPlan]]:
    """Read, validate and convert a pipeline document in one call."""
    doc = load_document(path)
    return doc, build_groups(doc, environ)
