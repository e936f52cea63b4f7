"""
Step — one named command inside a job, with templating and a guard.

Command, arguments, environment values and workdir may contain
``{key}`` placeholders filled from the job's variables (axis values,
include extras, and ``job`` = group name).  Literal braces are written
``{{`` / ``}}``.
"""
from __future__ import annotations

import shlex
import string
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from matrix_runner.core.matrix import JobSpec
from matrix_runner.errors import ConfigError
from matrix_runner.policy.conditions import Predicate, always


class StepRole(str, Enum):
    """
    What a step is for.  A label carried onto its outcome and the report;
    it does not change how the step runs.  ``coverage`` and ``upload`` are
    assigned by the coverage reporter.
    """

    STEP = "step"
    BUILD = "build"
    TEST = "test"
    COVERAGE = "coverage"
    UPLOAD = "upload"


@dataclass(frozen=True)
class Step:
    """Immutable step definition."""

    name: str
    command: str
    args: Tuple[str, ...] = ()
    env: Tuple[Tuple[str, str], ...] = ()
    guard: Predicate = always
    workdir: Optional[str] = None
    timeout: Optional[float] = None
    role: StepRole = StepRole.STEP

    @classmethod
    def build(
        cls,
        name: str,
        run: Union[str, Sequence[str]],
        *,
        env: Optional[Mapping[str, str]] = None,
        guard: Optional[Predicate] = None,
        workdir: Optional[str] = None,
        timeout: Optional[float] = None,
        role: StepRole = StepRole.STEP,
    ) -> Step:
        """Build a step from an argv list or a shell-like string."""
        argv = shlex.split(run) if isinstance(run, str) else [str(a) for a in run]
        if not argv:
            raise ConfigError(f"step '{name}' has an empty command")
        return cls(
            name=name,
            command=argv[0],
            args=tuple(argv[1:]),
            env=tuple((env or {}).items()),
            guard=guard or always,
            workdir=workdir,
            timeout=timeout,
            role=role,
        )


@dataclass(frozen=True)
class RenderedCommand:
    """A step's command with every placeholder resolved for one job."""

    command: str
    args: Tuple[str, ...]
    env: Dict[str, str]
    workdir: Optional[str]


_FORMATTER = string.Formatter()


def template_fields(text: str) -> List[str]:
    """Placeholder names used in *text* (``{target}`` → ``target``)."""
    try:
        return [f for _, f, _, _ in _FORMATTER.parse(text) if f is not None]
    except ValueError as exc:
        raise ConfigError(f"malformed template {text!r}: {exc}") from exc


def render_template(text: str, variables: Mapping[str, str], label: str) -> str:
    """Fill ``{key}`` placeholders in *text*.  Raises ConfigError labelled *label*."""
    try:
        return text.format_map(variables)
    except KeyError as exc:
        raise ConfigError(f"{label}: unknown variable {exc.args[0]!r} in {text!r}") from exc
    except (ValueError, IndexError) as exc:
        raise ConfigError(f"{label}: malformed template {text!r}: {exc}") from exc


def render_step(step: Step, spec: JobSpec) -> RenderedCommand:
    """Resolve *step*'s placeholders against *spec*.  Raises ConfigError."""
    variables = spec.variables()
    label = f"step '{step.name}'"
    return RenderedCommand(
        command=render_template(step.command, variables, label),
        args=tuple(render_template(a, variables, label) for a in step.args),
        env={k: render_template(v, variables, label) for k, v in step.env},
        workdir=render_template(step.workdir, variables, label) if step.workdir else None,
    )


def check_templates(steps: Iterable[Step], jobs: Iterable[JobSpec]) -> None:
    """Render every step for every job once so bad placeholders fail early."""
    steps = list(steps)
    for spec in jobs:
        for step in steps:
            render_step(step, spec)
