"""
Matrix — axes, include/exclude rules, and expansion into concrete jobs.

Expansion order is deterministic: the cross-product follows axis
declaration order (outermost first) and each axis's declared value
sequence; forced combinations from include rules follow, in rule order.
Re-running the same config always yields the same job list, so logs of
two runs can be diffed line by line.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from matrix_runner.errors import ConfigError
from matrix_runner.policy.conditions import Predicate, never

logger = logging.getLogger(__name__)

Combo = Tuple[str, ...]


# ── Config types ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Axis:
    """One named matrix dimension with an ordered value sequence."""

    name: str
    values: Tuple[str, ...]


@dataclass(frozen=True)
class IncludeRule:
    """
    Force a combination, or decorate existing ones.

    ``values`` is an axis → value assignment.  ``extra`` carries free
    variables (``os``, ``prefix`` …) that are never enumerated as axes.
    """

    values: Tuple[Tuple[str, str], ...] = ()
    extra: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def build(
        cls,
        values: Mapping[str, str],
        extra: Optional[Mapping[str, str]] = None,
    ) -> IncludeRule:
        return cls(values=tuple(values.items()), extra=tuple((extra or {}).items()))


@dataclass(frozen=True)
class ExcludeRule:
    """Remove every combination matching this partial assignment."""

    values: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def build(cls, values: Mapping[str, str]) -> ExcludeRule:
        return cls(values=tuple(values.items()))


@dataclass(frozen=True)
class MatrixConfig:
    """Immutable matrix definition: ordered axes plus rules."""

    axes: Tuple[Axis, ...]
    include: Tuple[IncludeRule, ...] = ()
    exclude: Tuple[ExcludeRule, ...] = ()

    @classmethod
    def build(
        cls,
        axes: Mapping[str, List[str]],
        include: Optional[List[IncludeRule]] = None,
        exclude: Optional[List[ExcludeRule]] = None,
    ) -> MatrixConfig:
        return cls(
            axes=tuple(Axis(name, tuple(vals)) for name, vals in axes.items()),
            include=tuple(include or ()),
            exclude=tuple(exclude or ()),
        )

    def axis_names(self) -> Tuple[str, ...]:
        return tuple(a.name for a in self.axes)


# ── Job spec ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class JobSpec:
    """One concrete assignment of a value to every axis.  Created by expand()."""

    group: str
    values: Tuple[Tuple[str, str], ...]
    extra: Tuple[Tuple[str, str], ...] = ()
    soft_fail: bool = False
    index: int = 0

    @property
    def id(self) -> str:
        """Human-readable job id, e.g. ``build (nightly, x86_64-unknown-linux-musl)``."""
        shown = [v for _, v in self.values if v != ""]
        return f"{self.group} ({', '.join(shown)})" if shown else self.group

    def axis_values(self) -> Dict[str, str]:
        return dict(self.values)

    def variables(self) -> Dict[str, str]:
        """Everything a step template or condition may refer to."""
        merged = dict(self.extra)
        merged.update(self.values)
        merged["job"] = self.group
        return merged

    def get(self, key: str, default: str = "") -> str:
        return self.variables().get(key, default)


# ── Validation ───────────────────────────────────────────────────────────────

def validate_matrix(config: MatrixConfig) -> None:
    """Raise ConfigError if the matrix cannot be expanded."""
    if not config.axes:
        raise ConfigError("matrix declares no axes")

    names = config.axis_names()
    seen = set()
    for axis in config.axes:
        if axis.name in seen:
            raise ConfigError(f"axis '{axis.name}' declared twice")
        seen.add(axis.name)
        if not axis.values:
            raise ConfigError(f"axis '{axis.name}' has no values")
        if len(set(axis.values)) != len(axis.values):
            raise ConfigError(f"axis '{axis.name}' lists a value more than once")

    for i, rule in enumerate(config.include):
        _check_rule_axes(rule.values, names, f"include[{i}]")
        clash = sorted(set(dict(rule.extra)) & set(names))
        if clash:
            raise ConfigError(f"include[{i}] extra keys shadow axes: {clash}")

    for i, rule in enumerate(config.exclude):
        if not rule.values:
            raise ConfigError(f"exclude[{i}] names no axis")
        _check_rule_axes(rule.values, names, f"exclude[{i}]")


def _check_rule_axes(values: Tuple[Tuple[str, str], ...], names: Tuple[str, ...], label: str) -> None:
    unknown = sorted(k for k, _ in values if k not in names)
    if unknown:
        raise ConfigError(f"{label} references unknown axes: {unknown}")


# ── Expansion ────────────────────────────────────────────────────────────────

def _rule_matches(rule: Tuple[Tuple[str, str], ...], names: Tuple[str, ...], combo: Combo) -> bool:
    assignment = dict(zip(names, combo))
    return all(assignment[k] == v for k, v in rule)


def _apply_include(
    combos: Dict[Combo, Dict[str, str]],
    names: Tuple[str, ...],
    rule: IncludeRule,
    label: str,
) -> None:
    assigned = dict(rule.values)
    if set(assigned) == set(names):
        combo = tuple(assigned[n] for n in names)
        combos.setdefault(combo, {}).update(rule.extra)
        return

    matched = [c for c in combos if _rule_matches(rule.values, names, c)]
    if not matched:
        missing = [n for n in names if n not in assigned]
        raise ConfigError(
            f"{label} matches no combination and leaves axes unassigned: {missing}"
        )
    for combo in matched:
        combos[combo].update(rule.extra)


def expand(
    config: MatrixConfig,
    soft_fail: Predicate = never,
    *,
    group: str = "default",
) -> List[JobSpec]:
    """
    Expand *config* into the ordered, duplicate-free list of JobSpecs.

    1. Cross-product of all axes.
    2. Include rules: add forced combinations / merge extra variables.
    3. Exclude rules: drop every combination matching a rule.
    4. Evaluate *soft_fail* once per job.

    Raises ConfigError on an empty or malformed matrix.
    """
    validate_matrix(config)
    names = config.axis_names()

    # dict keeps insertion order and makes duplicates impossible
    combos: Dict[Combo, Dict[str, str]] = {
        combo: {} for combo in itertools.product(*(a.values for a in config.axes))
    }
    product_size = len(combos)

    for i, rule in enumerate(config.include):
        _apply_include(combos, names, rule, f"include[{i}]")

    for rule in config.exclude:
        for combo in [c for c in combos if _rule_matches(rule.values, names, c)]:
            del combos[combo]

    jobs: List[JobSpec] = []
    for index, (combo, extra) in enumerate(combos.items()):
        values = tuple(zip(names, combo))
        variables = dict(extra)
        variables.update(values)
        variables["job"] = group
        jobs.append(JobSpec(
            group=group,
            values=values,
            extra=tuple(extra.items()),
            soft_fail=bool(soft_fail(variables)),
            index=index,
        ))

    logger.debug(
        "expanded %s: %d product, %d after rules (%d soft-fail)",
        group, product_size, len(jobs), sum(1 for j in jobs if j.soft_fail),
    )
    return jobs
