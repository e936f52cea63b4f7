"""
Conditions — declarative predicates over a job's variables.

A condition is written in the pipeline document as::

    {when: {toolchain: nightly}, unless: {target: [i686-unknown-linux-musl]}}

and is true iff every ``when`` key matches one of its values and no
``unless`` key does.  An empty condition is always true.

Conditions are used for two things: the per-group soft-fail policy
(evaluated once per job at expansion time) and per-step guards.
Any plain callable taking a ``Mapping[str, str]`` works in their place.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

Predicate = Callable[[Mapping[str, str]], bool]

ConditionValues = Union[str, List[str], Tuple[str, ...]]

_Clause = Tuple[Tuple[str, Tuple[str, ...]], ...]


def _freeze(mapping: Optional[Mapping[str, ConditionValues]]) -> _Clause:
    if not mapping:
        return ()
    frozen = []
    for key, values in mapping.items():
        if isinstance(values, str):
            values = (values,)
        frozen.append((str(key), tuple(str(v) for v in values)))
    return tuple(frozen)


def _matches(clause_key: str, accepted: Tuple[str, ...], variables: Mapping[str, str]) -> bool:
    return variables.get(clause_key, "") in accepted


@dataclass(frozen=True)
class Condition:
    """Immutable when/unless predicate."""

    when: _Clause = ()
    unless: _Clause = ()

    @classmethod
    def build(
        cls,
        when: Optional[Mapping[str, ConditionValues]] = None,
        unless: Optional[Mapping[str, ConditionValues]] = None,
    ) -> Condition:
        return cls(when=_freeze(when), unless=_freeze(unless))

    def keys(self) -> FrozenSet[str]:
        """Every variable name the condition reads."""
        return frozenset(k for k, _ in self.when) | frozenset(k for k, _ in self.unless)

    def __call__(self, variables: Mapping[str, str]) -> bool:
        if not all(_matches(k, vals, variables) for k, vals in self.when):
            return False
        return not any(_matches(k, vals, variables) for k, vals in self.unless)

    def to_dict(self) -> Dict[str, Dict[str, List[str]]]:
        return {
            "when": {k: list(v) for k, v in self.when},
            "unless": {k: list(v) for k, v in self.unless},
        }


ALWAYS = Condition()


def always(_variables: Mapping[str, str]) -> bool:
    return True


def never(_variables: Mapping[str, str]) -> bool:
    return False
