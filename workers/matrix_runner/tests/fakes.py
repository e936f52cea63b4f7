"""
Test doubles for matrix_runner.

``FakeExecutor`` stands in for ``run_command`` without spawning
processes; ``has`` builds argv predicates for its rules.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional, Tuple

from matrix_runner.core.executor import CommandResult
from matrix_runner.errors import ExecutionError


class FakeExecutor:
    """
    Async stand-in for ``run_command``.

    Every call is recorded as ``(argv, env, workdir, timeout)``.  The
    result is picked by the first rule whose predicate accepts the argv;
    unmatched commands exit 0.  A rule may also return an exception
    instance, which is raised.
    """

    def __init__(self, delay: float = 0.0):
        self.calls: List[Tuple[List[str], Dict[str, str], Optional[str], Optional[float]]] = []
        self.rules: List[Tuple[Callable[[List[str]], bool], object]] = []
        self.delay = delay
        self.running = 0
        self.peak = 0

    def fail_when(self, predicate: Callable[[List[str]], bool], exit_code: int = 1,
                  stdout: str = "", stderr: str = "boom") -> "FakeExecutor":
        self.rules.append((predicate, CommandResult(exit_code, stdout, stderr)))
        return self

    def raise_when(self, predicate: Callable[[List[str]], bool]) -> "FakeExecutor":
        self.rules.append((predicate, ExecutionError("could not launch", command="x")))
        return self

    def on(self, predicate: Callable[[List[str]], bool], result: CommandResult) -> "FakeExecutor":
        self.rules.append((predicate, result))
        return self

    def argvs(self) -> List[List[str]]:
        return [c[0] for c in self.calls]

    async def __call__(self, cmd, args=(), env=None, workdir=None, timeout=None) -> CommandResult:
        argv = [cmd, *args]
        self.calls.append((argv, dict(env or {}), workdir, timeout))
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.running -= 1
        for predicate, outcome in self.rules:
            if predicate(argv):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return CommandResult(0, stdout=" ".join(argv))


def has(word: str) -> Callable[[List[str]], bool]:
    """Predicate: *word* appears somewhere in the argv."""
    return lambda argv: any(word in a for a in argv)

