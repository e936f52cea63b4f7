"""
Profile — frozen run configuration for matrix_runner.

A profile captures every tunable that affects how a pipeline is run
(not *what* it runs: that lives in the pipeline document).  The ``v0()``
classmethod returns the default profile; ``from_settings()`` builds one
from environment-driven Settings.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from matrix_runner.settings import Settings


@dataclass(frozen=True)
class RunProfile:
    """Immutable run configuration."""

    # ── Scheduling ───────────────────────────────────────────────────
    max_parallel: int = 4

    # ── Steps ────────────────────────────────────────────────────────
    step_timeout: Optional[float] = None      # seconds; None = no limit
    workdir: Optional[str] = None             # default cwd for every step

    # ── Reporting ────────────────────────────────────────────────────
    output_tail_lines: int = 40

    # ── Coverage upload ──────────────────────────────────────────────
    upload_timeout: float = 60.0

    # ── Identity ─────────────────────────────────────────────────────
    profile_id: str = "matrix-runner-v0"

    def __post_init__(self) -> None:
        if self.max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1, got {self.max_parallel}")
        if self.output_tail_lines < 0:
            raise ValueError("output_tail_lines must be >= 0")

    @classmethod
    def v0(cls) -> RunProfile:
        """Return the canonical v0 profile (all defaults)."""
        return cls()

    @classmethod
    def from_settings(cls, settings: Settings) -> RunProfile:
        return cls(
            max_parallel=settings.MAX_PARALLEL,
            step_timeout=settings.STEP_TIMEOUT,
            workdir=settings.WORKSPACE,
            output_tail_lines=settings.OUTPUT_TAIL_LINES,
            upload_timeout=settings.UPLOAD_TIMEOUT,
        )

    def with_overrides(self, **changes) -> RunProfile:
        """Copy with the non-None entries of *changes* applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
