"""
Runner settings — environment-driven defaults.

Every field can be overridden with a ``MATRIX_RUNNER_``-prefixed
environment variable or a ``.env`` file, e.g. ``MATRIX_RUNNER_MAX_PARALLEL=8``.
"""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runner settings"""

    model_config = SettingsConfigDict(
        env_prefix="MATRIX_RUNNER_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Scheduling
    MAX_PARALLEL: int = 4

    # Steps
    STEP_TIMEOUT: Optional[float] = None  # seconds
    WORKSPACE: Optional[str] = None

    # Reporting
    OUTPUT_TAIL_LINES: int = 40
    OUTPUT_DIR: Optional[str] = None

    # Coverage upload
    UPLOAD_TIMEOUT: float = 60.0
