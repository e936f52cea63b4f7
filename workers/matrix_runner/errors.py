"""
Errors — exception taxonomy for matrix_runner.

Only ``ConfigError`` ever reaches the top level: it is raised while the
pipeline document is loaded or the matrix is expanded, before any job
runs.  ``ExecutionError`` and ``UploadError`` are raised by the command
and upload boundaries and converted into failed step outcomes by their
callers.  A non-zero exit code is not an exception at all.
"""

from typing import Optional


class MatrixRunnerError(Exception):
    """Base class for every error raised by matrix_runner."""


class ConfigError(MatrixRunnerError):
    """Malformed pipeline document, matrix, rule or step template."""


class ExecutionError(MatrixRunnerError):
    """A command could not be launched (binary missing, bad workdir …)."""

    def __init__(self, message: str, *, command: str = ""):
        super().__init__(message)
        self.command = command


class UploadError(MatrixRunnerError):
    """Coverage upload failed: transport error or non-2xx response."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
