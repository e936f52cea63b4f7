"""
matrix_runner — Matrix-expansion build/test/coverage pipeline runner.

Expands each job group's build matrix (toolchain × target × features …)
into concrete jobs, runs their ordered steps as external commands, and
reports an aggregate status per group.

No job DAGs, no build cache, no secrets storage.
"""

__version__ = "0.1.0"
RUNNER_VERSION = "v0"
PACKAGE_NAME = "matrix_runner"
SCHEMA_VERSION = "0.1"
