"""Tests for the subprocess command executor (real processes)."""
import asyncio
import sys

import pytest

from matrix_runner.core.executor import run_command
from matrix_runner.errors import ExecutionError

PY = sys.executable


class TestRunCommand:

    def test_captures_output(self):
        result = asyncio.run(run_command(PY, ["-c", "import sys; print('out'); print('err', file=sys.stderr)"]))
        assert result.exit_code == 0
        assert result.ok
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.duration_ms >= 0

    def test_nonzero_exit_is_data(self):
        result = asyncio.run(run_command(PY, ["-c", "raise SystemExit(3)"]))
        assert result.exit_code == 3
        assert not result.ok
        assert not result.timed_out

    def test_env_overlay(self):
        code = "import os; print(os.environ['MATRIX_TEST_VAR'], 'PATH' in os.environ)"
        result = asyncio.run(run_command(PY, ["-c", code], env={"MATRIX_TEST_VAR": "musl"}))
        assert result.stdout.split() == ["musl", "True"]

    def test_workdir(self, tmp_path):
        result = asyncio.run(run_command(PY, ["-c", "import os; print(os.getcwd())"], workdir=str(tmp_path)))
        assert result.stdout.strip() == str(tmp_path.resolve())

    def test_missing_binary(self):
        with pytest.raises(ExecutionError) as exc_info:
            asyncio.run(run_command("definitely-not-a-real-binary-xyz"))
        assert "definitely-not-a-real-binary-xyz" in exc_info.value.command

    def test_timeout(self):
        result = asyncio.run(run_command(PY, ["-c", "import time; time.sleep(10)"], timeout=0.5))
        assert result.timed_out
        assert result.exit_code == -1
        assert "timed out" in result.stderr

    def test_invalid_env_name(self):
        with pytest.raises(ExecutionError):
            asyncio.run(run_command(PY, ["-c", "pass"], env={"BAD=KEY": "1"}))

    def test_nul_in_argument(self):
        with pytest.raises(ExecutionError):
            asyncio.run(run_command(PY, ["-c", "pass\x00"]))

    def test_cancel_kills_child(self, tmp_path):
        """Cancelling a running command kills the child process."""
        marker = tmp_path / "finished"
        code = f"import time; time.sleep(2); open(r'{marker}', 'w').close()"

        async def scenario():
            task = asyncio.ensure_future(run_command(PY, ["-c", code]))
            await asyncio.sleep(0.3)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            await asyncio.sleep(2.5)

        asyncio.run(scenario())
        assert not marker.exists()
