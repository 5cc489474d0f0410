"""Tests for relpipe.platform.process module."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from relpipe.core.result import Err, Ok
from relpipe.platform.process import ProcessError, run


class TestProcessError:
    def test_str_short_command(self) -> None:
        error = ProcessError(("sfdx", "force:org:list"), 1, "", "")
        assert str(error) == "sfdx force:org:list failed (exit 1)"

    def test_str_long_command_truncated(self) -> None:
        error = ProcessError(("sfdx", "force:org:create", "-f", "def.json", "--json"), 1, "", "")
        assert str(error) == "sfdx force:org:create -f ... failed (exit 1)"

    def test_timed_out(self) -> None:
        assert ProcessError(("x",), -1, "", "Command timed out after 5s").timed_out
        assert not ProcessError(("x",), -1, "", "No such file").timed_out
        assert not ProcessError(("x",), 1, "", "timed out").timed_out

    def test_frozen(self) -> None:
        error = ProcessError(("cmd",), 1, "", "")
        with pytest.raises(AttributeError):
            error.returncode = 2  # type: ignore[misc]


class TestRun:
    def test_success_returns_stdout(self, tmp_path: Path) -> None:
        result = run([sys.executable, "-c", "print('hello')"], cwd=tmp_path)

        assert isinstance(result, Ok)
        assert result.value.strip() == "hello"

    def test_failure_keeps_stdout_and_stderr(self, tmp_path: Path) -> None:
        script = "import sys; print('{\"status\": 1}'); sys.stderr.write('bad'); sys.exit(3)"
        result = run([sys.executable, "-c", script], cwd=tmp_path)

        assert isinstance(result, Err)
        assert result.error.returncode == 3
        assert result.error.stdout.strip() == '{"status": 1}'
        assert result.error.stderr == "bad"

    def test_timeout(self, tmp_path: Path) -> None:
        result = run([sys.executable, "-c", "import time; time.sleep(5)"], cwd=tmp_path, timeout=0.2)

        assert isinstance(result, Err)
        assert result.error.timed_out

    def test_missing_executable(self, tmp_path: Path) -> None:
        result = run(["relpipe-no-such-tool"], cwd=tmp_path)

        assert isinstance(result, Err)
        assert result.error.returncode == -1
        assert not result.error.timed_out

    def test_env_is_passed(self, tmp_path: Path) -> None:
        script = "import os; print(os.environ['RELPIPE_TEST_VALUE'])"
        result = run(
            [sys.executable, "-c", script],
            cwd=tmp_path,
            env={"RELPIPE_TEST_VALUE": "xyz", "PATH": ""},
        )

        assert isinstance(result, Ok)
        assert result.value.strip() == "xyz"
