"""shell.py run_cmd 单元测试"""

from __future__ import annotations

import os

import pytest

from cellar.core.exceptions import ExecutionError
from cellar.utils.shell import quote_args, run_cmd, which


class TestRunCmd:
    def test_success(self, tmp_path) -> None:
        r = run_cmd("echo hello", cwd=str(tmp_path), label="test")
        assert r.success
        assert "hello" in r.stdout

    def test_failure_raises_execution_error(self, tmp_path) -> None:
        with pytest.raises(ExecutionError, match="cmd失败") as exc:
            run_cmd("exit 3", cwd=str(tmp_path))
        assert exc.value.returncode == 3
        assert exc.value.cmd == "exit 3"

    def test_custom_label_in_error(self, tmp_path) -> None:
        with pytest.raises(ExecutionError, match="mybuild失败"):
            run_cmd("false", cwd=str(tmp_path), label="mybuild")

    def test_env_passed(self, tmp_path) -> None:
        env = {**os.environ, "MY_TEST_VAR": "42"}
        r = run_cmd("env", cwd=str(tmp_path), env=env, label="env_test")
        assert "MY_TEST_VAR=42" in r.stdout

    def test_output_written_to_log(self, tmp_path) -> None:
        log = tmp_path / "logs" / "01.echo.log"
        with pytest.raises(ExecutionError):
            run_cmd("echo out; echo err >&2; false", cwd=str(tmp_path), log_path=log)
        text = log.read_text(encoding="utf-8")
        assert text.startswith("$ echo out")
        assert "out" in text and "err" in text


def test_which_respects_path(tmp_path) -> None:
    exe = tmp_path / "tool"
    exe.write_text("#!/bin/sh\n")
    exe.chmod(0o755)
    assert which("tool", path=str(tmp_path)) == str(exe)
    assert which("tool", path=str(tmp_path / "empty")) is None


def test_quote_args() -> None:
    assert quote_args(["a", "b c"]) == "a 'b c'"
