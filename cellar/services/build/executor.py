"""构建执行器

职责:
- 为单个配方启动独立的构建子进程（python -m cellar.services.build.worker）
- 子进程只拿到显式参数与最小化环境，不继承父进程累积的状态
- 通过单向管道接收结构化结果: {"status": "ok"} 或
  {"status": "error", "kind": ..., "message": ..., "fields": {...}}
- 区分三种失败: 用户中断（重新抛 KeyboardInterrupt）、
  子进程上报的结构化错误、无结果的异常退出
- 任何失败都删除本次构建的 keg 目录，不留半成品
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path

from cellar.core.exceptions import BuildError
from cellar.core.keg import rmdir_if_possible
from cellar.core.models import Formula
from cellar.utils.shell import quote_args

logger = logging.getLogger(__name__)

ERROR_PIPE_ENV = "CELLAR_ERROR_PIPE"

# 子进程被 SIGINT 中断时的退出码
INTERRUPTED_EXIT = 130

# 从父进程透传给构建子进程的环境变量
_PASSTHROUGH_ENV = ("HOME", "USER", "LOGNAME", "SHELL", "TERM", "LANG", "LC_ALL", "TMPDIR")


@dataclass(frozen=True)
class BuildRequest:
    """一次构建的全部输入，原样序列化到子进程命令行"""

    formula: Formula
    prefix: Path
    options: tuple[str, ...] = ()
    source: Path | None = None
    debug: bool = False
    interactive: bool = False
    build_bottle: bool = False
    extra_env: dict[str, str] = field(default_factory=dict)


class BuildExecutor:
    """在隔离子进程中执行单个配方的构建"""

    def __init__(
        self,
        *,
        build_path: str,
        logs_dir: Path,
        build_tmp: str = "",
        python: str = sys.executable,
        interrupt_timeout: float = 10.0,
    ) -> None:
        self.build_path = build_path
        self.logs_dir = Path(logs_dir)
        self.build_tmp = build_tmp
        self.python = python
        self.interrupt_timeout = interrupt_timeout

    def log_dir_for(self, formula: Formula) -> Path:
        return self.logs_dir / formula.name

    def command(self, request: BuildRequest) -> list[str]:
        if request.formula.path is None:
            raise BuildError(request.formula.name, "配方没有关联的定义文件，无法构建")
        cmd = [
            self.python, "-m", "cellar.services.build.worker",
            str(request.formula.path),
            "--prefix", str(request.prefix),
            "--logs", str(self.log_dir_for(request.formula)),
        ]
        if request.source is not None:
            cmd += ["--source", str(request.source)]
        if self.build_tmp:
            cmd += ["--tmp", self.build_tmp]
        for opt in request.options:
            cmd += ["--option", opt]
        if request.debug:
            cmd.append("--debug")
        if request.interactive:
            cmd.append("--interactive")
        if request.build_bottle:
            cmd.append("--build-bottle")
        return cmd

    def base_environment(self) -> dict[str, str]:
        """最小化环境，每次构建与安装后钩子都从同一快照开始"""
        env = {k: os.environ[k] for k in _PASSTHROUGH_ENV if k in os.environ}
        env["PATH"] = self.build_path
        return env

    def environment(self, request: BuildRequest, pipe_fd: int) -> dict[str, str]:
        env = self.base_environment()
        env["PYTHONPATH"] = str(Path(__file__).resolve().parents[3])
        env[ERROR_PIPE_ENV] = str(pipe_fd)
        env.update(request.extra_env)
        return env

    def build(self, request: BuildRequest) -> list[Path]:
        """执行构建，成功返回构建日志列表；失败时清理 keg 后抛出"""
        name = request.formula.name
        log_dir = self.log_dir_for(request.formula)
        if log_dir.exists():
            shutil.rmtree(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        cmd = self.command(request)
        read_fd, write_fd = os.pipe()
        logger.info("构建 %s: %s", name, quote_args(cmd))
        try:
            proc = subprocess.Popen(
                cmd, env=self.environment(request, write_fd),
                pass_fds=(write_fd,), close_fds=True,
            )
        except OSError as e:
            os.close(read_fd)
            raise BuildError(name, f"无法启动构建进程: {e}") from e
        finally:
            os.close(write_fd)

        try:
            try:
                with os.fdopen(read_fd, "rb") as pipe:
                    payload = pipe.read()
                returncode = proc.wait()
            except KeyboardInterrupt:
                self._interrupt(proc)
                raise
            self._check(request, returncode, payload, log_dir)
            if not self._has_files(request.prefix):
                raise BuildError(name, "构建完成但没有安装任何文件", kind="EmptyInstallation")
        except BaseException:
            self.cleanup(request.prefix)
            raise

        logger.info("构建完成: %s", name)
        return self.logs(request.formula)

    def logs(self, formula: Formula) -> list[Path]:
        log_dir = self.log_dir_for(formula)
        return sorted(log_dir.glob("*.log")) if log_dir.is_dir() else []

    def _check(self, request: BuildRequest, returncode: int, payload: bytes, log_dir: Path) -> None:
        name = request.formula.name
        if returncode in (INTERRUPTED_EXIT, -signal.SIGINT):
            logger.warning("构建 %s 被中断", name)
            raise KeyboardInterrupt

        logs = [str(p) for p in self.logs(request.formula)]
        result = self._decode(name, payload, logs)
        if result is not None and result.get("status") == "error":
            raise BuildError(
                name,
                str(result.get("message", "")),
                kind=str(result.get("kind", "BuildError")),
                fields=dict(result.get("fields") or {}),
                logs=logs,
            )
        if returncode != 0:
            raise BuildError(name, f"构建进程异常退出 (rc={returncode})，日志: {log_dir}", logs=logs)

    @staticmethod
    def _decode(name: str, payload: bytes, logs: list[str]) -> dict | None:
        if not payload.strip():
            return None
        try:
            result = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise BuildError(name, f"无法解析构建进程的结果: {e}", logs=logs) from e
        if not isinstance(result, dict):
            raise BuildError(name, "构建进程返回了无效的结果", logs=logs)
        return result

    def _interrupt(self, proc: subprocess.Popen) -> None:
        """把中断传给子进程，超时未退出则强杀"""
        if proc.poll() is not None:
            return
        proc.send_signal(signal.SIGINT)
        try:
            proc.wait(timeout=self.interrupt_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("构建进程 %d 未响应中断，强制结束", proc.pid)
            proc.kill()
            proc.wait()

    @staticmethod
    def _has_files(prefix: Path) -> bool:
        return prefix.is_dir() and any(prefix.iterdir())

    @staticmethod
    def cleanup(prefix: Path) -> None:
        """删除半成品 keg，rack 为空时一并删除"""
        if prefix.is_dir():
            shutil.rmtree(prefix, ignore_errors=True)
            logger.info("已清理未完成的安装目录: %s", prefix)
        rmdir_if_possible(prefix.parent)
