"""Shell 命令执行工具: 统一子进程调用

配方的构建步骤、安装后钩子都通过这里执行，输出写入每步独立的日志文件。
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from cellar.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


def run_cmd(
    cmd: str, *, cwd: str = ".",
    env: dict[str, str] | None = None,
    label: str = "cmd",
    log_path: Path | None = None,
) -> CommandResult:
    """通过 /bin/sh 执行命令，失败抛 ExecutionError

    Args:
        cmd: 命令字符串（允许管道、重定向等 shell 语法）
        cwd: 工作目录
        env: 环境变量（不传则继承当前进程）
        label: 日志标签
        log_path: 若指定，把命令与输出写入该文件
    """
    logger.info("  %s: %s (cwd=%s)", label, cmd, cwd)
    r = subprocess.run(
        ["/bin/sh", "-c", cmd], capture_output=True, text=True,
        cwd=cwd, env=env, check=False,
    )
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text(
            f"$ {cmd}\n{r.stdout}{r.stderr}", encoding="utf-8",
        )
    if r.returncode != 0:
        raise ExecutionError(
            f"{label}失败 (rc={r.returncode}): {r.stderr[:500]}",
            cmd=cmd, returncode=r.returncode,
        )
    return CommandResult(returncode=r.returncode, stdout=r.stdout, stderr=r.stderr)


def which(name: str, path: str | None = None) -> str | None:
    """在 PATH 中查找可执行文件"""
    return shutil.which(name, path=path)


def quote_args(args: list[str]) -> str:
    return " ".join(shlex.quote(a) for a in args)
