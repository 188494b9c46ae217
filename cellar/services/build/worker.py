"""构建子进程入口

由 BuildExecutor 以 `python -m cellar.services.build.worker` 启动，
环境变量 CELLAR_ERROR_PIPE 给出结果管道的 fd。

流程:
  1. 解压源码包到临时暂存目录（单一顶层目录时进入该目录）
  2. 按顺序执行配方的 build 步骤，每步输出写入 <logs>/NN.<step>.log
  3. 向管道写入唯一一份 JSON 结果后退出

步骤可以是字符串，也可以是 {run: ..., if_option: ...}（仅在选项开启时执行）。
命令中的 {prefix} {name} {version} {source} 会被替换。
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
import sys
import tarfile
import tempfile
from pathlib import Path
from typing import Any

import click

from cellar.core.exceptions import CellarError
from cellar.core.formulary import FormulaRepository
from cellar.core.models import Formula
from cellar.services.build.executor import ERROR_PIPE_ENV, INTERRUPTED_EXIT
from cellar.utils.logger import setup_logging
from cellar.utils.shell import run_cmd

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{(prefix|name|version|source)\}")
_SLUG_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def render_step(cmd: str, values: dict[str, str]) -> str:
    """只替换已知占位符，保留 shell 的 ${VAR} 写法"""
    return _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], cmd)


def step_slug(cmd: str) -> str:
    first = cmd.strip().split()[0] if cmd.strip() else "step"
    return _SLUG_RE.sub("_", Path(first).name).strip("._")[:32] or "step"


class FormulaBuild:
    """在暂存目录中执行一个配方的构建步骤"""

    def __init__(
        self,
        formula: Formula,
        *,
        prefix: Path,
        logs_dir: Path,
        options: tuple[str, ...] = (),
        source: Path | None = None,
        tmp_root: str = "",
        debug: bool = False,
        interactive: bool = False,
    ) -> None:
        self.formula = formula
        self.prefix = prefix
        self.logs_dir = logs_dir
        self.options = frozenset(o[2:] if o.startswith("--") else o for o in options)
        self.source = source
        self.tmp_root = tmp_root or None
        self.debug = debug
        self.interactive = interactive

    def steps(self) -> list[str]:
        """按选项过滤后的构建命令"""
        selected: list[str] = []
        for step in self.formula.build_steps:
            if isinstance(step, dict):
                needed = step.get("if_option")
                if needed and needed not in self.options:
                    continue
                selected.append(str(step["run"]))
            else:
                selected.append(str(step))
        return selected

    def stage(self, staging: Path) -> Path:
        """准备源码，返回构建工作目录"""
        if self.source is None:
            return staging
        if tarfile.is_tarfile(self.source):
            with tarfile.open(self.source) as tar:
                tar.extractall(staging, filter="data")
        else:
            shutil.copy2(self.source, staging / self.source.name)
        entries = [p for p in staging.iterdir() if not p.name.startswith(".")]
        if len(entries) == 1 and entries[0].is_dir():
            return entries[0]
        return staging

    def run(self) -> None:
        staging = Path(tempfile.mkdtemp(prefix=f"{self.formula.name}-", dir=self.tmp_root))
        try:
            workdir = self.stage(staging)
            self.prefix.mkdir(parents=True, exist_ok=True)
            env = {k: v for k, v in os.environ.items() if k != ERROR_PIPE_ENV}
            if self.interactive:
                self._shell(workdir, env)
                return
            values = {
                "prefix": str(self.prefix),
                "name": self.formula.name,
                "version": self.formula.version,
                "source": str(workdir),
            }
            for i, raw in enumerate(self.steps(), start=1):
                cmd = render_step(raw, values)
                log_path = self.logs_dir / f"{i:02d}.{step_slug(cmd)}.log"
                run_cmd(cmd, cwd=str(workdir), env=env, label=f"步骤 {i}", log_path=log_path)
        finally:
            if self.debug:
                logger.info("调试模式，保留暂存目录: %s", staging)
            else:
                shutil.rmtree(staging, ignore_errors=True)

    def _shell(self, workdir: Path, env: dict[str, str]) -> None:
        shell = env.get("SHELL", "/bin/sh")
        click.echo(f"交互式构建: 在 {workdir} 中手动安装到 {self.prefix}，退出 shell 结束")
        subprocess.run([shell], cwd=str(workdir), env={**env, "PREFIX": str(self.prefix)}, check=False)


def error_payload(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    if isinstance(exc, CellarError):
        fields = {k: v for k, v in exc.to_dict().items() if k not in ("code", "message")}
        fields["code"] = exc.code
    return {
        "status": "error",
        "kind": type(exc).__name__,
        "message": str(exc),
        "fields": fields,
    }


def _write_result(payload: dict[str, Any]) -> None:
    fd = os.environ.get(ERROR_PIPE_ENV)
    if not fd:
        return
    with os.fdopen(int(fd), "w", encoding="utf-8") as pipe:
        json.dump(payload, pipe)


@click.command()
@click.argument("formula_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--prefix", required=True, type=click.Path(path_type=Path), help="keg 安装目录")
@click.option("--logs", "logs_dir", required=True, type=click.Path(path_type=Path), help="构建日志目录")
@click.option("--source", type=click.Path(exists=True, path_type=Path), help="源码包")
@click.option("--tmp", "tmp_root", default="", help="暂存目录的父目录")
@click.option("--option", "options", multiple=True, help="构建选项（可多次指定）")
@click.option("--debug", is_flag=True, help="保留暂存目录")
@click.option("--interactive", is_flag=True, help="进入交互式 shell 手动构建")
@click.option("--build-bottle", is_flag=True, help="构建可重新分发的产物")
def main(
    formula_file: Path, prefix: Path, logs_dir: Path, source: Path | None,
    tmp_root: str, options: tuple[str, ...], debug: bool, interactive: bool,
    build_bottle: bool,
) -> None:
    """执行单个配方的构建（内部命令）"""
    setup_logging(level=os.getenv("CELLAR_LOG_LEVEL", "INFO"))
    try:
        formula = FormulaRepository.load_file(formula_file)
        if build_bottle:
            logger.info("%s: 以可重新分发模式构建", formula.name)
        FormulaBuild(
            formula, prefix=prefix, logs_dir=logs_dir, options=options,
            source=source, tmp_root=tmp_root, debug=debug, interactive=interactive,
        ).run()
    except KeyboardInterrupt:
        sys.exit(INTERRUPTED_EXIT)
    except CellarError as e:
        _write_result(error_payload(e))
        sys.exit(1)
    except Exception as e:  # noqa: BLE001 - 进程边界，所有错误都要上报给父进程
        logger.exception("构建进程内部错误")
        _write_result(error_payload(e))
        sys.exit(1)
    _write_result({"status": "ok"})


if __name__ == "__main__":
    main()
