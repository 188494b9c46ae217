"""cellar 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

import functools
import os
import sys
from typing import Any, Callable

import click

from cellar import __version__
from cellar.core.config import init_config
from cellar.core.exceptions import CellarError
from cellar.services.container import get_container, reset_container
from cellar.utils.logger import setup_logging

# 被用户中断时的退出码
EXIT_INTERRUPTED = 130


def _svc() -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container()


def handle_errors(fn: Callable[..., Any]) -> Callable[..., Any]:
    """把业务异常转为单行错误与非零退出码；中断不报告为失败"""
    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except CellarError as e:
            raise click.ClickException(str(e)) from e
        except KeyboardInterrupt:
            click.echo("已中断", err=True)
            sys.exit(EXIT_INTERRUPTED)
    return wrapper


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default="", help="配置文件路径（默认 $CELLAR_CONFIG）")
@click.option("--verbose", "-v", is_flag=True, help="输出调试日志")
def main(config_path: str, verbose: bool) -> None:
    """cellar - 软件包安装编排引擎"""
    level = "DEBUG" if verbose else os.getenv("CELLAR_LOG_LEVEL", "INFO")
    setup_logging(
        level=level,
        json_output=os.getenv("CELLAR_LOG_JSON", "") == "1",
    )
    try:
        init_config(config_path)
    except CellarError as e:
        raise click.ClickException(str(e)) from e
    reset_container()


# 注册各领域子命令
from cellar.cli.cmd_install import register as _reg_install  # noqa: E402
from cellar.cli.cmd_keg import register as _reg_keg  # noqa: E402
from cellar.cli.cmd_info import register as _reg_info  # noqa: E402

_reg_install(main)
_reg_keg(main)
_reg_info(main)
