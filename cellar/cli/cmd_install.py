"""CLI: 安装与升级命令"""

from __future__ import annotations

import sys

import click

from cellar.cli import _svc, handle_errors
from cellar.services.install_service import InstallReport
from cellar.services.installer import InstallFlags


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(upgrade)


def _print_report(report: InstallReport) -> None:
    for r in report.results:
        if r.caveats:
            click.echo(f"==> 注意事项 ({r.name})")
            click.echo(r.caveats)
    if len(report.results) > 1 or not report.ok:
        click.echo("==> 汇总")
        for r in report.results:
            mark = "✓" if r.ok else "✗"
            summary = r.message.splitlines()[0] if r.message else ""
            click.echo(f"  {mark} {r.name:20s} {r.status:18s} {summary}")
            if r.error:
                for log in r.error.get("logs", []):
                    click.echo(f"      日志: {log}")


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--build-from-source", "-s", is_flag=True, help="强制从源码构建")
@click.option("--force-bottle", is_flag=True, help="强制使用 bottle（存在时）")
@click.option("--ignore-dependencies", is_flag=True, help="不安装依赖")
@click.option("--only-dependencies", is_flag=True, help="只安装依赖，不安装配方本身")
@click.option("--force", "-f", is_flag=True, help="忽略冲突，覆盖已安装的同版本")
@click.option("--interactive", "-i", is_flag=True, help="进入交互式 shell 手动构建")
@click.option("--debug", "-d", is_flag=True, help="构建失败时保留暂存目录")
@click.option("--build-bottle", is_flag=True, help="构建可重新分发的产物")
@click.option("--option", "-o", "options", multiple=True, help="构建选项，如 with-foo（可多次指定）")
@handle_errors
def install(
    names: tuple[str, ...], build_from_source: bool, force_bottle: bool,
    ignore_dependencies: bool, only_dependencies: bool, force: bool,
    interactive: bool, debug: bool, build_bottle: bool, options: tuple[str, ...],
) -> None:
    """安装一个或多个配方"""
    flags = InstallFlags(
        build_from_source=build_from_source,
        force_bottle=force_bottle,
        ignore_deps=ignore_dependencies,
        only_deps=only_dependencies,
        force=force,
        interactive=interactive,
        debug=debug,
        build_bottle=build_bottle,
    )
    report = _svc().installs.install(names, flags=flags, options=options)
    _print_report(report)
    sys.exit(report.exit_code)


@click.command()
@click.argument("names", nargs=-1)
@click.option("--build-from-source", "-s", is_flag=True, help="强制从源码构建")
@click.option("--force-bottle", is_flag=True, help="强制使用 bottle（存在时）")
@click.option("--debug", "-d", is_flag=True, help="构建失败时保留暂存目录")
@handle_errors
def upgrade(names: tuple[str, ...], build_from_source: bool, force_bottle: bool, debug: bool) -> None:
    """升级过期配方（不指定名称时升级全部未 pin 的过期配方）"""
    flags = InstallFlags(build_from_source=build_from_source, force_bottle=force_bottle, debug=debug)
    report = _svc().installs.upgrade(names, flags=flags)
    if not report.results:
        click.echo("没有需要升级的配方。")
        return
    _print_report(report)
    sys.exit(report.exit_code)
