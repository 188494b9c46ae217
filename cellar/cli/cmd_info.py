"""CLI: 查询命令（依赖计划 / 选项 / 已安装列表）"""

from __future__ import annotations

import click

from cellar.cli import _svc, handle_errors
from cellar.services.installer import InstallFlags


def register(group: click.Group) -> None:
    group.add_command(deps)
    group.add_command(options)
    group.add_command(list_installed)


@click.command()
@click.argument("name")
@click.option("--option", "-o", "opts", multiple=True, help="构建选项（可多次指定）")
@click.option("--build-from-source", "-s", is_flag=True, help="按源码构建计算（包含 build 依赖）")
@click.option("--installed", is_flag=True, help="同时列出已满足、无需安装的依赖")
@handle_errors
def deps(name: str, opts: tuple[str, ...], build_from_source: bool, installed: bool) -> None:
    """按安装顺序列出安装计划: 依赖在前，配方本身在最后"""
    flags = InstallFlags(build_from_source=build_from_source)
    plan = _svc().installs.plan(name, options=opts, flags=flags)
    for entry in plan:
        extra = f" ({', '.join(sorted(entry.options))})" if entry.options else ""
        click.echo(f"{entry.name}{extra}")
    if installed:
        for dep in plan.satisfied:
            click.echo(f"{dep} [已安装]")


@click.command()
@click.argument("name")
@handle_errors
def options(name: str) -> None:
    """列出配方声明的构建选项"""
    items = _svc().installs.options_for(name)
    if not items:
        click.echo(f"{name} 没有构建选项。")
        return
    for opt in items:
        click.echo(opt.flag)
        if opt.description:
            click.echo(f"\t{opt.description}")


@click.command(name="list")
@handle_errors
def list_installed() -> None:
    """列出已安装的配方"""
    packages = _svc().installs.list_installed()
    if not packages:
        click.echo("没有已安装的配方。")
        return
    for p in packages:
        flags = []
        if p.linked:
            flags.append(f"linked={p.linked}")
        if p.pinned:
            flags.append("pinned")
        suffix = f"  [{', '.join(flags)}]" if flags else ""
        click.echo(f"  {p.name:20s} {' '.join(p.versions)}{suffix}")
