"""CLI: keg 管理命令（卸载 / 链接 / pin）"""

from __future__ import annotations

import click

from cellar.cli import _svc, handle_errors


def register(group: click.Group) -> None:
    group.add_command(uninstall)
    group.add_command(link)
    group.add_command(unlink)
    group.add_command(pin)
    group.add_command(unpin)


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--force", "-f", is_flag=True, help="卸载全部已安装版本")
@handle_errors
def uninstall(names: tuple[str, ...], force: bool) -> None:
    """卸载配方"""
    for line in _svc().installs.uninstall(names, force=force):
        click.echo(line)


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--overwrite", is_flag=True, help="删除占用目标路径的文件后再链接")
@click.option("--dry-run", "-n", is_flag=True, help="只列出将受影响的文件")
@click.option("--force", "-f", is_flag=True, help="允许链接 keg-only 配方")
@handle_errors
def link(names: tuple[str, ...], overwrite: bool, dry_run: bool, force: bool) -> None:
    """把已安装的 keg 链接进共享前缀"""
    svc = _svc().installs
    for name in names:
        paths = svc.link(name, overwrite=overwrite, dry_run=dry_run, force=force)
        if dry_run:
            verb = "将被删除" if overwrite else "将被链接"
            click.echo(f"{name}: 以下 {len(paths)} 个文件{verb}:")
            for p in paths:
                click.echo(f"  {p}")
        else:
            click.echo(f"已链接 {name}: {len(paths)} 个文件")


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--dry-run", "-n", is_flag=True, help="只列出将被移除的链接")
@handle_errors
def unlink(names: tuple[str, ...], dry_run: bool) -> None:
    """移除 keg 在共享前缀中的链接"""
    svc = _svc().installs
    for name in names:
        paths = svc.unlink(name, dry_run=dry_run)
        if dry_run:
            click.echo(f"{name}: 以下 {len(paths)} 个链接将被移除:")
            for p in paths:
                click.echo(f"  {p}")
        else:
            click.echo(f"已取消链接 {name}: {len(paths)} 个文件")


@click.command()
@click.argument("names", nargs=-1, required=True)
@handle_errors
def pin(names: tuple[str, ...]) -> None:
    """pin 住配方，upgrade 时跳过"""
    svc = _svc().installs
    for name in names:
        svc.pin(name)
        click.echo(f"已 pin: {name}")


@click.command()
@click.argument("names", nargs=-1, required=True)
@handle_errors
def unpin(names: tuple[str, ...]) -> None:
    """取消 pin"""
    svc = _svc().installs
    for name in names:
        if svc.unpin(name):
            click.echo(f"已取消 pin: {name}")
        else:
            click.echo(f"{name} 没有被 pin")
