"""领域协议定义

core 层依赖这些抽象，services 层提供实现（依赖倒置）。
使用 typing.Protocol，实现类无需继承即可满足协议，测试中可直接注入 mock。
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from cellar.core.models import Formula
    from cellar.core.options import BuildOptions


class BottlePolicy(Protocol):
    """预编译包决策

    依赖展开需要知道某个配方是否会以 bottle 安装，
    以便裁剪它的 build 类依赖。
    """

    def pour_bottle(self, formula: Formula, build: BuildOptions) -> bool:
        """根配方是否从 bottle 安装"""
        ...

    def install_bottle_for_dep(self, formula: Formula, build: BuildOptions) -> bool:
        """作为依赖安装的配方是否从 bottle 安装"""
        ...


class Downloader(Protocol):
    """下载与校验协议；传输与校验逻辑由实现方负责"""

    def fetch(self, url: str, *, sha256: str = "", filename: str = "") -> Path:
        """下载并校验，返回本地路径；失败抛 DownloadError"""
        ...

    def cached(self, filename: str) -> Path | None:
        """本地缓存中已有的文件"""
        ...
