"""包存储目录布局

职责:
- 计算 rack（<cellar>/<name>）与 keg（<cellar>/<name>/<version>）路径
- 列出本地已安装版本
- 定位 opt 链接、LinkedKegs 登记与 pin 记录

目录布局:
  <cellar>/<name>/<version>/          keg
  <prefix>/opt/<name>                 -> 当前活动 keg
  <prefix>/var/homebrew/linked/<name> -> 当前链接到共享前缀的 keg
  <prefix>/var/homebrew/pinned/<name> -> 被 pin 住的 keg
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from cellar.core.models import Formula, parse_version

if TYPE_CHECKING:
    from cellar.core.config import Config

logger = logging.getLogger(__name__)


def resolve_link(link: Path) -> Path | None:
    """解析符号链接的最终目标；不是链接或目标不存在时返回 None"""
    if not link.is_symlink():
        return None
    target = link.resolve()
    return target if target.exists() else None


class PackageStore:
    """包存储布局 - 仅做路径计算与本地查找，不修改文件"""

    def __init__(self, prefix: Path, cellar: Path) -> None:
        self.prefix = Path(prefix)
        self.cellar = Path(cellar)

    @classmethod
    def from_config(cls, config: Config) -> PackageStore:
        return cls(config.prefix_path, config.cellar_path)

    # ---- 路径 ----

    @property
    def opt_dir(self) -> Path:
        return self.prefix / "opt"

    @property
    def linked_dir(self) -> Path:
        return self.prefix / "var" / "homebrew" / "linked"

    @property
    def pinned_dir(self) -> Path:
        return self.prefix / "var" / "homebrew" / "pinned"

    def rack(self, name: str) -> Path:
        return self.cellar / name.split("/")[-1]

    def keg_path(self, formula: Formula) -> Path:
        """配方当前版本对应的 keg 目录"""
        return self.rack(formula.name) / formula.version

    def opt_record(self, name: str) -> Path:
        return self.opt_dir / name.split("/")[-1]

    def linked_record(self, name: str) -> Path:
        return self.linked_dir / name.split("/")[-1]

    def pinned_record(self, name: str) -> Path:
        return self.pinned_dir / name.split("/")[-1]

    # ---- 本地查找 ----

    def installed_versions(self, name: str) -> list[str]:
        """列出 rack 下所有版本目录（忽略隐藏目录与 .tmp 中转目录）"""
        rack = self.rack(name)
        if not rack.is_dir():
            return []
        versions = [
            d.name for d in rack.iterdir()
            if d.is_dir() and not d.is_symlink()
            and not d.name.startswith(".") and not d.name.endswith(".tmp")
        ]
        return sorted(versions, key=parse_version)

    def is_installed(self, formula: Formula) -> bool:
        """当前版本的 keg 存在且非空"""
        keg = self.keg_path(formula)
        return keg.is_dir() and any(keg.iterdir())

    def linked_keg_path(self, name: str) -> Path | None:
        """LinkedKegs 登记指向的 keg；未链接返回 None"""
        return resolve_link(self.linked_record(name))

    def opt_keg_path(self, name: str) -> Path | None:
        return resolve_link(self.opt_record(name))

    def is_linked(self, name: str) -> bool:
        return self.linked_keg_path(name) is not None

    def installed_keg_path(self, name: str) -> Path | None:
        """当前活动 keg: opt 链接 > LinkedKegs 登记 > 最高版本"""
        for candidate in (self.opt_keg_path(name), self.linked_keg_path(name)):
            if candidate is not None:
                return candidate
        versions = self.installed_versions(name)
        if versions:
            return self.rack(name) / versions[-1]
        return None

    def installed_version(self, name: str) -> str | None:
        path = self.installed_keg_path(name)
        return path.name if path else None

    def is_pinned(self, name: str) -> bool:
        return self.pinned_record(name).is_symlink()

    def owner_of(self, path: Path) -> str | None:
        """路径若位于某个 keg 内，返回其配方名"""
        try:
            rel = path.resolve().relative_to(self.cellar.resolve())
        except ValueError:
            return None
        return rel.parts[0] if rel.parts else None

    def racks(self) -> list[Path]:
        if not self.cellar.is_dir():
            return []
        return sorted(d for d in self.cellar.iterdir() if d.is_dir())
