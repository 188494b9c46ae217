"""预编译包（bottle）决策

对计划中的每个配方判断: 从 bottle 安装，还是从源码构建。

根配方的判定顺序（首个命中的规则生效）:
  1. 本次运行中该配方的 bottle 已安装失败过 → 源码
  2. 用户强制 bottle 且存在 bottle → bottle
  3. 用户强制源码 / 交互式构建 / 重新打包 bottle → 源码
  4. 请求了任何非默认选项 → 源码（bottle 只覆盖默认配置）
  5. 本地缓存中已有 bottle → bottle
  6. 远程 bottle 存在、Cellar 路径兼容且配方允许 → bottle；否则源码

依赖配方只受 1、3（仅强制源码）、4、5、6 约束。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from cellar.core.models import Formula
from cellar.core.options import BuildOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BottleFlags:
    """影响 bottle 决策的用户开关"""

    force_bottle: bool = False
    build_from_source: bool = False
    interactive: bool = False
    build_bottle: bool = False


class BottleDecider:
    """实现 BottlePolicy；pour_failed 在一次运行内共享"""

    def __init__(
        self,
        flags: BottleFlags,
        *,
        cellar: Path,
        cache_dir: Path,
        pour_failed: set[str] | None = None,
    ) -> None:
        self.flags = flags
        self.cellar = Path(cellar)
        self.cache_dir = Path(cache_dir)
        self.pour_failed = pour_failed if pour_failed is not None else set()

    def local_bottle_path(self, formula: Formula) -> Path | None:
        """缓存目录中的 <name>-<version>.bottle.tar.gz"""
        if formula.bottle is None:
            return None
        path = self.cache_dir / formula.bottle.filename(formula.name, formula.version)
        return path if path.is_file() else None

    def mark_pour_failed(self, formula: Formula) -> None:
        self.pour_failed.add(formula.name)

    def pour_bottle(self, formula: Formula, build: BuildOptions, *, warn: bool = False) -> bool:
        if formula.name in self.pour_failed:
            return False
        if self.flags.force_bottle and formula.bottle is not None:
            return True
        if self.flags.build_from_source or self.flags.interactive or self.flags.build_bottle:
            return False
        if build.used_options:
            return False
        if self.local_bottle_path(formula) is not None:
            return True
        return self._remote_pourable(formula, warn=warn)

    def install_bottle_for_dep(self, formula: Formula, build: BuildOptions) -> bool:
        if formula.name in self.pour_failed:
            return False
        if self.flags.build_from_source:
            return False
        if build.used_options:
            return False
        if self.local_bottle_path(formula) is not None:
            return True
        return self._remote_pourable(formula)

    def _remote_pourable(self, formula: Formula, *, warn: bool = False) -> bool:
        bottle = formula.bottle
        if bottle is None:
            return False
        if not bottle.compatible_cellar(self.cellar):
            if warn:
                logger.warning(
                    "%s 的 bottle 要求 Cellar 为 %s，当前为 %s，改为源码构建",
                    formula.name, bottle.cellar, self.cellar,
                )
            return False
        return formula.pour_bottle
