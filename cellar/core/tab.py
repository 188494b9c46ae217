"""安装收据（Tab）

每个 keg 目录下的 INSTALL_RECEIPT.json 记录该 keg 的构建来源:
使用的选项、是否来自 bottle、安装时锁定的依赖列表。

Tab 只在 keg 文件集最终确定之后写入。
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cellar.utils.yaml_io import load_json, save_json

if TYPE_CHECKING:
    from cellar.core.models import Formula
    from cellar.core.options import BuildOptions
    from cellar.core.store import PackageStore

logger = logging.getLogger(__name__)

FILENAME = "INSTALL_RECEIPT.json"


@dataclass
class Tab:
    """单个 keg 的构建来源记录"""

    used_options: list[str] = field(default_factory=list)
    unused_options: list[str] = field(default_factory=list)
    built_as_bottle: bool = False
    poured_from_bottle: bool = False
    dependencies: list[str] = field(default_factory=list)
    source: str = ""
    time: float | None = None
    path: Path | None = field(default=None, compare=False, repr=False)

    @classmethod
    def create(
        cls,
        formula: Formula,
        build: BuildOptions,
        dependencies: list[str],
        *,
        poured_from_bottle: bool = False,
        built_as_bottle: bool = False,
    ) -> Tab:
        return cls(
            used_options=sorted(build.used_options),
            unused_options=sorted(build.unused_options),
            built_as_bottle=built_as_bottle,
            poured_from_bottle=poured_from_bottle,
            dependencies=sorted(dependencies),
            source=str(formula.path or ""),
            time=time.time(),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: Path | None = None) -> Tab:
        return cls(
            used_options=list(data.get("used_options") or []),
            unused_options=list(data.get("unused_options") or []),
            built_as_bottle=bool(data.get("built_as_bottle", False)),
            poured_from_bottle=bool(data.get("poured_from_bottle", False)),
            dependencies=list(data.get("dependencies") or []),
            source=str(data.get("source") or ""),
            time=data.get("time"),
            path=path,
        )

    @classmethod
    def for_keg(cls, keg: Path) -> Tab:
        """读取 keg 的收据；不存在时返回空 Tab"""
        path = Path(keg) / FILENAME
        if not path.exists():
            return cls(path=path)
        return cls.from_dict(load_json(path), path=path)

    @classmethod
    def for_formula(cls, store: PackageStore, formula: Formula) -> Tab:
        """配方当前活动 keg 的收据；未安装时返回空 Tab"""
        keg = store.installed_keg_path(formula.name)
        if keg is None:
            return cls()
        return cls.for_keg(keg)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("path")
        return data

    def write(self, keg: Path | None = None) -> Path:
        target = Path(keg) / FILENAME if keg is not None else self.path
        if target is None:
            raise ValueError("Tab 没有关联的 keg 路径")
        save_json(target, self.to_dict())
        self.path = target
        logger.debug("安装收据已写入: %s", target)
        return target
