"""配方仓库（tap）加载

职责:
- 从一个或多个 tap 目录按名称定位 <name>.yml 配方文件
- 解析 YAML 为只读 Formula 对象，并按名称缓存
- 名称无法定位抛 FormulaUnavailableError，多仓库重名抛 AmbiguousReferenceError

名称形式:
  - foo: 在所有 tap 中查找
  - tap/foo: 只在目录名为 tap 的仓库中查找
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from cellar.core.exceptions import (
    AmbiguousReferenceError,
    FormulaUnavailableError,
    ValidationError,
)
from cellar.core.models import Bottle, Conflict, Dependency, Formula, Option
from cellar.core.options import auto_options
from cellar.core.requirements import Requirement
from cellar.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

FORMULA_SUFFIX = ".yml"


def parse_formula(data: dict[str, Any], path: Path | None = None, tap: str = "") -> Formula:
    """把配方 YAML 字典解析为 Formula"""
    name = str(data.get("name") or (path.stem if path else ""))
    if not name:
        raise ValidationError("配方缺少 name", details=[str(path)])
    version = data.get("version")
    if version is None or str(version) == "":
        raise ValidationError(f"配方 {name} 缺少 version", details=[str(path)])

    bottle = None
    bottle_data = data.get("bottle")
    if bottle_data:
        if not bottle_data.get("url"):
            raise ValidationError(f"配方 {name} 的 bottle 缺少 url")
        bottle = Bottle(
            url=str(bottle_data["url"]),
            sha256=str(bottle_data.get("sha256") or ""),
            cellar=str(bottle_data.get("cellar") or "any"),
        )

    keg_only = data.get("keg_only") or ""
    if keg_only is True:
        keg_only = "该配方仅安装到 keg，不链接到共享前缀"

    conflicts = []
    for entry in data.get("conflicts_with") or []:
        if isinstance(entry, str):
            conflicts.append(Conflict(name=entry))
        else:
            conflicts.append(Conflict(name=str(entry["name"]), reason=str(entry.get("reason") or "")))

    formula = Formula(
        name=name,
        version=str(version),
        path=path,
        tap=tap,
        deps=[Dependency.parse(d) for d in data.get("depends_on") or []],
        requirements=[Requirement.parse(r) for r in data.get("requirements") or []],
        options=[
            Option(name=str(o["name"]), description=str(o.get("description") or ""))
            if isinstance(o, dict) else Option(name=str(o))
            for o in data.get("options") or []
        ],
        url=str(data.get("url") or ""),
        sha256=str(data.get("sha256") or ""),
        bottle=bottle,
        pour_bottle=bool(data.get("pour_bottle", True)),
        keg_only_reason=str(keg_only),
        conflicts=conflicts,
        build_steps=list(data.get("build") or []),
        post_install_steps=[str(s) for s in data.get("post_install") or []],
        caveats=str(data.get("caveats") or ""),
        require_universal_deps=bool(data.get("require_universal_deps", False)),
    )
    formula.options.extend(auto_options(formula))
    return formula


class FormulaRepository:
    """配方仓库集合 - 按名称加载并缓存 Formula"""

    def __init__(self, taps: list[Path]) -> None:
        self.taps = [Path(t) for t in taps]
        self._cache: dict[str, Formula] = {}

    def _candidates(self, name: str) -> list[Path]:
        if "/" in name:
            tap_name, short = name.rsplit("/", 1)
            taps = [t for t in self.taps if t.name == tap_name or str(t).endswith(tap_name)]
        else:
            short = name
            taps = self.taps
        return [
            t / f"{short}{FORMULA_SUFFIX}" for t in taps
            if (t / f"{short}{FORMULA_SUFFIX}").is_file()
        ]

    def load(self, name: str, dependent: str | None = None) -> Formula:
        """按名称加载配方；dependent 用于错误诊断"""
        if name in self._cache:
            return self._cache[name]

        candidates = self._candidates(name)
        if not candidates:
            raise FormulaUnavailableError(name, dependent=dependent)
        if len(candidates) > 1:
            raise AmbiguousReferenceError(
                name, [f"{p.parent.name}/{p.stem}" for p in candidates],
            )

        formula = self.load_file(candidates[0])
        self._cache[name] = formula
        self._cache.setdefault(formula.full_name, formula)
        return formula

    @staticmethod
    def load_file(path: Path) -> Formula:
        """直接从配方文件加载（构建子进程使用）"""
        data = load_yaml(path)
        if not data:
            raise ValidationError(f"配方文件为空或无效: {path}")
        formula = parse_formula(data, path=path, tap=path.parent.name)
        logger.debug("已加载配方: %s (%s)", formula.full_name, path)
        return formula

    def exists(self, name: str) -> bool:
        try:
            self.load(name)
        except FormulaUnavailableError:
            return False
        return True

    def list_names(self) -> list[str]:
        names: set[str] = set()
        for tap in self.taps:
            if tap.is_dir():
                names.update(p.stem for p in tap.glob(f"*{FORMULA_SUFFIX}"))
        return sorted(names)
