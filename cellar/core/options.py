"""构建选项解析

一个配方的有效构建选项由四层合并而来，优先级从高到低:
  1. 用户为根配方显式指定的选项
  2. 从依赖方继承的选项
  3. 上次安装时记录在 Tab 中的选项
  4. 配方声明的默认值（optional 默认关闭，recommended 默认开启）

with-<x> 与 without-<x> 互为反义，高优先级一层出现其一时会覆盖低层的另一个。
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from cellar.core.models import Formula, Option


def opposite(option: str) -> str | None:
    """with-x <-> without-x；其他选项没有反义"""
    if option.startswith("with-"):
        return "without-" + option[len("with-"):]
    if option.startswith("without-"):
        return "with-" + option[len("without-"):]
    return None


def normalize(options: Iterable[str]) -> frozenset[str]:
    """去掉 --flag 前缀"""
    return frozenset(o[2:] if o.startswith("--") else o for o in options)


def merge_layers(*layers: Iterable[str]) -> frozenset[str]:
    """按从低到高的优先级合并选项层，后层的 with/without 覆盖前层的反义项"""
    result: set[str] = set()
    for layer in layers:
        for opt in normalize(layer):
            anti = opposite(opt)
            if anti is not None:
                result.discard(anti)
            result.add(opt)
    return frozenset(result)


@dataclass(frozen=True)
class BuildOptions:
    """一个配方在本次运行中的有效构建选项"""

    args: frozenset[str]
    declared: tuple[Option, ...]

    def _defined(self, name: str) -> bool:
        return any(o.name == name for o in self.declared)

    def include(self, name: str) -> bool:
        return name in self.args

    def with_(self, name: str) -> bool:
        """该名称对应的可选功能是否开启

        with-<name> 已声明: 仅当显式请求才开启（optional 语义）
        without-<name> 已声明: 除非显式关闭否则开启（recommended 语义）
        """
        if self._defined(f"with-{name}"):
            return f"with-{name}" in self.args
        if self._defined(f"without-{name}"):
            return f"without-{name}" not in self.args
        return False

    def without(self, name: str) -> bool:
        return not self.with_(name)

    @property
    def used_options(self) -> frozenset[str]:
        """请求且被配方声明的选项"""
        return frozenset(o.name for o in self.declared if o.name in self.args)

    @property
    def unused_options(self) -> frozenset[str]:
        return frozenset(o.name for o in self.declared if o.name not in self.args)

    def as_flags(self) -> list[str]:
        return sorted(f"--{o}" for o in self.used_options)

    @classmethod
    def for_formula(cls, formula: Formula, args: Iterable[str] = ()) -> BuildOptions:
        return cls(args=normalize(args), declared=tuple(formula.options))


def effective_build_options(
    formula: Formula,
    *,
    explicit: Iterable[str] = (),
    inherited: Iterable[str] = (),
    recorded: Iterable[str] = (),
) -> BuildOptions:
    """按优先级合并出配方的有效构建选项"""
    return BuildOptions.for_formula(
        formula, merge_layers(recorded, inherited, explicit),
    )


def auto_options(formula: Formula) -> list[Option]:
    """为 optional / recommended 依赖与前置条件补充隐式声明的选项"""
    existing = {o.name for o in formula.options}
    extra: list[Option] = []
    edges = [*formula.deps, *formula.requirements]
    for edge in edges:
        if edge.optional:
            name = f"with-{edge.option_name}"
            desc = f"使用 {edge.option_name} 构建"
        elif edge.recommended:
            name = f"without-{edge.option_name}"
            desc = f"不使用 {edge.option_name} 构建"
        else:
            continue
        if name not in existing:
            existing.add(name)
            extra.append(Option(name=name, description=desc))
    return extra
