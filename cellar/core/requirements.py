"""非包前置条件（Requirement）

Requirement 是封闭的标签变体：kind 决定满足性检查，其余字段
（fatal / default_formula / message）对所有变体统一。
检查函数通过注册表按 kind 查找，新增变体只需 register_requirement。

内置变体:
  - executable: PATH 中存在任一指定可执行文件
  - min_os / max_os: 主机系统版本不低于 / 不高于指定版本
  - arch: 主机架构属于指定集合
  - env: 指定环境变量均已设置
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable

from cellar.core.exceptions import ValidationError
from cellar.core.models import Dependency, parse_version
from cellar.utils.shell import which


@dataclass(frozen=True)
class HostEnvironment:
    """满足性检查所依据的主机快照"""

    os_version: str = ""
    arch: str = ""
    path: str = ""
    environ: dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def from_config(cls, config: Any) -> HostEnvironment:
        return cls(
            os_version=config.os_version,
            arch=config.arch,
            path=os.environ.get("PATH", ""),
            environ=dict(os.environ),
        )


RequirementCheck = Callable[["Requirement", HostEnvironment], bool]

_CHECKS: dict[str, RequirementCheck] = {}
_MESSAGES: dict[str, Callable[["Requirement"], str]] = {}


def register_requirement(
    kind: str, *, message: Callable[[Requirement], str],
) -> Callable[[RequirementCheck], RequirementCheck]:
    """注册一个 Requirement 变体的检查函数与默认提示"""
    def deco(fn: RequirementCheck) -> RequirementCheck:
        _CHECKS[kind] = fn
        _MESSAGES[kind] = message
        return fn
    return deco


def known_kinds() -> list[str]:
    return sorted(_CHECKS)


@dataclass(frozen=True)
class Requirement:
    """配方的非包前置条件"""

    kind: str
    name: str
    args: tuple[str, ...] = ()
    tags: frozenset[str] = frozenset()
    fatal: bool = True
    default_formula: str = ""
    custom_message: str = ""

    @property
    def optional(self) -> bool:
        return "optional" in self.tags

    @property
    def recommended(self) -> bool:
        return "recommended" in self.tags

    @property
    def build(self) -> bool:
        return "build" in self.tags

    @property
    def option_name(self) -> str:
        return self.name

    def satisfied(self, env: HostEnvironment) -> bool:
        return _CHECKS[self.kind](self, env)

    @property
    def message(self) -> str:
        msg = self.custom_message or _MESSAGES[self.kind](self)
        if self.default_formula:
            msg += f"（可以安装 {self.default_formula} 满足该条件）"
        return msg

    def to_dependency(self) -> Dependency:
        """把可替代的前置条件降级为对 default_formula 的依赖"""
        return Dependency(name=self.default_formula, tags=self.tags)

    @classmethod
    def parse(cls, entry: dict[str, Any]) -> Requirement:
        """从配方 YAML 的 requirements 条目构造"""
        kind = entry.get("kind", "")
        if kind not in _CHECKS:
            raise ValidationError(
                f"未知的前置条件类型: {kind!r}", details=[f"可用: {known_kinds()}"],
            )
        raw_args = entry.get("names") or entry.get("args") or entry.get("value") or []
        if isinstance(raw_args, str):
            raw_args = [raw_args]
        args = tuple(str(a) for a in raw_args)
        return cls(
            kind=kind,
            name=str(entry.get("name") or (args[0] if args else kind)),
            args=args,
            tags=frozenset(entry.get("tags") or ()),
            fatal=bool(entry.get("fatal", True)),
            default_formula=str(entry.get("default_formula") or ""),
            custom_message=str(entry.get("message") or ""),
        )


# =========================================================================
# 内置变体
# =========================================================================


@register_requirement(
    "executable",
    message=lambda r: f"需要以下任一可执行文件: {', '.join(r.args)}",
)
def _check_executable(req: Requirement, env: HostEnvironment) -> bool:
    return any(which(name, path=env.path or None) for name in req.args)


@register_requirement(
    "min_os",
    message=lambda r: f"需要系统版本 >= {r.args[0] if r.args else '?'}",
)
def _check_min_os(req: Requirement, env: HostEnvironment) -> bool:
    if not req.args:
        return True
    return parse_version(env.os_version) >= parse_version(req.args[0])


@register_requirement(
    "max_os",
    message=lambda r: f"需要系统版本 <= {r.args[0] if r.args else '?'}",
)
def _check_max_os(req: Requirement, env: HostEnvironment) -> bool:
    if not req.args:
        return True
    return parse_version(env.os_version) <= parse_version(req.args[0])


_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "aarch64": "arm64",
    "intel": "x86_64",
}


def _normalize_arch(arch: str) -> str:
    arch = arch.lower()
    return _ARCH_ALIASES.get(arch, arch)


@register_requirement(
    "arch",
    message=lambda r: f"需要 {'/'.join(r.args)} 架构",
)
def _check_arch(req: Requirement, env: HostEnvironment) -> bool:
    wanted = {_normalize_arch(a) for a in req.args}
    return _normalize_arch(env.arch) in wanted


@register_requirement(
    "env",
    message=lambda r: f"需要设置环境变量: {', '.join(r.args)}",
)
def _check_env(req: Requirement, env: HostEnvironment) -> bool:
    return all(env.environ.get(var) for var in req.args)
