"""核心数据模型

配方（Formula）及其依赖、选项、预编译包描述集中定义于此。
这些对象在一次运行中只读；安装器需要的派生信息放在 services 层的视图中。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cellar.core.requirements import Requirement

_VERSION_PART_RE = re.compile(r"\d+|[a-zA-Z]+")


def parse_version(version: str) -> tuple[Any, ...]:
    """把版本字符串拆成可比较的元组: "1.10.2" -> (1, 10, 2)

    数字段按整数比较，字母段排在数字段之前（1.0rc1 < 1.0.1）。
    """
    parts: list[Any] = []
    for token in _VERSION_PART_RE.findall(version or ""):
        if token.isdigit():
            parts.append((1, int(token)))
        else:
            parts.append((0, token))
    return tuple(parts)


# =========================================================================
# 依赖
# =========================================================================


class DepTag(str, Enum):
    """依赖边的适用类别"""

    BUILD = "build"
    OPTIONAL = "optional"
    RECOMMENDED = "recommended"
    RUN = "run"


@dataclass(frozen=True)
class Dependency:
    """配方 A 对配方 B 的依赖边"""

    name: str
    tags: frozenset[str] = frozenset()
    options: frozenset[str] = frozenset()  # 传递给 B 的构建选项

    @property
    def build(self) -> bool:
        return DepTag.BUILD.value in self.tags

    @property
    def optional(self) -> bool:
        return DepTag.OPTIONAL.value in self.tags

    @property
    def recommended(self) -> bool:
        return DepTag.RECOMMENDED.value in self.tags

    @property
    def required(self) -> bool:
        return not (self.optional or self.recommended)

    @property
    def option_name(self) -> str:
        """控制该依赖的选项名片段: with-<x> / without-<x>"""
        return self.name.split("/")[-1]

    @classmethod
    def parse(cls, entry: str | dict[str, Any]) -> Dependency:
        """配方 YAML 中的依赖条目: "foo" 或 {name: foo, tags: [...], options: [...]}"""
        if isinstance(entry, str):
            return cls(name=entry)
        tags = entry.get("tags") or []
        if isinstance(tags, str):
            tags = [tags]
        return cls(
            name=str(entry["name"]),
            tags=frozenset(str(t) for t in tags),
            options=frozenset(str(o) for o in entry.get("options") or ()),
        )


@dataclass(frozen=True)
class Option:
    """配方声明的构建选项"""

    name: str
    description: str = ""

    @property
    def flag(self) -> str:
        return f"--{self.name}"


@dataclass(frozen=True)
class Conflict:
    """配方声明的互斥配方"""

    name: str
    reason: str = ""


# =========================================================================
# 预编译包（bottle）
# =========================================================================

# 表示 bottle 不依赖特定安装路径
ANY_CELLAR = ("any", ":any", "any_skip_relocation", ":any_skip_relocation")


@dataclass(frozen=True)
class Bottle:
    """预编译包描述: 下载地址 + 构建时的 Cellar 路径假设 + 校验和"""

    url: str
    sha256: str = ""
    cellar: str = "any"

    def compatible_cellar(self, cellar: str | Path) -> bool:
        return self.cellar in ANY_CELLAR or Path(self.cellar) == Path(cellar)

    def filename(self, name: str, version: str) -> str:
        return f"{name}-{version}.bottle.tar.gz"


# =========================================================================
# 配方
# =========================================================================


@dataclass(eq=False)
class Formula:
    """一个具名、带版本的可安装单元"""

    name: str
    version: str
    path: Path | None = None
    tap: str = ""
    deps: list[Dependency] = field(default_factory=list)
    requirements: list[Requirement] = field(default_factory=list)
    options: list[Option] = field(default_factory=list)
    url: str = ""
    sha256: str = ""
    bottle: Bottle | None = None
    pour_bottle: bool = True
    keg_only_reason: str = ""
    conflicts: list[Conflict] = field(default_factory=list)
    build_steps: list[Any] = field(default_factory=list)
    post_install_steps: list[str] = field(default_factory=list)
    caveats: str = ""
    require_universal_deps: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.tap}/{self.name}" if self.tap else self.name

    @property
    def keg_only(self) -> bool:
        return bool(self.keg_only_reason)

    def option_defined(self, name: str) -> bool:
        return any(o.name == name for o in self.options)

    @property
    def option_names(self) -> frozenset[str]:
        return frozenset(o.name for o in self.options)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Formula) and other.full_name == self.full_name

    def __hash__(self) -> int:
        return hash(self.full_name)

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<Formula {self.full_name} {self.version}>"
