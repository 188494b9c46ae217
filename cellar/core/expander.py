"""依赖展开

给定根配方，遍历其依赖与前置条件图，产出线性化、去重的安装计划
（InstallPlan）: 每个依赖都排在依赖它的配方之前，根配方排在最后。

每条边按以下优先级裁剪:
  1. optional / recommended 边，其控制选项在有效构建选项中被关闭 → 丢弃
  2. build 边，且使用方将从 bottle 安装（根配方或传递依赖都适用）→ 丢弃
  3. 前置条件未满足但可由 default_formula 替代 → 改为对该配方的依赖并重新入队
  4. 前置条件已被当前环境满足 → 丢弃
  5. 其余未满足的前置条件记到所属配方名下；存在致命项时一次性全部报告
  6. 已安装且已链接、选项足够的依赖 → 不进入安装列表，但仍向下传递继承选项

同一配方以不同选项被多次引用时，以第一次出现时计算的选项为准，不再重新解析。
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Union

from cellar.core.exceptions import FormulaUnavailableError, UnsatisfiedRequirementsError
from cellar.core.formulary import FormulaRepository
from cellar.core.models import Dependency, Formula
from cellar.core.options import BuildOptions, effective_build_options, normalize
from cellar.core.protocols import BottlePolicy
from cellar.core.requirements import HostEnvironment, Requirement
from cellar.core.store import PackageStore
from cellar.core.tab import Tab

logger = logging.getLogger(__name__)

UNIVERSAL = "universal"

Edge = Union[Dependency, Requirement]


@dataclass(frozen=True)
class PlanEntry:
    """安装计划中的一项: 配方 + 它的选项

    依赖项的 options 是继承给它的选项；根配方项的 dependency 为 None，
    options 是根配方解析后实际生效的构建选项。
    """

    formula: Formula
    dependency: Dependency | None = None
    options: frozenset[str] = frozenset()

    @property
    def name(self) -> str:
        return self.formula.name

    @property
    def is_root(self) -> bool:
        return self.dependency is None


@dataclass
class InstallPlan:
    """根配方的有序、去重安装计划: 依赖在前，根配方在最后"""

    root: Formula
    entries: list[PlanEntry] = field(default_factory=list)
    satisfied: list[str] = field(default_factory=list)

    @property
    def names(self) -> list[str]:
        return [e.name for e in self.entries]

    @property
    def dependencies(self) -> list[PlanEntry]:
        """需要先行安装的依赖项（不含根配方）"""
        return [e for e in self.entries if not e.is_root]

    def __iter__(self) -> Iterator[PlanEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


class DependencyExpander:
    """按根配方及其有效选项展开依赖与前置条件"""

    def __init__(
        self,
        formula: Formula,
        *,
        repository: FormulaRepository,
        store: PackageStore,
        env: HostEnvironment,
        bottles: BottlePolicy,
        options: frozenset[str] = frozenset(),
    ) -> None:
        self.formula = formula
        self.options = normalize(options)
        self.repository = repository
        self.store = store
        self.env = env
        self.bottles = bottles
        self._tabs: dict[str, Tab] = {}

    # ------------------------------------------------------------------
    # 选项
    # ------------------------------------------------------------------

    def _tab(self, formula: Formula) -> Tab:
        if formula.name not in self._tabs:
            self._tabs[formula.name] = Tab.for_formula(self.store, formula)
        return self._tabs[formula.name]

    def effective_build_options_for(
        self, dependent: Formula, inherited: frozenset[str] = frozenset(),
    ) -> BuildOptions:
        recorded = self._tab(dependent).used_options
        if dependent == self.formula:
            return effective_build_options(
                dependent, explicit=self.options, recorded=recorded,
            )
        return effective_build_options(
            dependent, inherited=inherited, recorded=recorded,
        )

    def inherited_options_for(self, dep: Dependency, dep_formula: Formula) -> frozenset[str]:
        """依赖边自带的选项，加上从根配方传递下去的 universal"""
        inherited = set(dep.options)
        wants_universal = UNIVERSAL in self.options or self.formula.require_universal_deps
        if wants_universal and not dep.build and dep_formula.option_defined(UNIVERSAL):
            inherited.add(UNIVERSAL)
        return frozenset(inherited)

    # ------------------------------------------------------------------
    # 裁剪规则
    # ------------------------------------------------------------------

    def _bottled(self, dependent: Formula, build: BuildOptions) -> bool:
        if dependent == self.formula:
            return self.bottles.pour_bottle(dependent, build)
        return self.bottles.install_bottle_for_dep(dependent, build)

    def _prune(self, dependent: Formula, edge: Edge, build: BuildOptions) -> bool:
        if (edge.optional or edge.recommended) and build.without(edge.option_name):
            return True
        return edge.build and self._bottled(dependent, build)

    def _load(self, name: str, dependent: Formula) -> Formula:
        try:
            return self.repository.load(name, dependent=dependent.full_name)
        except FormulaUnavailableError as e:
            if e.dependent is None:
                e.dependent = dependent.full_name
            raise

    # ------------------------------------------------------------------
    # 遍历
    # ------------------------------------------------------------------

    def _reachable(self, *, runtime_only: bool) -> list[Formula]:
        found: dict[str, Formula] = {}

        def walk(f: Formula) -> None:
            build = self.effective_build_options_for(f)
            for dep in f.deps:
                if (dep.optional or dep.recommended) and build.without(dep.option_name):
                    continue
                if runtime_only and dep.build:
                    continue
                df = self._load(dep.name, f)
                if df.name in found or df == self.formula:
                    continue
                found[df.name] = df
                walk(df)

        walk(self.formula)
        return list(found.values())

    def recursive_dependencies(self) -> list[Formula]:
        """根配方按选项可达的全部依赖配方（不做 bottle 裁剪），用于加锁与存在性检查"""
        return self._reachable(runtime_only=False)

    def runtime_dependencies(self) -> list[Formula]:
        """运行时依赖闭包: 不含 build 边，写入 Tab"""
        return self._reachable(runtime_only=True)

    def _recursive_requirements(self, start: Formula) -> Iterator[tuple[Formula, Requirement]]:
        seen: set[str] = set()

        def walk(f: Formula) -> Iterator[tuple[Formula, Requirement]]:
            if f.name in seen:
                return
            seen.add(f.name)
            for req in f.requirements:
                yield f, req
            build = self.effective_build_options_for(f)
            for dep in f.deps:
                if self._prune(f, dep, build):
                    continue
                yield from walk(self._load(dep.name, f))

        yield from walk(start)

    def expand_requirements(self) -> tuple[dict[str, list[Requirement]], list[Dependency]]:
        """展开前置条件，返回 (未满足条件按配方分组, 由条件降级出的依赖)"""
        unsatisfied: dict[str, list[Requirement]] = {}
        deps: list[Dependency] = []
        queue: list[Formula] = [self.formula]
        visited: set[str] = set()

        while queue:
            start = queue.pop(0)
            if start.name in visited:
                continue
            visited.add(start.name)

            for dependent, req in self._recursive_requirements(start):
                build = self.effective_build_options_for(dependent)
                if self._prune(dependent, req, build):
                    continue
                if self._install_default_formula(req):
                    dep = req.to_dependency()
                    if all(d.name != dep.name for d in deps):
                        deps.append(dep)
                        queue.append(self._load(dep.name, dependent))
                    continue
                if req.satisfied(self.env):
                    continue
                bucket = unsatisfied.setdefault(dependent.full_name, [])
                if req not in bucket:
                    bucket.append(req)

        return unsatisfied, deps

    def _install_default_formula(self, req: Requirement) -> bool:
        if not req.default_formula:
            return False
        if req.satisfied(self.env):
            return False
        return self.repository.exists(req.default_formula)

    def check_requirements(self, unsatisfied: dict[str, list[Requirement]]) -> None:
        """记录全部未满足条件；存在致命项时一次性抛出"""
        fatals: list[tuple[str, Requirement]] = []
        for dependent, reqs in unsatisfied.items():
            for req in reqs:
                logger.warning("%s: %s", dependent, req.message)
                if req.fatal:
                    fatals.append((dependent, req))
        if fatals:
            raise UnsatisfiedRequirementsError(self.formula.full_name, fatals)

    def _satisfied(self, formula: Formula, dep: Dependency, options: frozenset[str]) -> bool:
        """已安装当前版本、已链接（keg-only 除外）、且记录的选项覆盖所需选项"""
        if not self.store.is_installed(formula):
            return False
        if not formula.keg_only and not self.store.is_linked(formula.name):
            return False
        used = set(self._tab(formula).used_options)
        return (set(dep.options) | set(options)) <= used

    def expand_dependencies(self, deps: list[Dependency]) -> InstallPlan:
        """把依赖边展开为有序、去重的安装计划"""
        inherited: dict[str, frozenset[str]] = {}
        plan = InstallPlan(root=self.formula)

        def visit(dependent: Formula, edges: list[Dependency], stack: frozenset[str]) -> list[PlanEntry]:
            out: list[PlanEntry] = []
            build = self.effective_build_options_for(
                dependent, inherited.get(dependent.name, frozenset()),
            )
            for dep in edges:
                if dep.option_name == dependent.name:
                    continue
                if self._prune(dependent, dep, build):
                    continue
                df = self._load(dep.name, dependent)
                if df.name in stack:
                    logger.warning("检测到循环依赖，忽略: %s -> %s", dependent.name, df.name)
                    continue
                options = inherited.setdefault(df.name, self.inherited_options_for(dep, df))
                out.extend(visit(df, df.deps, stack | {df.name}))
                if self._satisfied(df, dep, options):
                    if df.name not in plan.satisfied:
                        plan.satisfied.append(df.name)
                    continue
                out.append(PlanEntry(formula=df, dependency=dep, options=options))
            return out

        seen: set[str] = set()
        for entry in visit(self.formula, deps, frozenset({self.formula.name})):
            if entry.name in seen:
                continue
            seen.add(entry.name)
            plan.entries.append(entry)

        root_build = self.effective_build_options_for(self.formula)
        plan.entries.append(PlanEntry(formula=self.formula, options=root_build.used_options))
        logger.debug("%s 的安装计划: %s", self.formula.name, plan.names)
        return plan

    def expand(self) -> InstallPlan:
        """前置条件检查 + 依赖展开"""
        unsatisfied, req_deps = self.expand_requirements()
        self.check_requirements(unsatisfied)
        return self.expand_dependencies([*req_deps, *self.formula.deps])
