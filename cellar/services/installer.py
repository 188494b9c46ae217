"""配方安装器

单个配方的完整安装生命周期:

  prelude:  检查依赖配方都能定位 → 为根配方及递归依赖整体加锁 → 安装前检查
  install:  冲突检查 → 展开并逐个安装依赖 → bottle 或源码构建
  finish:   安装后钩子 → 链接 → 写 Tab → caveats（仅顶层）→ 释放锁

依赖以 DependencyInstaller 嵌套安装；嵌套安装共享同一个 InstallSession，
因此同一次运行中不会重复尝试同一个配方，锁也只由顶层持有。
"""

from __future__ import annotations

import logging
import shutil
import tarfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from cellar.core.exceptions import (
    AlreadyAttemptedError,
    CannotInstallFormulaError,
    CellarError,
    ConflictError,
    ExecutionError,
    FormulaConflictError,
    LinkError,
)
from cellar.core.expander import DependencyExpander, InstallPlan, PlanEntry
from cellar.core.formulary import FormulaRepository
from cellar.core.keg import Keg
from cellar.core.lock import LockManager
from cellar.core.models import Formula
from cellar.core.options import BuildOptions, normalize
from cellar.core.requirements import HostEnvironment
from cellar.core.store import PackageStore
from cellar.core.tab import Tab
from cellar.services.bottle import BottleDecider, BottleFlags
from cellar.services.build.executor import BuildExecutor, BuildRequest
from cellar.services.build.worker import render_step
from cellar.services.download import Downloader
from cellar.utils.shell import run_cmd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstallFlags:
    """安装命令的修饰开关"""

    build_from_source: bool = False
    force_bottle: bool = False
    ignore_deps: bool = False
    only_deps: bool = False
    force: bool = False
    interactive: bool = False
    debug: bool = False
    build_bottle: bool = False

    @property
    def bottle_flags(self) -> BottleFlags:
        return BottleFlags(
            force_bottle=self.force_bottle,
            build_from_source=self.build_from_source,
            interactive=self.interactive,
            build_bottle=self.build_bottle,
        )

    def for_dependency(self) -> InstallFlags:
        """依赖安装只继承源码构建与调试开关，自身不再展开依赖"""
        return InstallFlags(
            build_from_source=self.build_from_source,
            ignore_deps=True,
            debug=self.debug,
        )


class InstallSession:
    """一次顶层运行内共享的状态，由 InstallService 创建并贯穿所有嵌套安装"""

    def __init__(self, locks: LockManager) -> None:
        self.locks = locks
        self.attempted: set[str] = set()
        self.pour_failed: set[str] = set()
        self.link_failures: list[str] = []


@dataclass
class InstallContext:
    """安装器使用的协作者"""

    repository: FormulaRepository
    store: PackageStore
    env: HostEnvironment
    executor: BuildExecutor
    downloader: Downloader
    session: InstallSession
    cache_dir: Path


@dataclass(frozen=True)
class FormulaView:
    """安装器视角的配方: 只读引用 + 安装器计算出的提示文本"""

    formula: Formula
    store: PackageStore

    @property
    def opt_prefix(self) -> Path:
        return self.store.opt_record(self.formula.name)

    @property
    def keg_only_text(self) -> str:
        if not self.formula.keg_only:
            return ""
        opt = self.opt_prefix
        return (
            f"{self.formula.name} 是 keg-only 配方，不会链接到 {self.store.prefix}。\n"
            f"原因: {self.formula.keg_only_reason}\n\n"
            f"如需使用，可将 {opt}/bin 加入 PATH；编译时可指定:\n"
            f"  CPPFLAGS=-I{opt}/include\n"
            f"  LDFLAGS=-L{opt}/lib"
        )

    def caveats(self) -> str:
        parts = []
        if self.formula.caveats.strip():
            parts.append(self.formula.caveats.strip())
        if self.formula.keg_only:
            parts.append(self.keg_only_text)
        return "\n\n".join(parts)


@contextmanager
def preserved_keg(store: PackageStore, formula: Formula) -> Iterator[None]:
    """重装前暂存已有 keg 并取消链接；失败时恢复原 keg 及其链接"""
    linked_path = store.linked_keg_path(formula.name)
    linked = Keg(linked_path, store) if linked_path is not None else None
    if linked is not None:
        linked.unlink()

    current = Keg(store.keg_path(formula), store)
    backup: Keg | None = None
    if current.exists():
        backup = current.rename(current.path.with_name(current.path.name + ".tmp"))
        logger.debug("已暂存 %s -> %s", current, backup)

    try:
        yield
    except BaseException:
        if backup is not None:
            if current.path.exists():
                shutil.rmtree(current.path)
            backup.rename(current.path)
        if linked is not None:
            try:
                linked.link()
            except LinkError as e:
                logger.error("恢复链接 %s 失败: %s", linked, e)
        raise
    else:
        if backup is not None:
            shutil.rmtree(backup.path)


class FormulaInstaller:
    """安装单个配方（及其依赖）"""

    top_level = True

    def __init__(
        self,
        formula: Formula,
        context: InstallContext,
        *,
        flags: InstallFlags | None = None,
        options: frozenset[str] | set[str] | tuple[str, ...] = frozenset(),
    ) -> None:
        self.formula = formula
        self.ctx = context
        self.flags = flags or InstallFlags()
        self.options = normalize(options)
        self.bottles = BottleDecider(
            self.flags.bottle_flags,
            cellar=context.store.cellar,
            cache_dir=context.cache_dir,
            pour_failed=context.session.pour_failed,
        )
        self.holds_locks = False
        self.poured_bottle = False
        self.link_failed = False
        self.plan: InstallPlan | None = None
        self.build_options: BuildOptions | None = None
        self.logs: list[Path] = []
        self.caveats = ""
        self._deps: list[Formula] | None = None

    @property
    def store(self) -> PackageStore:
        return self.ctx.store

    @property
    def session(self) -> InstallSession:
        return self.ctx.session

    def expander(self) -> DependencyExpander:
        # 每次新建: 依赖安装与 bottle 失败都会改变展开结果
        return DependencyExpander(
            self.formula,
            repository=self.ctx.repository,
            store=self.store,
            env=self.ctx.env,
            bottles=self.bottles,
            options=self.options,
        )

    # ------------------------------------------------------------------
    # prelude
    # ------------------------------------------------------------------

    def prelude(self) -> None:
        self.verify_deps_exist()
        self.lock()
        self.check_install_sanity()

    def verify_deps_exist(self) -> list[Formula]:
        if self._deps is None:
            self._deps = self.expander().recursive_dependencies()
        return self._deps

    def lock(self) -> None:
        if self.session.locks.holding():
            return
        names = [self.formula.name, *(f.name for f in self.verify_deps_exist())]
        self.session.locks.acquire(names)
        self.holds_locks = True

    def unlock(self) -> None:
        if self.holds_locks:
            self.session.locks.release_all()
            self.holds_locks = False

    def check_install_sanity(self) -> None:
        if self.formula.name in self.session.attempted:
            raise AlreadyAttemptedError(self.formula.name)
        if self.flags.ignore_deps:
            return
        unlinked = [
            f.name for f in self.verify_deps_exist()
            if self.store.is_installed(f) and not f.keg_only and not self.store.is_linked(f.name)
        ]
        if unlinked:
            raise CannotInstallFormulaError(
                f"安装 {self.formula.name} 前必须先链接以下依赖: {', '.join(unlinked)}\n"
                f"可运行: cellar link {' '.join(unlinked)}"
            )

    # ------------------------------------------------------------------
    # install
    # ------------------------------------------------------------------

    def install(self) -> None:
        linked = self.store.linked_keg_path(self.formula.name)
        if linked is not None and linked.name != self.formula.version:
            raise CannotInstallFormulaError(
                f"{self.formula.name}-{linked.name} 已链接，"
                f"请先执行 cellar unlink {self.formula.name}"
            )
        if not self.flags.force:
            self.check_conflicts()

        if not self.flags.ignore_deps:
            self.compute_and_install_dependencies()
        if self.flags.only_deps:
            return

        self.session.attempted.add(self.formula.name)
        self.build_options = self.expander().effective_build_options_for(self.formula)
        logger.info(
            "==> 安装 %s %s", self.formula.full_name, self.formula.version,
            extra={"formula": self.formula.full_name},
        )

        if self.bottles.pour_bottle(self.formula, self.build_options, warn=True):
            try:
                self.pour()
            except (CellarError, OSError, tarfile.TarError) as e:
                self.bottles.mark_pour_failed(self.formula)
                logger.error("%s", e)
                logger.warning("%s 的 bottle 安装失败，改为从源码构建", self.formula.name)
                if not self.flags.ignore_deps:
                    self.compute_and_install_dependencies()
            else:
                self.poured_bottle = True

        if not self.poured_bottle:
            self.build()

    def check_conflicts(self) -> None:
        linked = [c for c in self.formula.conflicts if self.store.is_linked(c.name)]
        if linked:
            raise FormulaConflictError(self.formula.full_name, linked)

    def compute_and_install_dependencies(self) -> None:
        self.plan = self.expander().expand()
        deps = self.plan.dependencies
        if not deps:
            return
        logger.info("==> 安装 %s 的依赖: %s", self.formula.name, ", ".join(e.name for e in deps))
        for entry in deps:
            self.install_dependency(entry)

    def install_dependency(self, entry: PlanEntry) -> None:
        installer = DependencyInstaller(
            entry.formula, self.ctx,
            flags=self.flags.for_dependency(), options=entry.options,
        )
        try:
            with preserved_keg(self.store, entry.formula):
                installer.prelude()
                installer.install()
                installer.finish()
        except AlreadyAttemptedError as e:
            if not self.store.is_installed(entry.formula):
                raise CannotInstallFormulaError(
                    f"依赖 {entry.name} 在本次运行中安装失败，无法安装 {self.formula.name}"
                ) from e
            logger.info("本次运行已安装过 %s，跳过", entry.name)

    def pour(self) -> None:
        bottle = self.formula.bottle
        if bottle is None:
            raise CannotInstallFormulaError(f"{self.formula.name} 没有 bottle")
        # 缓存中的 bottle 同样由 fetch 校验
        path = self.ctx.downloader.fetch(
            bottle.url, sha256=bottle.sha256,
            filename=bottle.filename(self.formula.name, self.formula.version),
        )
        keg_path = self.store.keg_path(self.formula)
        try:
            with tarfile.open(path) as tar:
                tar.extractall(self.store.cellar, filter="data")
            if not self.store.is_installed(self.formula):
                raise CannotInstallFormulaError(
                    f"bottle {path.name} 中没有 {self.formula.name}/{self.formula.version}"
                )
        except BaseException:
            BuildExecutor.cleanup(keg_path)
            raise
        logger.info("已从 bottle 安装: %s", keg_path)

    def build(self) -> None:
        source = None
        if self.formula.url:
            source = self.ctx.downloader.fetch(self.formula.url, sha256=self.formula.sha256)
        build = self.build_options or BuildOptions.for_formula(self.formula)
        request = BuildRequest(
            formula=self.formula,
            prefix=self.store.keg_path(self.formula),
            options=tuple(build.as_flags()),
            source=source,
            debug=self.flags.debug,
            interactive=self.flags.interactive,
            build_bottle=self.flags.build_bottle,
        )
        self.logs = self.ctx.executor.build(request)

    # ------------------------------------------------------------------
    # finish
    # ------------------------------------------------------------------

    def finish(self) -> None:
        try:
            if self.flags.only_deps:
                return
            keg = Keg(self.store.keg_path(self.formula), self.store)
            self.post_install(keg)
            self.link(keg)
            self.write_tab(keg)
            if self.top_level:
                self.caveats = FormulaView(self.formula, self.store).caveats()
            logger.info(
                "==> %s %s 安装完成", self.formula.name, self.formula.version,
                extra={"formula": self.formula.full_name},
            )
        finally:
            self.unlock()

    def post_install(self, keg: Keg) -> None:
        """安装后钩子；失败只告警"""
        values = {
            "prefix": str(keg.path),
            "name": self.formula.name,
            "version": self.formula.version,
            "source": str(keg.path),
        }
        log_path = self.ctx.executor.log_dir_for(self.formula) / "post_install.log"
        for raw in self.formula.post_install_steps:
            try:
                run_cmd(
                    render_step(raw, values), cwd=str(keg.path),
                    env=self.ctx.executor.base_environment(),
                    label="post_install", log_path=log_path,
                )
            except ExecutionError as e:
                logger.warning("%s 的 post_install 失败: %s", self.formula.name, e)
                return

    def link(self, keg: Keg) -> None:
        try:
            if self.formula.keg_only:
                keg.optlink()
            else:
                keg.link()
        except ConflictError as e:
            self._link_failed(e)
            for path in e.conflicts:
                logger.error("  冲突: %s", path)
            logger.error(
                "可运行 cellar link --overwrite %s 覆盖冲突文件"
                "（先用 --dry-run 查看将被删除的文件）",
                self.formula.name,
            )
        except LinkError as e:
            self._link_failed(e)

    def _link_failed(self, error: LinkError) -> None:
        self.link_failed = True
        self.session.link_failures.append(self.formula.name)
        logger.error("链接 %s 未完成，keg 已保留: %s", self.formula.name, error)

    def write_tab(self, keg: Keg) -> Tab:
        build = self.build_options or BuildOptions.for_formula(self.formula)
        tab = Tab.create(
            self.formula, build,
            [f.full_name for f in self.expander().runtime_dependencies()],
            poured_from_bottle=self.poured_bottle,
            built_as_bottle=self.flags.build_bottle,
        )
        tab.write(keg.path)
        return tab


class DependencyInstaller(FormulaInstaller):
    """作为依赖的嵌套安装: 不输出 caveats，锁由顶层持有"""

    top_level = False
