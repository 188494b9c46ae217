"""安装服务: install / upgrade / uninstall / link / pin 的统一入口

一次 install 或 upgrade 调用对应一个 InstallSession:
  - 已尝试集合与 bottle 失败记录在所有目标之间共享
  - 每个顶层目标独立加锁、独立释放
  - 单个目标失败不影响其余目标，汇总在 InstallReport 中

用户中断（KeyboardInterrupt）不视为失败: 回滚当前目标后直接向上抛出。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from contextlib import nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cellar.core.config import Config
from cellar.core.exceptions import (
    AlreadyAttemptedError,
    AmbiguousReferenceError,
    CellarError,
    FormulaAlreadyInstalledError,
    FormulaUnavailableError,
    FormulaUnspecifiedError,
    MultipleVersionsInstalledError,
    NoSuchKegError,
    UsageError,
)
from cellar.core.expander import DependencyExpander, InstallPlan
from cellar.core.formulary import FormulaRepository
from cellar.core.keg import Keg, LinkMode
from cellar.core.lock import LockManager
from cellar.core.models import Formula, Option
from cellar.core.requirements import HostEnvironment
from cellar.core.store import PackageStore
from cellar.core.tab import Tab
from cellar.services.bottle import BottleDecider
from cellar.services.build.executor import BuildExecutor
from cellar.services.download import Downloader
from cellar.services.installer import (
    FormulaInstaller,
    InstallContext,
    InstallFlags,
    InstallSession,
    preserved_keg,
)

logger = logging.getLogger(__name__)

STATUS_INSTALLED = "installed"
STATUS_ALREADY_INSTALLED = "already_installed"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass
class TargetResult:
    """单个顶层目标的结果"""

    name: str
    status: str
    message: str = ""
    error: dict[str, Any] | None = None
    caveats: str = ""
    logs: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status != STATUS_FAILED


@dataclass
class InstallReport:
    """一次 install / upgrade 调用的汇总"""

    results: list[TargetResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    @property
    def failed(self) -> list[str]:
        return [r.name for r in self.results if not r.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "results": [
                {"name": r.name, "status": r.status, "message": r.message, "error": r.error}
                for r in self.results
            ],
        }


@dataclass
class InstalledPackage:
    """list 命令的一行"""

    name: str
    versions: list[str]
    linked: str | None = None
    pinned: bool = False


class InstallService:
    """安装生命周期编排"""

    def __init__(
        self,
        *,
        config: Config,
        repository: FormulaRepository,
        store: PackageStore,
        executor: BuildExecutor,
        downloader: Downloader,
        env: HostEnvironment | None = None,
    ) -> None:
        self.config = config
        self.repository = repository
        self.store = store
        self.executor = executor
        self.downloader = downloader
        self.env = env or HostEnvironment.from_config(config)

    def new_session(self) -> InstallSession:
        return InstallSession(LockManager(self.config.locks_dir))

    def _context(self, session: InstallSession) -> InstallContext:
        return InstallContext(
            repository=self.repository,
            store=self.store,
            env=self.env,
            executor=self.executor,
            downloader=self.downloader,
            session=session,
            cache_dir=Path(self.config.cache_dir),
        )

    @staticmethod
    def _failed(name: str, error: CellarError) -> TargetResult:
        logger.error("%s", error)
        return TargetResult(name, STATUS_FAILED, str(error), error.to_dict())

    # ------------------------------------------------------------------
    # install
    # ------------------------------------------------------------------

    def install(
        self,
        names: Iterable[str],
        *,
        flags: InstallFlags | None = None,
        options: Iterable[str] = (),
    ) -> InstallReport:
        """安装一个或多个配方；每个目标的结果独立记录"""
        names = list(names)
        if not names:
            raise FormulaUnspecifiedError()
        flags = flags or InstallFlags()
        session = self.new_session()
        report = InstallReport()
        for name in names:
            report.results.append(self._install_target(name, session, flags, frozenset(options)))
        return report

    def _install_target(
        self, name: str, session: InstallSession,
        flags: InstallFlags, options: frozenset[str],
    ) -> TargetResult:
        try:
            formula = self.repository.load(name)
        except (FormulaUnavailableError, AmbiguousReferenceError) as e:
            return self._failed(name, e)

        if not flags.force and not flags.only_deps and self.store.is_installed(formula):
            linked = formula.keg_only or self.store.is_linked(formula.name)
            notice = FormulaAlreadyInstalledError(formula.name, formula.version, linked=linked)
            logger.warning("%s", notice)
            return TargetResult(name, STATUS_ALREADY_INSTALLED, str(notice))

        return self._run_installer(formula, session, flags, options, swap=flags.force)

    def _run_installer(
        self, formula: Formula, session: InstallSession,
        flags: InstallFlags, options: frozenset[str], *, swap: bool = False,
    ) -> TargetResult:
        installer = FormulaInstaller(formula, self._context(session), flags=flags, options=options)
        failures_before = len(session.link_failures)
        try:
            installer.prelude()
            guard = preserved_keg(self.store, formula) if swap else nullcontext()
            with guard:
                installer.install()
                installer.finish()
        except AlreadyAttemptedError as e:
            logger.info("%s", e)
            return TargetResult(formula.name, STATUS_SKIPPED, str(e))
        except CellarError as e:
            return self._failed(formula.name, e)
        finally:
            installer.unlock()

        logs = [str(p) for p in installer.logs]
        if len(session.link_failures) > failures_before:
            failed = ", ".join(session.link_failures[failures_before:])
            return TargetResult(
                formula.name, STATUS_FAILED, f"链接失败: {failed}",
                caveats=installer.caveats, logs=logs,
            )
        message = "仅安装了依赖" if flags.only_deps else f"{formula.name} {formula.version}"
        return TargetResult(
            formula.name, STATUS_INSTALLED, message,
            caveats=installer.caveats, logs=logs,
        )

    # ------------------------------------------------------------------
    # upgrade
    # ------------------------------------------------------------------

    def outdated(self) -> list[Formula]:
        """已安装但当前版本未安装的配方"""
        result: list[Formula] = []
        for rack in self.store.racks():
            try:
                formula = self.repository.load(rack.name)
            except (FormulaUnavailableError, AmbiguousReferenceError) as e:
                logger.debug("跳过无法定位的 rack %s: %s", rack.name, e)
                continue
            if self.store.installed_versions(formula.name) and not self.store.is_installed(formula):
                result.append(formula)
        return result

    def upgrade(self, names: Iterable[str] = (), *, flags: InstallFlags | None = None) -> InstallReport:
        """升级指定配方，未指定时升级全部过期且未 pin 的配方"""
        flags = flags or InstallFlags()
        session = self.new_session()
        report = InstallReport()
        targets: list[Formula] = []

        names = list(names)
        if names:
            for name in names:
                try:
                    formula = self.repository.load(name)
                except (FormulaUnavailableError, AmbiguousReferenceError) as e:
                    report.results.append(self._failed(name, e))
                    continue
                if not self.store.installed_versions(formula.name):
                    report.results.append(self._failed(name, NoSuchKegError(formula.name)))
                elif self.store.is_installed(formula):
                    report.results.append(TargetResult(
                        formula.name, STATUS_ALREADY_INSTALLED,
                        f"{formula.name} {formula.version} 已是最新版本",
                    ))
                else:
                    targets.append(formula)
        else:
            for formula in self.outdated():
                if self.store.is_pinned(formula.name):
                    logger.info("%s 已 pin，跳过升级", formula.name)
                    continue
                targets.append(formula)

        for formula in targets:
            old = self.store.installed_keg_path(formula.name)
            options = frozenset(Tab.for_keg(old).used_options) if old is not None else frozenset()
            logger.info(
                "==> 升级 %s %s -> %s",
                formula.name, old.name if old is not None else "?", formula.version,
            )
            report.results.append(
                self._run_installer(formula, session, flags, options, swap=True),
            )
        return report

    # ------------------------------------------------------------------
    # uninstall
    # ------------------------------------------------------------------

    def uninstall(self, names: Iterable[str], *, force: bool = False) -> list[str]:
        """卸载 keg；force 时卸载全部版本，返回每个配方剩余的版本说明"""
        names = list(names)
        if not names:
            raise FormulaUnspecifiedError()
        messages: list[str] = []
        locks = LockManager(self.config.locks_dir)
        for name in names:
            short = name.split("/")[-1]
            kegs = self._kegs_to_uninstall(short, force)
            with locks.hold([short]):
                for keg in kegs:
                    if keg.linked:
                        keg.unlink()
                    keg.remove_linked_keg_record()
                    keg.uninstall()
                    messages.append(f"已卸载 {keg.name} {keg.version}")
            remaining = self.store.installed_versions(short)
            if remaining:
                messages.append(f"{short} {', '.join(remaining)} 仍然安装着")
        return messages

    def _kegs_to_uninstall(self, name: str, force: bool) -> list[Keg]:
        versions = self.store.installed_versions(name)
        if not versions:
            raise NoSuchKegError(name)
        if force:
            return [Keg(self.store.rack(name) / v, self.store) for v in versions]
        if len(versions) == 1:
            return [Keg(self.store.rack(name) / versions[0], self.store)]
        active = self.store.opt_keg_path(name) or self.store.linked_keg_path(name)
        if active is None:
            raise MultipleVersionsInstalledError(name, versions)
        return [Keg(active, self.store)]

    # ------------------------------------------------------------------
    # link / unlink / pin
    # ------------------------------------------------------------------

    def _installed_keg(self, name: str) -> Keg:
        short = name.split("/")[-1]
        path = self.store.installed_keg_path(short)
        if path is None:
            raise NoSuchKegError(short)
        return Keg(path, self.store)

    def _is_keg_only(self, name: str) -> bool:
        try:
            return self.repository.load(name).keg_only
        except (FormulaUnavailableError, AmbiguousReferenceError):
            return False

    def link(
        self, name: str, *, overwrite: bool = False, dry_run: bool = False, force: bool = False,
    ) -> list[Path]:
        """把已安装 keg 链接进共享前缀"""
        keg = self._installed_keg(name)
        if self._is_keg_only(keg.name) and not force:
            raise UsageError(f"{keg.name} 是 keg-only 配方，需要 --force 才能链接")
        mode = LinkMode(overwrite=overwrite, dry_run=dry_run)
        if dry_run:
            return keg.link(mode)
        with LockManager(self.config.locks_dir).hold([keg.name]):
            return keg.link(mode)

    def unlink(self, name: str, *, dry_run: bool = False) -> list[Path]:
        """移除 keg 在共享前缀中的链接，返回涉及的路径"""
        short = name.split("/")[-1]
        path = self.store.linked_keg_path(short)
        keg = Keg(path, self.store) if path is not None else self._installed_keg(short)
        files = keg.linked_files()
        if dry_run:
            return files
        with LockManager(self.config.locks_dir).hold([keg.name]):
            keg.unlink()
        return files

    def pin(self, name: str) -> Path:
        keg = self._installed_keg(name)
        record = keg.pin()
        logger.info("已 pin %s %s", keg.name, keg.version)
        return record

    def unpin(self, name: str) -> bool:
        keg = self._installed_keg(name)
        return keg.unpin()

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def plan(
        self, name: str, *, options: Iterable[str] = (), flags: InstallFlags | None = None,
    ) -> InstallPlan:
        """计算安装计划但不安装"""
        flags = flags or InstallFlags()
        formula = self.repository.load(name)
        bottles = BottleDecider(
            flags.bottle_flags, cellar=self.store.cellar, cache_dir=Path(self.config.cache_dir),
        )
        expander = DependencyExpander(
            formula, repository=self.repository, store=self.store,
            env=self.env, bottles=bottles, options=frozenset(options),
        )
        return expander.expand()

    def options_for(self, name: str) -> list[Option]:
        return list(self.repository.load(name).options)

    def list_installed(self) -> list[InstalledPackage]:
        packages: list[InstalledPackage] = []
        for rack in self.store.racks():
            versions = self.store.installed_versions(rack.name)
            if not versions:
                continue
            linked = self.store.linked_keg_path(rack.name)
            packages.append(InstalledPackage(
                name=rack.name,
                versions=versions,
                linked=linked.name if linked is not None else None,
                pinned=self.store.is_pinned(rack.name),
            ))
        return packages

