"""服务容器: 统一依赖注入，消除跨服务/核心对象的裸构造

所有服务与核心对象通过容器获取，同一容器内的实例共享状态（配方缓存等）。
CLI 通过 get_container() 获取服务，而非直接 import 构造。

依赖关系图（→ 表示依赖）:
  installs → repository, store, executor, downloader, host
  其余均为独立实例

用法:
    container = ServiceContainer()
    svc = container.installs            # 懒加载

    # 显式注入配置（测试）
    container = ServiceContainer(config=Config(prefix=str(tmp_path)))
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cellar.core.config import Config
    from cellar.core.formulary import FormulaRepository
    from cellar.core.requirements import HostEnvironment
    from cellar.core.store import PackageStore
    from cellar.services.build.executor import BuildExecutor
    from cellar.services.download import Downloader
    from cellar.services.install_service import InstallService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器: 每个实例持有一组共享的服务和核心对象"""

    def __init__(self, config: Config | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from cellar.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    # ---- 核心对象 ----

    @property
    def repository(self) -> FormulaRepository:
        if "repository" not in self._instances:
            from cellar.core.formulary import FormulaRepository
            self._instances["repository"] = FormulaRepository(self._config.tap_paths)
        return self._instances["repository"]  # type: ignore[return-value]

    @property
    def store(self) -> PackageStore:
        if "store" not in self._instances:
            from cellar.core.store import PackageStore
            self._instances["store"] = PackageStore.from_config(self._config)
        return self._instances["store"]  # type: ignore[return-value]

    @property
    def host(self) -> HostEnvironment:
        if "host" not in self._instances:
            from cellar.core.requirements import HostEnvironment
            self._instances["host"] = HostEnvironment.from_config(self._config)
        return self._instances["host"]  # type: ignore[return-value]

    # ---- 服务层 ----

    @property
    def downloader(self) -> Downloader:
        if "downloader" not in self._instances:
            from cellar.services.download import Downloader
            self._instances["downloader"] = Downloader(Path(self._config.cache_dir))
        return self._instances["downloader"]  # type: ignore[return-value]

    @property
    def executor(self) -> BuildExecutor:
        if "executor" not in self._instances:
            from cellar.services.build.executor import BuildExecutor
            self._instances["executor"] = BuildExecutor(
                build_path=self._config.build_path,
                logs_dir=Path(self._config.logs_dir),
                build_tmp=self._config.build_tmp,
            )
        return self._instances["executor"]  # type: ignore[return-value]

    @property
    def installs(self) -> InstallService:
        if "installs" not in self._instances:
            from cellar.services.install_service import InstallService
            self._instances["installs"] = InstallService(
                config=self._config,
                repository=self.repository,
                store=self.store,
                executor=self.executor,
                downloader=self.downloader,
                env=self.host,
            )
        return self._instances["installs"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
