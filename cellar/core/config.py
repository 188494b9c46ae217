"""集中配置管理

所有目录布局（前缀、Cellar、opt、LinkedKegs 登记、锁目录）统一从此处派生。
支持从 YAML 文件加载 + 环境变量覆盖 + 编程式覆盖。
"""

from __future__ import annotations

import logging
import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from cellar.core.exceptions import ConfigError
from cellar.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "~/.config/cellar/config.yml"

# 构建子进程使用的最小 PATH
DEFAULT_BUILD_PATH = "/usr/bin:/bin:/usr/sbin:/sbin"


@dataclass
class Config:
    """安装引擎全局配置"""

    # 目录
    prefix: str = "/usr/local"
    cellar: str = ""                 # 默认 <prefix>/Cellar
    taps: list[str] = field(default_factory=list)
    cache_dir: str = ""              # 默认 <prefix>/var/cache/cellar
    logs_dir: str = ""               # 默认 <prefix>/var/log/cellar
    build_tmp: str = ""              # 默认系统临时目录

    # 构建
    build_path: str = DEFAULT_BUILD_PATH

    # 前置条件检查用的主机信息，留空则自动探测
    os_version: str = ""
    arch: str = ""

    # 自定义扩展
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ConfigError("prefix 不能为空")
        if not self.cellar:
            self.cellar = str(Path(self.prefix) / "Cellar")
        if not self.cache_dir:
            self.cache_dir = str(Path(self.prefix) / "var" / "cache" / "cellar")
        if not self.logs_dir:
            self.logs_dir = str(Path(self.prefix) / "var" / "log" / "cellar")
        if not self.os_version:
            self.os_version = platform.release().split("-")[0]
        if not self.arch:
            self.arch = platform.machine()

    # ---- 派生路径 ----

    @property
    def prefix_path(self) -> Path:
        return Path(self.prefix)

    @property
    def cellar_path(self) -> Path:
        return Path(self.cellar)

    @property
    def opt_dir(self) -> Path:
        return self.prefix_path / "opt"

    @property
    def linked_dir(self) -> Path:
        """LinkedKegs 登记目录"""
        return self.prefix_path / "var" / "homebrew" / "linked"

    @property
    def locks_dir(self) -> Path:
        return self.prefix_path / "var" / "homebrew" / "locks"

    @property
    def pinned_dir(self) -> Path:
        return self.prefix_path / "var" / "homebrew" / "pinned"

    @property
    def tap_paths(self) -> list[Path]:
        return [Path(t).expanduser() for t in self.taps]

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则使用默认值；环境变量优先"""
        data = load_yaml(Path(path).expanduser())
        data = {**data, **_env_overrides()}
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if os.getenv("CELLAR_PREFIX"):
        overrides["prefix"] = os.environ["CELLAR_PREFIX"]
    if os.getenv("CELLAR_CELLAR"):
        overrides["cellar"] = os.environ["CELLAR_CELLAR"]
    if os.getenv("CELLAR_TAPS"):
        overrides["taps"] = os.environ["CELLAR_TAPS"].split(os.pathsep)
    return overrides


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config(**_env_overrides())
    return _current


def init_config(path: str = "") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    path = path or os.getenv("CELLAR_CONFIG", DEFAULT_CONFIG_FILE)
    _current = Config.from_file(path)
    logger.info("配置已加载: %s (prefix=%s)", path, _current.prefix)
    return _current


def set_config(config: Config | None) -> None:
    """替换全局配置（测试用）"""
    global _current  # noqa: PLW0603
    _current = config
