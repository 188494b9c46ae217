"""共享测试夹具: 临时前缀、配方仓库与 keg 构造工具"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from cellar.core.config import Config, set_config
from cellar.core.formulary import FormulaRepository
from cellar.core.requirements import HostEnvironment
from cellar.core.store import PackageStore
from cellar.core.tab import Tab
from cellar.utils.yaml_io import save_yaml


@pytest.fixture()
def prefix(tmp_path: Path) -> Path:
    p = tmp_path / "prefix"
    p.mkdir()
    return p


@pytest.fixture()
def tap(tmp_path: Path) -> Path:
    t = tmp_path / "taps" / "core"
    t.mkdir(parents=True)
    return t


@pytest.fixture()
def config(prefix: Path, tap: Path, tmp_path: Path) -> Config:
    cfg = Config(
        prefix=str(prefix),
        taps=[str(tap)],
        build_tmp=str(tmp_path / "build-tmp"),
        os_version="14.0",
        arch="x86_64",
    )
    Path(cfg.build_tmp).mkdir()
    set_config(cfg)
    yield cfg
    set_config(None)


@pytest.fixture()
def store(config: Config) -> PackageStore:
    return PackageStore.from_config(config)


@pytest.fixture()
def repository(config: Config) -> FormulaRepository:
    return FormulaRepository(config.tap_paths)


@pytest.fixture()
def host() -> HostEnvironment:
    return HostEnvironment(os_version="14.0", arch="x86_64", path="", environ={})


@pytest.fixture()
def write_formula(tap: Path) -> Callable[..., Path]:
    """在默认 tap 中写入 <name>.yml；未给出 build 时生成一个安装 bin/<name> 的步骤"""
    def _write(name: str, version: str = "1.0", **fields: Any) -> Path:
        data: dict[str, Any] = {"name": name, "version": version}
        data.setdefault("build", [f"mkdir -p {{prefix}}/bin && touch {{prefix}}/bin/{name}"])
        data.update(fields)
        path = tap / f"{name}.yml"
        save_yaml(path, data)
        return path
    return _write


@pytest.fixture()
def make_keg(store: PackageStore) -> Callable[..., Path]:
    """直接在 Cellar 中构造一个 keg（不经过构建）"""
    def _make(
        name: str, version: str = "1.0",
        files: tuple[str, ...] = ("bin/{name}",),
        used_options: list[str] | None = None,
    ) -> Path:
        keg = store.rack(name) / version
        for rel in files:
            f = keg / rel.format(name=name)
            f.parent.mkdir(parents=True, exist_ok=True)
            f.write_text(f"{name} {version}\n", encoding="utf-8")
        keg.mkdir(parents=True, exist_ok=True)
        Tab(used_options=list(used_options or [])).write(keg)
        return keg
    return _make
