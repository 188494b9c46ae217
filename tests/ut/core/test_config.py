"""配置加载与目录布局测试"""

from __future__ import annotations

from pathlib import Path

import pytest

import cellar.core.config as cfgmod
from cellar.core.config import Config, get_config, init_config, set_config
from cellar.core.exceptions import ConfigError
from cellar.utils.yaml_io import save_yaml


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch):
    for var in ("CELLAR_PREFIX", "CELLAR_CELLAR", "CELLAR_TAPS", "CELLAR_CONFIG"):
        monkeypatch.delenv(var, raising=False)
    yield
    set_config(None)


def test_derived_paths(tmp_path: Path):
    cfg = Config(prefix=str(tmp_path))
    assert cfg.cellar_path == tmp_path / "Cellar"
    assert cfg.locks_dir == tmp_path / "var" / "homebrew" / "locks"
    assert cfg.linked_dir == tmp_path / "var" / "homebrew" / "linked"
    assert Path(cfg.cache_dir) == tmp_path / "var" / "cache" / "cellar"
    assert cfg.os_version
    assert cfg.arch


def test_empty_prefix_rejected():
    with pytest.raises(ConfigError):
        Config(prefix="")


def test_from_file_with_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    path = tmp_path / "config.yml"
    save_yaml(path, {"prefix": "/opt/ignored", "taps": ["/taps/core"], "mirror": "internal"})
    monkeypatch.setenv("CELLAR_PREFIX", str(tmp_path / "p"))
    cfg = Config.from_file(str(path))
    assert cfg.prefix == str(tmp_path / "p")
    assert cfg.taps == ["/taps/core"]
    assert cfg.extra == {"mirror": "internal"}


def test_missing_file_uses_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CELLAR_TAPS", f"{tmp_path}/a:{tmp_path}/b")
    cfg = Config.from_file(str(tmp_path / "none.yml"))
    assert cfg.prefix == "/usr/local"
    assert cfg.tap_paths == [tmp_path / "a", tmp_path / "b"]


def test_global_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CELLAR_CONFIG", str(tmp_path / "none.yml"))
    monkeypatch.setenv("CELLAR_PREFIX", str(tmp_path))
    cfg = init_config()
    assert get_config() is cfg
    assert cfgmod._current is cfg
    set_config(None)
    assert get_config().prefix == str(tmp_path)
