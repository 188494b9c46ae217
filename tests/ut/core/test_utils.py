"""YAML/JSON 读写与日志格式测试"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from cellar.utils.logger import JSONFormatter, reset_logging, setup_logging
from cellar.utils.yaml_io import load_json, load_yaml, save_json, save_yaml


class TestYamlIO:
    def test_save_yaml_atomic(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "foo.yml"
        save_yaml(path, {"name": "foo", "caveats": "中文说明"})
        assert load_yaml(path) == {"name": "foo", "caveats": "中文说明"}
        assert list(path.parent.glob("*.tmp")) == []

    def test_missing_or_non_dict(self, tmp_path: Path) -> None:
        assert load_yaml(tmp_path / "none.yml") == {}
        (tmp_path / "list.yml").write_text("- a\n- b\n")
        assert load_yaml(tmp_path / "list.yml") == {}

    def test_invalid_yaml_raises(self, tmp_path: Path) -> None:
        import yaml

        (tmp_path / "bad.yml").write_text("key: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_yaml(tmp_path / "bad.yml")

    def test_json_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "r.json"
        save_json(path, {"b": 1, "a": [1, 2]})
        assert load_json(path) == {"a": [1, 2], "b": 1}
        assert path.read_text().endswith("\n")


class TestLogging:
    def test_json_formatter_includes_formula(self) -> None:
        record = logging.LogRecord("cellar.x", logging.INFO, __file__, 1, "安装 %s", ("foo",), None)
        record.formula = "core/foo"
        data = json.loads(JSONFormatter().format(record))
        assert data["message"] == "安装 foo"
        assert data["formula"] == "core/foo"
        assert data["level"] == "INFO"

    def test_setup_and_reset(self) -> None:
        root = logging.getLogger()
        saved = root.handlers[:]
        try:
            setup_logging("DEBUG", json_output=True)
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            reset_logging()
            assert root.handlers == []
        finally:
            for h in saved:
                root.addHandler(h)
            root.setLevel(logging.WARNING)
