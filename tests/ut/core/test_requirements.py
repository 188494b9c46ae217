"""前置条件变体与注册表测试"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from cellar.core.exceptions import ValidationError
from cellar.core.requirements import (
    HostEnvironment,
    Requirement,
    known_kinds,
    register_requirement,
)


def _env(**kw) -> HostEnvironment:
    base = {"os_version": "14.2", "arch": "x86_64", "path": "", "environ": {}}
    base.update(kw)
    return HostEnvironment(**base)


class TestParse:
    def test_unknown_kind_raises(self):
        with pytest.raises(ValidationError, match="未知的前置条件类型"):
            Requirement.parse({"kind": "quantum"})

    def test_builtin_kinds_registered(self):
        assert {"executable", "min_os", "max_os", "arch", "env"} <= set(known_kinds())

    def test_defaults(self):
        req = Requirement.parse({"kind": "executable", "names": ["git"]})
        assert req.name == "git"
        assert req.fatal
        assert req.args == ("git",)

    def test_string_args(self):
        req = Requirement.parse({"kind": "min_os", "value": "13.0"})
        assert req.args == ("13.0",)


class TestChecks:
    def test_executable_found_on_path(self, tmp_path: Path):
        exe = tmp_path / "mytool"
        exe.write_text("#!/bin/sh\n")
        exe.chmod(0o755)
        req = Requirement.parse({"kind": "executable", "names": ["missing-tool", "mytool"]})
        assert req.satisfied(_env(path=str(tmp_path)))

    def test_executable_missing(self, tmp_path: Path):
        req = Requirement.parse({"kind": "executable", "names": ["definitely-not-here"]})
        assert not req.satisfied(_env(path=str(tmp_path)))

    def test_min_and_max_os(self):
        assert Requirement.parse({"kind": "min_os", "args": ["14.0"]}).satisfied(_env())
        assert not Requirement.parse({"kind": "min_os", "args": ["15"]}).satisfied(_env())
        assert Requirement.parse({"kind": "max_os", "args": ["15"]}).satisfied(_env())
        assert not Requirement.parse({"kind": "max_os", "args": ["13.9"]}).satisfied(_env())

    def test_arch_aliases(self):
        req = Requirement.parse({"kind": "arch", "args": ["amd64"]})
        assert req.satisfied(_env(arch="x86_64"))
        assert not req.satisfied(_env(arch="arm64"))

    def test_env_vars(self):
        req = Requirement.parse({"kind": "env", "args": ["JAVA_HOME"]})
        assert req.satisfied(_env(environ={"JAVA_HOME": "/opt/java"}))
        assert not req.satisfied(_env(environ={}))


class TestMessage:
    def test_default_formula_hint(self):
        req = Requirement.parse({"kind": "executable", "names": ["git"], "default_formula": "git"})
        assert "git" in req.message
        assert "可以安装 git" in req.message

    def test_custom_message(self):
        req = Requirement.parse({"kind": "env", "args": ["X"], "message": "请先设置 X"})
        assert req.message == "请先设置 X"

    def test_to_dependency_keeps_tags(self):
        req = Requirement.parse({
            "kind": "executable", "names": ["cmake"],
            "default_formula": "cmake", "tags": ["build"],
        })
        dep = req.to_dependency()
        assert dep.name == "cmake"
        assert dep.build


class TestRegistry:
    def test_register_custom_kind(self):
        @register_requirement("always_ok", message=lambda r: "never shown")
        def _ok(req, env):
            return True

        req = Requirement.parse({"kind": "always_ok"})
        assert req.satisfied(_env())
        assert "always_ok" in known_kinds()


def test_host_environment_from_config(config):
    env = HostEnvironment.from_config(config)
    assert env.os_version == "14.0"
    assert env.arch == "x86_64"
    assert env.path == os.environ.get("PATH", "")
