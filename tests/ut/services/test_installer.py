"""安装器组件测试: 开关、caveats 文本、已有 keg 的暂存与恢复"""

from __future__ import annotations

import pytest

from cellar.core.keg import Keg
from cellar.core.models import Formula
from cellar.services.installer import FormulaView, InstallFlags, preserved_keg


class TestInstallFlags:
    def test_bottle_flags(self):
        flags = InstallFlags(force_bottle=True, interactive=True)
        assert flags.bottle_flags.force_bottle
        assert flags.bottle_flags.interactive
        assert not flags.bottle_flags.build_from_source

    def test_for_dependency_keeps_only_source_and_debug(self):
        flags = InstallFlags(
            build_from_source=True, force_bottle=True, force=True,
            interactive=True, debug=True, build_bottle=True, only_deps=True,
        )
        dep = flags.for_dependency()
        assert dep == InstallFlags(build_from_source=True, ignore_deps=True, debug=True)


class TestFormulaView:
    def test_plain_caveats(self, store):
        view = FormulaView(Formula(name="foo", version="1", caveats="  请重启 shell \n"), store)
        assert view.caveats() == "请重启 shell"

    def test_keg_only_caveats(self, store):
        f = Formula(name="foo", version="1", keg_only_reason="与系统 libfoo 冲突", caveats="注意")
        text = FormulaView(f, store).caveats()
        assert text.startswith("注意")
        assert "keg-only" in text
        assert "与系统 libfoo 冲突" in text
        assert f"{store.opt_record('foo')}/bin" in text

    def test_no_caveats(self, store):
        assert FormulaView(Formula(name="foo", version="1"), store).caveats() == ""


class TestPreservedKeg:
    def test_success_discards_backup(self, store, make_keg):
        keg = Keg(make_keg("foo"), store)
        keg.link()
        f = Formula(name="foo", version="1.0")
        with preserved_keg(store, f):
            assert not keg.exists()
            assert not store.is_linked("foo")
            make_keg("foo")
        assert keg.exists()
        assert not keg.path.with_name("1.0.tmp").exists()

    def test_failure_restores_keg_and_link(self, store, make_keg, prefix):
        keg = Keg(make_keg("foo"), store)
        keg.link()
        f = Formula(name="foo", version="1.0")
        with pytest.raises(RuntimeError):
            with preserved_keg(store, f):
                make_keg("foo", files=("bin/half-built",))
                raise RuntimeError("boom")
        assert (keg.path / "bin" / "foo").is_file()
        assert not (keg.path / "bin" / "half-built").exists()
        assert keg.linked
        assert (prefix / "bin" / "foo").is_symlink()

    def test_failure_relinks_previous_version(self, store, make_keg):
        old = Keg(make_keg("foo", "0.9"), store)
        old.link()
        with pytest.raises(KeyboardInterrupt):
            with preserved_keg(store, Formula(name="foo", version="1.0")):
                raise KeyboardInterrupt
        assert old.linked

    def test_nothing_installed(self, store):
        with preserved_keg(store, Formula(name="foo", version="1.0")):
            pass
        assert not store.rack("foo").exists()
