"""Keg 链接、冲突检查与回滚测试"""

from __future__ import annotations

import pytest

from cellar.core.exceptions import ConflictError, LinkError
from cellar.core.keg import Keg, LinkMode


@pytest.fixture()
def foo(store, make_keg) -> Keg:
    return Keg(make_keg("foo", files=("bin/foo", "share/foo/README")), store)


class TestLink:
    def test_link_creates_relative_symlinks_and_records(self, foo, store, prefix):
        created = foo.link()
        target = prefix / "bin" / "foo"
        assert target in created
        assert target.is_symlink()
        assert not target.readlink().is_absolute()
        assert target.resolve() == (foo.path / "bin" / "foo").resolve()
        assert foo.linked
        assert foo.optlinked
        assert store.is_linked("foo")

    def test_real_file_conflict_leaves_prefix_untouched(self, foo, prefix):
        (prefix / "bin").mkdir()
        (prefix / "bin" / "foo").write_text("system copy")
        with pytest.raises(ConflictError) as exc:
            foo.link()
        assert str(prefix / "bin" / "foo") in exc.value.conflicts
        assert not (prefix / "share").exists()
        assert not foo.linked
        assert (prefix / "bin" / "foo").read_text() == "system copy"

    def test_conflict_with_other_formula_reports_owner(self, store, make_keg):
        Keg(make_keg("bar", files=("bin/tool",)), store).link()
        foo = Keg(make_keg("foo", files=("bin/tool",)), store)
        with pytest.raises(ConflictError) as exc:
            foo.link()
        assert exc.value.owner == "bar"

    def test_stale_links_are_replaced(self, foo, prefix):
        (prefix / "bin").mkdir()
        (prefix / "bin" / "foo").symlink_to(prefix / "nowhere")
        foo.link()
        assert (prefix / "bin" / "foo").resolve() == (foo.path / "bin" / "foo").resolve()
        assert not (prefix / "bin" / "foo.cellar-bak").exists()

    def test_links_to_older_version_are_replaced(self, store, make_keg, prefix):
        old = Keg(make_keg("foo", "0.9"), store)
        old.link()
        store.linked_record("foo").unlink()
        new = Keg(make_keg("foo", "1.0"), store)
        new.link()
        assert (prefix / "bin" / "foo").resolve() == (new.path / "bin" / "foo").resolve()

    def test_overwrite_replaces_conflicts(self, foo, prefix):
        (prefix / "bin").mkdir()
        (prefix / "bin" / "foo").write_text("system copy")
        foo.link(LinkMode(overwrite=True))
        assert (prefix / "bin" / "foo").is_symlink()
        assert not (prefix / "bin" / "foo.cellar-bak").exists()

    def test_dry_run_changes_nothing(self, foo, prefix):
        paths = foo.link(LinkMode(dry_run=True))
        assert prefix / "bin" / "foo" in paths
        assert not (prefix / "bin").exists()
        assert not foo.linked

    def test_dry_run_overwrite_lists_only_conflicts(self, foo, prefix):
        (prefix / "bin").mkdir()
        (prefix / "bin" / "foo").write_text("x")
        paths = foo.link(LinkMode(overwrite=True, dry_run=True))
        assert paths == [prefix / "bin" / "foo"]

    def test_other_version_linked_is_rejected(self, store, make_keg):
        Keg(make_keg("foo", "0.9"), store).link()
        with pytest.raises(LinkError, match="另一个版本已链接"):
            Keg(make_keg("foo", "1.0"), store).link()

    def test_optlink_only_for_keg_only(self, foo, store, prefix):
        foo.optlink()
        assert store.opt_keg_path("foo") == foo.path.resolve()
        assert not (prefix / "bin").exists()
        assert not foo.linked


class TestUnlink:
    def test_unlink_removes_links_record_and_empty_dirs(self, foo, prefix):
        foo.link()
        removed = foo.unlink()
        assert removed == 2
        assert not (prefix / "bin").exists()
        assert not (prefix / "share").exists()
        assert not foo.linked

    def test_unlink_keeps_foreign_files(self, foo, prefix):
        foo.link()
        (prefix / "bin" / "other").write_text("x")
        foo.unlink()
        assert (prefix / "bin" / "other").exists()


class TestLifecycle:
    def test_empty_installation(self, store, make_keg):
        keg = Keg(make_keg("foo", files=()), store)
        assert keg.empty_installation()

    def test_pin_and_unpin(self, foo, store):
        foo.pin()
        assert store.is_pinned("foo")
        assert foo.unpin()
        assert not store.is_pinned("foo")
        assert not foo.unpin()

    def test_uninstall_removes_rack_and_records(self, foo, store):
        foo.optlink()
        foo.pin()
        foo.uninstall()
        assert not foo.rack.exists()
        assert store.opt_keg_path("foo") is None
        assert not store.is_pinned("foo")
