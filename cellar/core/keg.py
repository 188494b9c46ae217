"""Keg 与共享前缀链接

职责:
- 把 keg 内的文件逐个符号链接到 <prefix> 下相同相对路径（symlink farm）
- 链接前完整检查冲突，任何冲突都在修改文件系统之前报告
- 链接过程中出错时按日志回滚，共享前缀保持链接前的状态
- keg-only 配方只创建 opt/<name> 链接
- 维护 opt 链接与 LinkedKegs 登记

冲突判定:
  - 目标不存在: 可链接
  - 目标是失效链接，或指向同名配方（本版本或旧版本）的链接: 视为残留，替换
  - 目标是真实文件，或指向其他配方的链接: 冲突
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from cellar.core.exceptions import ConflictError, LinkError
from cellar.core.store import PackageStore

logger = logging.getLogger(__name__)

# 参与链接的顶层目录
LINK_DIRS = ("bin", "sbin", "etc", "include", "lib", "share", "Frameworks")

_BACKUP_SUFFIX = ".cellar-bak"


@dataclass(frozen=True)
class LinkMode:
    """overwrite: 移除冲突目标后再链接；dry_run: 只返回将受影响的路径"""

    overwrite: bool = False
    dry_run: bool = False


@dataclass(frozen=True)
class _LinkAction:
    src: Path
    dst: Path
    stale: bool = False           # 目标是可替换的残留链接
    conflict: bool = False
    owner: str | None = None


def _make_relative_symlink(src: Path, dst: Path) -> None:
    dst.symlink_to(os.path.relpath(src, dst.parent))


def _points_into(link: Path, root: Path) -> bool:
    try:
        link.resolve().relative_to(root.resolve())
    except (ValueError, OSError):
        return False
    return True


class Keg:
    """一个已安装版本的磁盘目录 <cellar>/<name>/<version>"""

    def __init__(self, path: Path, store: PackageStore) -> None:
        self.path = Path(path)
        self.store = store

    @property
    def name(self) -> str:
        return self.path.parent.name

    @property
    def version(self) -> str:
        return self.path.name

    @property
    def rack(self) -> Path:
        return self.path.parent

    def __str__(self) -> str:
        return str(self.path)

    def __repr__(self) -> str:
        return f"<Keg {self.name}/{self.version}>"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Keg) and other.path == self.path

    def __hash__(self) -> int:
        return hash(self.path)

    def exists(self) -> bool:
        return self.path.is_dir()

    @property
    def linked(self) -> bool:
        linked = self.store.linked_keg_path(self.name)
        return linked is not None and linked == self.path.resolve()

    @property
    def optlinked(self) -> bool:
        opt = self.store.opt_keg_path(self.name)
        return opt is not None and opt == self.path.resolve()

    def empty_installation(self) -> bool:
        """keg 中除收据外没有任何文件"""
        if not self.path.is_dir():
            return True
        return not any(p.name != "INSTALL_RECEIPT.json" for p in self.path.iterdir())

    def files(self) -> list[Path]:
        """keg 内所有需要链接的文件（相对 keg 的路径）"""
        found: list[Path] = []
        for top in LINK_DIRS:
            root = self.path / top
            if not root.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(root):
                base = Path(dirpath)
                for dn in dirnames:
                    if (base / dn).is_symlink():
                        found.append((base / dn).relative_to(self.path))
                for fn in filenames:
                    found.append((base / fn).relative_to(self.path))
        return sorted(found)

    # ------------------------------------------------------------------
    # 链接
    # ------------------------------------------------------------------

    def _classify(self, src: Path, dst: Path) -> _LinkAction:
        # 父路径上出现文件或外部链接同样是冲突
        parent = dst.parent
        while parent != self.store.prefix and parent != parent.parent:
            if parent.is_symlink() or (parent.exists() and not parent.is_dir()):
                owner = self.store.owner_of(parent) if parent.is_symlink() else None
                return _LinkAction(src, dst, conflict=True, owner=owner)
            parent = parent.parent

        if dst.is_symlink():
            if not dst.exists():
                return _LinkAction(src, dst, stale=True)
            if _points_into(dst, self.rack):
                return _LinkAction(src, dst, stale=True)
            return _LinkAction(src, dst, conflict=True, owner=self.store.owner_of(dst))
        if dst.exists():
            return _LinkAction(src, dst, conflict=True)
        return _LinkAction(src, dst)

    def plan_links(self) -> list[_LinkAction]:
        return [
            self._classify(self.path / rel, self.store.prefix / rel)
            for rel in self.files()
        ]

    def link(self, mode: LinkMode | None = None) -> list[Path]:
        """把 keg 链接进共享前缀，返回已创建（或 dry_run 下将受影响）的路径

        同名配方的其他版本必须已由调用方 unlink。
        """
        mode = mode or LinkMode()
        current = self.store.linked_keg_path(self.name)
        if current is not None:
            if current == self.path.resolve():
                raise LinkError(self.name, str(self.path), str(self.store.prefix), "已经链接")
            raise LinkError(
                self.name, str(self.path), str(self.store.prefix),
                f"另一个版本已链接: {current.name}，请先 unlink",
            )

        actions = self.plan_links()
        conflicts = [a for a in actions if a.conflict]

        if mode.dry_run:
            if mode.overwrite:
                return [a.dst for a in conflicts]
            return [a.dst for a in actions]

        if conflicts and not mode.overwrite:
            first = conflicts[0]
            raise ConflictError(
                self.name, str(first.src), str(first.dst),
                owner=first.owner, conflicts=[str(a.dst) for a in conflicts],
            )

        created = self._apply(actions)
        self.optlink()
        self._write_linked_record()
        logger.info("已链接 %s: %d 个文件", self, len(created))
        return created

    def _apply(self, actions: list[_LinkAction]) -> list[Path]:
        """执行链接，任何失败都撤销已做的修改"""
        created: list[Path] = []
        made_dirs: list[Path] = []
        backups: list[tuple[Path, Path]] = []
        try:
            for action in actions:
                made_dirs.extend(self._mkpath(action.dst.parent))
                if action.stale:
                    backup = action.dst.with_name(action.dst.name + _BACKUP_SUFFIX)
                    action.dst.rename(backup)
                    backups.append((action.dst, backup))
                elif action.conflict:
                    # overwrite 模式
                    self._clear_parent_conflict(action.dst, backups)
                    if action.dst.is_symlink() or action.dst.exists():
                        backup = action.dst.with_name(action.dst.name + _BACKUP_SUFFIX)
                        action.dst.rename(backup)
                        backups.append((action.dst, backup))
                    made_dirs.extend(self._mkpath(action.dst.parent))
                _make_relative_symlink(action.src, action.dst)
                created.append(action.dst)
        except OSError as e:
            logger.error("链接 %s 失败，回滚 %d 个链接: %s", self, len(created), e)
            self._rollback(created, made_dirs, backups)
            raise LinkError(self.name, str(self.path), str(self.store.prefix), str(e)) from e
        except BaseException:
            self._rollback(created, made_dirs, backups)
            raise

        for _, backup in backups:
            _remove_path(backup)
        return created

    def _clear_parent_conflict(
        self, dst: Path, backups: list[tuple[Path, Path]],
    ) -> None:
        parent = dst.parent
        while parent != self.store.prefix and parent != parent.parent:
            if parent.is_symlink() or (parent.exists() and not parent.is_dir()):
                backup = parent.with_name(parent.name + _BACKUP_SUFFIX)
                parent.rename(backup)
                backups.append((parent, backup))
                return
            parent = parent.parent

    def _mkpath(self, directory: Path) -> list[Path]:
        """逐级创建目录，返回新建的目录（由浅到深）"""
        missing: list[Path] = []
        d = directory
        while not d.exists() and not d.is_symlink():
            missing.append(d)
            d = d.parent
        for m in reversed(missing):
            m.mkdir()
        return list(reversed(missing))

    @staticmethod
    def _rollback(
        created: list[Path], made_dirs: list[Path],
        backups: list[tuple[Path, Path]],
    ) -> None:
        for link in reversed(created):
            if link.is_symlink():
                link.unlink()
        for original, backup in reversed(backups):
            if backup.exists() or backup.is_symlink():
                backup.rename(original)
        for d in reversed(made_dirs):
            try:
                d.rmdir()
            except OSError:
                pass

    def linked_files(self) -> list[Path]:
        """共享前缀中指向本 keg 的链接"""
        found: list[Path] = []
        for rel in self.files():
            dst = self.store.prefix / rel
            if dst.is_symlink() and _points_into(dst, self.path):
                found.append(dst)
        return found

    def unlink(self) -> int:
        """移除指向本 keg 的所有链接，返回移除数量"""
        removed = 0
        for dst in self.linked_files():
            dst.unlink()
            removed += 1
            self._prune_empty_dirs(dst.parent)
        self.remove_linked_keg_record()
        logger.info("已取消链接 %s: %d 个文件", self, removed)
        return removed

    def _prune_empty_dirs(self, directory: Path) -> None:
        d = directory
        while d != self.store.prefix and d != d.parent:
            try:
                d.rmdir()
            except OSError:
                return
            d = d.parent

    # ------------------------------------------------------------------
    # opt / LinkedKegs 登记
    # ------------------------------------------------------------------

    def optlink(self) -> Path:
        """opt/<name> 指向本 keg；keg-only 与普通配方都会创建"""
        record = self.store.opt_record(self.name)
        try:
            record.parent.mkdir(parents=True, exist_ok=True)
            if record.is_symlink() or record.exists():
                record.unlink()
            _make_relative_symlink(self.path, record)
        except OSError as e:
            raise LinkError(self.name, str(self.path), str(record), str(e)) from e
        return record

    def _write_linked_record(self) -> None:
        record = self.store.linked_record(self.name)
        record.parent.mkdir(parents=True, exist_ok=True)
        if record.is_symlink() or record.exists():
            record.unlink()
        _make_relative_symlink(self.path, record)

    def remove_linked_keg_record(self) -> None:
        record = self.store.linked_record(self.name)
        if record.is_symlink() and (not record.exists() or _points_into(record, self.path)):
            record.unlink()

    def remove_opt_record(self) -> None:
        record = self.store.opt_record(self.name)
        if record.is_symlink() and (not record.exists() or _points_into(record, self.path)):
            record.unlink()

    def pin(self) -> Path:
        """pinned/<name> 指向本 keg；升级时跳过"""
        record = self.store.pinned_record(self.name)
        record.parent.mkdir(parents=True, exist_ok=True)
        if record.is_symlink() or record.exists():
            record.unlink()
        _make_relative_symlink(self.path, record)
        return record

    def unpin(self) -> bool:
        record = self.store.pinned_record(self.name)
        if not record.is_symlink():
            return False
        record.unlink()
        return True

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    def rename(self, target: Path) -> Keg:
        self.path.rename(target)
        return Keg(target, self.store)

    def uninstall(self) -> None:
        """删除 keg 目录；rack 为空时一并删除"""
        self.remove_opt_record()
        pinned = self.store.pinned_record(self.name)
        if pinned.is_symlink() and (not pinned.exists() or _points_into(pinned, self.path)):
            pinned.unlink()
        if self.path.is_dir():
            shutil.rmtree(self.path)
        rmdir_if_possible(self.rack)
        logger.info("已删除 keg: %s", self)


def rmdir_if_possible(directory: Path) -> bool:
    try:
        directory.rmdir()
    except OSError:
        return False
    return True


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
