"""按配方名的进程间互斥锁

每个配方对应 <prefix>/var/homebrew/locks/<name>.formula.lock，
使用非阻塞 flock 独占: 已被其他进程持有时立即抛 OperationInProgressError，
不排队等待。

一次安装涉及的所有配方（根配方 + 递归依赖）按名称排序后一起获取，
作为一个整体释放；获取到一半失败时已获取的锁全部释放。
进程退出时内核自动释放 flock，异常中断不会留下死锁。
"""

from __future__ import annotations

import fcntl
import logging
import os
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from cellar.core.exceptions import OperationInProgressError

logger = logging.getLogger(__name__)


class FormulaLock:
    """单个配方的独占锁"""

    def __init__(self, name: str, lock_dir: Path) -> None:
        self.name = name.split("/")[-1]
        self.path = Path(lock_dir) / f"{self.name}.formula.lock"
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def lock(self) -> None:
        if self._fd is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise OperationInProgressError(self.name) from None
        except OSError:
            os.close(fd)
            raise
        self._fd = fd
        logger.debug("已加锁: %s", self.name)

    def unlock(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug("已解锁: %s", self.name)

    def __enter__(self) -> FormulaLock:
        self.lock()
        return self

    def __exit__(self, *exc: object) -> None:
        self.unlock()


class LockManager:
    """一组配方锁的整体获取与释放"""

    def __init__(self, lock_dir: Path) -> None:
        self.lock_dir = Path(lock_dir)
        self._held: dict[str, FormulaLock] = {}

    @property
    def held_names(self) -> list[str]:
        return sorted(self._held)

    def holding(self) -> bool:
        return bool(self._held)

    def acquire(self, names: Iterable[str]) -> list[str]:
        """按名称排序依次加锁；任一失败则释放本次已获取的锁并抛出"""
        wanted = sorted({n.split("/")[-1] for n in names} - set(self._held))
        acquired: list[FormulaLock] = []
        try:
            for name in wanted:
                lock = FormulaLock(name, self.lock_dir)
                lock.lock()
                acquired.append(lock)
        except BaseException:
            for lock in reversed(acquired):
                lock.unlock()
            raise
        for lock in acquired:
            self._held[lock.name] = lock
        if acquired:
            logger.info("已获取 %d 个配方锁: %s", len(acquired), ", ".join(wanted))
        return wanted

    def release_all(self) -> None:
        for name in sorted(self._held, reverse=True):
            self._held[name].unlock()
        if self._held:
            logger.info("已释放 %d 个配方锁", len(self._held))
        self._held.clear()

    @contextmanager
    def hold(self, names: Iterable[str]) -> Iterator[list[str]]:
        """上下文内持有整组锁，退出（含中断）时释放"""
        acquired = self.acquire(names)
        try:
            yield acquired
        finally:
            for name in acquired:
                lock = self._held.pop(name, None)
                if lock is not None:
                    lock.unlock()
