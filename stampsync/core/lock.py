"""
单实例锁

同一个本地根目录同时只允许一个同步轮次:
- 进程内: 每个事件循环中按根目录区分的 asyncio.Lock
- 进程间: 根目录之外的锁文件上的 fcntl.flock
"""

import asyncio
import fcntl
import hashlib
import os
import weakref
from pathlib import Path
from typing import Dict
import structlog

from stampsync.core.errors import RoundInProgress

logger = structlog.get_logger()

# 按事件循环分组；根目录的锁在释放后移除
_process_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _loop_locks() -> Dict[str, asyncio.Lock]:
    loop = asyncio.get_running_loop()
    locks = _process_locks.get(loop)
    if locks is None:
        locks = _process_locks[loop] = {}
    return locks


def lock_file_path(lock_dir: str, local_root: str, remote_label: str) -> Path:
    """生成锁文件路径（根目录与远程标识的哈希）"""
    unique_string = f"{Path(local_root).resolve()}:{remote_label}"
    path_hash = hashlib.md5(unique_string.encode()).hexdigest()[:8]
    return Path(lock_dir) / f"{path_hash}.lock"


class RootLock:
    """本地根目录锁（非阻塞，已被占用时直接拒绝）"""

    def __init__(self, lock_dir: str, local_root: str, remote_label: str):
        self.key = str(Path(local_root).resolve())
        self.path = lock_file_path(lock_dir, local_root, remote_label)
        self._fd = None
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock = None

    async def __aenter__(self):
        self._locks = _loop_locks()
        existing = self._locks.get(self.key)
        if existing is not None and existing.locked():
            raise RoundInProgress(f"A round is already running for '{self.key}'")

        self._lock = self._locks.setdefault(self.key, asyncio.Lock())
        await self._lock.acquire()

        try:
            self._acquire_file_lock()
        except BaseException:
            self._release_process_lock()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        try:
            self._release_file_lock()
        finally:
            self._release_process_lock()

    def _release_process_lock(self):
        self._lock.release()
        if not self._lock.locked() and self._locks.get(self.key) is self._lock:
            del self._locks[self.key]

    def _acquire_file_lock(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise RoundInProgress(
                f"Another process is synchronizing '{self.key}' (lock {self.path})"
            )
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug("Root lock acquired", root=self.key, lock_file=str(self.path))

    def _release_file_lock(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug("Root lock released", root=self.key)
