"""
本地变更扫描器

遍历副本根目录，返回修改时间严格大于参考时间的条目。

符号链接的修改时间不可靠（链接本身可能永远显得"较新"，
导致每一轮都出现冲突），因此必须按 SymlinkPolicy 显式处理。
"""

import os
import stat
from pathlib import Path
from typing import Optional
import structlog

from stampsync.config.models import SymlinkPolicy
from stampsync.core.errors import DiscoveryFailure
from stampsync.core.filter import FileFilter
from stampsync.core.models import ChangeSet

logger = structlog.get_logger()


def tracks_symlink(entry: Path, symlink_policy: SymlinkPolicy) -> bool:
    """
    符号链接是否会被变更发现上报（从而被传输）

    EXCLUDE 从不上报；RESOLVE 仅上报指向普通文件的链接。
    删除预演同样以此排除永远不会被传输的链接。
    """
    if symlink_policy == SymlinkPolicy.EXCLUDE:
        return False

    try:
        target = entry.stat()
    except OSError:
        return False
    return stat.S_ISREG(target.st_mode)


class ChangeScanner:
    """本地变更扫描器"""

    def __init__(
        self,
        file_filter: FileFilter,
        symlink_policy: SymlinkPolicy = SymlinkPolicy.EXCLUDE,
        include_directories: bool = False
    ):
        """
        初始化扫描器

        Args:
            file_filter: 路径过滤器
            symlink_policy: 符号链接处理策略
            include_directories: 是否上报目录本身
        """
        self.file_filter = file_filter
        self.symlink_policy = symlink_policy
        self.include_directories = include_directories

    def scan(self, root: str, since: int, subpath: Optional[str] = None) -> ChangeSet:
        """
        扫描变更

        Args:
            root: 副本根目录
            since: 参考时间（秒），只返回修改时间严格大于它的条目
            subpath: 仅扫描根目录下的此相对子路径（可选）

        Returns:
            ChangeSet {相对路径: 修改时间}

        Raises:
            DiscoveryFailure: 根目录不存在或无法遍历
        """
        root_path = Path(root)
        start = root_path / subpath if subpath else root_path

        if not start.is_dir():
            raise DiscoveryFailure(f"Cannot scan '{start}': not a directory")

        changes = ChangeSet()
        walk_errors = []

        def on_error(error: OSError):
            walk_errors.append(error)

        # followlinks=False：不进入目录符号链接，避免环路
        for dirpath, dirnames, filenames in os.walk(start, onerror=on_error, followlinks=False):
            current = Path(dirpath)
            for name in dirnames + filenames:
                entry = current / name
                rel_path = entry.relative_to(root_path).as_posix()
                if self.file_filter.should_ignore(rel_path):
                    continue

                mtime = self._entry_mtime(entry)
                if mtime is not None and mtime > since:
                    changes[rel_path] = mtime

        # 根目录本身不可读才是致命错误，子目录错误只记录
        for error in walk_errors:
            if Path(error.filename or '') == start:
                raise DiscoveryFailure(f"Cannot scan '{start}'", error)
            logger.warning("Skipping unreadable entry", path=error.filename, error=str(error))

        logger.debug(
            "Local scan completed",
            root=str(start),
            since=since,
            changed=len(changes)
        )
        return changes

    def _entry_mtime(self, entry: Path) -> Optional[float]:
        """
        返回参与比较的修改时间，None 表示该条目不是候选

        Args:
            entry: 条目绝对路径
        """
        try:
            st = entry.lstat()
        except OSError as e:
            logger.warning("Cannot stat entry", path=str(entry), error=str(e))
            return None

        if stat.S_ISLNK(st.st_mode):
            return self._symlink_mtime(entry)
        if stat.S_ISDIR(st.st_mode):
            return st.st_mtime if self.include_directories else None
        if stat.S_ISREG(st.st_mode):
            return st.st_mtime
        # 设备、管道、套接字
        return None

    def _symlink_mtime(self, entry: Path) -> Optional[float]:
        if not tracks_symlink(entry, self.symlink_policy):
            return None

        try:
            return entry.stat().st_mtime
        except OSError as e:
            logger.debug("Symlink target vanished", path=str(entry), error=str(e))
            return None
