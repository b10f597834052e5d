"""
冲突解决器

功能:
- BLOCK：存在冲突时中止本轮同步，两侧均不改动
- RENAME：把本地冲突文件改名让出路径，远程版本随后拉取到原路径
"""

from enum import Enum
from pathlib import Path
from typing import Dict, Iterable
import structlog

from stampsync.core.errors import ConflictBlocked

logger = structlog.get_logger()

CONFLICT_MARKER = "_SYNC_CONFLICT_"


class ResolutionStrategy(Enum):
    """冲突解决策略（对整轮生效，不按文件选择）"""
    BLOCK = "block"
    RENAME = "rename"


def conflict_name(rel_path: str, host_id: str, timestamp: int) -> str:
    """生成冲突副本名称：<路径>_SYNC_CONFLICT_<主机>_<时间戳>"""
    safe_host = host_id.replace('/', '_') or 'unknown'
    return f"{rel_path}{CONFLICT_MARKER}{safe_host}_{int(timestamp)}"


class ConflictResolver:
    """冲突解决器"""

    def __init__(self, local_root: str, host_id: str, strategy: ResolutionStrategy = ResolutionStrategy.BLOCK):
        """
        初始化冲突解决器

        Args:
            local_root: 本地根目录
            host_id: 本地主机标识（写入冲突副本名称）
            strategy: 解决策略
        """
        self.local_root = Path(local_root)
        self.host_id = host_id
        self.strategy = strategy

    def resolve(self, conflicts: Iterable[str], timestamp: int) -> Dict[str, str]:
        """
        解决冲突

        Args:
            conflicts: 冲突路径
            timestamp: 本轮同步的时间戳

        Returns:
            改名映射 {原路径: 冲突副本路径}

        Raises:
            ConflictBlocked: 策略为 BLOCK，或改名失败
        """
        conflicts = sorted(conflicts)
        if not conflicts:
            return {}

        if self.strategy == ResolutionStrategy.BLOCK:
            raise ConflictBlocked(conflicts)

        renamed = {}
        for rel_path in conflicts:
            try:
                renamed[rel_path] = self._rename_aside(rel_path, timestamp)
            except OSError as e:
                logger.error("Failed to rename conflicting file", path=rel_path, error=str(e))
                self._restore(renamed)
                raise ConflictBlocked(
                    conflicts,
                    f"Cannot rename conflicting file '{rel_path}': {e}"
                )

        logger.info("Conflicts renamed aside", count=len(renamed))
        return renamed

    def _restore(self, renamed: Dict[str, str]):
        """撤销本轮已完成的改名，使中止的轮次不改动本地副本"""
        for original, copy in reversed(list(renamed.items())):
            try:
                (self.local_root / copy).rename(self.local_root / original)
                logger.info("Conflict rename undone", path=original, renamed_to=copy)
            except OSError as e:
                logger.error(
                    "Failed to undo conflict rename",
                    path=original,
                    renamed_to=copy,
                    error=str(e)
                )

    def _rename_aside(self, rel_path: str, timestamp: int) -> str:
        source = self.local_root / rel_path
        base = conflict_name(rel_path, self.host_id, timestamp)

        # 名称已存在时追加序号
        candidate = base
        counter = 1
        while (self.local_root / candidate).exists() or (self.local_root / candidate).is_symlink():
            candidate = f"{base}_{counter}"
            counter += 1

        source.rename(self.local_root / candidate)
        logger.info("Conflicting file renamed", path=rel_path, renamed_to=candidate)
        return candidate
