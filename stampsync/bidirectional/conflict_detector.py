"""
冲突检测器

同一路径自两个副本较小的同步标记以来在两侧都发生了修改，即为冲突。
两侧时钟不保证同步，因此从不比较两侧的修改时间（不采用"最后写入者胜出"）。
"""

from typing import FrozenSet, Iterable
import structlog

logger = structlog.get_logger()


class ConflictDetector:
    """冲突检测器"""

    def detect(self, local_changes: Iterable[str], remote_changes: Iterable[str]) -> FrozenSet[str]:
        """
        检测冲突

        Args:
            local_changes: 本地变更路径
            remote_changes: 远程变更路径

        Returns:
            同时出现在两侧变更中的路径集合
        """
        conflicts = frozenset(local_changes) & frozenset(remote_changes)

        if conflicts:
            logger.info(
                "Conflicts detected",
                count=len(conflicts),
                paths=sorted(conflicts)[:20]
            )
        return conflicts
