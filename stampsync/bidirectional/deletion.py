"""
删除协调器

删除不受时间窗口限制（被删除的文件没有修改时间可比较），
因此每次都对完整目录树做一次预演比较，并且必须经确认后才执行。
"""

from typing import List, Optional
import structlog

from stampsync.core.errors import DeletionFailure, SyncCancelled, TransportError
from stampsync.core.filter import FileFilter
from stampsync.core.models import DeletionSet, Direction
from stampsync.bidirectional.confirm import Confirmer
from stampsync.transport.base import Transport

logger = structlog.get_logger()


class DeletionReconciler:
    """删除协调器"""

    def __init__(
        self,
        transport: Transport,
        file_filter: FileFilter,
        confirmer: Confirmer,
        include_directories: bool = False
    ):
        """
        初始化删除协调器

        Args:
            transport: Transport
            file_filter: 路径过滤器（被排除的路径从不删除）
            confirmer: 确认回调
            include_directories: 目录本身是否参与同步；否则只有其下
                                 还有待删除文件的目录才是删除候选
        """
        self.transport = transport
        self.file_filter = file_filter
        self.confirmer = confirmer
        self.include_directories = include_directories

    async def plan_deletions(self, direction: Direction, subpath: Optional[str] = None) -> DeletionSet:
        """
        预演删除

        Args:
            direction: Direction.LOCAL 以远程为源删除本地多余条目；
                       Direction.REMOTE 以本地为源删除远程多余条目
            subpath: 仅比较此子路径

        Raises:
            DeletionFailure: 预演失败
        """
        try:
            paths = await self.transport.list_deletions(direction, subpath)
        except TransportError as e:
            raise DeletionFailure(f"Dry run for {direction.value} deletions failed", e)

        kept = [p for p in paths if not self.file_filter.should_ignore(p.rstrip('/'))]
        if not self.include_directories:
            kept = self._prune_directories(kept)
        deletions = DeletionSet(direction=direction, paths=kept)

        logger.info(
            "Deletion dry run completed",
            direction=direction.value,
            candidates=len(deletions)
        )
        return deletions

    def _prune_directories(self, paths: List[str]) -> List[str]:
        """
        去掉其下没有待删除文件的目录

        空目录从不被推送或拉取，它在对侧不存在并不代表已被删除。
        """
        files = [p for p in paths if not p.endswith('/')]
        return [
            p for p in paths
            if not p.endswith('/') or any(f.startswith(p) for f in files)
        ]

    async def apply(self, deletions: DeletionSet) -> List[str]:
        """
        经确认后执行删除

        Returns:
            实际删除的路径（未确认时为空列表）

        Raises:
            DeletionFailure: 删除执行失败
        """
        if not deletions:
            return []

        if not self.confirmer.confirm_deletions(deletions):
            logger.info(
                "Deletions not approved, keeping files",
                direction=deletions.direction.value,
                count=len(deletions)
            )
            return []

        try:
            await self.transport.delete(deletions.direction, deletions.paths)
        except SyncCancelled:
            raise
        except (TransportError, OSError) as e:
            raise DeletionFailure(f"Deleting {deletions.direction.value} paths failed", e)

        return list(deletions.paths)

    async def reconcile(self, direction: Direction, subpath: Optional[str] = None):
        """
        预演并（经确认后）执行一个方向的删除

        Returns:
            (DeletionSet, 实际删除的路径)
        """
        deletions = await self.plan_deletions(direction, subpath)
        deleted = await self.apply(deletions)
        return deletions, deleted
