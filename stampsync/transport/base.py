"""
Transport 接口

Transport 负责所有远程操作：变更发现、标记读取、推送/拉取、删除预演与删除执行。
所有方法失败时抛出 TransportError，收到取消信号时抛出 SyncCancelled。
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from stampsync.core.models import Direction


class Transport(ABC):
    """远程操作接口"""

    @abstractmethod
    async def prepare(self, subpath: Optional[str] = None):
        """确保远程根目录（或子路径）存在"""

    @abstractmethod
    async def read_remote_mark(self) -> Optional[str]:
        """读取远程标记文件内容，不存在时返回 None"""

    @abstractmethod
    async def list_remote_changes(self, since: int, subpath: Optional[str] = None) -> List[str]:
        """
        列出远程修改时间严格大于 since 的相对路径（不含标记文件）

        Args:
            since: 参考时间（秒）
            subpath: 仅列出此相对子路径下的条目（可选）
        """

    @abstractmethod
    async def pull(self, paths: Iterable[str]):
        """远程 -> 本地，传输给定相对路径"""

    @abstractmethod
    async def push(self, paths: Iterable[str]):
        """本地 -> 远程，传输给定相对路径"""

    @abstractmethod
    async def list_deletions(self, direction: Direction, subpath: Optional[str] = None) -> List[str]:
        """
        删除预演：返回目标副本中存在而源副本中不存在的相对路径

        Args:
            direction: Direction.LOCAL 表示以远程为源、本地为目标；
                       Direction.REMOTE 表示以本地为源、远程为目标
            subpath: 仅比较此相对子路径（可选）
        """

    @abstractmethod
    async def delete(self, direction: Direction, paths: Iterable[str]):
        """删除目标副本中已确认的相对路径"""
