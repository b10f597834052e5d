"""
同步标记存储

每个副本根目录下有一个纯文本标记文件（默认 .sync_time），
内容为上一次成功同步的时间（自 Epoch 起的整数秒）。
文件不存在等价于标记为 0（从未同步）。
"""

from pathlib import Path
from typing import Optional
import structlog

from stampsync.core.errors import IOFailure, TransportError
from stampsync.core.models import Replica

logger = structlog.get_logger()

NEVER_SYNCED = 0


def parse_mark(text: str) -> int:
    """解析标记文件内容，空内容视为 0"""
    text = text.strip()
    if not text:
        return NEVER_SYNCED
    value = int(text)
    if value < 0:
        raise ValueError(f"negative sync mark {value}")
    return value


class TimestampStore:
    """同步标记存储"""

    def __init__(self, marker_name: str = ".sync_time", transport=None):
        """
        初始化标记存储

        Args:
            marker_name: 标记文件名
            transport: 读取远程标记所用的 Transport（可选）
        """
        self.marker_name = marker_name
        self.transport = transport

    def marker_path(self, replica: Replica) -> Path:
        """本地副本的标记文件路径"""
        return Path(replica.root) / self.marker_name

    async def read(self, replica: Replica) -> int:
        """
        读取副本的同步标记

        远程标记读取失败不视为错误，退化为 0。

        Raises:
            IOFailure: 本地标记文件无法读取或内容无效
        """
        if replica.is_remote:
            return await self._read_remote(replica)
        return self._read_local(replica)

    def _read_local(self, replica: Replica) -> int:
        marker = self.marker_path(replica)
        if not marker.exists():
            return NEVER_SYNCED

        try:
            return parse_mark(marker.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            raise IOFailure(f"Cannot read sync mark {marker}", e)

    async def _read_remote(self, replica: Replica) -> int:
        if self.transport is None:
            raise IOFailure(f"No transport configured to read {replica.label}")

        try:
            text: Optional[str] = await self.transport.read_remote_mark()
        except TransportError as e:
            logger.warning(
                "Remote sync mark unavailable, assuming never synced",
                replica=replica.label,
                error=str(e)
            )
            return NEVER_SYNCED

        if text is None:
            return NEVER_SYNCED

        try:
            return parse_mark(text)
        except ValueError as e:
            logger.warning(
                "Remote sync mark is invalid, assuming never synced",
                replica=replica.label,
                content=text[:40],
                error=str(e)
            )
            return NEVER_SYNCED

    def write(self, replica: Replica, instant: int):
        """
        原子写入本地副本的同步标记

        Raises:
            IOFailure: 写入失败
        """
        if replica.is_remote:
            raise ValueError("Remote marks are written by pushing the local marker file")

        marker = self.marker_path(replica)
        temp_file = marker.with_name(marker.name + '.tmp')
        try:
            temp_file.write_text(f"{int(instant)}\n", encoding='utf-8')
            temp_file.replace(marker)
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            raise IOFailure(f"Cannot write sync mark {marker}", e)

        logger.debug("Sync mark written", replica=replica.label, mark=int(instant))
