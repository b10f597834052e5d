"""
同步错误分类

每一类错误对应同步轮次中的一个阶段，CLI 根据错误类型推导退出码。
"""

from typing import Iterable, List, Optional


class SyncError(Exception):
    """同步错误基类"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self):
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class ConfigError(SyncError):
    """配置无效"""


class DiscoveryFailure(SyncError):
    """本地扫描或远程变更列表失败"""


class ConflictBlocked(SyncError):
    """存在未解决的并发修改"""

    def __init__(self, paths: Iterable[str], message: Optional[str] = None):
        self.paths: List[str] = sorted(paths)
        super().__init__(
            message or f"{len(self.paths)} path(s) changed on both replicas"
        )


class TransferFailure(SyncError):
    """推送或拉取失败"""


class DeletionFailure(SyncError):
    """删除预演或删除执行失败"""


class IOFailure(SyncError):
    """同步标记读写失败"""


class SyncCancelled(SyncError):
    """调用方取消了同步"""


class RoundInProgress(SyncError):
    """同一本地目录已有同步轮次在运行"""


class TransportError(Exception):
    """远程命令执行失败"""

    def __init__(self, cmd: List[str], returncode: Optional[int], stderr: str = ''):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else 'no output'
        super().__init__(f"{cmd[0]} exited with {returncode}: {detail}")
