"""
配置数据模型
"""

import socket
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from stampsync.core.models import Replica


class SymlinkPolicy(Enum):
    """符号链接处理策略"""
    EXCLUDE = "exclude"  # 从不上报符号链接
    RESOLVE = "resolve"  # 按链接目标的修改时间判断


@dataclass(frozen=True)
class RsyncConfig:
    """Rsync 配置"""
    common_params: str = "-az"
    timeout: Optional[int] = None  # rsync --timeout（秒），默认不限制
    binary: str = "rsync"
    ssh_binary: str = "ssh"


@dataclass(frozen=True)
class LoggingConfig:
    """日志配置"""
    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR
    format: str = "text"  # text, json
    file_path: Optional[str] = None


@dataclass(frozen=True)
class SyncConfig:
    """同步主配置（一轮同步开始时传入，运行期间不可变）"""
    local_root: str
    remote_host: str
    remote_root: str
    ssh_args: Tuple[str, ...] = ()
    marker_name: str = ".sync_time"
    auto_rename: bool = False
    symlink_policy: SymlinkPolicy = SymlinkPolicy.EXCLUDE
    include_directories: bool = False
    excludes: Tuple[str, ...] = ()
    rsync: RsyncConfig = field(default_factory=RsyncConfig)
    lock_dir: str = field(default_factory=lambda: str(Path.home() / ".cache" / "stampsync" / "locks"))
    host_id: str = field(default_factory=socket.gethostname)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def local(self) -> Replica:
        return Replica(root=self.local_root)

    @property
    def remote(self) -> Replica:
        return Replica(root=self.remote_root, host=self.remote_host)
