"""
配置解析器

支持两种来源:
- XML 配置文件（stampsync.xml）
- 环境变量 SYNC_SERVER / SYNC_SSH_ARGS / SYNC_SERVER_DIR / SYNC_LOCAL_DIR
"""

import os
import shlex
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Mapping, Optional
import structlog

from stampsync.config.models import (
    SyncConfig,
    RsyncConfig,
    LoggingConfig,
    SymlinkPolicy,
)
from stampsync.core.errors import ConfigError

logger = structlog.get_logger()

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')


class ConfigParser:
    """配置解析器"""

    def parse(self, config_path: str) -> SyncConfig:
        """
        解析 stampsync.xml 配置文件

        Args:
            config_path: 配置文件路径

        Returns:
            SyncConfig 对象

        示例:

            <stampsync>
              <local root="~/Sync"/>
              <remote host="me@server" root="Sync" sshArgs="-p 2222"/>
              <conflict autoRename="false"/>
              <scan symlinks="exclude" directories="false">
                <exclude expression=".*\\.swp$"/>
              </scan>
              <rsync params="-az" timeout="600"/>
              <lock dir="/var/tmp/stampsync"/>
              <logging level="INFO" format="text" file="/tmp/stampsync.log"/>
            </stampsync>
        """
        logger.info("Parsing configuration", path=config_path)

        try:
            tree = ET.parse(config_path)
        except (OSError, ET.ParseError) as e:
            raise ConfigError(f"Cannot read configuration '{config_path}'", e)
        root = tree.getroot()

        local_node = root.find('local')
        remote_node = root.find('remote')
        if local_node is None or remote_node is None:
            raise ConfigError("Configuration needs both <local> and <remote> nodes")

        local_root = self._require(local_node, 'root')
        remote_host = self._require(remote_node, 'host')
        remote_root = self._require(remote_node, 'root')

        conflict_node = root.find('conflict')
        scan_node = root.find('scan')
        lock_node = root.find('lock')

        kwargs = dict(
            local_root=self._expand_local(local_root),
            remote_host=remote_host,
            remote_root=remote_root.rstrip('/') or '/',
            ssh_args=tuple(shlex.split(remote_node.attrib.get('sshArgs', ''))),
            auto_rename=self._parse_bool(conflict_node, attr='autoRename'),
            rsync=self._parse_rsync(root.find('rsync')),
            logging=self._parse_logging(root.find('logging')),
        )

        if local_node.attrib.get('marker'):
            kwargs['marker_name'] = local_node.attrib['marker']
        if local_node.attrib.get('hostId'):
            kwargs['host_id'] = local_node.attrib['hostId']

        if scan_node is not None:
            kwargs['symlink_policy'] = self._parse_symlink_policy(
                scan_node.attrib.get('symlinks', 'exclude')
            )
            kwargs['include_directories'] = self._parse_bool(scan_node, attr='directories')
            kwargs['excludes'] = tuple(
                e.attrib.get('expression', '')
                for e in scan_node.findall('exclude')
                if e.attrib.get('expression')
            )

        if lock_node is not None and lock_node.attrib.get('dir'):
            kwargs['lock_dir'] = os.path.expanduser(lock_node.attrib['dir'])

        config = SyncConfig(**kwargs)
        logger.info(
            "Configuration parsed successfully",
            local_root=config.local_root,
            remote=config.remote.label
        )
        return config

    def from_env(self, environ: Optional[Mapping[str, str]] = None) -> SyncConfig:
        """
        从环境变量构建配置

        Args:
            environ: 环境变量映射（默认 os.environ）

        Returns:
            SyncConfig 对象
        """
        env = os.environ if environ is None else environ

        server = env.get('SYNC_SERVER', '').strip()
        server_dir = env.get('SYNC_SERVER_DIR', '').strip()
        local_dir = env.get('SYNC_LOCAL_DIR', '').strip()
        if not server or not server_dir or not local_dir:
            raise ConfigError(
                "SYNC_SERVER, SYNC_SERVER_DIR and SYNC_LOCAL_DIR must all be set"
            )

        # 相对的本地目录以 $HOME 为基准
        local_path = Path(os.path.expanduser(local_dir))
        if not local_path.is_absolute():
            local_path = Path(env.get('HOME', str(Path.home()))) / local_path

        return SyncConfig(
            local_root=str(local_path),
            remote_host=server,
            remote_root=server_dir.rstrip('/') or '/',
            ssh_args=tuple(shlex.split(env.get('SYNC_SSH_ARGS', ''))),
        )

    def _require(self, node, attr: str) -> str:
        value = node.attrib.get(attr, '').strip()
        if not value:
            raise ConfigError(f"<{node.tag}> is missing the '{attr}' attribute")
        return value

    def _expand_local(self, path: str) -> str:
        return str(Path(os.path.expanduser(path)).resolve())

    def _parse_bool(self, node, attr='enabled', default=False) -> bool:
        """解析布尔值"""
        if node is None:
            return default
        value = node.attrib.get(attr, 'true' if default else 'false')
        return value.lower() in ('true', 'yes', '1')

    def _parse_symlink_policy(self, value: str) -> SymlinkPolicy:
        try:
            return SymlinkPolicy(value.lower())
        except ValueError:
            raise ConfigError(f"Unknown symlink policy '{value}'")

    def _parse_rsync(self, node) -> RsyncConfig:
        """解析 rsync 节点"""
        if node is None:
            return RsyncConfig()

        timeout = node.attrib.get('timeout')
        try:
            timeout_value = int(timeout) if timeout else None
        except ValueError:
            raise ConfigError(f"Invalid rsync timeout '{timeout}'")

        return RsyncConfig(
            common_params=node.attrib.get('params', '-az'),
            timeout=timeout_value,
            binary=node.attrib.get('binary', 'rsync'),
            ssh_binary=node.attrib.get('ssh', 'ssh'),
        )

    def _parse_logging(self, node) -> LoggingConfig:
        """解析 logging 节点"""
        if node is None:
            return LoggingConfig()

        level = node.attrib.get('level', 'INFO').upper()
        if level not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level '{level}'")

        return LoggingConfig(
            level=level,
            format=node.attrib.get('format', 'text'),
            file_path=node.attrib.get('file') or None,
        )
