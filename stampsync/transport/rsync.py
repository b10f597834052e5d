"""
Rsync/SSH Transport

功能:
- 通过 ssh 在远程执行 find 发现变更
- 通过 rsync --files-from 批量推送/拉取（--update，不覆盖较新的目标文件）
- 通过 rsync --dry-run --delete 预演删除
- 响应调用方的取消信号（结束正在运行的子进程）
"""

import asyncio
import os
import re
import shlex
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Sequence, Set
import structlog

from stampsync.config.models import SyncConfig, SymlinkPolicy
from stampsync.core.errors import SyncCancelled, TransportError
from stampsync.core.models import Direction
from stampsync.core.scanner import tracks_symlink
from stampsync.transport.base import Transport

logger = structlog.get_logger()

DELETING_RE = re.compile(r'^\*deleting\s+(.+)$')


def check_relative(path: str) -> str:
    """拒绝绝对路径与包含 .. 的路径"""
    pure = PurePosixPath(path)
    if pure.is_absolute() or '..' in pure.parts or not path.strip():
        raise ValueError(f"Unsafe relative path: {path!r}")
    return path


def parse_deletions(output: str, subpath: Optional[str] = None) -> List[str]:
    """
    解析 rsync --itemize-changes 输出中的 *deleting 行

    目录以 '/' 结尾保留；返回路径相对于副本根目录。
    """
    prefix = f"{subpath.strip('/')}/" if subpath else ''
    deletions = []
    for line in output.splitlines():
        match = DELETING_RE.match(line)
        if match:
            deletions.append(prefix + match.group(1))
    return deletions


class RsyncTransport(Transport):
    """基于 rsync 和 ssh 的 Transport"""

    def __init__(self, config: SyncConfig, cancel_event: Optional[asyncio.Event] = None):
        """
        初始化 Transport

        Args:
            config: 同步配置
            cancel_event: 取消信号（可选），被设置后正在运行的命令会被终止
        """
        self.config = config
        self.cancel_event = cancel_event
        self.local_root = Path(config.local_root)
        self.remote_root = config.remote_root.rstrip('/') or '/'

        self.stats = {
            'commands': 0,
            'failed_commands': 0,
            'files_pulled': 0,
            'files_pushed': 0,
            'files_deleted': 0,
        }

    # ------------------------------------------------------------------
    # 命令构建
    # ------------------------------------------------------------------

    def _ssh_cmd(self, remote_command: str) -> List[str]:
        return [
            self.config.rsync.ssh_binary,
            *self.config.ssh_args,
            self.config.remote_host,
            remote_command,
        ]

    def _remote_dir(self, subpath: Optional[str] = None) -> str:
        if subpath:
            return f"{self.remote_root}/{check_relative(subpath.strip('/'))}"
        return self.remote_root

    def _local_dir(self, subpath: Optional[str] = None) -> str:
        if subpath:
            return str(self.local_root / check_relative(subpath.strip('/')))
        return str(self.local_root)

    def _rsync_base(self, params: Sequence[str]) -> List[str]:
        cmd = [self.config.rsync.binary]
        cmd.extend(params)

        # 超时
        if self.config.rsync.timeout:
            cmd.append(f'--timeout={self.config.rsync.timeout}')

        # 远程 shell
        if self.config.ssh_args or self.config.rsync.ssh_binary != 'ssh':
            remote_shell = shlex.join([self.config.rsync.ssh_binary, *self.config.ssh_args])
            cmd.extend(['-e', remote_shell])

        return cmd

    def _find_start(self, subpath: Optional[str] = None) -> str:
        return f"./{check_relative(subpath.strip('/'))}" if subpath else '.'

    def build_discovery_cmd(self, since: int, subpath: Optional[str] = None) -> List[str]:
        """构建远程变更发现命令"""
        start = self._find_start(subpath)
        follow = '-L ' if self.config.symlink_policy == SymlinkPolicy.RESOLVE else ''
        marker = shlex.quote(f'./{self.config.marker_name}')
        marker_tmp = shlex.quote(f'./{self.config.marker_name}.tmp')
        remote_command = (
            f"cd {shlex.quote(self.remote_root)} || exit 3; "
            f"[ -e {shlex.quote(start)} ] || exit 0; "
            f"find {follow}{shlex.quote(start)} -type f -newermt @{int(since)} "
            f"! -path {marker} ! -path {marker_tmp} -print"
        )
        return self._ssh_cmd(remote_command)

    def build_link_listing_cmd(self, subpath: Optional[str] = None) -> List[str]:
        """构建远程符号链接列表命令（只列出变更发现不会上报的链接）"""
        start = self._find_start(subpath)
        # RESOLVE 下指向普通文件的链接会被传输，不列出
        untracked = '' if self.config.symlink_policy == SymlinkPolicy.EXCLUDE else ' ! -xtype f'
        remote_command = (
            f"cd {shlex.quote(self.remote_root)} || exit 3; "
            f"[ -e {shlex.quote(start)} ] || exit 0; "
            f"find {shlex.quote(start)} -type l{untracked} -print"
        )
        return self._ssh_cmd(remote_command)

    def build_transfer_cmd(self, pull: bool) -> List[str]:
        """构建推送/拉取命令（文件列表从标准输入读取，以 NUL 分隔）"""
        cmd = self._rsync_base(self.config.rsync.common_params.split())
        cmd.extend(['--update', '--from0', '--files-from=-'])

        remote = f"{self.config.remote_host}:{self.remote_root}/"
        local = f"{self.local_root}/"
        cmd.extend([remote, local] if pull else [local, remote])
        return cmd

    def build_dry_run_cmd(self, direction: Direction, subpath: Optional[str] = None) -> List[str]:
        """构建删除预演命令"""
        cmd = self._rsync_base(['-a', '--dry-run', '--delete', '--itemize-changes'])
        cmd.append(f'--exclude=/{self.config.marker_name}')
        cmd.append(f'--exclude=/{self.config.marker_name}.tmp')

        remote = f"{self.config.remote_host}:{self._remote_dir(subpath)}/"
        local = f"{self._local_dir(subpath)}/"
        if direction == Direction.LOCAL:
            cmd.extend([remote, local])
        else:
            cmd.extend([local, remote])
        return cmd

    # ------------------------------------------------------------------
    # 命令执行
    # ------------------------------------------------------------------

    def _check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SyncCancelled("Synchronization cancelled")

    async def _run(
        self,
        cmd: List[str],
        input_data: Optional[bytes] = None,
        ok_codes: Sequence[int] = (0,)
    ) -> str:
        """
        执行命令并返回标准输出

        Raises:
            TransportError: 命令无法启动或返回码不在 ok_codes 中
            SyncCancelled: 执行过程中收到取消信号
        """
        self._check_cancelled()
        self.stats['commands'] += 1

        logger.debug("Executing command", cmd=shlex.join(cmd))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            self.stats['failed_commands'] += 1
            raise TransportError(cmd, None, str(e))

        communicate = asyncio.ensure_future(process.communicate(input_data))
        waiters = {communicate}
        cancel_wait = None
        if self.cancel_event is not None:
            cancel_wait = asyncio.ensure_future(self.cancel_event.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self._terminate(process, communicate)
            raise
        finally:
            if cancel_wait is not None and not cancel_wait.done():
                cancel_wait.cancel()

        if communicate not in done:
            await self._terminate(process, communicate)
            logger.warning("Command cancelled", cmd=cmd[0])
            raise SyncCancelled("Synchronization cancelled")

        stdout, stderr = communicate.result()
        stderr_text = stderr.decode('utf-8', errors='replace')

        if process.returncode not in ok_codes:
            self.stats['failed_commands'] += 1
            logger.warning(
                "Command failed",
                cmd=cmd[0],
                returncode=process.returncode,
                stderr=stderr_text[:500]
            )
            raise TransportError(cmd, process.returncode, stderr_text)

        if stderr_text.strip():
            logger.debug("Command stderr", cmd=cmd[0], stderr=stderr_text[:500])

        return stdout.decode('utf-8', errors='surrogateescape')

    async def _terminate(self, process, communicate):
        if process.returncode is None:
            process.kill()
        try:
            await communicate
        except Exception as e:
            logger.debug("Ignoring output of killed process", error=str(e))

    # ------------------------------------------------------------------
    # Transport 接口
    # ------------------------------------------------------------------

    async def prepare(self, subpath: Optional[str] = None):
        remote_dir = self._remote_dir(subpath)
        await self._run(self._ssh_cmd(f"mkdir -p {shlex.quote(remote_dir)}"))
        logger.debug("Remote directory ready", remote=f"{self.config.remote_host}:{remote_dir}")

    async def read_remote_mark(self) -> Optional[str]:
        marker = shlex.quote(f"{self.remote_root}/{self.config.marker_name}")
        output = await self._run(
            self._ssh_cmd(f"if [ -f {marker} ]; then cat {marker}; fi")
        )
        return output.strip() or None

    async def list_remote_changes(self, since: int, subpath: Optional[str] = None) -> List[str]:
        # find 返回 1 表示遍历中遇到不可读条目，已列出的结果仍然有效
        cmd = self.build_discovery_cmd(since, subpath)
        output = await self._run(cmd, ok_codes=(0, 1))
        paths = self._parse_find_output(output)

        logger.debug("Remote discovery completed", since=since, changed=len(paths))
        return paths

    def _parse_find_output(self, output: str) -> List[str]:
        paths = []
        for line in output.splitlines():
            if not line:
                continue
            paths.append(line[2:] if line.startswith('./') else line)
        return paths

    async def pull(self, paths: Iterable[str]):
        await self._transfer(paths, pull=True)

    async def push(self, paths: Iterable[str]):
        await self._transfer(paths, pull=False)

    async def _transfer(self, paths: Iterable[str], pull: bool):
        file_list = sorted(check_relative(p) for p in paths)
        if not file_list:
            return

        if pull:
            self.local_root.mkdir(parents=True, exist_ok=True)

        cmd = self.build_transfer_cmd(pull)
        input_data = b'\0'.join(os.fsencode(p) for p in file_list) + b'\0'
        await self._run(cmd, input_data=input_data)

        self.stats['files_pulled' if pull else 'files_pushed'] += len(file_list)
        logger.info(
            "Transfer completed",
            direction='pull' if pull else 'push',
            files=len(file_list)
        )

    async def list_deletions(self, direction: Direction, subpath: Optional[str] = None) -> List[str]:
        output = await self._run(self.build_dry_run_cmd(direction, subpath))
        candidates = parse_deletions(output, subpath)

        # 变更发现从不上报的符号链接也从不会被传输，不能当作对侧已删除
        links = [p for p in candidates if not p.endswith('/')]
        if direction == Direction.LOCAL:
            untracked = await asyncio.to_thread(self._untracked_local_links, links)
        else:
            untracked = await self._untracked_remote_links(links, subpath)

        if untracked:
            logger.debug(
                "Untracked symlinks left out of deletions",
                direction=direction.value,
                count=len(untracked)
            )
        return [p for p in candidates if p not in untracked]

    def _untracked_local_links(self, paths: List[str]) -> Set[str]:
        untracked = set()
        for rel_path in paths:
            entry = self.local_root / rel_path
            if entry.is_symlink() and not tracks_symlink(entry, self.config.symlink_policy):
                untracked.add(rel_path)
        return untracked

    async def _untracked_remote_links(self, paths: List[str], subpath: Optional[str]) -> Set[str]:
        if not paths:
            return set()
        output = await self._run(self.build_link_listing_cmd(subpath), ok_codes=(0, 1))
        return set(paths) & set(self._parse_find_output(output))

    async def delete(self, direction: Direction, paths: Iterable[str]):
        entries = [check_relative(p.rstrip('/')) + ('/' if p.endswith('/') else '') for p in paths]
        files = [p for p in entries if not p.endswith('/')]
        # 目录按深度倒序删除
        dirs = sorted(
            (p.rstrip('/') for p in entries if p.endswith('/')),
            key=lambda p: p.count('/'),
            reverse=True
        )

        if direction == Direction.LOCAL:
            await asyncio.to_thread(self._delete_local, files, dirs)
        else:
            await self._delete_remote(files, dirs)

        self.stats['files_deleted'] += len(files)
        logger.info(
            "Deletion completed",
            direction=direction.value,
            files=len(files),
            directories=len(dirs)
        )

    def _delete_local(self, files: List[str], dirs: List[str]):
        for rel_path in files:
            target = self.local_root / rel_path
            target.unlink(missing_ok=True)

        for rel_path in dirs:
            target = self.local_root / rel_path
            if not target.exists():
                continue
            if any(target.iterdir()):
                logger.warning("Directory not empty, kept", path=rel_path)
                continue
            target.rmdir()

    async def _delete_remote(self, files: List[str], dirs: List[str]):
        root = shlex.quote(self.remote_root)
        if files:
            await self._run(
                self._ssh_cmd(f"cd {root} && xargs -0 rm -f --"),
                input_data=b'\0'.join(os.fsencode(p) for p in files) + b'\0'
            )
        if dirs:
            await self._run(
                self._ssh_cmd(f"cd {root} && xargs -0 rmdir --ignore-fail-on-non-empty --"),
                input_data=b'\0'.join(os.fsencode(p) for p in dirs) + b'\0'
            )

    def get_stats(self) -> dict:
        """获取统计信息"""
        return dict(self.stats)
