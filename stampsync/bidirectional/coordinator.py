"""
双向同步协调器

一轮同步的状态机:

    IDLE -> SCANNING -> CONFLICT_CHECK -> {BLOCKED | PLANNING}
         -> TRANSFERRING -> DELETION_CHECK -> COMMITTING -> DONE

BLOCKED、任何失败以及取消都以 ABORTED 结束。同步标记只在 COMMITTING
阶段写入一次，因此中止的轮次会在下一轮重新发现同样的工作。
"""

import asyncio
import time
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Optional
import structlog

from stampsync.config.models import SyncConfig
from stampsync.core.errors import (
    ConflictBlocked,
    DiscoveryFailure,
    IOFailure,
    RoundInProgress,
    SyncCancelled,
    SyncError,
    TransferFailure,
    TransportError,
)
from stampsync.core.filter import FileFilter
from stampsync.core.lock import RootLock
from stampsync.core.models import ChangeSet, Direction, RoundOutcome, RoundState
from stampsync.core.scanner import ChangeScanner
from stampsync.core.timestamp_store import TimestampStore
from stampsync.bidirectional.confirm import Confirmer
from stampsync.bidirectional.conflict_detector import ConflictDetector
from stampsync.bidirectional.conflict_resolver import ConflictResolver, ResolutionStrategy
from stampsync.bidirectional.deletion import DeletionReconciler
from stampsync.bidirectional.planner import TransferPlanner
from stampsync.transport.base import Transport

logger = structlog.get_logger()


class SyncOrchestrator:
    """双向同步协调器"""

    def __init__(
        self,
        config: SyncConfig,
        transport: Transport,
        confirmer: Optional[Confirmer] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        初始化协调器

        Args:
            config: 同步配置（不可变）
            transport: Transport
            confirmer: 确认回调（默认拒绝改名与删除）
            clock: 时间来源
        """
        self.config = config
        self.transport = transport
        self.confirmer = confirmer or Confirmer()
        self.clock = clock

        self.local = config.local
        self.remote = config.remote

        self.file_filter = FileFilter(config.marker_name, config.excludes)
        self.store = TimestampStore(config.marker_name, transport)
        self.scanner = ChangeScanner(
            self.file_filter,
            symlink_policy=config.symlink_policy,
            include_directories=config.include_directories
        )
        self.detector = ConflictDetector()
        self.resolver = ConflictResolver(
            config.local_root,
            config.host_id,
            ResolutionStrategy.RENAME if config.auto_rename else ResolutionStrategy.BLOCK
        )
        self.planner = TransferPlanner(config.marker_name)
        self.reconciler = DeletionReconciler(
            transport,
            self.file_filter,
            self.confirmer,
            include_directories=config.include_directories
        )

        self.state = RoundState.IDLE
        self.stats = {
            'rounds_completed': 0,
            'rounds_aborted': 0,
            'files_pulled': 0,
            'files_pushed': 0,
            'files_deleted': 0,
            'conflicts_detected': 0,
        }

        logger.info(
            "Sync orchestrator initialized",
            local_root=config.local_root,
            remote=self.remote.label,
            auto_rename=config.auto_rename,
            symlink_policy=config.symlink_policy.value
        )

    async def status(self) -> Dict[str, int]:
        """读取两侧的同步标记"""
        return {
            'local_mark': await self.store.read(self.local),
            'remote_mark': await self.store.read(self.remote),
        }

    async def run(
        self,
        subpath: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RoundOutcome:
        """
        执行一轮双向同步

        Args:
            subpath: 仅同步本地根目录下的此子路径（此时不推进同步标记）
            cancel_event: 取消信号

        Returns:
            RoundOutcome

        Raises:
            RoundInProgress: 同一根目录已有轮次在运行
        """
        if not self.state.allows_new_round:
            raise RoundInProgress(f"Round already in state '{self.state.value}'")

        subpath = self._normalize_subpath(subpath)
        async with RootLock(self.config.lock_dir, self.config.local_root, self.remote.label):
            return await self._run_round(subpath, cancel_event)

    def _normalize_subpath(self, subpath: Optional[str]) -> Optional[str]:
        if not subpath:
            return None

        candidate = Path(subpath)
        if candidate.is_absolute():
            try:
                candidate = candidate.resolve().relative_to(Path(self.config.local_root).resolve())
            except ValueError:
                raise ValueError(f"'{subpath}' is not inside '{self.config.local_root}'")

        rel = PurePosixPath(candidate.as_posix())
        if '..' in rel.parts:
            raise ValueError(f"'{subpath}' is not inside '{self.config.local_root}'")
        rel_str = str(rel).strip('/')
        return None if rel_str in ('', '.') else rel_str

    def _enter(self, state: RoundState):
        logger.debug("Round state changed", previous=self.state.value, state=state.value)
        self.state = state

    def _check_cancelled(self, cancel_event: Optional[asyncio.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelled(f"Synchronization cancelled during {self.state.value}")

    async def _run_round(self, subpath: Optional[str], cancel_event: Optional[asyncio.Event]) -> RoundOutcome:
        outcome = RoundOutcome(state=RoundState.ABORTED, phase=RoundState.IDLE)
        started = int(self.clock())

        log = logger.bind(remote=self.remote.label, subpath=subpath)
        log.info("Starting sync round")

        try:
            # 1. 读取标记并发现两侧变更
            self._enter(RoundState.SCANNING)
            local_mark, remote_mark = await self._read_marks(subpath)
            since = min(local_mark, remote_mark)
            outcome.since = since

            local_changes, remote_changes = await self._discover(since, subpath)
            outcome.local_changes = local_changes
            outcome.remote_changes = remote_changes
            self._check_cancelled(cancel_event)

            # 2. 冲突检测与解决
            self._enter(RoundState.CONFLICT_CHECK)
            conflicts = self.detector.detect(local_changes.paths, remote_changes.paths)
            outcome.conflicts = conflicts
            self.stats['conflicts_detected'] += len(conflicts)

            renamed = {}
            if conflicts:
                if self.config.auto_rename and not self.confirmer.confirm_rename(sorted(conflicts)):
                    raise ConflictBlocked(conflicts, "Renaming conflicting files was not approved")
                self._check_cancelled(cancel_event)
                renamed = self.resolver.resolve(conflicts, started)
                outcome.renamed = renamed

            # 3. 规划
            self._enter(RoundState.PLANNING)
            plan = self.planner.plan(local_changes.paths, remote_changes.paths, conflicts, renamed)
            outcome.plan = plan

            # 4. 传输：先拉取，再推送
            self._enter(RoundState.TRANSFERRING)
            await self._transfer(plan, cancel_event)

            # 5. 删除：两个方向分别预演、分别确认
            self._enter(RoundState.DELETION_CHECK)
            for direction in (Direction.LOCAL, Direction.REMOTE):
                self._check_cancelled(cancel_event)
                deletions, deleted = await self.reconciler.reconcile(direction, subpath)
                outcome.deletions[direction] = deletions
                outcome.deleted[direction] = deleted
                self.stats['files_deleted'] += len(deleted)

            # 6. 提交同步标记
            self._enter(RoundState.COMMITTING)
            self._check_cancelled(cancel_event)
            if subpath:
                log.info("Partial round, sync marks left unchanged")
            else:
                outcome.mark = await self._commit(started, max(local_mark, remote_mark))
                outcome.mark_committed = True

            self._enter(RoundState.DONE)
            outcome.state = RoundState.DONE
            outcome.phase = RoundState.DONE
            self.stats['rounds_completed'] += 1

            log.info(
                "Sync round completed",
                pulled=len(plan.pull),
                pushed=len(plan.push),
                renamed=len(renamed),
                deleted_local=len(outcome.deleted.get(Direction.LOCAL, [])),
                deleted_remote=len(outcome.deleted.get(Direction.REMOTE, [])),
                mark=outcome.mark
            )

        except SyncError as e:
            if isinstance(e, ConflictBlocked):
                self._enter(RoundState.BLOCKED)
            outcome.phase = self.state
            outcome.cause = e
            self._abort(outcome)
            log.error(
                "Sync round aborted",
                phase=outcome.phase.value,
                cause=type(e).__name__,
                error=str(e)
            )
        except asyncio.CancelledError:
            outcome.phase = self.state
            outcome.cause = SyncCancelled(f"Task cancelled during {self.state.value}")
            self._abort(outcome)
            log.warning("Sync round task cancelled", phase=outcome.phase.value)
            raise
        except BaseException:
            self._abort(outcome)
            raise

        return outcome

    def _abort(self, outcome: RoundOutcome):
        self._enter(RoundState.ABORTED)
        outcome.state = RoundState.ABORTED
        self.stats['rounds_aborted'] += 1

    async def _read_marks(self, subpath: Optional[str]):
        Path(self.config.local_root).mkdir(parents=True, exist_ok=True)
        local_mark = await self.store.read(self.local)

        try:
            await self.transport.prepare(subpath)
        except TransportError as e:
            raise DiscoveryFailure(f"Cannot reach {self.remote.label}", e)

        remote_mark = await self.store.read(self.remote)
        logger.info("Sync marks read", local_mark=local_mark, remote_mark=remote_mark)
        return local_mark, remote_mark

    async def _discover(self, since: int, subpath: Optional[str]):
        """并发执行本地扫描与远程变更发现，两者都完成后再合并结果"""
        results = await asyncio.gather(
            asyncio.to_thread(self.scanner.scan, self.config.local_root, since, subpath),
            self.transport.list_remote_changes(since, subpath),
            return_exceptions=True
        )

        for result in results:
            if isinstance(result, (SyncCancelled, DiscoveryFailure)):
                raise result
            if isinstance(result, TransportError):
                raise DiscoveryFailure("Remote change discovery failed", result)
            if isinstance(result, OSError):
                raise DiscoveryFailure("Local scan failed", result)
            if isinstance(result, BaseException):
                raise result

        local_changes, remote_paths = results
        remote_changes = ChangeSet(
            (path, None) for path in self.file_filter.filter_paths(remote_paths)
        )

        logger.info(
            "Changes discovered",
            since=since,
            local=len(local_changes),
            remote=len(remote_changes)
        )
        return local_changes, remote_changes

    async def _transfer(self, plan, cancel_event: Optional[asyncio.Event]):
        for direction, paths, call in (
            ('pull', plan.pull, self.transport.pull),
            ('push', plan.push, self.transport.push),
        ):
            if not paths:
                continue
            self._check_cancelled(cancel_event)
            try:
                await call(sorted(paths))
            except TransportError as e:
                raise TransferFailure(f"{direction.capitalize()} of {len(paths)} file(s) failed", e)
            self.stats[f'files_{direction}ed'] += len(paths)

    async def _commit(self, started: int, previous_mark: int) -> int:
        """
        写入本地标记，然后把标记文件推送到远程；推送失败时恢复本地标记

        新标记取本轮开始（扫描之前）的时间，扫描之后才发生的修改
        仍然晚于新标记，会在下一轮被发现。
        """
        old_local = await self.store.read(self.local)
        new_mark = max(started, previous_mark)

        self.store.write(self.local, new_mark)
        try:
            await self.transport.push([self.config.marker_name])
        except (TransportError, SyncCancelled) as e:
            try:
                self.store.write(self.local, old_local)
            except IOFailure as restore_error:
                logger.error("Failed to restore local sync mark", error=str(restore_error))
            if isinstance(e, SyncCancelled):
                raise
            raise TransferFailure("Publishing the sync mark failed", e)

        logger.info("Sync mark committed", mark=new_mark)
        return new_mark

    def get_stats(self) -> dict:
        """获取统计信息"""
        return {**self.stats, 'state': self.state.value}
