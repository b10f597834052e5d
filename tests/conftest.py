"""
Pytest configuration and fixtures for stampsync tests.

DirectoryTransport stands in for the rsync/ssh transport: the "remote"
replica is a second local directory.
"""

import asyncio
import os
import shutil
from pathlib import Path
from typing import Iterable, List, Optional

import pytest

from stampsync.config.models import SymlinkPolicy, SyncConfig
from stampsync.core.errors import TransportError
from stampsync.core.filter import FileFilter
from stampsync.core.models import Direction
from stampsync.core.scanner import ChangeScanner, tracks_symlink
from stampsync.transport.base import Transport


class DirectoryTransport(Transport):
    """Transport whose remote side is a local directory."""

    def __init__(self, config: SyncConfig, cancel_event: Optional[asyncio.Event] = None):
        self.config = config
        self.cancel_event = cancel_event
        self.local_root = Path(config.local_root)
        self.remote_root = Path(config.remote_root)
        self.calls: List[tuple] = []
        self.fail_on: set = set()
        self.gate: Optional[asyncio.Event] = None

    async def _call(self, name: str, *args):
        self.calls.append((name,) + args)
        if self.gate is not None:
            await self.gate.wait()
        if name in self.fail_on:
            raise TransportError([name], 12, f"simulated {name} failure")

    async def prepare(self, subpath: Optional[str] = None):
        await self._call('prepare', subpath)
        target = self.remote_root / subpath if subpath else self.remote_root
        target.mkdir(parents=True, exist_ok=True)

    async def read_remote_mark(self) -> Optional[str]:
        await self._call('read_remote_mark')
        marker = self.remote_root / self.config.marker_name
        return marker.read_text() if marker.exists() else None

    async def list_remote_changes(self, since: int, subpath: Optional[str] = None) -> List[str]:
        await self._call('list_remote_changes', since, subpath)
        scanner = ChangeScanner(
            FileFilter(self.config.marker_name),
            symlink_policy=self.config.symlink_policy,
        )
        return sorted(scanner.scan(str(self.remote_root), since, subpath))

    async def pull(self, paths: Iterable[str]):
        paths = sorted(paths)
        await self._call('pull', tuple(paths))
        for rel_path in paths:
            self._copy(self.remote_root / rel_path, self.local_root / rel_path)

    async def push(self, paths: Iterable[str]):
        paths = sorted(paths)
        await self._call('push', tuple(paths))
        for rel_path in paths:
            self._copy(self.local_root / rel_path, self.remote_root / rel_path)

    def _copy(self, source: Path, target: Path):
        if not source.exists():
            return
        # update-only: never overwrite a newer destination
        if target.exists() and target.stat().st_mtime > source.stat().st_mtime:
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)

    async def list_deletions(self, direction: Direction, subpath: Optional[str] = None) -> List[str]:
        await self._call('list_deletions', direction, subpath)
        if direction == Direction.LOCAL:
            source, dest = self.remote_root, self.local_root
        else:
            source, dest = self.local_root, self.remote_root

        start = dest / subpath if subpath else dest
        if not start.exists():
            return []

        deletions = []
        for dirpath, dirnames, filenames in os.walk(start):
            for name in sorted(dirnames) + sorted(filenames):
                entry = Path(dirpath) / name
                rel_path = entry.relative_to(dest).as_posix()
                if rel_path in (self.config.marker_name, self.config.marker_name + '.tmp'):
                    continue
                if (source / rel_path).exists() or (source / rel_path).is_symlink():
                    continue
                if entry.is_symlink():
                    # links discovery never reports are never transferred either
                    if tracks_symlink(entry, self.config.symlink_policy):
                        deletions.append(rel_path)
                    continue
                deletions.append(rel_path + '/' if entry.is_dir() else rel_path)
        return deletions

    async def delete(self, direction: Direction, paths: Iterable[str]):
        paths = list(paths)
        await self._call('delete', direction, tuple(paths))
        root = self.local_root if direction == Direction.LOCAL else self.remote_root
        for rel_path in paths:
            if not rel_path.endswith('/'):
                (root / rel_path).unlink(missing_ok=True)
        dirs = sorted((p.rstrip('/') for p in paths if p.endswith('/')), key=lambda p: p.count('/'), reverse=True)
        for rel_path in dirs:
            target = root / rel_path
            if target.exists() and not any(target.iterdir()):
                target.rmdir()


def write_file(path: Path, content: str = "data", mtime: Optional[float] = None) -> Path:
    """Create a file (and parents), optionally with an explicit mtime."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def write_mark(root: Path, mark: int, marker_name: str = ".sync_time"):
    root.mkdir(parents=True, exist_ok=True)
    (root / marker_name).write_text(f"{mark}\n")


def read_mark(root: Path, marker_name: str = ".sync_time") -> int:
    marker = root / marker_name
    return int(marker.read_text().strip()) if marker.exists() else 0


@pytest.fixture
def replica_dirs(tmp_path: Path):
    """Local and "remote" replica roots."""
    local = tmp_path / "local"
    remote = tmp_path / "remote"
    local.mkdir()
    remote.mkdir()
    return local, remote


@pytest.fixture
def make_config(tmp_path: Path, replica_dirs):
    """Build a SyncConfig for the replica pair."""
    local, remote = replica_dirs

    def _make(**overrides) -> SyncConfig:
        values = dict(
            local_root=str(local),
            remote_host="server.example",
            remote_root=str(remote),
            host_id="testhost",
            lock_dir=str(tmp_path / "locks"),
            symlink_policy=SymlinkPolicy.EXCLUDE,
        )
        values.update(overrides)
        return SyncConfig(**values)

    return _make
