"""Tests for the single-flight root lock."""

import asyncio

import pytest

from stampsync.core import lock
from stampsync.core.errors import RoundInProgress
from stampsync.core.lock import RootLock


@pytest.fixture
def make_lock(tmp_path):
    root = tmp_path / "root"
    root.mkdir()

    def _make(remote_label="server:Sync"):
        return RootLock(str(tmp_path / "locks"), str(root), remote_label)

    return _make


class TestRootLock:
    """Tests for RootLock."""

    @pytest.mark.asyncio
    async def test_second_holder_rejected(self, make_lock):
        async with make_lock():
            with pytest.raises(RoundInProgress):
                async with make_lock("other:Sync"):
                    pass

    @pytest.mark.asyncio
    async def test_lock_file_holds_pid(self, make_lock):
        root_lock = make_lock()

        async with root_lock:
            pid = int(root_lock.path.read_text().strip())

        assert pid > 0

    @pytest.mark.asyncio
    async def test_released_roots_forgotten(self, make_lock):
        root_lock = make_lock()

        async with root_lock:
            assert root_lock.key in lock._process_locks[asyncio.get_running_loop()]

        assert root_lock.key not in lock._process_locks[asyncio.get_running_loop()]

    @pytest.mark.asyncio
    async def test_reacquire_after_release(self, make_lock):
        async with make_lock():
            pass

        async with make_lock():
            pass

    @pytest.mark.asyncio
    async def test_failed_file_lock_releases_process_lock(self, make_lock, monkeypatch):
        root_lock = make_lock()

        def refuse():
            raise RoundInProgress("held elsewhere")

        monkeypatch.setattr(root_lock, "_acquire_file_lock", refuse)

        with pytest.raises(RoundInProgress):
            async with root_lock:
                pass

        assert root_lock.key not in lock._process_locks[asyncio.get_running_loop()]


def test_locks_not_shared_between_event_loops(make_lock):
    async def hold():
        async with make_lock():
            return len(lock._process_locks[asyncio.get_running_loop()])

    assert asyncio.run(hold()) == 1
    assert asyncio.run(hold()) == 1
