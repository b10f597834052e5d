"""Tests for the command line interface."""

import pytest
from click.testing import CliRunner

from stampsync import cli
from stampsync.core.errors import (
    ConfigError,
    ConflictBlocked,
    DeletionFailure,
    DiscoveryFailure,
    IOFailure,
    RoundInProgress,
    SyncCancelled,
    TransferFailure,
)
from stampsync.core.models import RoundOutcome, RoundState
from tests.conftest import DirectoryTransport, read_mark, write_file, write_mark


class TestExitCodes:
    """Tests for exit_code_for."""

    def test_success(self):
        assert cli.exit_code_for(RoundOutcome(state=RoundState.DONE, phase=RoundState.DONE)) == 0

    @pytest.mark.parametrize("cause,code", [
        (DiscoveryFailure("x"), 2),
        (ConflictBlocked(["a"]), 3),
        (TransferFailure("x"), 4),
        (DeletionFailure("x"), 5),
        (IOFailure("x"), 6),
        (SyncCancelled("x"), 7),
    ])
    def test_failures(self, cause, code):
        outcome = RoundOutcome(state=RoundState.ABORTED, phase=RoundState.SCANNING, cause=cause)

        assert cli.exit_code_for(outcome) == code

    @pytest.mark.parametrize("error,code", [
        (IOFailure("x"), 6),
        (RoundInProgress("x"), 8),
        (ConfigError("x"), 1),
    ])
    def test_error_codes(self, error, code):
        assert cli.exit_code_for_error(error) == code


class TestMain:
    """Tests for the click command."""

    @pytest.fixture
    def env(self, tmp_path, replica_dirs, monkeypatch):
        local, remote = replica_dirs
        monkeypatch.setenv('HOME', str(tmp_path))
        monkeypatch.setenv('SYNC_SERVER', 'server.example')
        monkeypatch.setenv('SYNC_SERVER_DIR', str(remote))
        monkeypatch.setenv('SYNC_LOCAL_DIR', str(local))
        monkeypatch.delenv('SYNC_SSH_ARGS', raising=False)
        monkeypatch.setattr(cli, 'RsyncTransport', DirectoryTransport)
        monkeypatch.setattr(cli, 'setup_logging', lambda *args, **kwargs: None)
        return local, remote

    def test_missing_configuration(self, monkeypatch):
        for name in ('SYNC_SERVER', 'SYNC_SERVER_DIR', 'SYNC_LOCAL_DIR'):
            monkeypatch.delenv(name, raising=False)

        result = CliRunner().invoke(cli.main, [])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_status(self, env):
        local, _ = env
        write_mark(local, 1700000000)

        result = CliRunner().invoke(cli.main, ['--status'])

        assert result.exit_code == 0
        assert "Server directory last synchronization date:" in result.output
        assert "never" in result.output
        assert "server.example" in result.output

    def test_status_with_corrupt_mark(self, env):
        local, _ = env
        (local / ".sync_time").write_text("yesterday\n")

        result = CliRunner().invoke(cli.main, ['--status'])

        assert result.exit_code == 6
        assert "Cannot read sync marks" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)

    def test_sync_round(self, env):
        local, remote = env
        write_file(local / "a.txt", "hello", mtime=150)

        result = CliRunner().invoke(cli.main, [])

        assert result.exit_code == 0, result.output
        assert (remote / "a.txt").read_text() == "hello"
        assert read_mark(remote) > 0
        assert "Pulled: 0  Pushed: 1" in result.output

    def test_conflict_exit_code(self, env):
        local, remote = env
        write_mark(local, 100)
        write_mark(remote, 100)
        write_file(local / "b.txt", "local", mtime=150)
        write_file(remote / "b.txt", "remote", mtime=160)

        result = CliRunner().invoke(cli.main, [])

        assert result.exit_code == 3
        assert "b.txt" in result.output

    def test_rename_with_yes(self, env):
        local, remote = env
        write_mark(local, 100)
        write_mark(remote, 100)
        write_file(local / "b.txt", "local", mtime=150)
        write_file(remote / "b.txt", "remote", mtime=160)

        result = CliRunner().invoke(cli.main, ['--rename', '--yes'])

        assert result.exit_code == 0, result.output
        assert (local / "b.txt").read_text() == "remote"
        assert any(p.name.startswith("b.txt_SYNC_CONFLICT_") for p in remote.iterdir())

    def test_deletion_prompt(self, env):
        local, remote = env
        write_mark(local, 100)
        write_mark(remote, 100)
        write_file(remote / "old.txt", mtime=50)

        declined = CliRunner().invoke(cli.main, [], input="n\n")
        assert declined.exit_code == 0, declined.output
        assert "1 path(s) would be deleted on the server:" in declined.output
        assert (remote / "old.txt").exists()

        approved = CliRunner().invoke(cli.main, [], input="y\n")
        assert approved.exit_code == 0, approved.output
        assert not (remote / "old.txt").exists()

    def test_path_must_exist(self, env, tmp_path):
        result = CliRunner().invoke(cli.main, [str(tmp_path / "missing")])

        assert result.exit_code == 1

    def test_path_outside_local_root(self, env, tmp_path):
        result = CliRunner().invoke(cli.main, [str(tmp_path)])

        assert result.exit_code == 1
        assert "is not inside" in result.output

    def test_scoped_round_keeps_marks(self, env):
        local, remote = env
        write_mark(local, 100)
        write_mark(remote, 100)
        write_file(local / "docs" / "a.txt", mtime=150)

        result = CliRunner().invoke(cli.main, [str(local / "docs")])

        assert result.exit_code == 0, result.output
        assert (remote / "docs" / "a.txt").exists()
        assert read_mark(local) == 100
        assert "sync mark unchanged" in result.output
