"""
stampsync CLI Entry Point
"""

import sys
import time
import signal
import asyncio
import dataclasses
from pathlib import Path
from typing import Optional
import click
import structlog

from stampsync import __version__
from stampsync.bidirectional.confirm import InteractiveConfirmer
from stampsync.bidirectional.coordinator import SyncOrchestrator
from stampsync.config.models import LoggingConfig, SyncConfig
from stampsync.config.parser import ConfigParser
from stampsync.core.errors import (
    ConfigError,
    ConflictBlocked,
    DeletionFailure,
    DiscoveryFailure,
    IOFailure,
    RoundInProgress,
    SyncCancelled,
    SyncError,
    TransferFailure,
)
from stampsync.core.models import RoundOutcome
from stampsync.transport.rsync import RsyncTransport
from stampsync.utils.logger import setup_logging

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_USAGE = 1

# 按错误类型推导的退出码
EXIT_CODES = (
    (DiscoveryFailure, 2),
    (ConflictBlocked, 3),
    (TransferFailure, 4),
    (DeletionFailure, 5),
    (IOFailure, 6),
    (SyncCancelled, 7),
    (RoundInProgress, 8),
)


def exit_code_for_error(error: SyncError) -> int:
    """根据错误类型推导退出码"""
    for error_type, code in EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return EXIT_USAGE


def exit_code_for(outcome: RoundOutcome) -> int:
    """根据轮次结果推导退出码"""
    if outcome.success:
        return EXIT_OK
    return exit_code_for_error(outcome.cause)


def format_mark(mark: int) -> str:
    return time.ctime(mark) if mark else "never"


def show_configuration(config: SyncConfig):
    """显示当前配置"""
    click.echo("'stampsync' configured with the following:")
    click.echo("")
    click.echo(f" server:      {config.remote_host}")
    click.echo(f" server dir:  {config.remote_root}")
    click.echo(f" local dir:   {config.local_root}")
    if config.ssh_args:
        click.echo(f" ssh args:    {' '.join(config.ssh_args)}")
    click.echo(f" auto rename: {config.auto_rename}")


def show_outcome(outcome: RoundOutcome):
    """输出轮次结果摘要"""
    click.echo("")
    if outcome.plan is not None:
        click.echo(f"Pulled: {len(outcome.plan.pull)}  Pushed: {len(outcome.plan.push)}")
    for original, copy in sorted(outcome.renamed.items()):
        click.echo(f"Renamed local conflict: {original} -> {copy}")
    for direction, deleted in outcome.deleted.items():
        kept = len(outcome.deletions[direction]) - len(deleted)
        if deleted or kept:
            click.echo(f"Deleted ({direction.value}): {len(deleted)}  kept: {kept}")

    if outcome.success:
        if outcome.mark_committed:
            click.echo(f"Synchronized, new sync mark {format_mark(outcome.mark)}")
        else:
            click.echo("Synchronized sub-path, sync mark unchanged")
        return

    click.echo(f"Sync aborted during {outcome.phase.value}: {outcome.cause}", err=True)
    if isinstance(outcome.cause, ConflictBlocked):
        click.echo("Files changed on both sides (re-run with --rename to keep both):", err=True)
        for path in outcome.cause.paths:
            click.echo(f"    {path}", err=True)


async def _run(config: SyncConfig, status: bool, assume_yes: bool, path: Optional[str]) -> int:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, cancel_event.set)
        except (NotImplementedError, RuntimeError):
            pass

    transport = RsyncTransport(config, cancel_event=cancel_event)
    orchestrator = SyncOrchestrator(
        config,
        transport,
        confirmer=InteractiveConfirmer(assume_yes=assume_yes)
    )

    if status:
        try:
            marks = await orchestrator.status()
        except SyncError as e:
            click.echo(f"Cannot read sync marks: {e}", err=True)
            return exit_code_for_error(e)
        click.echo("-------------------------------------------")
        click.echo("Server directory last synchronization date:")
        click.echo(f"  {format_mark(marks['remote_mark'])}")
        click.echo("")
        click.echo("Local directory last synchronization date:")
        click.echo(f"  {format_mark(marks['local_mark'])}")
        click.echo("-------------------------------------------")
        click.echo("")
        show_configuration(config)
        return EXIT_OK

    subpath = None
    if path:
        if not Path(path).is_dir():
            click.echo(f"'{path}' directory does not exist.", err=True)
            return EXIT_USAGE
        subpath = str(Path(path).resolve())

    try:
        outcome = await orchestrator.run(subpath=subpath, cancel_event=cancel_event)
    except SyncError as e:
        click.echo(str(e), err=True)
        return exit_code_for_error(e)

    show_outcome(outcome)
    return exit_code_for(outcome)


@click.command()
@click.option(
    '-o', '--config',
    'config_path',
    type=click.Path(exists=True, dir_okay=False),
    help='XML 配置文件路径（默认读取 SYNC_* 环境变量）'
)
@click.option('--status', is_flag=True, help='显示两侧上次同步时间后退出')
@click.option('--rename', is_flag=True, help='冲突时将本地文件改名让出路径，而不是中止')
@click.option('-y', '--yes', 'assume_yes', is_flag=True, help='不提问，同意改名与删除')
@click.option(
    '--log-level',
    default=None,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    help='日志级别 [默认: INFO]'
)
@click.option(
    '--log-format',
    default=None,
    type=click.Choice(['text', 'json'], case_sensitive=False),
    help='日志格式 [默认: text]'
)
@click.option('--log-file', type=str, help='日志文件路径（启用文件日志）')
@click.argument('path', required=False)
@click.version_option(version=__version__, prog_name='stampsync')
def main(
    config_path: Optional[str],
    status: bool,
    rename: bool,
    assume_yes: bool,
    log_level: Optional[str],
    log_format: Optional[str],
    log_file: Optional[str],
    path: Optional[str]
):
    """
    stampsync - 基于时间戳的双向同步工具

    PATH 必须位于本地同步目录内，只同步该子路径。

    示例:

    \b
    # 使用环境变量配置，同步整个目录
    SYNC_SERVER=me@host SYNC_SERVER_DIR=Sync SYNC_LOCAL_DIR=Sync stampsync

    \b
    # 使用配置文件，冲突时改名保留两份
    stampsync -o ~/.config/stampsync.xml --rename

    \b
    # 查看两侧上次同步时间
    stampsync --status
    """
    parser = ConfigParser()
    try:
        config = parser.parse(config_path) if config_path else parser.from_env()
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_USAGE)

    # 命令行参数覆盖配置文件
    logging_config = LoggingConfig(
        level=(log_level or config.logging.level).upper(),
        format=log_format or config.logging.format,
        file_path=log_file or config.logging.file_path,
    )
    config = dataclasses.replace(
        config,
        auto_rename=config.auto_rename or rename,
        logging=logging_config,
    )

    setup_logging(logging_config.level, logging_config.format, logging_config.file_path)
    logger.debug("stampsync starting", version=__version__, local_root=config.local_root)

    try:
        code = asyncio.run(_run(config, status, assume_yes, path))
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        code = EXIT_USAGE
    except KeyboardInterrupt:
        code = dict(EXIT_CODES)[SyncCancelled]

    sys.exit(code)


if __name__ == '__main__':
    main()
