"""
确认回调

协调器在冲突检查与删除检查两个边界同步调用确认接口，
与具体输入方式解耦：CLI 使用交互式实现，自动化场景使用预设应答。
"""

from typing import Callable, Dict, Optional, Sequence, Union
import click
import structlog

from stampsync.core.models import DeletionSet, Direction

logger = structlog.get_logger()


class Confirmer:
    """确认接口（默认拒绝一切破坏性操作）"""

    def confirm_rename(self, conflicts: Sequence[str]) -> bool:
        """是否允许将本地冲突文件改名让出路径"""
        return False

    def confirm_deletions(self, deletions: DeletionSet) -> bool:
        """是否允许删除给定方向上的路径"""
        return False


class StaticConfirmer(Confirmer):
    """
    预设应答

    Args:
        rename: 冲突改名的应答
        deletions: 删除应答，可为布尔值（对两个方向相同）或 {Direction: bool}
    """

    def __init__(
        self,
        rename: bool = True,
        deletions: Union[bool, Dict[Direction, bool]] = False
    ):
        self.rename = rename
        self.deletions = deletions
        self.asked: list = []

    def confirm_rename(self, conflicts: Sequence[str]) -> bool:
        self.asked.append(('rename', tuple(conflicts)))
        return self.rename

    def confirm_deletions(self, deletions: DeletionSet) -> bool:
        self.asked.append((deletions.direction, tuple(deletions.paths)))
        if isinstance(self.deletions, dict):
            return self.deletions.get(deletions.direction, False)
        return self.deletions


class InteractiveConfirmer(Confirmer):
    """终端交互确认"""

    def __init__(
        self,
        assume_yes: bool = False,
        echo: Callable[[str], None] = click.echo,
        max_listed: Optional[int] = 50
    ):
        """
        Args:
            assume_yes: 不提问，全部同意
            echo: 输出函数
            max_listed: 最多列出的路径数量（None 表示全部）
        """
        self.assume_yes = assume_yes
        self.echo = echo
        self.max_listed = max_listed

    def _list(self, paths: Sequence[str]):
        shown = paths if self.max_listed is None else paths[:self.max_listed]
        for path in shown:
            self.echo(f"    {path}")
        if len(shown) < len(paths):
            self.echo(f"    ... and {len(paths) - len(shown)} more")

    def confirm_rename(self, conflicts: Sequence[str]) -> bool:
        self.echo("")
        self.echo(f"{len(conflicts)} file(s) changed on both sides since the last sync:")
        self._list(list(conflicts))
        if self.assume_yes:
            return True
        return click.confirm("Rename the local copies aside and pull the remote versions?", default=False)

    def confirm_deletions(self, deletions: DeletionSet) -> bool:
        where = "locally" if deletions.direction == Direction.LOCAL else "on the server"
        self.echo("")
        self.echo(f"{len(deletions)} path(s) would be deleted {where}:")
        self._list(deletions.paths)
        if self.assume_yes:
            return True
        return click.confirm("Confirm deletion", default=False)
