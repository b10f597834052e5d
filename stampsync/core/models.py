"""
同步轮次数据模型
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from stampsync.core.errors import SyncError


@dataclass(frozen=True)
class Replica:
    """同步副本（本地或远程的一侧）"""
    root: str
    host: Optional[str] = None  # ssh 身份，None 表示本地

    @property
    def is_remote(self) -> bool:
        return self.host is not None

    @property
    def label(self) -> str:
        return f"{self.host}:{self.root}" if self.host else self.root


class ChangeSet(dict):
    """
    变更集合 {相对路径: 修改时间}

    远程发现只返回路径，修改时间记为 None。
    """

    @property
    def paths(self) -> FrozenSet[str]:
        return frozenset(self.keys())


@dataclass
class TransferPlan:
    """传输计划"""
    pull: FrozenSet[str] = frozenset()
    push: FrozenSet[str] = frozenset()
    conflicts: FrozenSet[str] = frozenset()

    def is_empty(self) -> bool:
        return not self.pull and not self.push


class Direction(Enum):
    """删除方向（以目标副本命名）"""
    LOCAL = "local"    # 远程为源，删除本地多余文件
    REMOTE = "remote"  # 本地为源，删除远程多余文件


@dataclass
class DeletionSet:
    """目标副本中存在但源副本中已不存在的路径"""
    direction: Direction
    paths: List[str] = field(default_factory=list)

    def __bool__(self):
        return bool(self.paths)

    def __len__(self):
        return len(self.paths)


class RoundState(Enum):
    """同步轮次状态"""
    IDLE = "idle"
    SCANNING = "scanning"
    CONFLICT_CHECK = "conflict_check"
    BLOCKED = "blocked"
    PLANNING = "planning"
    TRANSFERRING = "transferring"
    DELETION_CHECK = "deletion_check"
    COMMITTING = "committing"
    DONE = "done"
    ABORTED = "aborted"

    @property
    def allows_new_round(self) -> bool:
        return self in (RoundState.IDLE, RoundState.DONE, RoundState.ABORTED)


@dataclass
class RoundOutcome:
    """
    同步轮次结果

    state 只会是 DONE 或 ABORTED；phase 是轮次结束时所处的阶段，
    cause 是导致中止的错误。
    """
    state: RoundState
    phase: RoundState
    cause: Optional[SyncError] = None
    since: int = 0
    local_changes: ChangeSet = field(default_factory=ChangeSet)
    remote_changes: ChangeSet = field(default_factory=ChangeSet)
    conflicts: FrozenSet[str] = frozenset()
    renamed: Dict[str, str] = field(default_factory=dict)
    plan: Optional[TransferPlan] = None
    deletions: Dict[Direction, DeletionSet] = field(default_factory=dict)
    deleted: Dict[Direction, List[str]] = field(default_factory=dict)
    mark: Optional[int] = None
    mark_committed: bool = False

    @property
    def success(self) -> bool:
        return self.state == RoundState.DONE

    def to_dict(self) -> dict:
        """转换为字典"""
        return {
            'state': self.state.value,
            'phase': self.phase.value,
            'cause': type(self.cause).__name__ if self.cause else None,
            'error': str(self.cause) if self.cause else None,
            'since': self.since,
            'local_changes': len(self.local_changes),
            'remote_changes': len(self.remote_changes),
            'conflicts': sorted(self.conflicts),
            'renamed': dict(self.renamed),
            'pull': sorted(self.plan.pull) if self.plan else [],
            'push': sorted(self.plan.push) if self.plan else [],
            'deletions': {d.value: list(s.paths) for d, s in self.deletions.items()},
            'deleted': {d.value: list(p) for d, p in self.deleted.items()},
            'mark': self.mark,
            'mark_committed': self.mark_committed,
        }
