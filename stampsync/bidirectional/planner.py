"""
传输规划器
"""

from typing import Iterable, Mapping, Optional
import structlog

from stampsync.core.models import TransferPlan

logger = structlog.get_logger()


class TransferPlanner:
    """传输规划器：为每个变更路径确定唯一的传输方向"""

    def __init__(self, marker_name: str = ".sync_time"):
        self.marker_name = marker_name

    def plan(
        self,
        local_changes: Iterable[str],
        remote_changes: Iterable[str],
        conflicts: Iterable[str],
        renamed: Optional[Mapping[str, str]] = None
    ) -> TransferPlan:
        """
        生成传输计划

        Args:
            local_changes: 本地变更路径
            remote_changes: 远程变更路径
            conflicts: 冲突路径
            renamed: 已解决冲突的改名映射 {原路径: 冲突副本路径}

        Returns:
            TransferPlan

        Raises:
            ValueError: 某路径同时需要推送与拉取
        """
        conflicts = frozenset(conflicts)
        renamed = dict(renamed or {})
        excluded = {self.marker_name}

        pull = set(remote_changes) - conflicts
        push = set(local_changes) - conflicts

        # 本地副本已改名让出路径，远程版本作为权威版本拉取
        for original, copy in renamed.items():
            pull.add(original)
            push.discard(original)
            push.add(copy)

        pull -= excluded
        push -= excluded

        overlap = pull & push
        if overlap:
            raise ValueError(f"Paths planned in both directions: {sorted(overlap)}")

        plan = TransferPlan(
            pull=frozenset(pull),
            push=frozenset(push),
            conflicts=conflicts - frozenset(renamed)
        )

        logger.info(
            "Transfer plan created",
            pull=len(plan.pull),
            push=len(plan.push),
            unresolved_conflicts=len(plan.conflicts)
        )
        return plan
