"""
双向同步模块

功能:
- 冲突检测
- 冲突解决（阻断或改名）
- 传输规划
- 删除协调
- 同步轮次状态机
"""

from stampsync.bidirectional.confirm import Confirmer, InteractiveConfirmer, StaticConfirmer
from stampsync.bidirectional.conflict_detector import ConflictDetector
from stampsync.bidirectional.conflict_resolver import ConflictResolver, ResolutionStrategy
from stampsync.bidirectional.coordinator import SyncOrchestrator
from stampsync.bidirectional.deletion import DeletionReconciler
from stampsync.bidirectional.planner import TransferPlanner

__all__ = [
    'Confirmer',
    'InteractiveConfirmer',
    'StaticConfirmer',
    'ConflictDetector',
    'ConflictResolver',
    'ResolutionStrategy',
    'SyncOrchestrator',
    'DeletionReconciler',
    'TransferPlanner',
]
