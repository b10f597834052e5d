"""
stampsync - Timestamp-based bidirectional synchronization over rsync/ssh

- Change discovery by modification time against the last sync mark
- Conflict detection (block, or rename the local copy aside)
- Transfers delegated to rsync's delta algorithm
- Deletions propagated only after explicit confirmation
"""

__version__ = "0.1.0"

from stampsync.config.models import SyncConfig
from stampsync.bidirectional.coordinator import SyncOrchestrator

__all__ = ["SyncOrchestrator", "SyncConfig", "__version__"]
