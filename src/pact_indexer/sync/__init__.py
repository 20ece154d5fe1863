"""Block range synchronization."""

from pact_indexer.sync.engine import SyncEngine, SyncState

__all__ = ["SyncEngine", "SyncState"]
