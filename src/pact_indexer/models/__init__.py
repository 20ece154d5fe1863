"""Data models for the pact_indexer service."""

from pact_indexer.models.config import IndexerConfig
from pact_indexer.models.events import PactCreatedEvent, RawLog
from pact_indexer.models.records import ObservedBlock, Pact, SyncCursor, TickReport

__all__ = [
    "IndexerConfig",
    "PactCreatedEvent", "RawLog",
    "ObservedBlock", "Pact", "SyncCursor", "TickReport",
]
