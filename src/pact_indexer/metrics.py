"""Prometheus metrics for the sync loop, served on the HTTP API at /metrics."""

from __future__ import annotations

from prometheus_client import Counter, Gauge

CHAIN_HEAD = Gauge("pact_indexer_chain_head", "Latest block number reported by the node")
LAST_SCANNED_BLOCK = Gauge(
    "pact_indexer_last_scanned_block", "Highest block fully processed by the sync engine"
)
SYNC_HALTED = Gauge(
    "pact_indexer_sync_halted", "1 while syncing is halted by an unresolved reorg"
)
PACTS_INDEXED = Counter(
    "pact_indexer_pacts_indexed_total", "Pacts whose provenance was recorded"
)
REORGS = Counter("pact_indexer_reorgs_total", "Reorgs recovered by rewinding the cursor")
