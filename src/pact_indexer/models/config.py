"""Configuration model for the indexer service."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class IndexerConfig:
    """Complete service configuration."""

    # Indexer
    poll_interval: float = 2.0  # seconds between sync ticks
    error_backoff: float = 10.0  # seconds after an unexpected loop error
    confirmation_depth: int = 6  # blocks behind head treated as final
    max_batch_blocks: int = 1000  # max blocks scanned per tick
    deployment_block: int = 0  # factory deployment height, seeds the cursor
    reorg_lookback: int = 128  # blocks searched for a common ancestor
    log_level: str = "info"

    # Chain
    rpc_url: str = "http://127.0.0.1:8545"
    factory_address: str = ""
    event_signature: str = "Create(address)"
    rpc_timeout: float = 10.0  # seconds per RPC call
    startup_timeout: float = 60.0  # seconds to wait for the provider at start

    # Storage
    db_path: str = "~/.pact_indexer/pacts.db"

    # HTTP API
    http_host: str = "0.0.0.0"
    http_port: int = 7300
    api_prefix: str = "/api"
