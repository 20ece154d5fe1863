"""Error taxonomy for the indexer.

A read miss is never an error: lookups return ``None``.
"""

from __future__ import annotations


class PactIndexerError(Exception):
    """Base class for all indexer errors."""


class ConfigError(PactIndexerError):
    """Configuration file or environment holds an invalid value."""


class ChainUnavailable(PactIndexerError):
    """Transient RPC/network failure. The current tick is aborted and retried."""


class RangeTooLarge(ChainUnavailable):
    """The node refused an eth_getLogs range as too wide or too many results."""


class DecodeError(PactIndexerError):
    """A raw log could not be decoded into a PactCreated event."""


class ReorgUnresolved(PactIndexerError):
    """No common ancestor was found within the reorg lookback window."""

    def __init__(self, cursor_block: int, lookback_floor: int) -> None:
        super().__init__(
            f"no common ancestor between block {lookback_floor} and "
            f"block {cursor_block}; reseed the cursor or raise reorg_lookback"
        )
        self.cursor_block = cursor_block
        self.lookback_floor = lookback_floor


class MetadataRejected(PactIndexerError):
    """A metadata submission could not be attached to a pact."""
