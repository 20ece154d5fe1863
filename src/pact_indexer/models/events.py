"""Chain log models: raw entries from the RPC and decoded factory events."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RawLog:
    """A log entry as returned by the chain client.

    All hex fields are normalized to 0x-prefixed lowercase strings.
    """

    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    block_hash: str
    transaction_hash: str
    log_index: int


@dataclass(frozen=True)
class PactCreatedEvent:
    """Emitted by the factory when a pact contract is deployed."""

    address: str  # created pact contract
    transaction_hash: str
    block_hash: str
    block_number: int
    log_index: int
