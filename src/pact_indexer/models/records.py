"""Persisted record types and sync tick results."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Pact:
    """A pact as persisted in the store.

    Either half (provenance from the indexer, metadata from the API) may
    arrive first; a pact with only one half is a valid pending state.
    """

    address: str
    name: str = ""
    terms: str = ""
    transaction_hash: str | None = None
    block_hash: str | None = None
    block_number: int | None = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def has_provenance(self) -> bool:
        return bool(self.transaction_hash and self.block_hash) and self.block_number is not None

    @property
    def has_metadata(self) -> bool:
        return bool(self.name and self.terms)

    @property
    def is_complete(self) -> bool:
        return self.has_provenance and self.has_metadata

    def to_json(self) -> dict:
        """Wire form served by the HTTP API."""
        return {
            "address": self.address,
            "name": self.name,
            "terms": self.terms,
            "transactionHash": self.transaction_hash,
            "blockHash": self.block_hash,
            "blockNumber": self.block_number,
        }


@dataclass(frozen=True)
class SyncCursor:
    """Highest fully processed block and its hash."""

    last_scanned_block: int
    last_scanned_block_hash: str


@dataclass(frozen=True)
class ObservedBlock:
    """A (height, hash) pair recorded when the cursor advanced."""

    height: int
    hash: str


@dataclass
class TickReport:
    """Result of one sync engine tick."""

    outcome: str  # "idle", "advanced", "rewound", "halted"
    from_block: int | None = None
    to_block: int | None = None
    logs_seen: int = 0
    pacts_indexed: int = 0
    decode_errors: int = 0
    rewound_to: int | None = None
    duration_ms: int = 0
