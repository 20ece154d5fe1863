"""PactStore protocol - durable pact records and sync progress."""

from __future__ import annotations

from typing import Protocol

from pact_indexer.models.records import ObservedBlock, Pact, SyncCursor


class PactStore(Protocol):
    """Owns all persisted state: pacts, the sync cursor and observed blocks."""

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        ...

    # ── Pacts ──────────────────────────────────────────────

    async def upsert_provenance(
        self,
        address: str,
        transaction_hash: str,
        block_hash: str,
        block_number: int,
    ) -> bool:
        """Fill empty provenance fields. Returns True if anything changed."""
        ...

    async def upsert_metadata(self, address: str, name: str, terms: str) -> Pact:
        """Overwrite name/terms (last writer wins)."""
        ...

    async def get(self, address: str) -> Pact | None:
        ...

    async def get_by_transaction(self, transaction_hash: str) -> Pact | None:
        ...

    async def count_pacts(self) -> int:
        ...

    # ── Cursor ─────────────────────────────────────────────

    async def get_cursor(self) -> SyncCursor | None:
        ...

    async def set_cursor(self, cursor: SyncCursor) -> None:
        ...

    async def advance_cursor(self, cursor: SyncCursor, keep_from: int) -> None:
        """Set cursor and record it as an observed block, atomically."""
        ...

    async def rewind_cursor(self, cursor: SyncCursor) -> int:
        """Roll back to an ancestor. Returns the number of pacts un-indexed."""
        ...

    # ── Observed blocks ────────────────────────────────────

    async def get_observed_blocks(
        self, min_height: int, max_height: int
    ) -> list[ObservedBlock]:
        """Observed blocks in the inclusive range, highest first."""
        ...
