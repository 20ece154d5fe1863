"""Sync engine - advances the cursor over confirmed blocks and recovers from reorgs."""

from __future__ import annotations

import logging
import time
from enum import Enum

from pact_indexer.chain.decoder import PactEventDecoder
from pact_indexer.errors import ChainUnavailable, RangeTooLarge, ReorgUnresolved
from pact_indexer.interfaces.chain import ChainReader
from pact_indexer.interfaces.store import PactStore
from pact_indexer.metrics import CHAIN_HEAD, LAST_SCANNED_BLOCK, PACTS_INDEXED, REORGS, SYNC_HALTED
from pact_indexer.models.events import PactCreatedEvent, RawLog
from pact_indexer.models.records import SyncCursor, TickReport

log = logging.getLogger(__name__)


class SyncState(str, Enum):
    """Where the engine is within a tick."""

    IDLE = "idle"
    SCANNING = "scanning"
    ADVANCING = "advancing"
    REORG_RECOVERING = "reorg_recovering"


def _same_hash(a: str | None, b: str | None) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


class SyncEngine:
    """Indexes PactCreated events from the factory into the store.

    Each tick:
    1. Reads the cursor (seeding it from the deployment block on first run)
    2. Checks the cursor's block hash against the canonical chain
    3. On mismatch, walks back through observed blocks to a common ancestor
    4. Otherwise scans (cursor, min(head - depth, cursor + batch)], halving
       the range while the node refuses it, and upserts provenance for every
       decoded event whose block is still canonical
    5. Advances the cursor only after the whole range has been applied
    """

    def __init__(
        self,
        store: PactStore,
        chain: ChainReader,
        decoder: PactEventDecoder,
        factory_address: str,
        confirmation_depth: int = 6,
        max_batch_blocks: int = 1000,
        deployment_block: int = 0,
        reorg_lookback: int = 128,
    ) -> None:
        self._store = store
        self._chain = chain
        self._decoder = decoder
        self._factory_address = factory_address
        self._confirmation_depth = confirmation_depth
        self._max_batch_blocks = max_batch_blocks
        self._deployment_block = deployment_block
        self._reorg_lookback = reorg_lookback
        self._state = SyncState.IDLE
        self._halted: ReorgUnresolved | None = None
        SYNC_HALTED.set(0)

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def halted(self) -> ReorgUnresolved | None:
        """The unresolved reorg that stopped progress, if any."""
        return self._halted

    async def tick(self) -> TickReport:
        """Run one scan tick to completion.

        Raises ChainUnavailable if any chain call fails (the cursor is left
        untouched) and ReorgUnresolved when no common ancestor exists.
        """
        start = time.monotonic()
        if self._halted is not None:
            log.debug("Sync halted: %s", self._halted)
            return TickReport(outcome="halted")

        try:
            self._state = SyncState.SCANNING
            cursor = await self._store.get_cursor()
            if cursor is None:
                cursor = await self._seed_cursor()

            canonical = await self._chain.block_hash(cursor.last_scanned_block)
            if not _same_hash(canonical, cursor.last_scanned_block_hash):
                log.warning(
                    "Reorg detected at block %d: stored %s, chain reports %s",
                    cursor.last_scanned_block,
                    cursor.last_scanned_block_hash,
                    canonical or "(not found)",
                )
                self._state = SyncState.REORG_RECOVERING
                report = await self._recover(cursor)
            else:
                head = await self._chain.head_height()
                CHAIN_HEAD.set(head)
                target = min(
                    head - self._confirmation_depth,
                    cursor.last_scanned_block + self._max_batch_blocks,
                )
                if target <= cursor.last_scanned_block:
                    log.debug(
                        "Nothing to scan: cursor %d, head %d", cursor.last_scanned_block, head
                    )
                    report = TickReport(outcome="idle")
                else:
                    self._state = SyncState.ADVANCING
                    report = await self._advance(cursor, target)
        finally:
            self._state = SyncState.IDLE

        report.duration_ms = int((time.monotonic() - start) * 1000)
        return report

    async def _seed_cursor(self) -> SyncCursor:
        """Create the first cursor just below the factory deployment block."""
        height = max(self._deployment_block - 1, 0)
        block_hash = await self._chain.block_hash(height)
        if block_hash is None:
            raise ChainUnavailable(f"seed block {height} not available from the node")
        cursor = SyncCursor(last_scanned_block=height, last_scanned_block_hash=block_hash)
        await self._store.advance_cursor(cursor, keep_from=height)
        LAST_SCANNED_BLOCK.set(height)
        log.info("Seeded cursor at block %d (%s)", height, block_hash)
        return cursor

    async def _advance(self, cursor: SyncCursor, target: int) -> TickReport:
        from_block = cursor.last_scanned_block + 1
        raws, target, target_hash = await self._fetch_logs(from_block, target)
        events, errors = self._decoder.decode_batch(raws)
        events.sort(key=lambda e: (e.block_number, e.log_index))
        await self._check_canonical(events, target, target_hash)

        indexed = 0
        for event in events:
            changed = await self._store.upsert_provenance(
                event.address, event.transaction_hash, event.block_hash, event.block_number,
            )
            if changed:
                indexed += 1
                log.info(
                    "Indexed pact %s (tx %s, block %d)",
                    event.address, event.transaction_hash, event.block_number,
                )

        await self._store.advance_cursor(
            SyncCursor(last_scanned_block=target, last_scanned_block_hash=target_hash),
            keep_from=target - self._reorg_lookback,
        )
        LAST_SCANNED_BLOCK.set(target)
        PACTS_INDEXED.inc(indexed)
        if raws:
            log.info(
                "Scanned blocks %d-%d: %d logs, %d pacts indexed, %d undecodable",
                from_block, target, len(raws), indexed, len(errors),
            )
        else:
            log.debug("Scanned blocks %d-%d: no logs", from_block, target)

        return TickReport(
            outcome="advanced",
            from_block=from_block,
            to_block=target,
            logs_seen=len(raws),
            pacts_indexed=indexed,
            decode_errors=len(errors),
        )

    async def _fetch_logs(self, from_block: int, target: int) -> tuple[list[RawLog], int, str]:
        """Fetch factory logs up to ``target``, halving the range while the node refuses it.

        The target's hash is read before and after the query; if it changed,
        the logs may come from a replaced fork and the tick is aborted.
        """
        while True:
            before = await self._canonical_hash(target)
            try:
                raws = await self._chain.logs_in_range(
                    from_block, target, self._decoder.topic, self._factory_address,
                )
            except RangeTooLarge as exc:
                if target <= from_block:
                    raise
                target = from_block + (target - from_block) // 2
                log.warning(
                    "Node refused log range (%s), retrying blocks %d-%d", exc, from_block, target,
                )
                continue
            break

        after = await self._canonical_hash(target)
        if not _same_hash(before, after):
            raise ChainUnavailable(f"block {target} changed while its logs were fetched")
        return raws, target, after

    async def _check_canonical(
        self, events: list[PactCreatedEvent], target: int, target_hash: str
    ) -> None:
        """Reject the range if any event's block is not on the canonical chain."""
        known = {target: target_hash}
        for event in events:
            if event.block_number not in known:
                known[event.block_number] = await self._canonical_hash(event.block_number)
            if not _same_hash(event.block_hash, known[event.block_number]):
                raise ChainUnavailable(
                    f"log {event.transaction_hash}:{event.log_index} is from non-canonical "
                    f"block {event.block_number} ({event.block_hash})"
                )

    async def _canonical_hash(self, height: int) -> str:
        block_hash = await self._chain.block_hash(height)
        if block_hash is None:
            raise ChainUnavailable(f"block {height} not available from the node")
        return block_hash

    async def _recover(self, cursor: SyncCursor) -> TickReport:
        """Rewind to the highest observed block still on the canonical chain."""
        floor = max(cursor.last_scanned_block - self._reorg_lookback, 0)
        observed = await self._store.get_observed_blocks(floor, cursor.last_scanned_block - 1)

        for block in observed:
            canonical = await self._chain.block_hash(block.height)
            if _same_hash(canonical, block.hash):
                reset = await self._store.rewind_cursor(
                    SyncCursor(last_scanned_block=block.height, last_scanned_block_hash=block.hash)
                )
                LAST_SCANNED_BLOCK.set(block.height)
                REORGS.inc()
                log.warning(
                    "Rewound cursor from block %d to common ancestor %d (%d pacts to re-index)",
                    cursor.last_scanned_block, block.height, reset,
                )
                return TickReport(outcome="rewound", rewound_to=block.height)
            log.debug("Block %d no longer canonical", block.height)

        self._halted = ReorgUnresolved(cursor.last_scanned_block, floor)
        SYNC_HALTED.set(1)
        log.critical("Sync halted: %s", self._halted)
        raise self._halted
