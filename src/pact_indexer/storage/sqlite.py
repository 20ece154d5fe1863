"""SQLite implementation of the PactStore protocol."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from pact_indexer.models.records import ObservedBlock, Pact, SyncCursor

SCHEMA = """
-- Pacts keyed by lowercase contract address
CREATE TABLE IF NOT EXISTS pacts (
    address TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    terms TEXT NOT NULL DEFAULT '',
    transaction_hash TEXT,
    block_hash TEXT,
    block_number INTEGER,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_pacts_tx ON pacts(transaction_hash);
CREATE INDEX IF NOT EXISTS idx_pacts_block ON pacts(block_number);

-- Sync cursor for resumption
CREATE TABLE IF NOT EXISTS cursor (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_scanned_block INTEGER NOT NULL,
    last_scanned_block_hash TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Block hashes seen at each cursor advance, used to find reorg ancestors
CREATE TABLE IF NOT EXISTS observed_blocks (
    height INTEGER PRIMARY KEY,
    hash TEXT NOT NULL,
    observed_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _key(value: str) -> str:
    return value.strip().lower()


def _row_to_pact(row: aiosqlite.Row) -> Pact:
    return Pact(
        address=row["address"],
        name=row["name"],
        terms=row["terms"],
        transaction_hash=row["transaction_hash"],
        block_hash=row["block_hash"],
        block_number=row["block_number"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class SQLitePactStore:
    """SQLite-backed implementation of the PactStore protocol.

    Reads and writes share one connection and are serialized by a lock, so
    each upsert and each cursor change commits atomically and no read sees
    a transaction that has not committed yet.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    # ── Pacts ──────────────────────────────────────────────

    async def upsert_provenance(
        self,
        address: str,
        transaction_hash: str,
        block_hash: str,
        block_number: int,
    ) -> bool:
        """Create the pact or fill its empty provenance fields.

        Non-empty provenance is never overwritten, so replaying a block range
        is a no-op. Returns True if a row was inserted or changed.
        """
        now = _now()
        async with self._lock:
            cur = await self.db.execute(
                "INSERT INTO pacts"
                " (address, transaction_hash, block_hash, block_number, created_at, updated_at)"
                " VALUES (?, ?, ?, ?, ?, ?)"
                " ON CONFLICT(address) DO UPDATE SET"
                "  transaction_hash=COALESCE(NULLIF(pacts.transaction_hash, ''), excluded.transaction_hash),"
                "  block_hash=COALESCE(NULLIF(pacts.block_hash, ''), excluded.block_hash),"
                "  block_number=COALESCE(pacts.block_number, excluded.block_number),"
                "  updated_at=excluded.updated_at"
                " WHERE NULLIF(pacts.transaction_hash, '') IS NULL"
                "  OR NULLIF(pacts.block_hash, '') IS NULL"
                "  OR pacts.block_number IS NULL",
                (
                    _key(address), _key(transaction_hash), _key(block_hash),
                    block_number, now, now,
                ),
            )
            changed = cur.rowcount > 0
            await self.db.commit()
        return changed

    async def upsert_metadata(self, address: str, name: str, terms: str) -> Pact:
        """Create the pact or overwrite its name and terms (last writer wins)."""
        now = _now()
        async with self._lock:
            await self.db.execute(
                "INSERT INTO pacts (address, name, terms, created_at, updated_at)"
                " VALUES (?, ?, ?, ?, ?)"
                " ON CONFLICT(address) DO UPDATE SET"
                "  name=excluded.name, terms=excluded.terms, updated_at=excluded.updated_at",
                (_key(address), name, terms, now, now),
            )
            await self.db.commit()
        pact = await self.get(address)
        assert pact is not None
        return pact

    async def get(self, address: str) -> Pact | None:
        async with self._lock:
            async with self.db.execute(
                "SELECT * FROM pacts WHERE address=?", (_key(address),)
            ) as cur:
                row = await cur.fetchone()
                return _row_to_pact(row) if row else None

    async def get_by_transaction(self, transaction_hash: str) -> Pact | None:
        async with self._lock:
            async with self.db.execute(
                "SELECT * FROM pacts WHERE transaction_hash=? LIMIT 1",
                (_key(transaction_hash),),
            ) as cur:
                row = await cur.fetchone()
                return _row_to_pact(row) if row else None

    async def count_pacts(self) -> int:
        async with self._lock:
            async with self.db.execute("SELECT COUNT(*) AS c FROM pacts") as cur:
                row = await cur.fetchone()
                return row["c"] if row else 0

    # ── Cursor ─────────────────────────────────────────────

    async def get_cursor(self) -> SyncCursor | None:
        async with self._lock:
            async with self.db.execute(
                "SELECT last_scanned_block, last_scanned_block_hash FROM cursor WHERE id=1"
            ) as cur:
                row = await cur.fetchone()
                if row is None:
                    return None
                return SyncCursor(
                    last_scanned_block=row["last_scanned_block"],
                    last_scanned_block_hash=row["last_scanned_block_hash"],
                )

    async def set_cursor(self, cursor: SyncCursor) -> None:
        async with self._lock:
            await self._write_cursor(cursor)
            await self.db.commit()

    async def advance_cursor(self, cursor: SyncCursor, keep_from: int) -> None:
        """Move the cursor forward and remember its block hash.

        Observed blocks below ``keep_from`` are pruned in the same transaction.
        """
        async with self._lock:
            try:
                await self._write_cursor(cursor)
                await self.db.execute(
                    "INSERT INTO observed_blocks (height, hash, observed_at) VALUES (?, ?, ?)"
                    " ON CONFLICT(height) DO UPDATE SET hash=excluded.hash,"
                    " observed_at=excluded.observed_at",
                    (cursor.last_scanned_block, _key(cursor.last_scanned_block_hash), _now()),
                )
                await self.db.execute(
                    "DELETE FROM observed_blocks WHERE height < ?", (keep_from,)
                )
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise

    async def rewind_cursor(self, cursor: SyncCursor) -> int:
        """Roll the cursor back to a confirmed ancestor.

        Observed blocks above the ancestor are forgotten and pacts indexed
        above it lose their provenance (metadata is kept) so the rescan can
        fill them from the canonical chain. Returns the number of pacts reset.
        """
        height = cursor.last_scanned_block
        async with self._lock:
            try:
                await self._write_cursor(cursor)
                await self.db.execute(
                    "INSERT INTO observed_blocks (height, hash, observed_at) VALUES (?, ?, ?)"
                    " ON CONFLICT(height) DO UPDATE SET hash=excluded.hash,"
                    " observed_at=excluded.observed_at",
                    (height, _key(cursor.last_scanned_block_hash), _now()),
                )
                await self.db.execute(
                    "DELETE FROM observed_blocks WHERE height > ?", (height,)
                )
                cur = await self.db.execute(
                    "UPDATE pacts SET transaction_hash=NULL, block_hash=NULL,"
                    " block_number=NULL, updated_at=? WHERE block_number > ?",
                    (_now(), height),
                )
                reset = cur.rowcount
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise
        return reset

    async def _write_cursor(self, cursor: SyncCursor) -> None:
        await self.db.execute(
            "INSERT INTO cursor (id, last_scanned_block, last_scanned_block_hash, updated_at)"
            " VALUES (1, ?, ?, ?)"
            " ON CONFLICT(id) DO UPDATE SET last_scanned_block=excluded.last_scanned_block,"
            " last_scanned_block_hash=excluded.last_scanned_block_hash,"
            " updated_at=excluded.updated_at",
            (cursor.last_scanned_block, _key(cursor.last_scanned_block_hash), _now()),
        )

    # ── Observed blocks ────────────────────────────────────

    async def get_observed_blocks(
        self, min_height: int, max_height: int
    ) -> list[ObservedBlock]:
        async with self._lock:
            async with self.db.execute(
                "SELECT height, hash FROM observed_blocks"
                " WHERE height >= ? AND height <= ? ORDER BY height DESC",
                (min_height, max_height),
            ) as cur:
                return [ObservedBlock(height=row["height"], hash=row["hash"]) async for row in cur]
