"""IndexerDaemon: sync loop error policy and shutdown."""

from __future__ import annotations

import asyncio
import logging
import time

import aiosqlite
import httpx
import pytest
from aiohttp.test_utils import unused_port

from pact_indexer.api.merger import MetadataMerger
from pact_indexer.daemon import IndexerDaemon
from pact_indexer.errors import ChainUnavailable, ReorgUnresolved

from tests.conftest import make_engine, make_test_config
from tests.factories import FACTORY, pact_address
from tests.mocks import MockChain, ScriptedEngine

ADDR = pact_address(0xABC)


async def _until(condition, timeout: float = 3.0) -> None:
    """Poll an async condition until it holds or the timeout expires."""
    deadline = time.monotonic() + timeout
    while not await condition():
        if time.monotonic() >= deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def _stop(daemon: IndexerDaemon, task: asyncio.Task) -> None:
    await daemon.stop()
    await asyncio.wait_for(task, timeout=3.0)


def _make_daemon(**overrides) -> IndexerDaemon:
    """Daemon over an in-memory store, with the RPC reader swapped for a MockChain."""
    cfg = make_test_config(http_port=unused_port(), **overrides)
    daemon = IndexerDaemon(cfg)
    daemon.chain = MockChain(head=0)
    daemon.engine = make_engine(daemon.store, daemon.chain)
    daemon.merger = MetadataMerger(daemon.store, daemon.chain, daemon.decoder, FACTORY)
    return daemon


@pytest.fixture
def daemon():
    return _make_daemon()


# ── Normal running ─────────────────────────────────────────────────


async def test_syncs_and_stops_cleanly(daemon):
    daemon.chain.head = 20
    daemon.chain.add_pact_log(10, ADDR)
    task = asyncio.create_task(daemon.start())

    async def synced():
        cursor = await daemon.store.get_cursor()
        return cursor is not None and cursor.last_scanned_block == 18

    await _until(synced)
    assert (await daemon.store.get(ADDR)).block_number == 10

    await _stop(daemon, task)
    assert daemon._runner is None
    assert daemon.store._db is None


# ── Error policy ───────────────────────────────────────────────────


async def test_chain_outage_is_retried(daemon, caplog):
    caplog.set_level(logging.WARNING, logger="pact_indexer.daemon")
    daemon.chain.head = 20
    daemon.chain.failing.add("head_height")
    task = asyncio.create_task(daemon.start())

    async def retried():
        return sum(1 for call in daemon.chain.calls if call[0] == "head_height") >= 3

    await _until(retried)
    assert await daemon.store.get_cursor() is None
    assert any("chain unavailable" in r.getMessage() for r in caplog.records)
    assert not task.done()

    daemon.chain.failing.clear()

    async def recovered():
        cursor = await daemon.store.get_cursor()
        return cursor is not None and cursor.last_scanned_block == 18

    await _until(recovered)
    await _stop(daemon, task)


async def test_unresolved_reorg_halts_sync_but_api_serves(daemon, caplog):
    caplog.set_level(logging.CRITICAL, logger="pact_indexer.daemon")
    daemon.engine = ScriptedEngine(error=ReorgUnresolved(cursor_block=90, lookback_floor=26))
    task = asyncio.create_task(daemon.start())

    async def ticked_twice():
        return daemon.engine.ticks >= 2

    await _until(ticked_twice)
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    base = f"http://127.0.0.1:{daemon._cfg.http_port}"
    async with httpx.AsyncClient(base_url=base) as http:
        r = await http.get("/api/status")
        assert r.status_code == 200
        assert r.json() == {"ok": True}
        r = await http.get("/api/pact", params={"address": ADDR})
        assert r.status_code == 404

    assert daemon._running
    assert not task.done()
    await _stop(daemon, task)


async def test_storage_failure_stops_service(daemon, caplog):
    caplog.set_level(logging.CRITICAL, logger="pact_indexer.daemon")
    daemon.engine = ScriptedEngine(error=aiosqlite.OperationalError("disk I/O error"))

    with pytest.raises(aiosqlite.OperationalError):
        await asyncio.wait_for(daemon.start(), timeout=3.0)

    assert daemon.engine.ticks == 1
    assert any("Storage failure" in r.getMessage() for r in caplog.records)
    assert daemon._runner is None
    assert daemon.store._db is None


async def test_unexpected_error_waits_error_backoff(caplog):
    caplog.set_level(logging.ERROR, logger="pact_indexer.daemon")
    daemon = _make_daemon(poll_interval=0.01, error_backoff=5.0)
    daemon.engine = ScriptedEngine(error=RuntimeError("boom"))
    task = asyncio.create_task(daemon.start())

    async def ticked():
        return daemon.engine.ticks >= 1

    await _until(ticked)
    await asyncio.sleep(0.3)

    assert daemon.engine.ticks == 1
    assert any("Sync loop error" in r.getMessage() for r in caplog.records)

    # stop() cuts the backoff short
    await _stop(daemon, task)


async def test_chain_outage_uses_poll_interval():
    daemon = _make_daemon(poll_interval=0.01, error_backoff=5.0)
    daemon.engine = ScriptedEngine(error=ChainUnavailable("connection refused"))
    task = asyncio.create_task(daemon.start())

    async def ticked_often():
        return daemon.engine.ticks >= 5

    await _until(ticked_often, timeout=1.0)
    await _stop(daemon, task)
