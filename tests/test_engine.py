"""SyncEngine: cursor seeding, range scanning and failure handling."""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from pact_indexer.errors import ChainUnavailable, RangeTooLarge
from pact_indexer.models.records import SyncCursor
from pact_indexer.sync.engine import SyncState

from tests.conftest import make_engine
from tests.factories import make_block_hash, make_raw_log, pact_address, tx_hash

ADDR = pact_address(0xABC)


async def _start_at(store, chain, height: int) -> None:
    await store.advance_cursor(SyncCursor(height, chain.block_hash_at(height)), keep_from=0)


def _metric(name: str) -> float:
    return REGISTRY.get_sample_value(name) or 0.0


# ── One tick, end to end ───────────────────────────────────────────


async def test_single_tick_indexes_pact(engine, store, chain):
    """Cursor 100, head 110, depth 2, batch 50, log at 105 -> cursor 108."""
    chain.head = 110
    await _start_at(store, chain, 100)
    chain.add_pact_log(105, ADDR, transaction_hash=tx_hash(1))

    report = await engine.tick()

    assert report.outcome == "advanced"
    assert (report.from_block, report.to_block) == (101, 108)
    assert report.pacts_indexed == 1
    assert await store.get_cursor() == SyncCursor(108, chain.block_hash_at(108))

    pact = await store.get(ADDR)
    assert pact.transaction_hash == tx_hash(1)
    assert pact.block_hash == chain.block_hash_at(105)
    assert pact.block_number == 105
    assert pact.name == ""
    assert pact.terms == ""
    assert ("logs_in_range", 101, 108) in chain.calls
    assert engine.state == SyncState.IDLE


async def test_first_tick_seeds_cursor_below_deployment_block(store, chain):
    engine = make_engine(store, chain, deployment_block=40)
    chain.head = 60
    chain.add_pact_log(40, ADDR)

    report = await engine.tick()

    assert report.from_block == 40
    assert report.to_block == 58
    assert (await store.get(ADDR)).block_number == 40
    observed = await store.get_observed_blocks(0, 100)
    assert [b.height for b in observed] == [58, 39]


async def test_nothing_to_scan_within_confirmation_depth(engine, store, chain):
    chain.head = 102
    await _start_at(store, chain, 100)

    report = await engine.tick()

    assert report.outcome == "idle"
    assert (await store.get_cursor()).last_scanned_block == 100
    assert not any(call[0] == "logs_in_range" for call in chain.calls)


async def test_cursor_is_monotonic_across_ticks(engine, store, chain):
    chain.head = 200
    seen = []
    for _ in range(6):
        report = await engine.tick()
        seen.append((await store.get_cursor()).last_scanned_block)
        if report.outcome == "advanced":
            assert seen[-1] == report.to_block

    assert seen == [50, 100, 150, 198, 198, 198]
    assert seen == sorted(seen)


async def test_new_blocks_are_picked_up_next_tick(engine, store, chain):
    chain.head = 20
    await engine.tick()
    assert (await store.get_cursor()).last_scanned_block == 18

    chain.head = 30
    chain.add_pact_log(25, ADDR)
    report = await engine.tick()

    assert (report.from_block, report.to_block) == (19, 28)
    assert (await store.get(ADDR)).block_number == 25


# ── Failures ───────────────────────────────────────────────────────


@pytest.mark.parametrize("method", ["head_height", "logs_in_range", "block_hash"])
async def test_chain_outage_leaves_cursor_unchanged(engine, store, chain, method):
    chain.head = 110
    await _start_at(store, chain, 100)
    chain.add_pact_log(105, ADDR)
    chain.failing.add(method)

    with pytest.raises(ChainUnavailable):
        await engine.tick()

    assert (await store.get_cursor()).last_scanned_block == 100
    assert engine.state == SyncState.IDLE

    # Next tick succeeds once the node is back
    chain.failing.clear()
    report = await engine.tick()
    assert report.to_block == 108
    assert (await store.get(ADDR)).block_number == 105


async def test_malformed_log_does_not_abort_batch(engine, store, chain):
    chain.head = 110
    await _start_at(store, chain, 100)
    chain.add_log(make_raw_log(block_number=103, data="0x1234"))
    chain.add_pact_log(105, ADDR)

    report = await engine.tick()

    assert report.outcome == "advanced"
    assert report.logs_seen == 2
    assert report.decode_errors == 1
    assert report.pacts_indexed == 1
    assert await store.count_pacts() == 1
    assert (await store.get_cursor()).last_scanned_block == 108


async def test_replaying_a_range_is_harmless(engine, store, chain):
    chain.head = 110
    await _start_at(store, chain, 100)
    chain.add_pact_log(105, ADDR, transaction_hash=tx_hash(1))
    await engine.tick()
    await store.upsert_metadata(ADDR, "Lease", "12mo")
    before = await store.get(ADDR)

    # Simulate a crash between upserts and cursor advance
    await store.set_cursor(SyncCursor(100, chain.block_hash_at(100)))
    report = await engine.tick()

    after = await store.get(ADDR)
    assert report.pacts_indexed == 0
    assert after.to_json() == before.to_json()
    assert await store.count_pacts() == 1


async def test_events_applied_in_chain_order(engine, store, chain):
    chain.head = 110
    await _start_at(store, chain, 100)
    # Same pact address logged twice: the earliest creation wins
    chain.add_pact_log(107, ADDR, transaction_hash=tx_hash(2))
    chain.add_pact_log(104, ADDR, transaction_hash=tx_hash(1), log_index=5)

    await engine.tick()

    pact = await store.get(ADDR)
    assert pact.transaction_hash == tx_hash(1)
    assert pact.block_number == 104


# ── Node range limits ──────────────────────────────────────────────


async def test_refused_range_is_halved_until_served(engine, store, chain):
    """Node serves at most 10 blocks per query; batch is 50."""
    chain.head = 200
    chain.max_range = 10
    await _start_at(store, chain, 100)
    chain.add_pact_log(105, ADDR, transaction_hash=tx_hash(1))

    report = await engine.tick()

    assert report.outcome == "advanced"
    assert (report.from_block, report.to_block) == (101, 107)
    assert (await store.get(ADDR)).block_number == 105
    attempts = [call[1:] for call in chain.calls if call[0] == "logs_in_range"]
    assert attempts == [(101, 150), (101, 125), (101, 113), (101, 107)]
    assert await store.get_cursor() == SyncCursor(107, chain.block_hash_at(107))


async def test_full_batch_is_retried_each_tick(engine, store, chain):
    chain.head = 200
    chain.max_range = 10
    await _start_at(store, chain, 100)
    await engine.tick()
    chain.calls.clear()

    await engine.tick()

    attempts = [call[1:] for call in chain.calls if call[0] == "logs_in_range"]
    assert attempts[0] == (108, 157)

    for _ in range(50):
        if (await engine.tick()).outcome == "idle":
            break
    assert (await store.get_cursor()).last_scanned_block == 198


async def test_single_block_refused_aborts_tick(engine, store, chain):
    chain.head = 110
    chain.max_range = 0
    await _start_at(store, chain, 100)

    with pytest.raises(RangeTooLarge):
        await engine.tick()

    assert (await store.get_cursor()).last_scanned_block == 100


# ── Canonical checks on scanned logs ───────────────────────────────


async def test_log_from_orphaned_block_aborts_tick(engine, store, chain):
    chain.head = 110
    await _start_at(store, chain, 100)
    chain.add_log(make_raw_log(
        block_number=105, address=ADDR, block_hash=make_block_hash(105, "orphan"),
    ))

    with pytest.raises(ChainUnavailable, match="non-canonical"):
        await engine.tick()

    assert await store.get(ADDR) is None
    assert (await store.get_cursor()).last_scanned_block == 100


async def test_reorg_during_log_fetch_aborts_tick(engine, store, chain, monkeypatch):
    chain.head = 110
    await _start_at(store, chain, 100)
    chain.add_pact_log(105, ADDR, transaction_hash=tx_hash(1))
    fetch = chain.logs_in_range

    async def fetch_then_reorg(*args):
        raws = await fetch(*args)
        chain.reorg(104, "fork")
        return raws

    monkeypatch.setattr(chain, "logs_in_range", fetch_then_reorg)

    with pytest.raises(ChainUnavailable, match="changed"):
        await engine.tick()

    assert await store.get(ADDR) is None
    assert (await store.get_cursor()).last_scanned_block == 100


# ── Metrics ────────────────────────────────────────────────────────


async def test_tick_updates_metrics(engine, store, chain):
    chain.head = 110
    await _start_at(store, chain, 100)
    chain.add_pact_log(105, ADDR)
    indexed_before = _metric("pact_indexer_pacts_indexed_total")

    await engine.tick()

    assert _metric("pact_indexer_chain_head") == 110
    assert _metric("pact_indexer_last_scanned_block") == 108
    assert _metric("pact_indexer_pacts_indexed_total") == indexed_before + 1
    assert _metric("pact_indexer_sync_halted") == 0
