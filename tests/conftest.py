"""Shared fixtures for pact_indexer tests."""

from __future__ import annotations

import pytest

from pact_indexer.api.merger import MetadataMerger
from pact_indexer.chain.decoder import PactEventDecoder
from pact_indexer.models.config import IndexerConfig
from pact_indexer.storage.sqlite import SQLitePactStore
from pact_indexer.sync.engine import SyncEngine

from tests.factories import FACTORY
from tests.mocks import MockChain


def make_test_config(**overrides) -> IndexerConfig:
    """Build an IndexerConfig suitable for testing."""
    defaults = dict(
        poll_interval=0.01,
        error_backoff=0.01,
        confirmation_depth=2,
        max_batch_blocks=50,
        deployment_block=0,
        reorg_lookback=64,
        rpc_url="http://127.0.0.1:8545",
        factory_address=FACTORY,
        rpc_timeout=1.0,
        startup_timeout=1.0,
        db_path=":memory:",
        http_host="127.0.0.1",
    )
    defaults.update(overrides)
    return IndexerConfig(**defaults)


def make_engine(store, chain, **overrides) -> SyncEngine:
    cfg = make_test_config(**overrides)
    return SyncEngine(
        store=store,
        chain=chain,
        decoder=PactEventDecoder(cfg.event_signature),
        factory_address=cfg.factory_address,
        confirmation_depth=cfg.confirmation_depth,
        max_batch_blocks=cfg.max_batch_blocks,
        deployment_block=cfg.deployment_block,
        reorg_lookback=cfg.reorg_lookback,
    )


@pytest.fixture
def test_config():
    """Default IndexerConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLitePactStore."""
    s = SQLitePactStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def chain():
    return MockChain(head=0)


@pytest.fixture
def decoder():
    return PactEventDecoder("Create(address)")


@pytest.fixture
def engine(store, chain):
    """SyncEngine over the in-memory store and mock chain (depth 2, batch 50)."""
    return make_engine(store, chain)


@pytest.fixture
def merger(store, chain, decoder):
    return MetadataMerger(store, chain, decoder, FACTORY)
