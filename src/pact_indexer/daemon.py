"""Service entry point - wires store, chain, sync loop and HTTP API together."""

from __future__ import annotations

import asyncio
import logging
import signal
import time

import aiosqlite
from aiohttp import web

from pact_indexer.api.merger import MetadataMerger
from pact_indexer.api.server import create_app
from pact_indexer.chain.decoder import PactEventDecoder
from pact_indexer.chain.reader import Web3ChainReader
from pact_indexer.errors import ChainUnavailable, ReorgUnresolved
from pact_indexer.models.config import IndexerConfig
from pact_indexer.storage.sqlite import SQLitePactStore
from pact_indexer.sync.engine import SyncEngine

log = logging.getLogger(__name__)


class IndexerDaemon:
    """Pact indexing service.

    Owns every component for the lifetime of the process: the sync loop
    runs one tick at a time while the HTTP API serves reads and metadata
    submissions concurrently.
    """

    def __init__(self, cfg: IndexerConfig) -> None:
        self._cfg = cfg
        self._running = False
        self._runner: web.AppRunner | None = None

        self.store = SQLitePactStore(cfg.db_path)
        self.chain = Web3ChainReader(cfg.rpc_url, cfg.rpc_timeout)
        self.decoder = PactEventDecoder(cfg.event_signature)
        self.engine = SyncEngine(
            store=self.store,
            chain=self.chain,
            decoder=self.decoder,
            factory_address=cfg.factory_address,
            confirmation_depth=cfg.confirmation_depth,
            max_batch_blocks=cfg.max_batch_blocks,
            deployment_block=cfg.deployment_block,
            reorg_lookback=cfg.reorg_lookback,
        )
        self.merger = MetadataMerger(
            self.store, self.chain, self.decoder, cfg.factory_address,
        )

    async def start(self) -> None:
        """Initialize components and run the sync loop until stopped."""
        log.info("Starting pact indexer")
        log.info("  RPC: %s", self._cfg.rpc_url)
        log.info("  Pact factory address: %s", self._cfg.factory_address)
        log.info("  Event: %s (%s)", self.decoder.signature, self.decoder.topic)
        log.info("  Confirmation depth: %d", self._cfg.confirmation_depth)
        log.info("  DB: %s", self._cfg.db_path)

        await self.store.initialize()
        self._running = True
        try:
            await self._wait_for_chain()
            await self._start_http()

            cursor = await self.store.get_cursor()
            if cursor:
                log.info("Resuming from block %d", cursor.last_scanned_block)

            await self._main_loop()
        finally:
            if self._runner is not None:
                await self._runner.cleanup()
                self._runner = None
            await self.chain.close()
            await self.store.close()
            log.info("Indexer shut down cleanly")

    async def stop(self) -> None:
        """Signal the service to stop gracefully."""
        log.info("Stop requested")
        self._running = False

    async def _wait_for_chain(self) -> None:
        """Block until the RPC provider answers, up to startup_timeout."""
        deadline = time.monotonic() + self._cfg.startup_timeout
        while True:
            try:
                chain_id = await self.chain.chain_id()
                log.info("Connected to chain: %d", chain_id)
                return
            except ChainUnavailable as exc:
                if not self._running or time.monotonic() >= deadline:
                    raise
                log.warning("Waiting for rpc provider: %s", exc)
                await asyncio.sleep(1)

    async def _start_http(self) -> None:
        app = create_app(self.merger, self._cfg.api_prefix)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._cfg.http_host, self._cfg.http_port)
        await site.start()
        log.info("HTTP API listening on %s:%d%s",
                 self._cfg.http_host, self._cfg.http_port, self._cfg.api_prefix)

    async def _main_loop(self) -> None:
        """The sync loop: one tick, then wait for the next interval."""
        while self._running:
            delay = self._cfg.poll_interval
            try:
                await self.engine.tick()

            except asyncio.CancelledError:
                log.info("Sync loop cancelled")
                break
            except ChainUnavailable as exc:
                log.warning("Sync tick aborted, chain unavailable: %s", exc)
            except ReorgUnresolved as exc:
                log.critical("Sync halted until the cursor is reseeded: %s", exc)
            except aiosqlite.Error as exc:
                log.critical("Storage failure, stopping: %s", exc, exc_info=True)
                raise
            except Exception as exc:
                log.error("Sync loop error: %s", exc, exc_info=True)
                delay = self._cfg.error_backoff

            await self._sleep(delay)

    async def _sleep(self, seconds: float) -> None:
        # Short slices so stop() takes effect without waiting a full interval
        deadline = time.monotonic() + seconds
        while self._running and time.monotonic() < deadline:
            await asyncio.sleep(min(0.25, deadline - time.monotonic()))


async def run_daemon(cfg: IndexerConfig) -> None:
    """Entry point for running the service."""
    daemon = IndexerDaemon(cfg)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(daemon.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await daemon.start()
