"""Metadata merger - attaches submitted name/terms to indexed pacts."""

from __future__ import annotations

import logging

from pact_indexer.chain.decoder import PactEventDecoder
from pact_indexer.errors import DecodeError, MetadataRejected
from pact_indexer.interfaces.chain import ChainReader
from pact_indexer.interfaces.store import PactStore
from pact_indexer.models.records import Pact

log = logging.getLogger(__name__)


class MetadataMerger:
    """Reconciles API-submitted metadata with on-chain provenance.

    This is the only path the HTTP layer uses to read or write pacts.
    Metadata may arrive before the sync engine has seen the creation event;
    the provenance is merged in when the engine reaches that block.
    """

    def __init__(
        self,
        store: PactStore,
        chain: ChainReader | None = None,
        decoder: PactEventDecoder | None = None,
        factory_address: str = "",
    ) -> None:
        self._store = store
        self._chain = chain
        self._decoder = decoder
        self._factory_address = factory_address.lower()

    async def lookup(self, address: str) -> Pact | None:
        """Point lookup. Partially populated pacts are returned as-is."""
        return await self._store.get(address)

    async def submit_metadata(
        self,
        address: str | None,
        name: str,
        terms: str,
        transaction_hash: str | None = None,
    ) -> Pact:
        """Store name/terms for a pact (last writer wins).

        ``address`` is used as given, without checking the chain. When only
        ``transaction_hash`` is known the address is resolved from the
        indexed pacts or, failing that, from the transaction receipt; provenance
        itself is only ever written by the sync engine.
        Raises MetadataRejected if neither identifies a pact and
        ChainUnavailable if the receipt could not be fetched.
        """
        if not address:
            if not transaction_hash:
                raise MetadataRejected("address or transactionHash is required")
            address = await self._resolve_address(transaction_hash)

        pact = await self._store.upsert_metadata(address, name, terms)
        log.info(
            "Metadata stored for pact %s (%s)",
            pact.address, "complete" if pact.is_complete else "awaiting provenance",
        )
        return pact

    async def _resolve_address(self, transaction_hash: str) -> str:
        indexed = await self._store.get_by_transaction(transaction_hash)
        if indexed is not None:
            return indexed.address

        if self._chain is None or self._decoder is None:
            raise MetadataRejected(f"transaction {transaction_hash} is not indexed")

        raws = await self._chain.receipt_logs(transaction_hash)
        if raws is None:
            raise MetadataRejected(f"transaction {transaction_hash} is not mined")

        for raw in raws:
            if raw.address.lower() != self._factory_address or not self._decoder.matches(raw):
                continue
            try:
                event = self._decoder.decode(raw)
            except DecodeError as exc:
                log.warning("Receipt log of %s is undecodable: %s", transaction_hash, exc)
                continue
            log.info("Resolved pact %s from receipt of %s", event.address, transaction_hash)
            return event.address

        raise MetadataRejected(f"transaction {transaction_hash} did not create a pact")
