"""PactCreated event decoder - turns raw factory logs into typed events."""

from __future__ import annotations

import logging
from typing import Iterable

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from pact_indexer.errors import DecodeError
from pact_indexer.models.events import PactCreatedEvent, RawLog

log = logging.getLogger(__name__)


def event_topic(signature: str) -> str:
    """keccak256 of a canonical event signature, e.g. ``Create(address)``."""
    return Web3.to_hex(Web3.keccak(text=signature)).lower()


class PactEventDecoder:
    """Decodes the factory's pact creation event.

    The created contract address is taken from ``topics[1]`` when the event
    indexes it, otherwise it is ABI-decoded from the log data.
    """

    def __init__(self, event_signature: str = "Create(address)") -> None:
        self._signature = event_signature
        self._topic = event_topic(event_signature)

    @property
    def signature(self) -> str:
        return self._signature

    @property
    def topic(self) -> str:
        return self._topic

    def matches(self, raw: RawLog) -> bool:
        return bool(raw.topics) and raw.topics[0].lower() == self._topic

    def decode(self, raw: RawLog) -> PactCreatedEvent:
        if not raw.topics:
            raise DecodeError(f"log {raw.transaction_hash}:{raw.log_index} has no topics")
        if not self.matches(raw):
            raise DecodeError(
                f"log {raw.transaction_hash}:{raw.log_index} topic {raw.topics[0]} "
                f"is not {self._signature}"
            )

        try:
            if len(raw.topics) > 1:
                word = HexBytes(raw.topics[1])
                if len(word) != 32 or any(word[:12]):
                    raise DecodeError(f"indexed address word is malformed: {raw.topics[1]}")
                address = Web3.to_checksum_address(Web3.to_hex(word[12:]))
            else:
                (address,) = abi_decode(["address"], HexBytes(raw.data))
        except (DecodingError, ValueError, TypeError) as exc:
            raise DecodeError(
                f"log {raw.transaction_hash}:{raw.log_index} payload: {exc}"
            ) from exc

        return PactCreatedEvent(
            address=address.lower(),
            transaction_hash=raw.transaction_hash,
            block_hash=raw.block_hash,
            block_number=raw.block_number,
            log_index=raw.log_index,
        )

    def decode_batch(
        self, raws: Iterable[RawLog]
    ) -> tuple[list[PactCreatedEvent], list[DecodeError]]:
        """Decode a batch, skipping (and logging) logs that fail to decode."""
        events: list[PactCreatedEvent] = []
        errors: list[DecodeError] = []
        for raw in raws:
            try:
                events.append(self.decode(raw))
            except DecodeError as exc:
                log.warning("Skipping undecodable log at block %d: %s", raw.block_number, exc)
                errors.append(exc)
        return events, errors
