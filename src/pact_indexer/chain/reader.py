"""Web3 chain reader - head height, factory logs and block hashes over JSON-RPC."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Mapping, TypeVar

import aiohttp
from hexbytes import HexBytes
from web3 import AsyncWeb3, Web3
from web3.exceptions import BlockNotFound, TransactionNotFound, Web3Exception

from pact_indexer.errors import ChainUnavailable, RangeTooLarge
from pact_indexer.models.events import RawLog

log = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that mean "the node could not answer", as opposed to "no such block".
# JSON-RPC error responses surface as Web3RPCError, a ValueError subclass.
_TRANSPORT_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
    Web3Exception,
    ValueError,
)

# Provider messages for an eth_getLogs range the node refuses to serve
_RANGE_LIMIT_MARKERS = (
    "query returned more than",
    "too many",
    "block range",
)


def _hex(value: Any) -> str:
    """Normalize bytes/HexBytes/str to a 0x-prefixed lowercase string."""
    if isinstance(value, (bytes, bytearray, HexBytes)):
        return Web3.to_hex(value).lower()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def _int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.startswith("0x"):
        return int(value, 16)
    return int(value)


def normalize_log(entry: Mapping[str, Any]) -> RawLog:
    """Convert a web3 LogReceipt (or plain JSON-RPC dict) to a RawLog."""
    return RawLog(
        address=_hex(entry["address"]),
        topics=tuple(_hex(t) for t in entry.get("topics", [])),
        data=_hex(entry.get("data", "0x")),
        block_number=_int(entry["blockNumber"]),
        block_hash=_hex(entry["blockHash"]),
        transaction_hash=_hex(entry["transactionHash"]),
        log_index=_int(entry["logIndex"]),
    )


class Web3ChainReader:
    """Read-only chain access through web3.py's async HTTP provider.

    Every call is bounded by ``rpc_timeout``; transport failures and
    timeouts surface as ChainUnavailable so the caller can abort the tick.
    """

    def __init__(self, rpc_url: str, rpc_timeout: float = 10.0) -> None:
        self._rpc_url = rpc_url
        self._timeout = rpc_timeout
        self._w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                rpc_url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=rpc_timeout)}
            )
        )

    async def _call(self, what: str, coro: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise ChainUnavailable(f"{what}: timed out after {self._timeout}s") from exc
        except (BlockNotFound, TransactionNotFound):
            raise
        except _TRANSPORT_ERRORS as exc:
            raise ChainUnavailable(f"{what}: {exc}") from exc

    async def head_height(self) -> int:
        return await self._call("eth_blockNumber", self._w3.eth.block_number)

    async def chain_id(self) -> int:
        return await self._call("eth_chainId", self._w3.eth.chain_id)

    async def logs_in_range(
        self,
        from_block: int,
        to_block: int,
        event_topic: str,
        contract_address: str,
    ) -> list[RawLog]:
        """Fetch factory logs in the inclusive block range, in chain order."""
        params = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": Web3.to_checksum_address(contract_address),
            "topics": [event_topic],
        }
        try:
            entries = await self._call(
                f"eth_getLogs {from_block}-{to_block}", self._w3.eth.get_logs(params)
            )
        except ChainUnavailable as exc:
            message = str(exc).lower()
            if any(marker in message for marker in _RANGE_LIMIT_MARKERS):
                raise RangeTooLarge(str(exc)) from exc
            raise
        logs = [normalize_log(e) for e in entries]
        logs.sort(key=lambda entry: (entry.block_number, entry.log_index))
        log.debug("Fetched %d logs in blocks %d-%d", len(logs), from_block, to_block)
        return logs

    async def block_hash(self, block_number: int) -> str | None:
        try:
            block = await self._call(
                f"eth_getBlockByNumber {block_number}",
                self._w3.eth.get_block(block_number),
            )
        except BlockNotFound:
            return None
        block_hash = block.get("hash")
        return _hex(block_hash) if block_hash is not None else None

    async def receipt_logs(self, transaction_hash: str) -> list[RawLog] | None:
        try:
            receipt = await self._call(
                f"eth_getTransactionReceipt {transaction_hash}",
                self._w3.eth.get_transaction_receipt(transaction_hash),
            )
        except TransactionNotFound:
            return None
        return [normalize_log(e) for e in receipt["logs"]]

    async def close(self) -> None:
        """Close the provider's HTTP session."""
        try:
            await self._w3.provider.disconnect()
        except Exception as exc:
            log.debug("Provider disconnect failed: %s", exc)
