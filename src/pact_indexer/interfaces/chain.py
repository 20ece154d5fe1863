"""ChainReader protocol - read-only access to the external chain client."""

from __future__ import annotations

from typing import Protocol

from pact_indexer.models.events import RawLog


class ChainReader(Protocol):
    """Read-only adapter over a chain RPC endpoint.

    Every method raises ChainUnavailable on connection errors and timeouts.
    """

    async def head_height(self) -> int:
        """Current best-known chain height."""
        ...

    async def logs_in_range(
        self,
        from_block: int,
        to_block: int,
        event_topic: str,
        contract_address: str,
    ) -> list[RawLog]:
        """Logs in the inclusive range, ordered by (block_number, log_index).

        Raises RangeTooLarge when the node refuses the range as too wide.
        """
        ...

    async def block_hash(self, block_number: int) -> str | None:
        """Canonical hash at a height, or None if pruned/unknown."""
        ...

    async def receipt_logs(self, transaction_hash: str) -> list[RawLog] | None:
        """Logs emitted by a mined transaction, or None if the receipt is unknown."""
        ...

    async def chain_id(self) -> int:
        ...

    async def close(self) -> None:
        ...
