"""Protocol interfaces for pact_indexer components."""

from pact_indexer.interfaces.chain import ChainReader
from pact_indexer.interfaces.store import PactStore

__all__ = ["ChainReader", "PactStore"]
