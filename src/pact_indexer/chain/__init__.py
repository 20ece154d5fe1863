"""Chain access: RPC reader and factory event decoder."""

from pact_indexer.chain.decoder import PactEventDecoder, event_topic
from pact_indexer.chain.reader import Web3ChainReader, normalize_log

__all__ = ["PactEventDecoder", "event_topic", "Web3ChainReader", "normalize_log"]
