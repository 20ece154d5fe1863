"""pact_indexer - chain-synchronizing indexer for factory-created pacts."""

__version__ = "0.1.0"
