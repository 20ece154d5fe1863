"""API components - metadata merger and HTTP routes."""

from pact_indexer.api.merger import MetadataMerger
from pact_indexer.api.server import create_app

__all__ = ["MetadataMerger", "create_app"]
