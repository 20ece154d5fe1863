"""HTTP routes - status, metrics, pact lookup and metadata submission (aiohttp)."""

from __future__ import annotations

import json
import logging

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from pact_indexer.api.merger import MetadataMerger
from pact_indexer.errors import ChainUnavailable, MetadataRejected

log = logging.getLogger(__name__)

MERGER_KEY = web.AppKey("merger", MetadataMerger)


def _field(body: dict, name: str) -> str:
    value = body.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MetadataRejected(f"{name} must be a string")
    return value


async def handle_status(request: web.Request) -> web.Response:
    return web.json_response({"ok": True})


async def handle_metrics(request: web.Request) -> web.Response:
    return web.Response(body=generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST})


async def handle_get_pact(request: web.Request) -> web.Response:
    address = request.query.get("address", "").strip()
    if not address:
        return web.json_response({"error": "address query parameter is required"}, status=400)

    pact = await request.app[MERGER_KEY].lookup(address)
    if pact is None:
        return web.json_response({}, status=404)
    return web.json_response(pact.to_json())


async def handle_post_pact(request: web.Request) -> web.Response:
    """Attach name/terms to a pact.

    Body: ``{name, terms, address, transactionHash, blockHash}``. The client's
    blockHash is not trusted; provenance comes from the chain only.
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return web.json_response({"error": "body must be JSON"}, status=400)
    if not isinstance(body, dict):
        return web.json_response({"error": "body must be a JSON object"}, status=400)

    try:
        pact = await request.app[MERGER_KEY].submit_metadata(
            address=_field(body, "address").strip() or None,
            name=_field(body, "name"),
            terms=_field(body, "terms"),
            transaction_hash=_field(body, "transactionHash").strip() or None,
        )
    except MetadataRejected as exc:
        return web.json_response({"error": str(exc)}, status=400)
    except ChainUnavailable as exc:
        log.warning("Metadata submission needs the chain, which is unavailable: %s", exc)
        return web.json_response({"error": "chain unavailable, retry later"}, status=503)

    return web.json_response(pact.to_json())


def create_app(merger: MetadataMerger, prefix: str = "/api") -> web.Application:
    """Build the aiohttp application with all routes under ``prefix``.

    Prometheus metrics are served at ``/metrics`` regardless of the prefix.
    """
    prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
    app = web.Application()
    app[MERGER_KEY] = merger
    app.router.add_get("/metrics", handle_metrics)
    app.router.add_get(f"{prefix}/status", handle_status)
    app.router.add_get(f"{prefix}/pact", handle_get_pact)
    app.router.add_post(f"{prefix}/pact", handle_post_pact)
    return app
