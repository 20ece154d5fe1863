"""CLI entry point for the pact indexer."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click

from pact_indexer.chain.reader import Web3ChainReader
from pact_indexer.config import load_config
from pact_indexer.daemon import run_daemon
from pact_indexer.errors import ChainUnavailable, ConfigError
from pact_indexer.models.records import SyncCursor
from pact_indexer.storage.sqlite import SQLitePactStore


def _load(ctx: click.Context):
    try:
        return load_config(ctx.obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _require_factory(cfg):
    """Exit with error if no factory address is configured."""
    if not cfg.factory_address:
        click.echo("Error: No factory contract address configured.", err=True)
        click.echo("Set PACT_INDEXER_FACTORY_ADDRESS or [chain] factory_address in config.", err=True)
        sys.exit(1)


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """pact-indexer - index factory-created pacts and serve their metadata."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _setup_logging(ctx: click.Context, level_name: str) -> None:
    if ctx.obj["verbose"]:
        level = logging.DEBUG
    else:
        level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Service ────────────────────────────────────────────


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start the indexer and HTTP API."""
    cfg = _load(ctx)
    _setup_logging(ctx, cfg.log_level)
    _require_factory(cfg)

    click.echo(f"Starting pact indexer (factory: {cfg.factory_address})")
    try:
        asyncio.run(run_daemon(cfg))
    except ChainUnavailable as exc:
        click.echo(f"Error: RPC provider unavailable: {exc}", err=True)
        sys.exit(1)


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show effective configuration."""
    cfg = _load(ctx)
    click.echo(f"RPC URL:       {cfg.rpc_url}")
    click.echo(f"Factory:       {cfg.factory_address or '(not set)'}")
    click.echo(f"Event:         {cfg.event_signature}")
    click.echo(f"Deployment:    block {cfg.deployment_block}")
    click.echo(f"Confirmations: {cfg.confirmation_depth}")
    click.echo(f"Batch size:    {cfg.max_batch_blocks} blocks")
    click.echo(f"Reorg window:  {cfg.reorg_lookback} blocks")
    click.echo(f"Poll interval: {cfg.poll_interval}s")
    click.echo(f"HTTP:          {cfg.http_host}:{cfg.http_port}{cfg.api_prefix}")
    click.echo(f"DB path:       {cfg.db_path}")


@cli.command()
@click.pass_context
def cursor(ctx: click.Context) -> None:
    """Show the persisted sync cursor."""
    cfg = _load(ctx)

    async def _cursor():
        store = SQLitePactStore(cfg.db_path)
        await store.initialize()
        try:
            current = await store.get_cursor()
            count = await store.count_pacts()
        finally:
            await store.close()

        if current is None:
            click.echo("Cursor:  (not seeded)")
        else:
            click.echo(f"Cursor:  block {current.last_scanned_block}")
            click.echo(f"Hash:    {current.last_scanned_block_hash}")
        click.echo(f"Pacts:   {count}")

    asyncio.run(_cursor())


@cli.command()
@click.argument("address")
@click.pass_context
def pact(ctx: click.Context, address: str) -> None:
    """Print one pact from the local database as JSON."""
    cfg = _load(ctx)

    async def _pact():
        store = SQLitePactStore(cfg.db_path)
        await store.initialize()
        try:
            return await store.get(address)
        finally:
            await store.close()

    found = asyncio.run(_pact())
    if found is None:
        click.echo(f"No pact recorded for {address}", err=True)
        sys.exit(1)
    click.echo(json.dumps(found.to_json(), indent=2))


# ── Operator recovery ──────────────────────────────────


@cli.command()
@click.option("--block", "height", type=int, required=True, help="Block height to resume after")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def reseed(ctx: click.Context, height: int, yes: bool) -> None:
    """Reset the cursor to a block on the canonical chain.

    Used after an unresolved reorg halts syncing. Pacts indexed above the
    block lose their provenance and are re-indexed; metadata is kept.
    Restart the service afterwards.
    """
    cfg = _load(ctx)
    _setup_logging(ctx, cfg.log_level)

    if height < 0:
        click.echo("Error: --block must be >= 0", err=True)
        sys.exit(1)

    if not yes:
        click.confirm(f"Reseed cursor to block {height}?", abort=True)

    async def _reseed():
        chain = Web3ChainReader(cfg.rpc_url, cfg.rpc_timeout)
        store = SQLitePactStore(cfg.db_path)
        await store.initialize()
        try:
            block_hash = await chain.block_hash(height)
            if block_hash is None:
                click.echo(f"Error: block {height} is unknown to the node", err=True)
                sys.exit(1)
            reset = await store.rewind_cursor(
                SyncCursor(last_scanned_block=height, last_scanned_block_hash=block_hash)
            )
        finally:
            await store.close()
            await chain.close()

        click.echo(f"Cursor reseeded to block {height} ({block_hash})")
        click.echo(f"  Pacts to re-index: {reset}")

    try:
        asyncio.run(_reseed())
    except ChainUnavailable as exc:
        click.echo(f"Error: RPC provider unavailable: {exc}", err=True)
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
