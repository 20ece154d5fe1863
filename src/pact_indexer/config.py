"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Callable

from web3 import Web3

from pact_indexer.errors import ConfigError
from pact_indexer.models.config import IndexerConfig


def _int(value: Any) -> int:
    """int() that refuses booleans and fractional numbers."""
    if isinstance(value, bool):
        raise TypeError("expected an integer, got a boolean")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError("expected an integer")
    return int(value)


def _float(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("expected a number, got a boolean")
    return float(value)


def _coerce(section: str, key: str, value: Any, kind: Callable[[Any], Any]) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"[{section}] {key}: invalid value {value!r}") from exc


def _apply(cfg: IndexerConfig, raw: dict, section: str, fields: dict[str, tuple[str, Callable]]) -> None:
    values = raw.get(section, {})
    if not isinstance(values, dict):
        raise ConfigError(f"[{section}] must be a table")
    for key, (attr, kind) in fields.items():
        if key in values:
            setattr(cfg, attr, _coerce(section, key, values[key], kind))


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "PACT_INDEXER_",
) -> IndexerConfig:
    """Load service configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (PACT_INDEXER_RPC_URL, etc.)
        2. TOML config file
        3. Defaults from IndexerConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            try:
                with open(p, "rb") as f:
                    raw = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigError(f"{p}: {exc}") from exc

    cfg = IndexerConfig()

    # ── Indexer section ────────────────────────────────────
    _apply(cfg, raw, "indexer", {
        "poll_interval": ("poll_interval", _float),
        "error_backoff": ("error_backoff", _float),
        "confirmation_depth": ("confirmation_depth", _int),
        "max_batch_blocks": ("max_batch_blocks", _int),
        "deployment_block": ("deployment_block", _int),
        "reorg_lookback": ("reorg_lookback", _int),
        "log_level": ("log_level", str),
    })

    # ── Chain section ──────────────────────────────────────
    _apply(cfg, raw, "chain", {
        "rpc_url": ("rpc_url", str),
        "factory_address": ("factory_address", str),
        "event_signature": ("event_signature", str),
        "rpc_timeout": ("rpc_timeout", _float),
        "startup_timeout": ("startup_timeout", _float),
    })

    # ── Storage section ────────────────────────────────────
    _apply(cfg, raw, "storage", {"db_path": ("db_path", str)})

    # ── API section ────────────────────────────────────────
    _apply(cfg, raw, "api", {
        "host": ("http_host", str),
        "port": ("http_port", _int),
        "prefix": ("api_prefix", str),
    })

    # ── Environment variable overrides (highest priority) ──
    env_fields: dict[str, tuple[str, Callable]] = {
        "RPC_URL": ("rpc_url", str),
        "FACTORY_ADDRESS": ("factory_address", str),
        "DB_PATH": ("db_path", str),
        "HTTP_PORT": ("http_port", _int),
        "POLL_INTERVAL": ("poll_interval", _float),
        "CONFIRMATION_DEPTH": ("confirmation_depth", _int),
        "DEPLOYMENT_BLOCK": ("deployment_block", _int),
        "LOG_LEVEL": ("log_level", str),
    }
    for name, (attr, kind) in env_fields.items():
        if value := os.environ.get(f"{env_prefix}{name}"):
            setattr(cfg, attr, _coerce("env", f"{env_prefix}{name}", value, kind))

    _validate(cfg)

    # Expand ~ in paths
    if cfg.db_path != ":memory:":
        cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg


def _validate(cfg: IndexerConfig) -> None:
    if cfg.confirmation_depth < 0:
        raise ConfigError("confirmation_depth must be >= 0")
    if cfg.max_batch_blocks < 1:
        raise ConfigError("max_batch_blocks must be >= 1")
    if cfg.deployment_block < 0:
        raise ConfigError("deployment_block must be >= 0")
    if cfg.reorg_lookback < 1:
        raise ConfigError("reorg_lookback must be >= 1")
    if cfg.poll_interval <= 0 or cfg.rpc_timeout <= 0:
        raise ConfigError("poll_interval and rpc_timeout must be positive")
    if cfg.factory_address and not Web3.is_address(cfg.factory_address):
        raise ConfigError(f"factory_address is not a valid address: {cfg.factory_address!r}")
