"""
emporium.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for **infrastructure-only** settings: redemption
retry budget, catalog cache sizing, and boost defaults.  Secrets
(``DATABASE_URL``, ``JWT_SECRET``) come from the environment via ``.env``.

Usage::

    from emporium.config import load_config

    cfg = load_config()                # reads ./config.yaml by default
    print(cfg.max_conflict_retries)    # 3
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from emporium.constants import (
    DEFAULT_BOOST_MINUTES,
    DEFAULT_BOOST_MULTIPLIER,
    DEFAULT_MAX_CONFLICT_RETRIES,
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class EmporiumConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str = "Emporium"

    # Dashboard
    dashboard_port: int = 8000

    # Bounded retry budget for CONCURRENT_CONFLICT
    max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES

    # Read-path catalog cache
    catalog_cache_ttl_seconds: float = 30.0
    catalog_cache_maxsize: int = 256

    # Fallbacks for BOOST rewards missing their parameters
    default_boost_minutes: int = DEFAULT_BOOST_MINUTES
    default_boost_multiplier: float = DEFAULT_BOOST_MULTIPLIER

    history_page_size: int = 50


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path | None = None) -> EmporiumConfig:
    """Read *path* and return an :class:`EmporiumConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to the
        ``EMPORIUM_CONFIG`` environment variable, then ``config.yaml`` in
        the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a numeric setting is out of range.
    """
    config_path = Path(path or os.getenv("EMPORIUM_CONFIG", "config.yaml"))
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = EmporiumConfig()
    cfg = EmporiumConfig(
        community_name=str(raw.get("community_name", defaults.community_name)),
        dashboard_port=int(raw.get("dashboard_port", defaults.dashboard_port)),
        max_conflict_retries=int(
            raw.get("max_conflict_retries", defaults.max_conflict_retries)
        ),
        catalog_cache_ttl_seconds=float(
            raw.get("catalog_cache_ttl_seconds", defaults.catalog_cache_ttl_seconds)
        ),
        catalog_cache_maxsize=int(
            raw.get("catalog_cache_maxsize", defaults.catalog_cache_maxsize)
        ),
        default_boost_minutes=int(
            raw.get("default_boost_minutes", defaults.default_boost_minutes)
        ),
        default_boost_multiplier=float(
            raw.get("default_boost_multiplier", defaults.default_boost_multiplier)
        ),
        history_page_size=int(raw.get("history_page_size", defaults.history_page_size)),
    )

    if cfg.max_conflict_retries < 1:
        raise ValueError("max_conflict_retries must be at least 1")
    if cfg.catalog_cache_maxsize < 1 or cfg.catalog_cache_ttl_seconds <= 0:
        raise ValueError("catalog cache needs a positive maxsize and TTL")
    return cfg
