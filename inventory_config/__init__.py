"""
inventory_config -- single public entrypoint for inventory configuration.

Responsibility:
    Provides the only way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive kernel policy objects built
    by ``inventory_config.bridges``; they never read files or environment
    variables themselves.

Architecture position:
    Configuration -- YAML-driven, validated at load time.  This package sits
    above ``inventory_kernel``.  The kernel MUST NEVER import from
    ``inventory_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Load-time validation: unknown keys and out-of-range values raise
      ``ValueError`` before a config object exists.
    - Deterministic identity: the same file always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``KeyError`` / ``ValueError`` -- schema or value validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``INVENTORY_CONFIG_TRACE`` log entry containing the config_id, version,
    checksum and source path.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from inventory_config.loader import load_config
from inventory_config.schema import InventoryConfig

_logger = logging.getLogger("inventory_kernel.config")

CONFIG_PATH_ENV = "INVENTORY_CONFIG"
DATABASE_URL_ENV = "INVENTORY_DATABASE_URL"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> InventoryConfig:
    """The only public configuration entrypoint.

    Resolution order for the file: ``config_path`` argument, then the
    ``INVENTORY_CONFIG`` environment variable, then the packaged
    ``sets/default.yaml``.  ``INVENTORY_DATABASE_URL``, when set, replaces
    ``database_url``.

    Non-goals:
        - Configs are not cached across calls.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If validation fails.
    """
    env_path = os.environ.get(CONFIG_PATH_ENV)
    path = Path(config_path or env_path or _DEFAULT_CONFIG_PATH)

    config = load_config(path)

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        config = replace(config, database_url=database_url)

    _logger.info(
        "INVENTORY_CONFIG_TRACE",
        extra={
            "trace_type": "INVENTORY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
            "database_url_overridden": bool(database_url),
        },
    )
    return config


__all__ = ["CONFIG_PATH_ENV", "DATABASE_URL_ENV", "InventoryConfig", "get_active_config"]
