"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into an ``InventoryConfig``.
Runtime callers go through ``inventory_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown keys are rejected; a typo never silently falls back to a default.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  mapping, used as the configuration identity in the trace log.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id``  -> ``KeyError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import InventoryConfig

_FIELD_NAMES = frozenset(f.name for f in fields(InventoryConfig)) - {"checksum"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> InventoryConfig:
    """
    Parse an ``InventoryConfig`` from a dict.

    The ``inventory`` section, when present, is flattened into the top level
    so files may group keys under it.
    """
    flat = dict(data)
    section = flat.pop("inventory", None) or {}
    if not isinstance(section, dict):
        raise ValueError("'inventory' section must be a mapping")
    flat.update(section)

    unknown = sorted(set(flat) - _FIELD_NAMES)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

    return InventoryConfig(
        config_id=flat["config_id"],
        checksum=compute_checksum(flat),
        **{k: v for k, v in flat.items() if k != "config_id"},
    )


def load_config(path: Path) -> InventoryConfig:
    return parse_config(load_yaml_file(path))
