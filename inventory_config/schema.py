"""
InventoryConfig schema.

The parsed, validated form of a configuration YAML file.  The loader builds
it; the bridges translate it into kernel policy objects.
"""

from __future__ import annotations

from dataclasses import dataclass

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class InventoryConfig:
    """
    One configuration set.

    Contract:
        Frozen.  ``__post_init__`` rejects out-of-range values with
        ``ValueError`` so an invalid file never yields a config object.
    """

    config_id: str
    version: int = 1
    database_url: str = "sqlite:///inventory.db"
    log_level: str = "INFO"
    default_unit: str = "pcs"
    require_actor: bool = True
    allow_fractional_quantities: bool = False
    enforce_shelf_layout: bool = False
    conflict_retry_limit: int = 1
    store_retry_attempts: int = 3
    store_retry_backoff_seconds: float = 0.2
    history_page_size: int = 20
    history_max_page_size: int = 1000
    similarity_min_length: int = 2
    hide_non_positive_stock: bool = True
    max_receipt_images: int = 3
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.config_id or not self.config_id.strip():
            raise ValueError("config_id must not be blank")
        if self.version < 1:
            raise ValueError(f"version must be >= 1, got {self.version}")
        if not self.database_url or not self.database_url.strip():
            raise ValueError("database_url must not be blank")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {self.log_level!r}")
        if not self.default_unit or not self.default_unit.strip():
            raise ValueError("default_unit must not be blank")
        if self.conflict_retry_limit < 0:
            raise ValueError("conflict_retry_limit must be >= 0")
        if self.store_retry_attempts < 1:
            raise ValueError("store_retry_attempts must be >= 1")
        if self.store_retry_backoff_seconds < 0:
            raise ValueError("store_retry_backoff_seconds must be >= 0")
        if self.history_page_size < 1:
            raise ValueError("history_page_size must be >= 1")
        if self.history_max_page_size < self.history_page_size:
            raise ValueError("history_max_page_size must be >= history_page_size")
        if self.similarity_min_length < 1:
            raise ValueError("similarity_min_length must be >= 1")
        if self.max_receipt_images < 0:
            raise ValueError("max_receipt_images must be >= 0")
