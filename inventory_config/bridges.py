"""
Config -> Kernel Bridges.

Functions that convert an InventoryConfig into kernel inputs.  They live in
inventory_config (the producer) because the kernel must never import
inventory_config.

Usage:
    from inventory_config.bridges import build_inventory_services

    services = build_inventory_services(get_active_config())
    services.reconciler.record_receipt("Pipe A", "A", "1", 10, "somchai")

``build_inventory_services`` is the production entrypoint: it applies
``log_level``, opens ``database_url`` and wires every service from the
same config.  The smaller builders exist for callers that manage the
engine themselves (tests, embedding).
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from inventory_config.schema import InventoryConfig
from inventory_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from inventory_kernel.db.immutability import register_immutability_listeners
from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.policy import ReconcilerPolicy, StoreRetryPolicy
from inventory_kernel.logging_config import configure_logging, get_logger
from inventory_kernel.services.catalog_service import CatalogService
from inventory_kernel.services.movement_store import MovementStore
from inventory_kernel.services.reconciler_service import LedgerReconciler
from inventory_kernel.services.shelf_layout_service import ShelfLayoutService
from inventory_kernel.services.sql_movement_store import SqlMovementStore
from inventory_kernel.services.stock_view_service import StockViewService

logger = get_logger("config.bridges")


def build_reconciler_policy(config: InventoryConfig) -> ReconcilerPolicy:
    return ReconcilerPolicy(
        require_actor=config.require_actor,
        allow_fractional_quantities=config.allow_fractional_quantities,
        enforce_shelf_layout=config.enforce_shelf_layout,
        default_unit=config.default_unit,
        conflict_retry_limit=config.conflict_retry_limit,
        max_receipt_images=config.max_receipt_images,
    )


def build_store_retry_policy(config: InventoryConfig) -> StoreRetryPolicy:
    return StoreRetryPolicy(
        attempts=config.store_retry_attempts,
        backoff_seconds=config.store_retry_backoff_seconds,
    )


def build_stock_view_service(config: InventoryConfig, store: MovementStore) -> StockViewService:
    return StockViewService(
        store,
        hide_non_positive=config.hide_non_positive_stock,
        history_page_size=config.history_page_size,
        history_max_page_size=config.history_max_page_size,
    )


def build_catalog_service(
    config: InventoryConfig,
    session_factory: sessionmaker[Session] | None = None,
) -> CatalogService:
    return CatalogService(
        session_factory, similarity_min_length=config.similarity_min_length
    )


@dataclass(frozen=True)
class InventoryServices:
    """Every service of one running inventory, wired from a single config."""

    config: InventoryConfig
    store: SqlMovementStore
    reconciler: LedgerReconciler
    stock_views: StockViewService
    shelf_layouts: ShelfLayoutService
    catalog: CatalogService


def build_inventory_services(
    config: InventoryConfig | None = None,
    clock: Clock | None = None,
) -> InventoryServices:
    """Build the services from config (single entrypoint for production).

    Logging is configured before the engine so ``log_level`` wins over the
    engine's own default ``configure_logging()`` call.  Tables are created
    if missing and the immutability listeners are registered.

    Args:
        config: Loaded configuration; ``get_active_config()`` when omitted.
        clock: Optional clock for the reconciler; default SystemClock.

    Raises:
        FileNotFoundError / ValueError: from ``get_active_config()``.
        OperationalError: the database cannot be reached to create tables.
    """
    if config is None:
        from inventory_config import get_active_config

        config = get_active_config()

    configure_logging(level=config.log_level.upper())
    init_engine_from_url(config.database_url)
    create_tables()
    register_immutability_listeners()

    session_factory = get_session_factory()
    store = SqlMovementStore(
        session_factory, retry_policy=build_store_retry_policy(config)
    )
    shelf_layouts = ShelfLayoutService(session_factory)
    services = InventoryServices(
        config=config,
        store=store,
        reconciler=LedgerReconciler(
            store,
            policy=build_reconciler_policy(config),
            clock=clock,
            shelf_layouts=shelf_layouts,
        ),
        stock_views=build_stock_view_service(config, store),
        shelf_layouts=shelf_layouts,
        catalog=build_catalog_service(config, session_factory),
    )
    logger.info(
        "inventory_services_built",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "log_level": config.log_level.upper(),
        },
    )
    return services
