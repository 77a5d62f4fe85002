"""Services for the inventory kernel (imperative shell over the pure domain)."""

from inventory_kernel.services.catalog_service import CatalogService, ProductInfo
from inventory_kernel.services.memory_movement_store import InMemoryMovementStore
from inventory_kernel.services.movement_store import (
    LedgerSnapshot,
    MovementBatch,
    MovementStore,
    borrow_guard_key,
    stock_guard_key,
)
from inventory_kernel.services.reconciler_service import (
    LedgerReconciler,
    MovementResult,
    ReconcileStatus,
    ReturnResult,
)
from inventory_kernel.services.shelf_layout_service import ShelfLayoutService
from inventory_kernel.services.sql_movement_store import SqlMovementStore
from inventory_kernel.services.stock_view_service import (
    ProductLocation,
    ProductLocations,
    StockSummaryRow,
    StockViewService,
)

__all__ = [
    "CatalogService",
    "InMemoryMovementStore",
    "LedgerReconciler",
    "LedgerSnapshot",
    "MovementBatch",
    "MovementResult",
    "MovementStore",
    "ProductInfo",
    "ProductLocation",
    "ProductLocations",
    "ReconcileStatus",
    "ReturnResult",
    "ShelfLayoutService",
    "SqlMovementStore",
    "StockSummaryRow",
    "StockViewService",
    "borrow_guard_key",
    "stock_guard_key",
]
