"""ORM models for the inventory kernel."""

from inventory_kernel.models.catalog import ProductModel, ShelfLayoutModel
from inventory_kernel.models.guard import LedgerGuardModel
from inventory_kernel.models.movement import MovementRecordModel

__all__ = [
    "MovementRecordModel",
    "LedgerGuardModel",
    "ProductModel",
    "ShelfLayoutModel",
]
