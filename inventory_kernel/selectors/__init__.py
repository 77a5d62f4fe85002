"""Selectors for the inventory kernel (read side)."""

from inventory_kernel.selectors.movement_selector import MovementSelector, record_from_model

__all__ = [
    "MovementSelector",
    "record_from_model",
]
