"""
Pure domain layer.

This module contains movement value objects and the reconciler folds
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Time enters only through an injected Clock.
"""

from inventory_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from inventory_kernel.domain.movements import (
    ISSUANCE_KINDS,
    Borrow,
    BorrowStatus,
    Consumption,
    Loss,
    MovementKind,
    MovementRecord,
    Receipt,
    Return,
    StockKey,
)
from inventory_kernel.domain.policy import ReconcilerPolicy, StoreRetryPolicy
from inventory_kernel.domain.reconciler import (
    IssuanceDecision,
    OutstandingBorrow,
    ReceiptDecision,
    ReturnDecision,
    StockBalance,
    compute_balances,
    compute_outstanding,
    validate_issuance,
    validate_receipt,
    validate_return,
)
from inventory_kernel.domain.shelf import ShelfLayout, ShelfPosition

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ISSUANCE_KINDS",
    "Borrow",
    "BorrowStatus",
    "Consumption",
    "Loss",
    "MovementKind",
    "MovementRecord",
    "Receipt",
    "Return",
    "StockKey",
    "ReconcilerPolicy",
    "StoreRetryPolicy",
    "IssuanceDecision",
    "OutstandingBorrow",
    "ReceiptDecision",
    "ReturnDecision",
    "StockBalance",
    "compute_balances",
    "compute_outstanding",
    "validate_issuance",
    "validate_receipt",
    "validate_return",
    "ShelfLayout",
    "ShelfPosition",
]
