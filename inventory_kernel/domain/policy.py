"""
Kernel-side policy objects.

These are the only configuration shapes the kernel understands.  They are
built from YAML configuration by ``inventory_config.bridges``; the kernel
never imports the config package.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ReconcilerPolicy:
    """
    Business policy applied by LedgerReconciler.

    Contract:
        Immutable.  Defaults are the production defaults, so
        ``ReconcilerPolicy()`` is a valid policy for tests.
    """

    require_actor: bool = True
    allow_fractional_quantities: bool = False
    enforce_shelf_layout: bool = False
    default_unit: str = "pcs"
    conflict_retry_limit: int = 1
    max_receipt_images: int = 3

    def __post_init__(self) -> None:
        if self.conflict_retry_limit < 0:
            raise ValueError("conflict_retry_limit must be >= 0")
        if self.max_receipt_images < 0:
            raise ValueError("max_receipt_images must be >= 0")
        if not self.default_unit or not self.default_unit.strip():
            raise ValueError("default_unit must not be blank")


@dataclass(frozen=True)
class StoreRetryPolicy:
    """Retry schedule for transient persistence failures (linear backoff)."""

    attempts: int = 3
    backoff_seconds: float = 0.2

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Sleep before retry number ``attempt`` (1-based)."""
        return self.backoff_seconds * attempt
