"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejected inventory operation must tell the caller *which* constraint
failed and, where it applies, the current true value (outstanding quantity on
a borrow, on-hand balance at a location) so the user can correct the input
without re-querying.  That requires:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        reconciler.accept_issuance(...)
    except Exception as e:
        if "insufficient" in str(e):  # FRAGILE - message might change
            show_stock_warning()

Example - RIGHT way (what this module enables):
    except InsufficientStockError as e:
        show_stock_warning(balance=e.balance, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from InventoryKernelError:

    InventoryKernelError (base)
    |
    +-- MovementError
    |   +-- InvalidQuantityError
    |   +-- InvalidMovementError
    |   +-- InvalidMovementKindError
    |   +-- InvalidLocationError
    |
    +-- BorrowError
    |   +-- BorrowNotFoundError
    |   +-- ExceedsOutstandingError
    |   +-- ReasonRequiredError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |
    +-- PolicyError
    |   +-- ActorRequiredError
    |
    +-- ConcurrencyError
    |   +-- ConflictError
    |
    +-- StoreError
    |   +-- StoreUnavailableError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- CatalogError
        +-- DuplicateProductError
        +-- ShelfLayoutNotFoundError
        +-- InvalidShelfLayoutError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                  | When Raised
-------------|-----------------------|------------------------------------------
Movement     | INVALID_QUANTITY      | Quantity non-positive, non-finite, fractional
             | INVALID_MOVEMENT      | Required movement field missing/blank
             | INVALID_MOVEMENT_KIND | Issuance kind not CONSUME/BORROW
             | INVALID_LOCATION      | Zone/channel missing or outside shelf layout
-------------|-----------------------|------------------------------------------
Borrow       | BORROW_NOT_FOUND      | Borrow id not in the current snapshot
             | EXCEEDS_OUTSTANDING   | return + loss > outstanding
             | REASON_REQUIRED       | Loss reported without a reason
-------------|-----------------------|------------------------------------------
Stock        | INSUFFICIENT_STOCK    | Issuance > on-hand balance     
-------------|-----------------------|------------------------------------------
Policy       | ACTOR_REQUIRED        | No actor supplied where policy requires one
-------------|-----------------------|------------------------------------------
Concurrency  | CONFLICT              | Guard version moved since the snapshot read
-------------|-----------------------|------------------------------------------
Store        | STORE_UNAVAILABLE     | Persistence failed after retries
-------------|-----------------------|------------------------------------------
Immutability | IMMUTABILITY_VIOLATION| Mutating a write-once movement field
-------------|-----------------------|------------------------------------------
Catalog      | DUPLICATE_PRODUCT     | Normalized name already registered
             | SHELF_LAYOUT_NOT_FOUND| Zone has no shelf layout
             | INVALID_SHELF_LAYOUT  | floors / slots_per_floor not positive

===============================================================================
HANDLING PATTERNS
===============================================================================

1. BUSINESS-RULE ERRORS go back to the user for correction, never retried:
   InvalidQuantity, ExceedsOutstanding, InsufficientStock, ReasonRequired,
   ActorRequired, BorrowNotFound.

2. ConflictError is safe to retry once automatically (re-read, re-validate,
   re-commit).  LedgerReconciler does this itself.

3. StoreUnavailableError is retried with backoff by the store layer and
   surfaced only when retries are exhausted.

===============================================================================
"""

from decimal import Decimal


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"


# Movement-related exceptions


class MovementError(InventoryKernelError):
    """Base exception for malformed movement input."""

    code: str = "MOVEMENT_ERROR"


class InvalidQuantityError(MovementError):
    """Quantity is non-positive, non-finite, not a number, or fractional."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object, field: str, reason: str):
        self.quantity = str(quantity)
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field} '{quantity}': {reason}")


class InvalidMovementError(MovementError):
    """A required movement field is missing or blank."""

    code: str = "INVALID_MOVEMENT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid movement field '{field}': {reason}")


class InvalidMovementKindError(MovementError):
    """Movement kind is not allowed for the requested operation."""

    code: str = "INVALID_MOVEMENT_KIND"

    def __init__(self, kind: str, allowed: tuple[str, ...]):
        self.kind = kind
        self.allowed = allowed
        super().__init__(
            f"Movement kind '{kind}' not allowed here; expected one of {allowed}"
        )


class InvalidLocationError(MovementError):
    """Zone/channel missing or outside the zone's shelf layout."""

    code: str = "INVALID_LOCATION"

    def __init__(self, zone: str | None, channel: str | None, reason: str):
        self.zone = zone
        self.channel = channel
        self.reason = reason
        super().__init__(f"Invalid location zone={zone} channel={channel}: {reason}")


# Borrow-related exceptions


class BorrowError(InventoryKernelError):
    """Base exception for borrow/return errors."""

    code: str = "BORROW_ERROR"


class BorrowNotFoundError(BorrowError):
    """Referenced borrow does not exist in the current snapshot."""

    code: str = "BORROW_NOT_FOUND"

    def __init__(self, borrow_id: str):
        self.borrow_id = borrow_id
        super().__init__(f"Borrow not found: {borrow_id}")


class ExceedsOutstandingError(BorrowError):
    """
    Requested return + loss is larger than what remains on the borrow.

    Returned + lost never exceeds borrowed.
    """

    code: str = "EXCEEDS_OUTSTANDING"

    def __init__(self, borrow_id: str, requested: Decimal, outstanding: Decimal):
        self.borrow_id = borrow_id
        self.requested = requested
        self.outstanding = outstanding
        super().__init__(
            f"Return of {requested} exceeds outstanding {outstanding} "
            f"on borrow {borrow_id}"
        )


class ReasonRequiredError(BorrowError):
    """A loss was reported without an explanatory reason."""

    code: str = "REASON_REQUIRED"

    def __init__(self, borrow_id: str, loss_qty: str):
        self.borrow_id = borrow_id
        self.loss_qty = loss_qty
        super().__init__(
            f"Loss of {loss_qty} on borrow {borrow_id} requires a reason"
        )


# Stock-related exceptions


class StockError(InventoryKernelError):
    """Base exception for on-hand stock errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """
    Issuance larger than the on-hand balance at the location.

    Accepted issuance never drives a balance negative.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        item_name: str,
        zone: str | None,
        channel: str | None,
        requested: Decimal,
        balance: Decimal,
    ):
        self.item_name = item_name
        self.zone = zone
        self.channel = channel
        self.requested = requested
        self.balance = balance
        super().__init__(
            f"Insufficient stock for '{item_name}' at zone={zone} "
            f"channel={channel}: requested {requested}, balance {balance}"
        )


# Policy-related exceptions


class PolicyError(InventoryKernelError):
    """Base exception for configurable policy violations."""

    code: str = "POLICY_ERROR"


class ActorRequiredError(PolicyError):
    """No actor identity supplied where policy requires one."""

    code: str = "ACTOR_REQUIRED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"An actor is required for {operation}")


# Concurrency-related exceptions


class ConcurrencyError(InventoryKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictError(ConcurrencyError):
    """
    A concurrent write invalidated the snapshot used for validation.

    The caller should re-read, re-validate and retry.
    """

    code: str = "CONFLICT"

    def __init__(self, guard_key: str, expected_version: int):
        self.guard_key = guard_key
        self.expected_version = expected_version
        super().__init__(
            f"Ledger guard '{guard_key}' moved past version {expected_version}: "
            "snapshot is stale"
        )


# Store-related exceptions


class StoreError(InventoryKernelError):
    """Base exception for persistence collaborator failures."""

    code: str = "STORE_ERROR"


class StoreUnavailableError(StoreError):
    """The movement store failed a read/write after exhausting retries."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, attempts: int, detail: str):
        self.operation = operation
        self.attempts = attempts
        self.detail = detail
        super().__init__(
            f"Movement store unavailable during {operation} "
            f"after {attempts} attempt(s): {detail}"
        )


# Immutability-related exceptions


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete a write-once movement record.

    Only BORROW status may change, and only OPEN -> CLOSED.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Catalog-related exceptions


class CatalogError(InventoryKernelError):
    """Base exception for product catalog and shelf layout errors."""

    code: str = "CATALOG_ERROR"


class DuplicateProductError(CatalogError):
    """A product with the same normalized name is already registered."""

    code: str = "DUPLICATE_PRODUCT"

    def __init__(self, name: str, existing_name: str):
        self.name = name
        self.existing_name = existing_name
        super().__init__(
            f"Product '{name}' duplicates existing product '{existing_name}'"
        )


class ShelfLayoutNotFoundError(CatalogError):
    """No shelf layout is defined for the zone."""

    code: str = "SHELF_LAYOUT_NOT_FOUND"

    def __init__(self, zone: str):
        self.zone = zone
        super().__init__(f"No shelf layout defined for zone {zone}")


class InvalidShelfLayoutError(CatalogError):
    """Shelf layout dimensions are invalid."""

    code: str = "INVALID_SHELF_LAYOUT"

    def __init__(self, zone: str, reason: str):
        self.zone = zone
        self.reason = reason
        super().__init__(f"Invalid shelf layout for zone {zone}: {reason}")
