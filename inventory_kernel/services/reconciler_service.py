"""
LedgerReconciler -- accepts movements against a fresh ledger snapshot.

Responsibility:
    The imperative shell around domain/reconciler.py.  Each accept/record call
    reads a fresh snapshot from the MovementStore, validates with the pure
    domain functions, builds the new records (uuid4 ids, clock timestamps) and
    commits them together with the guard versions the snapshot observed.

Architecture position:
    Kernel > Services -- imperative shell.
    Depends on a MovementStore, a Clock and a ReconcilerPolicy, all injected.

Invariants enforced:
    - No caching: every decision re-derives balances/outstanding from a read
      made inside the same call.
    - Returns are guarded on ``borrow:<id>``; issuances on
      ``stock:<item>|<zone>|<channel>``.  A concurrent writer on the same guard
      makes the commit fail with ConflictError; the whole read-validate-commit
      cycle is then retried up to ``policy.conflict_retry_limit`` times.
    - The return record, loss record, guard advance and borrow closure commit
      atomically; a rejected or failed call writes nothing.
    - Business-rule rejections are never retried.

Failure modes:
    accept_return / accept_issuance / record_receipt never raise kernel
    exceptions: every InventoryKernelError is converted to a result with a
    ReconcileStatus, the error code, the exception and its message.
    compute_balances / compute_outstanding are plain reads and propagate
    StoreUnavailableError.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol, TypeVar
from uuid import UUID, uuid4

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.filters import MovementFilter
from inventory_kernel.domain.movements import (
    BorrowStatus,
    Loss,
    MovementKind,
    MovementRecord,
    Return,
    StockKey,
)
from inventory_kernel.domain.policy import ReconcilerPolicy
from inventory_kernel.domain.reconciler import (
    OutstandingBorrow,
    StockBalance,
    build_issuance_movement,
    build_receipt,
    build_return_movements,
    compute_balances,
    compute_outstanding,
    validate_issuance,
    validate_receipt,
    validate_return,
)
from inventory_kernel.domain.shelf import ShelfLayout
from inventory_kernel.exceptions import (
    ActorRequiredError,
    BorrowNotFoundError,
    ConflictError,
    ExceedsOutstandingError,
    InsufficientStockError,
    InvalidLocationError,
    InvalidMovementError,
    InvalidMovementKindError,
    InvalidQuantityError,
    InventoryKernelError,
    ReasonRequiredError,
    StoreUnavailableError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.movement_store import (
    MovementBatch,
    MovementStore,
    borrow_guard_key,
    stock_guard_key,
)

logger = get_logger("services.reconciler")

T = TypeVar("T")


class ReconcileStatus(str, Enum):
    """Outcome of an accept/record call."""

    ACCEPTED = "accepted"
    INVALID_QUANTITY = "invalid_quantity"
    INVALID_MOVEMENT = "invalid_movement"
    INVALID_LOCATION = "invalid_location"
    NOT_FOUND = "not_found"
    EXCEEDS_OUTSTANDING = "exceeds_outstanding"
    INSUFFICIENT_STOCK = "insufficient_stock"
    REASON_REQUIRED = "reason_required"
    ACTOR_REQUIRED = "actor_required"
    CONFLICT = "conflict"
    STORE_UNAVAILABLE = "store_unavailable"
    REJECTED = "rejected"


# Most specific first.
_STATUS_BY_ERROR: tuple[tuple[type[InventoryKernelError], ReconcileStatus], ...] = (
    (InvalidQuantityError, ReconcileStatus.INVALID_QUANTITY),
    (InvalidLocationError, ReconcileStatus.INVALID_LOCATION),
    (InvalidMovementKindError, ReconcileStatus.INVALID_MOVEMENT),
    (InvalidMovementError, ReconcileStatus.INVALID_MOVEMENT),
    (BorrowNotFoundError, ReconcileStatus.NOT_FOUND),
    (ExceedsOutstandingError, ReconcileStatus.EXCEEDS_OUTSTANDING),
    (InsufficientStockError, ReconcileStatus.INSUFFICIENT_STOCK),
    (ReasonRequiredError, ReconcileStatus.REASON_REQUIRED),
    (ActorRequiredError, ReconcileStatus.ACTOR_REQUIRED),
    (ConflictError, ReconcileStatus.CONFLICT),
    (StoreUnavailableError, ReconcileStatus.STORE_UNAVAILABLE),
)


def status_for_error(error: InventoryKernelError) -> ReconcileStatus:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return ReconcileStatus.REJECTED


@dataclass(frozen=True)
class ReturnResult:
    """
    Result of accept_return.

    On ACCEPTED, ``return_record`` and/or ``loss_record`` are set and
    ``outstanding_qty`` is what remains on the borrow.  On
    EXCEEDS_OUTSTANDING, ``outstanding_qty`` is the current outstanding.
    """

    status: ReconcileStatus
    borrow_id: UUID | None = None
    return_record: Return | None = None
    loss_record: Loss | None = None
    borrow_status: BorrowStatus | None = None
    outstanding_qty: Decimal | None = None
    error_code: str | None = None
    error: InventoryKernelError | None = None
    message: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status is ReconcileStatus.ACCEPTED

    @property
    def records(self) -> tuple[MovementRecord, ...]:
        return tuple(r for r in (self.return_record, self.loss_record) if r is not None)


@dataclass(frozen=True)
class MovementResult:
    """
    Result of accept_issuance / record_receipt.

    ``balance`` is the key's balance after an accepted issuance, or the
    current balance on INSUFFICIENT_STOCK.  Receipts leave it unset.
    """

    status: ReconcileStatus
    record: MovementRecord | None = None
    balance: Decimal | None = None
    error_code: str | None = None
    error: InventoryKernelError | None = None
    message: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status is ReconcileStatus.ACCEPTED


class ShelfLayoutLookup(Protocol):
    def get(self, zone: str) -> ShelfLayout | None: ...


class LedgerReconciler:
    """
    Validates and accepts movements against the persisted ledger.

    Contract:
        All reads go through the injected MovementStore; all timestamps come
        from the injected Clock; ids from ``id_factory`` (uuid4).

    Guarantees:
        - Returned + lost never exceeds borrowed on any borrow.
        - Accepted issuance never exceeds the key's balance at commit time.
        - A borrow is closed in the same transaction as the return/loss that
          settles it.

    Non-goals:
        - Does NOT retry StoreUnavailableError (the store already did).
        - Does NOT manage products or shelf layouts (see CatalogService,
          ShelfLayoutService); ``shelf_layouts`` is only consulted.
    """

    def __init__(
        self,
        store: MovementStore,
        policy: ReconcilerPolicy | None = None,
        clock: Clock | None = None,
        shelf_layouts: ShelfLayoutLookup | None = None,
        id_factory: Callable[[], UUID] = uuid4,
    ):
        self._store = store
        self._policy = policy or ReconcilerPolicy()
        self._clock = clock or SystemClock()
        self._shelf_layouts = shelf_layouts
        self._id_factory = id_factory

    @property
    def policy(self) -> ReconcilerPolicy:
        return self._policy

    # =========================================================================
    # Views
    # =========================================================================

    def compute_balances(self, item_name: str | None = None) -> dict[StockKey, StockBalance]:
        """Balances for every key (or every key of one item) from a fresh read."""
        movement_filter = MovementFilter(item_name=item_name) if item_name else None
        snapshot = self._store.read_snapshot(movement_filter)
        return compute_balances(snapshot.records)

    def compute_outstanding(self, open_only: bool = False) -> list[OutstandingBorrow]:
        """Borrow settlement rows, newest borrow first, from a fresh read."""
        snapshot = self._store.read_snapshot(
            MovementFilter(
                kinds=frozenset(
                    {MovementKind.BORROW, MovementKind.RETURN, MovementKind.LOSS}
                )
            )
        )
        return compute_outstanding(snapshot.records, open_only=open_only)

    # =========================================================================
    # Returns
    # =========================================================================

    def accept_return(
        self,
        borrow_id: UUID | str,
        return_qty: object,
        loss_qty: object = 0,
        actor: str | None = None,
        reason: str | None = None,
    ) -> ReturnResult:
        """
        Record a return and/or loss against a borrow.

        Validation order: NOT_FOUND, REASON_REQUIRED, INVALID_QUANTITY,
        EXCEEDS_OUTSTANDING, ACTOR_REQUIRED.
        """
        with LogContext.bind(actor=actor, borrow_id=str(borrow_id)):
            try:
                result = self._with_conflict_retry(
                    "return",
                    lambda: self._accept_return_once(borrow_id, return_qty, loss_qty, actor, reason),
                )
            except InventoryKernelError as exc:
                status = status_for_error(exc)
                logger.info(
                    "return_rejected",
                    extra={"status": status.value, "error_code": exc.code},
                )
                return ReturnResult(
                    status=status,
                    borrow_id=_as_uuid(borrow_id),
                    outstanding_qty=getattr(exc, "outstanding", None),
                    error_code=exc.code,
                    error=exc,
                    message=str(exc),
                )

            logger.info(
                "return_accepted",
                extra={
                    "return_qty": result.return_record.quantity if result.return_record else None,
                    "loss_qty": result.loss_record.quantity if result.loss_record else None,
                    "outstanding_qty": result.outstanding_qty,
                    "borrow_status": result.borrow_status.value if result.borrow_status else None,
                },
            )
            return result

    def _accept_return_once(
        self,
        borrow_id: UUID | str,
        return_qty: object,
        loss_qty: object,
        actor: str | None,
        reason: str | None,
    ) -> ReturnResult:
        target = _as_uuid(borrow_id)
        if target is None:
            raise BorrowNotFoundError(str(borrow_id))

        guard = borrow_guard_key(target)
        snapshot = self._store.read_snapshot(
            MovementFilter(borrow_id=target), guard_keys=(guard,)
        )
        decision = validate_return(
            snapshot.records, target, return_qty, loss_qty, actor, reason,
            policy=self._policy,
        )
        return_record, loss_record = build_return_movements(
            decision, created_at=self._clock.now(), id_factory=self._id_factory
        )
        self._store.commit(
            MovementBatch(
                records=tuple(r for r in (return_record, loss_record) if r is not None),
                guards={guard: snapshot.version_of(guard)},
                closed_borrows=(target,) if decision.closes_borrow else (),
            )
        )
        return ReturnResult(
            status=ReconcileStatus.ACCEPTED,
            borrow_id=target,
            return_record=return_record,
            loss_record=loss_record,
            borrow_status=BorrowStatus.CLOSED if decision.closes_borrow else BorrowStatus.OPEN,
            outstanding_qty=decision.outstanding_after,
        )

    # =========================================================================
    # Issuance
    # =========================================================================

    def accept_issuance(
        self,
        item_name: str,
        zone: str | None,
        channel: str | None,
        quantity: object,
        kind: MovementKind | str,
        actor: str | None = None,
        remark: str | None = None,
    ) -> MovementResult:
        """Issue stock as CONSUME or BORROW if the key's balance covers it."""
        with LogContext.bind(actor=actor, item_name=item_name):
            try:
                result = self._with_conflict_retry(
                    "issuance",
                    lambda: self._accept_issuance_once(
                        item_name, zone, channel, quantity, kind, actor, remark
                    ),
                )
            except InventoryKernelError as exc:
                return self._rejected_movement("issuance_rejected", exc)

            logger.info(
                "issuance_accepted",
                extra={
                    "record_id": str(result.record.id),
                    "kind": result.record.kind.value,
                    "quantity": result.record.quantity,
                    "balance_after": result.balance,
                },
            )
            return result

    def _accept_issuance_once(
        self,
        item_name: str,
        zone: str | None,
        channel: str | None,
        quantity: object,
        kind: MovementKind | str,
        actor: str | None,
        remark: str | None,
    ) -> MovementResult:
        name = item_name.strip() if isinstance(item_name, str) else item_name
        key = StockKey(name, _blank_to_none(zone), _blank_to_none(channel))
        guard = stock_guard_key(key)
        snapshot = self._store.read_snapshot(
            MovementFilter(item_name=name) if name else None, guard_keys=(guard,)
        )
        decision = validate_issuance(
            snapshot.records, item_name, zone, channel, quantity, kind, actor, remark,
            policy=self._policy,
        )
        record = build_issuance_movement(
            decision, created_at=self._clock.now(), id_factory=self._id_factory
        )
        self._store.commit(
            MovementBatch(records=(record,), guards={guard: snapshot.version_of(guard)})
        )
        return MovementResult(
            status=ReconcileStatus.ACCEPTED, record=record, balance=decision.balance_after
        )

    # =========================================================================
    # Receipts
    # =========================================================================

    def record_receipt(
        self,
        item_name: str,
        zone: str,
        channel: str,
        quantity: object,
        actor: str | None = None,
        unit: str | None = None,
        remark: str | None = None,
        images: Sequence[str] = (),
    ) -> MovementResult:
        """Record stock received into (zone, channel).  Receipts are never guarded."""
        with LogContext.bind(actor=actor, item_name=item_name):
            try:
                layout = None
                if self._policy.enforce_shelf_layout and self._shelf_layouts is not None and zone:
                    layout = self._shelf_layouts.get(str(zone).strip())
                decision = validate_receipt(
                    item_name, zone, channel, quantity, actor, unit, remark, images,
                    policy=self._policy, layout=layout,
                )
                record = build_receipt(
                    decision, created_at=self._clock.now(), id_factory=self._id_factory
                )
                self._store.commit(MovementBatch(records=(record,)))
            except InventoryKernelError as exc:
                return self._rejected_movement("receipt_rejected", exc)

            logger.info(
                "receipt_recorded",
                extra={
                    "record_id": str(record.id),
                    "quantity": record.quantity,
                    "zone": record.zone,
                    "channel": record.channel,
                },
            )
            return MovementResult(status=ReconcileStatus.ACCEPTED, record=record)

    # =========================================================================
    # Internals
    # =========================================================================

    def _with_conflict_retry(self, operation: str, attempt: Callable[[], T]) -> T:
        retries = 0
        while True:
            try:
                return attempt()
            except ConflictError as exc:
                if retries >= self._policy.conflict_retry_limit:
                    logger.warning(
                        "ledger_conflict_exhausted",
                        extra={"operation": operation, "guard_key": exc.guard_key, "retries": retries},
                    )
                    raise
                retries += 1
                logger.info(
                    "ledger_conflict_retry",
                    extra={"operation": operation, "guard_key": exc.guard_key, "retry": retries},
                )

    @staticmethod
    def _rejected_movement(event: str, exc: InventoryKernelError) -> MovementResult:
        status = status_for_error(exc)
        logger.info(event, extra={"status": status.value, "error_code": exc.code})
        return MovementResult(
            status=status,
            balance=getattr(exc, "balance", None),
            error_code=exc.code,
            error=exc,
            message=str(exc),
        )


def _as_uuid(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not str(value).strip():
        return None
    return str(value).strip()
