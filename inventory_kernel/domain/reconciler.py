"""
Ledger reconciler -- pure folds and validators over movement records.

Responsibility:
    Derives on-hand balances and outstanding borrows from a snapshot of
    movement records, and decides whether a new return, issuance or receipt
    may be accepted against that snapshot.  Nothing here persists anything:
    validators return a Decision, ``build_*`` turns a Decision into new
    records, and the service layer commits them.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Consumed by services.reconciler_service.LedgerReconciler and
    services.stock_view_service.StockViewService.

Invariants enforced:
    - Conservation: returned + lost on a borrow never exceeds borrowed
      (``validate_return`` rejects with ExceedsOutstandingError).
    - Non-negative issuance: CONSUME/BORROW never exceed the on-hand balance
      of their key (``validate_issuance`` rejects with InsufficientStockError).
    - Closure: a borrow is CLOSED iff returned + lost == borrowed.
    - Order independence: ``compute_balances`` and ``compute_outstanding``
      return the same result for any permutation of the same records.

Balance fold:
    RECEIVE  +qty to its own key, counted in total_in
    CONSUME  -qty to its own key, counted in total_out
    BORROW   -qty to its own key, counted in total_out
    RETURN   +qty to the originating borrow's key, netted out of total_out
    LOSS     no effect (already debited when borrowed)

    Hence balance == total_in - total_out for every key.

Failure modes:
    Validators raise typed InventoryKernelError subclasses; folds never raise.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

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
from inventory_kernel.domain.policy import ReconcilerPolicy
from inventory_kernel.domain.quantities import ZERO, is_positive_quantity, parse_quantity
from inventory_kernel.domain.shelf import ShelfLayout, validate_location
from inventory_kernel.exceptions import (
    ActorRequiredError,
    BorrowNotFoundError,
    ExceedsOutstandingError,
    InsufficientStockError,
    InvalidLocationError,
    InvalidMovementError,
    InvalidMovementKindError,
    InvalidQuantityError,
    ReasonRequiredError,
)
from inventory_kernel.logging_config import get_logger

logger = get_logger("domain.reconciler")

IdFactory = Callable[[], UUID]


# =============================================================================
# Balances
# =============================================================================


@dataclass(frozen=True)
class StockBalance:
    """On-hand position of one (item_name, zone, channel) key."""

    item_name: str
    zone: str | None
    channel: str | None
    total_in: Decimal
    total_out: Decimal
    balance: Decimal
    unit: str
    last_movement_at: datetime
    last_in_at: datetime | None = None
    last_out_at: datetime | None = None

    @property
    def key(self) -> StockKey:
        return StockKey(self.item_name, self.zone, self.channel)


class _BalanceAccumulator:
    __slots__ = (
        "key", "total_in", "total_out", "unit", "_unit_rank",
        "last_movement_at", "last_in_at", "last_out_at",
    )

    def __init__(self, key: StockKey):
        self.key = key
        self.total_in = ZERO
        self.total_out = ZERO
        self.unit = ""
        self._unit_rank: tuple[datetime, str] | None = None
        self.last_movement_at: datetime | None = None
        self.last_in_at: datetime | None = None
        self.last_out_at: datetime | None = None

    def touch(self, record: MovementRecord) -> None:
        rank = (record.created_at, str(record.id))
        if self._unit_rank is None or rank > self._unit_rank:
            self._unit_rank = rank
            self.unit = record.unit
        self.last_movement_at = _latest(self.last_movement_at, record.created_at)

    def freeze(self) -> StockBalance:
        assert self.last_movement_at is not None
        return StockBalance(
            item_name=self.key.item_name,
            zone=self.key.zone,
            channel=self.key.channel,
            total_in=self.total_in,
            total_out=self.total_out,
            balance=self.total_in - self.total_out,
            unit=self.unit,
            last_movement_at=self.last_movement_at,
            last_in_at=self.last_in_at,
            last_out_at=self.last_out_at,
        )


def _latest(current: datetime | None, candidate: datetime) -> datetime:
    return candidate if current is None or candidate > current else current


def _index_borrows(records: Sequence[MovementRecord]) -> dict[UUID, Borrow]:
    return {r.id: r for r in records if isinstance(r, Borrow)}


def compute_balances(records: Iterable[MovementRecord]) -> dict[StockKey, StockBalance]:
    """
    Fold a snapshot into per-key balances.

    Postconditions:
        - Every key touched by a RECEIVE, CONSUME, BORROW or RETURN appears,
          including keys whose balance is zero or negative.
        - A RETURN whose borrow is absent from the snapshot credits its own key.
        - ``unit`` is the unit of the latest contributing record
          (created_at, then id), so the result is order-independent.
    """
    snapshot = list(records)
    borrows = _index_borrows(snapshot)
    accumulators: dict[StockKey, _BalanceAccumulator] = {}

    for record in snapshot:
        if isinstance(record, Loss):
            continue

        if isinstance(record, Return):
            parent = borrows.get(record.parent_id)
            key = parent.key if parent is not None else record.key
        else:
            key = record.key

        acc = accumulators.get(key)
        if acc is None:
            acc = accumulators[key] = _BalanceAccumulator(key)
        acc.touch(record)

        if isinstance(record, Receipt):
            acc.total_in += record.quantity
            acc.last_in_at = _latest(acc.last_in_at, record.created_at)
        elif isinstance(record, Return):
            acc.total_out -= record.quantity
        else:
            acc.total_out += record.quantity
            acc.last_out_at = _latest(acc.last_out_at, record.created_at)

    return {key: acc.freeze() for key, acc in accumulators.items()}


def balance_of(records: Iterable[MovementRecord], key: StockKey) -> Decimal:
    """Current balance for one key (zero if the key has never moved)."""
    row = compute_balances(records).get(key)
    return row.balance if row is not None else ZERO


# =============================================================================
# Outstanding borrows
# =============================================================================


@dataclass(frozen=True)
class OutstandingBorrow:
    """
    Settlement state of one borrow.

    ``outstanding_qty`` is never negative.  When returns and losses exceed
    the borrowed quantity the excess is reported in ``over_settled_qty`` and
    the row is flagged ``is_anomalous``.
    """

    borrow_id: UUID
    item_name: str
    zone: str | None
    channel: str | None
    unit: str
    borrowed_qty: Decimal
    returned_qty: Decimal
    lost_qty: Decimal
    outstanding_qty: Decimal
    status: BorrowStatus
    created_at: datetime
    actor: str | None = None
    remark: str | None = None
    over_settled_qty: Decimal = ZERO

    @property
    def is_anomalous(self) -> bool:
        return self.over_settled_qty > ZERO

    @property
    def is_open(self) -> bool:
        return self.status is BorrowStatus.OPEN


def compute_outstanding(
    records: Iterable[MovementRecord],
    *,
    open_only: bool = False,
) -> list[OutstandingBorrow]:
    """
    Settlement rows for every BORROW in the snapshot, newest first.

    RETURN/LOSS records whose borrow is not in the snapshot are ignored
    (and logged).  ``status`` is derived here from the quantities; the
    stored status on the Borrow record is not consulted.
    """
    snapshot = list(records)
    borrows = _index_borrows(snapshot)
    returned: dict[UUID, Decimal] = {}
    lost: dict[UUID, Decimal] = {}

    for record in snapshot:
        if not isinstance(record, (Return, Loss)):
            continue
        if record.parent_id not in borrows:
            logger.warning(
                "orphan_movement_ignored",
                extra={
                    "movement_id": str(record.id),
                    "kind": record.kind.value,
                    "parent_id": str(record.parent_id),
                },
            )
            continue
        totals = returned if isinstance(record, Return) else lost
        totals[record.parent_id] = totals.get(record.parent_id, ZERO) + record.quantity

    rows: list[OutstandingBorrow] = []
    for borrow in borrows.values():
        returned_qty = returned.get(borrow.id, ZERO)
        lost_qty = lost.get(borrow.id, ZERO)
        remaining = borrow.quantity - returned_qty - lost_qty

        over_settled = ZERO
        if remaining < ZERO:
            over_settled = -remaining
            remaining = ZERO
            logger.warning(
                "borrow_over_settled",
                extra={
                    "borrow_id": str(borrow.id),
                    "borrowed_qty": borrow.quantity,
                    "returned_qty": returned_qty,
                    "lost_qty": lost_qty,
                    "over_settled_qty": over_settled,
                },
            )

        status = BorrowStatus.CLOSED if remaining == ZERO else BorrowStatus.OPEN
        if open_only and status is BorrowStatus.CLOSED:
            continue

        rows.append(
            OutstandingBorrow(
                borrow_id=borrow.id,
                item_name=borrow.item_name,
                zone=borrow.zone,
                channel=borrow.channel,
                unit=borrow.unit,
                borrowed_qty=borrow.quantity,
                returned_qty=returned_qty,
                lost_qty=lost_qty,
                outstanding_qty=remaining,
                status=status,
                created_at=borrow.created_at,
                actor=borrow.actor,
                remark=borrow.remark,
                over_settled_qty=over_settled,
            )
        )

    rows.sort(key=lambda row: (row.created_at, str(row.borrow_id)), reverse=True)
    return rows


def outstanding_for(
    records: Iterable[MovementRecord], borrow_id: UUID
) -> OutstandingBorrow | None:
    for row in compute_outstanding(records):
        if row.borrow_id == borrow_id:
            return row
    return None


# =============================================================================
# Shared input checks
# =============================================================================


def _has_text(value: str | None) -> bool:
    return value is not None and bool(str(value).strip())


def _optional_text(value: str | None) -> str | None:
    return str(value).strip() if _has_text(value) else None


# Column widths of movement_records.
MAX_ITEM_NAME_LENGTH = 255
MAX_LOCATION_LENGTH = 50
MAX_UNIT_LENGTH = 50
MAX_ACTOR_LENGTH = 255


def _check_length(field: str, value: str | None, limit: int) -> str | None:
    if value is not None and len(value) > limit:
        raise InvalidMovementError(field, f"at most {limit} characters")
    return value


def _require_item_name(item_name: str | None) -> str:
    if not _has_text(item_name):
        raise InvalidMovementError("item_name", "must not be blank")
    name = str(item_name).strip()
    _check_length("item_name", name, MAX_ITEM_NAME_LENGTH)
    return name


def _require_actor(actor: str | None, operation: str, policy: ReconcilerPolicy) -> str | None:
    if policy.require_actor and not _has_text(actor):
        raise ActorRequiredError(operation)
    return _check_length("actor", _optional_text(actor), MAX_ACTOR_LENGTH)


def _coerce_borrow_id(borrow_id: UUID | str) -> UUID:
    if isinstance(borrow_id, UUID):
        return borrow_id
    try:
        return UUID(str(borrow_id))
    except ValueError:
        raise BorrowNotFoundError(str(borrow_id)) from None


def _coerce_issuance_kind(kind: MovementKind | str) -> MovementKind:
    allowed = tuple(sorted(k.value for k in ISSUANCE_KINDS))
    try:
        resolved = kind if isinstance(kind, MovementKind) else MovementKind(str(kind).lower())
    except ValueError:
        raise InvalidMovementKindError(str(kind), allowed) from None
    if resolved not in ISSUANCE_KINDS:
        raise InvalidMovementKindError(resolved.value, allowed)
    return resolved


# =============================================================================
# Returns
# =============================================================================


@dataclass(frozen=True)
class ReturnDecision:
    """An accepted return/loss against one borrow, not yet materialized."""

    borrow: Borrow
    return_qty: Decimal
    loss_qty: Decimal
    outstanding_before: Decimal
    actor: str | None = None
    reason: str | None = None

    @property
    def requested(self) -> Decimal:
        return self.return_qty + self.loss_qty

    @property
    def outstanding_after(self) -> Decimal:
        return self.outstanding_before - self.requested

    @property
    def closes_borrow(self) -> bool:
        return self.outstanding_after == ZERO


def validate_return(
    records: Iterable[MovementRecord],
    borrow_id: UUID | str,
    return_qty: object,
    loss_qty: object,
    actor: str | None = None,
    reason: str | None = None,
    *,
    policy: ReconcilerPolicy,
) -> ReturnDecision:
    """
    Decide whether a return/loss may be recorded against ``borrow_id``.

    Checks run in this order; the first failure is raised:
        1. BorrowNotFoundError    -- no BORROW with that id in the snapshot
        2. ReasonRequiredError    -- loss > 0 with a blank reason
        3. InvalidQuantityError   -- negative, non-numeric, or both zero
        4. ExceedsOutstandingError -- return + loss > outstanding
        5. ActorRequiredError     -- policy requires an actor and none given

    The reason check precedes the quantity checks so a missing reason is
    reported whatever quantities accompany it.
    """
    snapshot = list(records)
    target_id = _coerce_borrow_id(borrow_id)
    borrow = next(
        (r for r in snapshot if isinstance(r, Borrow) and r.id == target_id), None
    )
    if borrow is None:
        raise BorrowNotFoundError(str(target_id))

    if is_positive_quantity(loss_qty) and not _has_text(reason):
        raise ReasonRequiredError(str(borrow.id), str(loss_qty))

    fractional = policy.allow_fractional_quantities
    ret = parse_quantity(
        return_qty, field="return_qty", allow_zero=True, allow_fractional=fractional
    )
    loss = parse_quantity(
        loss_qty, field="loss_qty", allow_zero=True, allow_fractional=fractional
    )
    if ret == ZERO and loss == ZERO:
        raise InvalidQuantityError(
            ZERO, "return_qty", "return and loss must not both be zero"
        )

    row = outstanding_for(snapshot, borrow.id)
    outstanding = row.outstanding_qty if row is not None else ZERO
    if ret + loss > outstanding:
        raise ExceedsOutstandingError(str(borrow.id), ret + loss, outstanding)

    actor_name = _require_actor(actor, "return", policy)

    return ReturnDecision(
        borrow=borrow,
        return_qty=ret,
        loss_qty=loss,
        outstanding_before=outstanding,
        actor=actor_name,
        reason=_optional_text(reason),
    )


def build_return_movements(
    decision: ReturnDecision,
    *,
    created_at: datetime,
    id_factory: IdFactory = uuid4,
) -> tuple[Return | None, Loss | None]:
    """Materialize a ReturnDecision; location and unit are copied from the borrow."""
    borrow = decision.borrow
    return_record: Return | None = None
    loss_record: Loss | None = None

    if decision.return_qty > ZERO:
        return_record = Return(
            id=id_factory(),
            item_name=borrow.item_name,
            quantity=decision.return_qty,
            unit=borrow.unit,
            zone=borrow.zone,
            channel=borrow.channel,
            parent_id=borrow.id,
            actor=decision.actor,
            created_at=created_at,
        )
    if decision.loss_qty > ZERO:
        assert decision.reason is not None
        loss_record = Loss(
            id=id_factory(),
            item_name=borrow.item_name,
            quantity=decision.loss_qty,
            unit=borrow.unit,
            zone=borrow.zone,
            channel=borrow.channel,
            parent_id=borrow.id,
            reason=decision.reason,
            actor=decision.actor,
            created_at=created_at,
        )
    return return_record, loss_record


# =============================================================================
# Issuance
# =============================================================================


@dataclass(frozen=True)
class IssuanceDecision:
    """An accepted CONSUME or BORROW, not yet materialized."""

    kind: MovementKind
    key: StockKey
    quantity: Decimal
    balance_before: Decimal
    unit: str
    actor: str | None = None
    remark: str | None = None

    @property
    def balance_after(self) -> Decimal:
        return self.balance_before - self.quantity


def validate_issuance(
    records: Iterable[MovementRecord],
    item_name: str,
    zone: str | None,
    channel: str | None,
    quantity: object,
    kind: MovementKind | str,
    actor: str | None = None,
    remark: str | None = None,
    *,
    policy: ReconcilerPolicy,
) -> IssuanceDecision:
    """
    Decide whether ``quantity`` may be issued from (item_name, zone, channel).

    Order: item name, zone/channel width, kind, InvalidQuantityError,
    InsufficientStockError (carrying the current balance), ActorRequiredError.
    """
    name = _require_item_name(item_name)
    zone_name = _check_length("zone", _optional_text(zone), MAX_LOCATION_LENGTH)
    channel_name = _check_length("channel", _optional_text(channel), MAX_LOCATION_LENGTH)
    resolved_kind = _coerce_issuance_kind(kind)
    qty = parse_quantity(
        quantity, allow_fractional=policy.allow_fractional_quantities
    )

    key = StockKey(name, zone_name, channel_name)
    row = compute_balances(records).get(key)
    balance = row.balance if row is not None else ZERO
    if qty > balance:
        raise InsufficientStockError(name, key.zone, key.channel, qty, balance)

    actor_name = _require_actor(actor, resolved_kind.value, policy)

    return IssuanceDecision(
        kind=resolved_kind,
        key=key,
        quantity=qty,
        balance_before=balance,
        unit=row.unit if row is not None and row.unit else policy.default_unit,
        actor=actor_name,
        remark=_optional_text(remark),
    )


def build_issuance_movement(
    decision: IssuanceDecision,
    *,
    created_at: datetime,
    id_factory: IdFactory = uuid4,
) -> Consumption | Borrow:
    fields = dict(
        id=id_factory(),
        item_name=decision.key.item_name,
        quantity=decision.quantity,
        unit=decision.unit,
        zone=decision.key.zone,
        channel=decision.key.channel,
        actor=decision.actor,
        remark=decision.remark,
        created_at=created_at,
    )
    if decision.kind is MovementKind.BORROW:
        return Borrow(status=BorrowStatus.OPEN, **fields)
    return Consumption(**fields)


# =============================================================================
# Receipts
# =============================================================================


@dataclass(frozen=True)
class ReceiptDecision:
    """An accepted RECEIVE, not yet materialized."""

    key: StockKey
    quantity: Decimal
    unit: str
    actor: str | None = None
    remark: str | None = None
    images: tuple[str, ...] = ()


def validate_receipt(
    item_name: str,
    zone: str,
    channel: str,
    quantity: object,
    actor: str | None = None,
    unit: str | None = None,
    remark: str | None = None,
    images: Sequence[str] = (),
    *,
    policy: ReconcilerPolicy,
    layout: ShelfLayout | None = None,
) -> ReceiptDecision:
    """
    Decide whether a receipt may be recorded.

    Receipts need no snapshot: they only ever add stock.  Order: item name,
    zone/channel presence and width, quantity, unit width, image count, shelf layout (when the
    policy enforces it), actor.
    """
    name = _require_item_name(item_name)
    if not _has_text(zone):
        raise InvalidLocationError(zone, channel, "receipt requires a zone")
    if not _has_text(channel):
        raise InvalidLocationError(zone, channel, "receipt requires a channel")
    zone_name = _check_length("zone", str(zone).strip(), MAX_LOCATION_LENGTH)
    channel_name = _check_length("channel", str(channel).strip(), MAX_LOCATION_LENGTH)

    qty = parse_quantity(quantity, allow_fractional=policy.allow_fractional_quantities)
    unit_name = _check_length(
        "unit", _optional_text(unit) or policy.default_unit, MAX_UNIT_LENGTH
    )

    image_refs = tuple(img for img in images if _has_text(img))
    if len(image_refs) > policy.max_receipt_images:
        raise InvalidMovementError(
            "images", f"at most {policy.max_receipt_images} images per receipt"
        )

    if policy.enforce_shelf_layout:
        validate_location(zone_name, channel_name, layout)

    actor_name = _require_actor(actor, "receive", policy)

    return ReceiptDecision(
        key=StockKey(name, zone_name, channel_name),
        quantity=qty,
        unit=unit_name,
        actor=actor_name,
        remark=_optional_text(remark),
        images=image_refs,
    )


def build_receipt(
    decision: ReceiptDecision,
    *,
    created_at: datetime,
    id_factory: IdFactory = uuid4,
) -> Receipt:
    assert decision.key.zone is not None and decision.key.channel is not None
    return Receipt(
        id=id_factory(),
        item_name=decision.key.item_name,
        quantity=decision.quantity,
        unit=decision.unit,
        zone=decision.key.zone,
        channel=decision.key.channel,
        images=decision.images,
        actor=decision.actor,
        remark=decision.remark,
        created_at=created_at,
    )
