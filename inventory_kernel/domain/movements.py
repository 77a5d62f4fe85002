"""
Movement records -- the closed set of ledger facts.

Responsibility:
    Defines the five movement variants (Receipt, Consumption, Borrow, Return,
    Loss) as frozen dataclasses.  ``MovementRecord`` is the union of exactly
    these five types; each variant states its own required and optional
    fields instead of one loosely-typed row with many optional columns.

Architecture position:
    Kernel > Domain -- pure value objects, no I/O.

Invariants enforced:
    - quantity > 0 at creation (zero/negative records are invalid).
    - item_name is non-blank.
    - Receipt carries a zone and channel (required to credit a location).
    - Return and Loss reference their originating Borrow via parent_id.
    - Loss carries a non-blank reason.
    - Records are immutable; Borrow.status is the only derived field and is
      replaced, never mutated, via ``Borrow.with_status``.

Failure modes:
    - InvalidQuantityError, InvalidMovementError, InvalidLocationError,
      ReasonRequiredError raised from ``__post_init__``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar
from uuid import UUID

from inventory_kernel.domain.quantities import ZERO
from inventory_kernel.exceptions import (
    InvalidLocationError,
    InvalidMovementError,
    InvalidQuantityError,
    ReasonRequiredError,
)


class MovementKind(str, Enum):
    """Tag of a movement record.  Fixed at creation; never transitions."""

    RECEIVE = "receive"
    CONSUME = "consume"
    BORROW = "borrow"
    RETURN = "return"
    LOSS = "loss"


class BorrowStatus(str, Enum):
    """Derived status of a Borrow.  Moves only OPEN -> CLOSED."""

    OPEN = "open"
    CLOSED = "closed"


ISSUANCE_KINDS: frozenset[MovementKind] = frozenset(
    {MovementKind.CONSUME, MovementKind.BORROW}
)


@dataclass(frozen=True, slots=True)
class StockKey:
    """Balance key: (item_name, zone, channel).  item_name is case-sensitive."""

    item_name: str
    zone: str | None
    channel: str | None

    def __str__(self) -> str:
        return f"{self.item_name}|{self.zone or ''}|{self.channel or ''}"


def _require_text(value: str | None, field_name: str) -> None:
    if value is None or not str(value).strip():
        raise InvalidMovementError(field_name, "must not be blank")


@dataclass(frozen=True, kw_only=True)
class _Movement:
    """Fields shared by every movement variant."""

    kind: ClassVar[MovementKind]

    id: UUID
    item_name: str
    quantity: Decimal
    unit: str
    created_at: datetime
    actor: str | None = None
    remark: str | None = None

    def __post_init__(self) -> None:
        _require_text(self.item_name, "item_name")
        if not isinstance(self.quantity, Decimal):
            raise InvalidQuantityError(self.quantity, "quantity", "must be a Decimal")
        if not self.quantity.is_finite() or self.quantity <= ZERO:
            raise InvalidQuantityError(self.quantity, "quantity", "must be positive")

    @property
    def key(self) -> StockKey:
        return StockKey(self.item_name, self.zone, self.channel)  # type: ignore[attr-defined]


@dataclass(frozen=True, kw_only=True)
class Receipt(_Movement):
    """Stock received into a location.  Credits +quantity to its key."""

    kind: ClassVar[MovementKind] = MovementKind.RECEIVE

    zone: str
    channel: str
    images: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.zone or not str(self.zone).strip():
            raise InvalidLocationError(self.zone, self.channel, "receipt requires a zone")
        if not self.channel or not str(self.channel).strip():
            raise InvalidLocationError(self.zone, self.channel, "receipt requires a channel")


@dataclass(frozen=True, kw_only=True)
class Consumption(_Movement):
    """Stock issued for use.  Debits -quantity from its key."""

    kind: ClassVar[MovementKind] = MovementKind.CONSUME

    zone: str | None = None
    channel: str | None = None


@dataclass(frozen=True, kw_only=True)
class Borrow(_Movement):
    """
    Stock lent out.  Debits -quantity from its key until returned.

    ``status`` is derived: the reconciler is its sole writer.
    """

    kind: ClassVar[MovementKind] = MovementKind.BORROW

    zone: str | None = None
    channel: str | None = None
    status: BorrowStatus = BorrowStatus.OPEN

    def with_status(self, status: BorrowStatus) -> Borrow:
        return replace(self, status=status)


@dataclass(frozen=True, kw_only=True)
class Return(_Movement):
    """Borrowed stock given back.  Credits the originating borrow's key."""

    kind: ClassVar[MovementKind] = MovementKind.RETURN

    parent_id: UUID
    zone: str | None = None
    channel: str | None = None


@dataclass(frozen=True, kw_only=True)
class Loss(_Movement):
    """Borrowed stock written off.  Balance-neutral: already debited at borrow."""

    kind: ClassVar[MovementKind] = MovementKind.LOSS

    parent_id: UUID
    reason: str
    zone: str | None = None
    channel: str | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.reason or not self.reason.strip():
            raise ReasonRequiredError(str(self.parent_id), str(self.quantity))


MovementRecord = Receipt | Consumption | Borrow | Return | Loss

MOVEMENT_TYPES: dict[MovementKind, type[_Movement]] = {
    MovementKind.RECEIVE: Receipt,
    MovementKind.CONSUME: Consumption,
    MovementKind.BORROW: Borrow,
    MovementKind.RETURN: Return,
    MovementKind.LOSS: Loss,
}
