"""
MovementStore -- the persistence collaborator of the reconciler.

Responsibility:
    Defines the read/write contract the reconciler depends on, plus the
    snapshot and batch value objects that carry optimistic-concurrency
    guard versions between a read and the matching commit.

Architecture position:
    Kernel > Services -- interface only.  Implemented by
    SqlMovementStore (SQLAlchemy) and InMemoryMovementStore.

Invariants enforced:
    - ``read_snapshot`` reads guard versions BEFORE records, so a snapshot
      can only be older than its versions claim, never newer.
    - ``commit`` is all-or-nothing: every guard in the batch must still be at
      its expected version (else ConflictError, nothing written); then every
      guard is advanced, the records are inserted and the borrow status
      updates applied in one transaction.
    - Records with quantity <= 0 are rejected.
    - Borrow status only moves OPEN -> CLOSED.

Guard keys:
    borrow:<uuid>                    returns/losses against one borrow
    stock:<item>|<zone>|<channel>    issuances from one location
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from uuid import UUID

from inventory_kernel.domain.filters import HistoryPage, MovementFilter, clamp_page
from inventory_kernel.domain.movements import (
    Borrow,
    BorrowStatus,
    MovementKind,
    MovementRecord,
    StockKey,
)
from inventory_kernel.domain.quantities import is_positive_quantity
from inventory_kernel.exceptions import (
    BorrowNotFoundError,
    ImmutabilityViolationError,
    InvalidQuantityError,
)


def borrow_guard_key(borrow_id: UUID) -> str:
    return f"borrow:{borrow_id}"


def stock_guard_key(key: StockKey) -> str:
    return f"stock:{key}"


@dataclass(frozen=True)
class LedgerSnapshot:
    """Records matching a filter plus the guard versions observed before reading them."""

    records: tuple[MovementRecord, ...]
    guard_versions: Mapping[str, int] = field(default_factory=dict)

    def version_of(self, guard_key: str) -> int:
        return self.guard_versions.get(guard_key, 0)


@dataclass(frozen=True)
class MovementBatch:
    """
    One atomic write.

    ``guards`` maps guard key -> version expected at commit time (as read in
    the snapshot).  ``closed_borrows`` lists borrows whose status becomes
    CLOSED in the same transaction.
    """

    records: tuple[MovementRecord, ...] = ()
    guards: Mapping[str, int] = field(default_factory=dict)
    closed_borrows: tuple[UUID, ...] = ()


def check_record_quantities(records: Iterable[MovementRecord]) -> None:
    for record in records:
        if not is_positive_quantity(record.quantity):
            raise InvalidQuantityError(record.quantity, "quantity", "must be positive")


class MovementStore(ABC):
    """
    Abstract persistence collaborator.

    Contract:
        Implementations persist records exactly as given (id and created_at
        are assigned by the caller) and honor the batch guards atomically.
    """

    @abstractmethod
    def read_snapshot(
        self,
        movement_filter: MovementFilter | None = None,
        guard_keys: Iterable[str] = (),
    ) -> LedgerSnapshot:
        """Guard versions for ``guard_keys`` (0 if absent), then matching records."""

    @abstractmethod
    def commit(self, batch: MovementBatch) -> None:
        """
        Apply ``batch`` atomically.

        Raises:
            ConflictError: a guard moved since it was read.
            InvalidQuantityError: a record has quantity <= 0.
            BorrowNotFoundError: a closed borrow id does not name a BORROW.
            StoreUnavailableError: persistence failed after retries.
        """

    def fetch_movement_records(
        self, movement_filter: MovementFilter | None = None
    ) -> list[MovementRecord]:
        return list(self.read_snapshot(movement_filter).records)

    def append_movement_record(self, record: MovementRecord) -> MovementRecord:
        """Persist a single record without guards and return it."""
        check_record_quantities((record,))
        self.commit(MovementBatch(records=(record,)))
        return record

    def update_borrow_status(self, borrow_id: UUID, status: BorrowStatus) -> None:
        """Set a borrow's derived status.  Only OPEN -> CLOSED is a real change."""
        if status is BorrowStatus.CLOSED:
            self.commit(MovementBatch(closed_borrows=(borrow_id,)))
            return
        borrow = next(
            (
                r for r in self.fetch_movement_records(MovementFilter(borrow_id=borrow_id))
                if isinstance(r, Borrow) and r.id == borrow_id
            ),
            None,
        )
        if borrow is None:
            raise BorrowNotFoundError(str(borrow_id))
        if borrow.status is BorrowStatus.CLOSED:
            raise ImmutabilityViolationError(
                "MovementRecord", str(borrow_id), "Borrow status may only move open -> closed"
            )

    def history(
        self,
        kinds: Iterable[MovementKind | str] | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int | None = None,
        *,
        default_limit: int = 20,
        max_limit: int = 1000,
    ) -> HistoryPage:
        """Paginated history, newest first.  Subclasses may push this into the database."""
        page, size = clamp_page(page, limit, default_limit, max_limit)
        movement_filter = MovementFilter(
            kinds=frozenset(MovementKind(k) for k in kinds) if kinds else None,
            search=search,
        )
        records = sorted(
            self.fetch_movement_records(movement_filter),
            key=lambda r: (r.created_at, str(r.id)),
            reverse=True,
        )
        start = (page - 1) * size
        return HistoryPage(
            items=records[start:start + size],
            total=len(records),
            page=page,
            limit=size,
        )
