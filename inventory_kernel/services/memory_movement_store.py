"""
InMemoryMovementStore -- thread-safe MovementStore for tests and embedding.

Every operation runs under one re-entrant lock, so a commit is atomic with
respect to every other read and commit on the same instance.  Guard semantics
match SqlMovementStore exactly.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from uuid import UUID

from inventory_kernel.domain.filters import MovementFilter
from inventory_kernel.domain.movements import Borrow, BorrowStatus, MovementRecord
from inventory_kernel.exceptions import (
    BorrowNotFoundError,
    ConflictError,
    InvalidMovementError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.services.movement_store import (
    LedgerSnapshot,
    MovementBatch,
    MovementStore,
    check_record_quantities,
)

logger = get_logger("services.memory_store")


class InMemoryMovementStore(MovementStore):
    """Dictionary-backed ledger with the same commit contract as the SQL store."""

    def __init__(self, records: Iterable[MovementRecord] = ()):
        self._lock = threading.RLock()
        self._records: dict[UUID, MovementRecord] = {}
        self._guards: dict[str, int] = {}
        seed = tuple(records)
        if seed:
            self.commit(MovementBatch(records=seed))

    def read_snapshot(
        self,
        movement_filter: MovementFilter | None = None,
        guard_keys: Iterable[str] = (),
    ) -> LedgerSnapshot:
        with self._lock:
            versions = {key: self._guards.get(key, 0) for key in guard_keys}
            records = tuple(
                sorted(
                    (
                        r for r in self._records.values()
                        if movement_filter is None or movement_filter.matches(r)
                    ),
                    key=lambda r: (r.created_at, str(r.id)),
                )
            )
        return LedgerSnapshot(records=records, guard_versions=versions)

    def commit(self, batch: MovementBatch) -> None:
        check_record_quantities(batch.records)
        with self._lock:
            for key in sorted(batch.guards):
                expected = batch.guards[key]
                if self._guards.get(key, 0) != expected:
                    logger.info(
                        "ledger_guard_conflict",
                        extra={"guard_key": key, "expected_version": expected},
                    )
                    raise ConflictError(key, expected)

            new_ids = {r.id for r in batch.records}
            if len(new_ids) != len(batch.records) or new_ids & self._records.keys():
                raise InvalidMovementError("id", "duplicate movement record id")

            for borrow_id in batch.closed_borrows:
                target = self._records.get(borrow_id)
                if not isinstance(target, Borrow):
                    raise BorrowNotFoundError(str(borrow_id))

            for key in batch.guards:
                self._guards[key] = self._guards.get(key, 0) + 1
            for record in batch.records:
                self._records[record.id] = record
            for borrow_id in batch.closed_borrows:
                target = self._records[borrow_id]
                if target.status is not BorrowStatus.CLOSED:
                    self._records[borrow_id] = target.with_status(BorrowStatus.CLOSED)

        logger.debug(
            "movement_batch_committed",
            extra={
                "record_count": len(batch.records),
                "guard_count": len(batch.guards),
                "closed_borrows": len(batch.closed_borrows),
            },
        )

    def guard_version(self, guard_key: str) -> int:
        with self._lock:
            return self._guards.get(guard_key, 0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
