"""
MovementStore contract tests, run against both implementations.

Covers guarded commits, atomicity, borrow status transitions, snapshots and
history pagination; SQL-only tests cover retry of transient database errors.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from inventory_kernel.domain.filters import MovementFilter
from inventory_kernel.domain.movements import BorrowStatus, MovementKind
from inventory_kernel.domain.policy import StoreRetryPolicy
from inventory_kernel.exceptions import (
    BorrowNotFoundError,
    ConflictError,
    ImmutabilityViolationError,
    InvalidMovementError,
    InvalidQuantityError,
    StoreUnavailableError,
)
from inventory_kernel.services.memory_movement_store import InMemoryMovementStore
from inventory_kernel.services.movement_store import MovementBatch
from inventory_kernel.services.sql_movement_store import SqlMovementStore

GUARD = "borrow:00000000-0000-0000-0000-000000000001"


def _ids(records):
    return [r.id for r in records]


class TestGuardedCommit:

    def test_guard_starts_at_zero_and_advances(self, store):
        assert store.read_snapshot(guard_keys=(GUARD,)).version_of(GUARD) == 0

        store.commit(MovementBatch(guards={GUARD: 0}))
        store.commit(MovementBatch(guards={GUARD: 1}))

        assert store.read_snapshot(guard_keys=(GUARD,)).version_of(GUARD) == 2

    def test_stale_guard_conflicts(self, store):
        store.commit(MovementBatch(guards={GUARD: 0}))

        with pytest.raises(ConflictError) as exc_info:
            store.commit(MovementBatch(guards={GUARD: 0}))
        assert exc_info.value.guard_key == GUARD
        assert exc_info.value.expected_version == 0

    def test_future_guard_conflicts(self, store):
        store.commit(MovementBatch(guards={GUARD: 0}))
        with pytest.raises(ConflictError):
            store.commit(MovementBatch(guards={GUARD: 5}))

    def test_conflict_writes_nothing(self, store, movements):
        store.commit(MovementBatch(guards={GUARD: 0}))
        receipt = movements.receipt()

        with pytest.raises(ConflictError):
            store.commit(MovementBatch(records=(receipt,), guards={"stock:x||": 0, GUARD: 0}))

        assert store.fetch_movement_records() == []
        snapshot = store.read_snapshot(guard_keys=("stock:x||", GUARD))
        assert snapshot.version_of("stock:x||") == 0
        assert snapshot.version_of(GUARD) == 1

    def test_missing_closed_borrow_writes_nothing(self, store, movements):
        receipt = movements.receipt()
        with pytest.raises(BorrowNotFoundError):
            store.commit(MovementBatch(records=(receipt,), closed_borrows=(uuid4(),)))
        assert store.fetch_movement_records() == []

    def test_closing_a_non_borrow_rejected(self, store, movements):
        receipt = movements.receipt()
        store.append_movement_record(receipt)
        with pytest.raises(BorrowNotFoundError):
            store.commit(MovementBatch(closed_borrows=(receipt.id,)))


class TestRecords:

    def test_records_round_trip(self, store, movements):
        receipt = movements.receipt(images=("a.jpg", "b.jpg"), remark="pallet")
        borrow = movements.borrow(quantity=3)
        loss = movements.loss(borrow, 1, reason="cracked")
        for record in (receipt, borrow, loss):
            store.append_movement_record(record)

        by_id = {r.id: r for r in store.fetch_movement_records()}
        assert by_id[receipt.id].images == ("a.jpg", "b.jpg")
        assert by_id[receipt.id].remark == "pallet"
        assert by_id[receipt.id].created_at == receipt.created_at
        assert by_id[borrow.id].status is BorrowStatus.OPEN
        assert by_id[loss.id].reason == "cracked"
        assert by_id[loss.id].parent_id == borrow.id
        assert by_id[loss.id].quantity == Decimal("1")

    def test_snapshot_ordered_oldest_first(self, store, movements):
        first, second = movements.receipt(), movements.receipt()
        store.append_movement_record(second)
        store.append_movement_record(first)

        assert _ids(store.fetch_movement_records()) == [first.id, second.id]

    def test_filter_by_borrow(self, store, movements):
        borrow = movements.borrow()
        other = movements.borrow()
        child = movements.return_(borrow, 1)
        for record in (borrow, other, child, movements.receipt()):
            store.append_movement_record(record)

        found = store.fetch_movement_records(MovementFilter(borrow_id=borrow.id))
        assert set(_ids(found)) == {borrow.id, child.id}

    def test_filter_by_search(self, store, movements):
        match = movements.consumption(remark="for SITE 3")
        store.append_movement_record(match)
        store.append_movement_record(movements.consumption(remark="for site 4"))

        assert _ids(store.fetch_movement_records(MovementFilter(search="site 3"))) == [match.id]

    def test_search_treats_wildcards_literally(self, store, movements):
        store.append_movement_record(movements.consumption(remark="100% used"))
        store.append_movement_record(movements.consumption(remark="1000 used"))

        assert len(store.fetch_movement_records(MovementFilter(search="100%"))) == 1

    def test_zero_quantity_rejected(self, store, movements):
        record = movements.receipt()
        object.__setattr__(record, "quantity", Decimal("0"))
        with pytest.raises(InvalidQuantityError):
            store.append_movement_record(record)


class TestBorrowStatus:

    def test_close_is_monotonic(self, store, movements):
        borrow = movements.borrow()
        store.append_movement_record(borrow)

        store.update_borrow_status(borrow.id, BorrowStatus.CLOSED)
        store.update_borrow_status(borrow.id, BorrowStatus.CLOSED)

        (stored,) = store.fetch_movement_records()
        assert stored.status is BorrowStatus.CLOSED

    def test_reopen_rejected(self, store, movements):
        borrow = movements.borrow()
        store.append_movement_record(borrow)
        store.update_borrow_status(borrow.id, BorrowStatus.CLOSED)

        with pytest.raises(ImmutabilityViolationError):
            store.update_borrow_status(borrow.id, BorrowStatus.OPEN)

    def test_open_on_open_borrow_is_noop(self, store, movements):
        borrow = movements.borrow()
        store.append_movement_record(borrow)
        store.update_borrow_status(borrow.id, BorrowStatus.OPEN)
        assert store.fetch_movement_records()[0].status is BorrowStatus.OPEN

    def test_unknown_borrow(self, store):
        with pytest.raises(BorrowNotFoundError):
            store.update_borrow_status(uuid4(), BorrowStatus.OPEN)


class TestHistory:

    def test_newest_first_with_pages(self, store, movements):
        records = [movements.receipt(quantity=n) for n in range(1, 6)]
        for record in records:
            store.append_movement_record(record)

        page1 = store.history(page=1, limit=2)
        page3 = store.history(page=3, limit=2)

        assert page1.total == 5
        assert _ids(page1.items) == [records[4].id, records[3].id]
        assert _ids(page3.items) == [records[0].id]
        assert page1.has_next and not page3.has_next

    def test_kind_filter_and_limit_clamp(self, store, movements):
        store.append_movement_record(movements.receipt())
        borrow = movements.borrow()
        store.append_movement_record(borrow)

        page = store.history(kinds=["borrow"], limit=5000, max_limit=50)
        assert page.limit == 50
        assert _ids(page.items) == [borrow.id]
        assert page.items[0].kind is MovementKind.BORROW


class TestInMemoryOnly:

    def test_duplicate_id_rejected(self, memory_store, movements):
        receipt = movements.receipt()
        memory_store.append_movement_record(receipt)
        with pytest.raises(InvalidMovementError):
            memory_store.append_movement_record(receipt)

    def test_seeded_records(self, movements):
        seeded = InMemoryMovementStore([movements.receipt(), movements.receipt()])
        assert len(seeded) == 2


class _FlakyFactory:
    """Session factory that raises OperationalError for the first ``failures`` calls."""

    def __init__(self, real_factory, failures):
        self._real = real_factory
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))
        return self._real()


class TestSqlRetry:

    def test_transient_error_retried(self, session_factory, captured_logs):
        sleeps = []
        store = SqlMovementStore(
            _FlakyFactory(session_factory, failures=2),
            retry_policy=StoreRetryPolicy(attempts=3, backoff_seconds=0.5),
            sleep=sleeps.append,
        )

        assert store.fetch_movement_records() == []
        assert sleeps == [0.5, 1.0]
        retries = [r for r in captured_logs() if r["message"] == "store_retry"]
        assert [r["attempt"] for r in retries] == [1, 2]

    def test_exhausted_retries_raise_store_unavailable(self, session_factory, captured_logs):
        store = SqlMovementStore(
            _FlakyFactory(session_factory, failures=10),
            retry_policy=StoreRetryPolicy(attempts=3, backoff_seconds=0),
            sleep=lambda _s: None,
        )

        with pytest.raises(StoreUnavailableError) as exc_info:
            store.commit(MovementBatch(guards={GUARD: 0}))
        assert exc_info.value.attempts == 3
        assert exc_info.value.operation == "commit"
        assert "database is locked" in exc_info.value.detail
        assert any(r["message"] == "store_unavailable" for r in captured_logs())

    def test_business_errors_not_retried(self, session_factory):
        sleeps = []
        store = SqlMovementStore(session_factory, sleep=sleeps.append)
        store.commit(MovementBatch(guards={GUARD: 0}))

        with pytest.raises(ConflictError):
            store.commit(MovementBatch(guards={GUARD: 0}))
        assert sleeps == []
