"""
LedgerReconciler end-to-end tests.

Runs the receive -> borrow -> return/loss -> issue walkthrough against both
the in-memory and SQLite stores, then covers result mapping, logging and
conflict retry.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.movements import BorrowStatus, MovementKind, StockKey
from inventory_kernel.domain.policy import ReconcilerPolicy
from inventory_kernel.domain.shelf import ShelfLayout
from inventory_kernel.exceptions import ConflictError, StoreUnavailableError
from inventory_kernel.services.memory_movement_store import InMemoryMovementStore
from inventory_kernel.services.movement_store import borrow_guard_key
from inventory_kernel.services.reconciler_service import (
    LedgerReconciler,
    ReconcileStatus,
)

ACTOR = "somchai"
KEY = StockKey("Pipe A", "A", "1")


def _receive_and_borrow(reconciler):
    receipt = reconciler.record_receipt("Pipe A", "A", "1", 10, ACTOR)
    assert receipt.is_success
    borrow = reconciler.accept_issuance("Pipe A", "A", "1", 6, MovementKind.BORROW, ACTOR)
    assert borrow.is_success
    return borrow.record


# =============================================================================
# Walkthrough
# =============================================================================


class TestBorrowReturnWalkthrough:

    def test_receive_credits_balance(self, reconciler):
        result = reconciler.record_receipt("Pipe A", "A", "1", 10, ACTOR)

        assert result.status is ReconcileStatus.ACCEPTED
        assert result.record.kind is MovementKind.RECEIVE
        row = reconciler.compute_balances()[KEY]
        assert row.total_in == Decimal("10")
        assert row.balance == Decimal("10")

    def test_borrow_debits_and_opens(self, reconciler):
        borrow = _receive_and_borrow(reconciler)

        assert reconciler.compute_balances()[KEY].balance == Decimal("4")
        (row,) = reconciler.compute_outstanding()
        assert row.borrow_id == borrow.id
        assert row.borrowed_qty == Decimal("6")
        assert row.returned_qty == Decimal("0")
        assert row.lost_qty == Decimal("0")
        assert row.outstanding_qty == Decimal("6")
        assert row.status is BorrowStatus.OPEN

    def test_return_with_loss_closes_borrow(self, reconciler, store):
        borrow = _receive_and_borrow(reconciler)

        result = reconciler.accept_return(borrow.id, 4, 2, ACTOR, "damaged")

        assert result.is_success
        assert result.return_record.quantity == Decimal("4")
        assert result.loss_record.quantity == Decimal("2")
        assert result.loss_record.reason == "damaged"
        assert result.outstanding_qty == Decimal("0")
        assert result.borrow_status is BorrowStatus.CLOSED
        assert reconciler.compute_balances()[KEY].balance == Decimal("8")
        assert reconciler.compute_outstanding(open_only=True) == []

        stored = next(r for r in store.fetch_movement_records() if r.id == borrow.id)
        assert stored.status is BorrowStatus.CLOSED

    def test_return_after_closure_rejected(self, reconciler, store):
        borrow = _receive_and_borrow(reconciler)
        reconciler.accept_return(borrow.id, 4, 2, ACTOR, "damaged")
        before = len(store.fetch_movement_records())

        result = reconciler.accept_return(borrow.id, 1, 0, ACTOR)

        assert result.status is ReconcileStatus.EXCEEDS_OUTSTANDING
        assert result.outstanding_qty == Decimal("0")
        assert result.error_code == "EXCEEDS_OUTSTANDING"
        assert len(store.fetch_movement_records()) == before

    def test_issuance_beyond_balance_reports_balance(self, reconciler, store):
        borrow = _receive_and_borrow(reconciler)
        reconciler.accept_return(borrow.id, 4, 2, ACTOR, "damaged")
        before = len(store.fetch_movement_records())

        result = reconciler.accept_issuance("Pipe A", "A", "1", 9, MovementKind.CONSUME, ACTOR)

        assert result.status is ReconcileStatus.INSUFFICIENT_STOCK
        assert result.balance == Decimal("8")
        assert result.record is None
        assert len(store.fetch_movement_records()) == before

    def test_loss_without_reason_rejected_first(self, reconciler, store):
        borrow = _receive_and_borrow(reconciler)
        before = len(store.fetch_movement_records())

        result = reconciler.accept_return(borrow.id, 0, 3, ACTOR, "")

        assert result.status is ReconcileStatus.REASON_REQUIRED
        assert len(store.fetch_movement_records()) == before

    def test_partial_returns_keep_borrow_open(self, reconciler, store):
        borrow = _receive_and_borrow(reconciler)

        first = reconciler.accept_return(borrow.id, 2, 0, ACTOR)
        second = reconciler.accept_return(str(borrow.id), 1, 0, ACTOR)

        assert first.outstanding_qty == Decimal("4")
        assert second.outstanding_qty == Decimal("3")
        assert second.borrow_status is BorrowStatus.OPEN
        stored = next(r for r in store.fetch_movement_records() if r.id == borrow.id)
        assert stored.status is BorrowStatus.OPEN


# =============================================================================
# Result mapping
# =============================================================================


class TestRejections:

    def test_unknown_borrow(self, reconciler):
        result = reconciler.accept_return(uuid4(), 1, 0, ACTOR)
        assert result.status is ReconcileStatus.NOT_FOUND
        assert result.records == ()

    def test_malformed_borrow_id(self, reconciler):
        result = reconciler.accept_return("borrow-42", 1, 0, ACTOR)
        assert result.status is ReconcileStatus.NOT_FOUND
        assert result.borrow_id is None

    def test_invalid_quantity(self, reconciler):
        result = reconciler.record_receipt("Pipe A", "A", "1", "ten", ACTOR)
        assert result.status is ReconcileStatus.INVALID_QUANTITY
        assert result.error_code == "INVALID_QUANTITY"
        assert "ten" in result.message

    def test_actor_required(self, reconciler):
        result = reconciler.record_receipt("Pipe A", "A", "1", 1, None)
        assert result.status is ReconcileStatus.ACTOR_REQUIRED

    def test_missing_location(self, reconciler):
        result = reconciler.record_receipt("Pipe A", "", "1", 1, ACTOR)
        assert result.status is ReconcileStatus.INVALID_LOCATION

    def test_invalid_kind(self, reconciler):
        reconciler.record_receipt("Pipe A", "A", "1", 1, ACTOR)
        result = reconciler.accept_issuance("Pipe A", "A", "1", 1, "receive", ACTOR)
        assert result.status is ReconcileStatus.INVALID_MOVEMENT
        assert result.error_code == "INVALID_MOVEMENT_KIND"

    def test_unit_defaults_from_policy(self, store, deterministic_clock):
        reconciler = LedgerReconciler(
            store, policy=ReconcilerPolicy(default_unit="ea"), clock=deterministic_clock
        )
        result = reconciler.record_receipt("Pipe A", "A", "1", 1, ACTOR)
        assert result.record.unit == "ea"

    def test_timestamps_and_ids_injected(self, store, deterministic_clock):
        fixed = uuid4()
        reconciler = LedgerReconciler(store, clock=deterministic_clock, id_factory=lambda: fixed)
        result = reconciler.record_receipt("Pipe A", "A", "1", 1, ACTOR)
        assert result.record.id == fixed
        assert result.record.created_at == deterministic_clock.now()


class TestFractionalQuantities:

    @pytest.fixture
    def policy(self):
        return ReconcilerPolicy(allow_fractional_quantities=True)

    def test_nine_places_stored_exactly(self, reconciler):
        key = StockKey("Wire", "A", "1")
        assert reconciler.record_receipt("Wire", "A", "1", "1.000000001", ACTOR).is_success
        assert reconciler.compute_balances()[key].balance == Decimal("1.000000001")

        issued = reconciler.accept_issuance(
            "Wire", "A", "1", "1.000000001", MovementKind.CONSUME, ACTOR
        )
        assert issued.is_success
        assert issued.balance == Decimal("0")

    @pytest.mark.parametrize("raw", ["1.0000000004", "0.0000000001"])
    def test_finer_scale_rejected_before_storage(self, reconciler, store, raw):
        result = reconciler.record_receipt("Dust", "A", "2", raw, ACTOR)

        assert result.status is ReconcileStatus.INVALID_QUANTITY
        assert "9 decimal places" in result.message
        assert store.fetch_movement_records() == []
        assert reconciler.compute_balances() == {}

    def test_finer_scale_return_rejected(self, reconciler):
        reconciler.record_receipt("Wire", "A", "1", "2.5", ACTOR)
        borrow = reconciler.accept_issuance("Wire", "A", "1", "2.5", MovementKind.BORROW, ACTOR)

        result = reconciler.accept_return(borrow.record.id, "0.00000000001", 0, ACTOR)

        assert result.status is ReconcileStatus.INVALID_QUANTITY
        assert reconciler.compute_outstanding()[0].outstanding_qty == Decimal("2.5")


class TestColumnWidths:

    @pytest.mark.parametrize("item_name, zone, channel, extra", [
        ("P" * 256, "A", "1", {}),
        ("Pipe A", "Z" * 51, "1", {}),
        ("Pipe A", "A", "9" * 51, {}),
        ("Pipe A", "A", "1", {"unit": "u" * 51}),
        ("Pipe A", "A", "1", {"actor": "a" * 256}),
    ])
    def test_wide_receipt_fields_rejected(self, reconciler, store, item_name, zone, channel, extra):
        kwargs = {"actor": ACTOR, **extra}
        result = reconciler.record_receipt(item_name, zone, channel, 1, **kwargs)

        assert result.status is ReconcileStatus.INVALID_MOVEMENT
        assert result.error_code == "INVALID_MOVEMENT"
        assert store.fetch_movement_records() == []

    def test_wide_issuance_zone_rejected(self, reconciler):
        reconciler.record_receipt("Pipe A", "A", "1", 5, ACTOR)

        result = reconciler.accept_issuance("Pipe A", "Z" * 51, "1", 1, MovementKind.CONSUME, ACTOR)

        assert result.status is ReconcileStatus.INVALID_MOVEMENT
        assert result.error.field == "zone"


class TestShelfLayoutEnforcement:

    class _Layouts:
        def __init__(self, *layouts):
            self._by_zone = {layout.zone: layout for layout in layouts}

        def get(self, zone):
            return self._by_zone.get(zone)

    def test_receipt_outside_layout_rejected(self, memory_store, deterministic_clock):
        reconciler = LedgerReconciler(
            memory_store,
            policy=ReconcilerPolicy(enforce_shelf_layout=True),
            clock=deterministic_clock,
            shelf_layouts=self._Layouts(ShelfLayout("A", 2, 5)),
        )

        assert reconciler.record_receipt("Pipe A", "A", "10", 1, ACTOR).is_success
        rejected = reconciler.record_receipt("Pipe A", "A", "11", 1, ACTOR)
        assert rejected.status is ReconcileStatus.INVALID_LOCATION
        unknown_zone = reconciler.record_receipt("Pipe A", "B", "1", 1, ACTOR)
        assert unknown_zone.status is ReconcileStatus.INVALID_LOCATION
        assert len(memory_store) == 1


# =============================================================================
# Logging
# =============================================================================


class TestReconcilerLogging:

    def test_accepted_return_logged_with_context(self, memory_reconciler, captured_logs):
        borrow = _receive_and_borrow(memory_reconciler)
        memory_reconciler.accept_return(borrow.id, 6, 0, ACTOR)

        logs = captured_logs()
        accepted = next(r for r in logs if r["message"] == "return_accepted")
        assert accepted["borrow_id"] == str(borrow.id)
        assert accepted["actor"] == ACTOR
        assert accepted["borrow_status"] == "closed"

    def test_rejection_logged_with_code(self, memory_reconciler, captured_logs):
        memory_reconciler.accept_issuance("Pipe A", "A", "1", 1, "consume", ACTOR)

        logs = captured_logs()
        rejected = next(r for r in logs if r["message"] == "issuance_rejected")
        assert rejected["error_code"] == "INSUFFICIENT_STOCK"
        assert rejected["item_name"] == "Pipe A"


# =============================================================================
# Conflict and store failures
# =============================================================================


class _ConflictingStore(InMemoryMovementStore):
    """Fails the first ``conflicts`` guarded commits with ConflictError."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts
        self.commit_attempts = 0

    def commit(self, batch):
        if batch.guards:
            self.commit_attempts += 1
            if self.conflicts > 0:
                self.conflicts -= 1
                raise ConflictError(next(iter(batch.guards)), 0)
        super().commit(batch)


class _UnavailableStore(InMemoryMovementStore):
    def read_snapshot(self, movement_filter=None, guard_keys=()):
        raise StoreUnavailableError("read_snapshot", 3, "connection refused")


class TestConflictRetry:

    def test_single_conflict_retried(self, deterministic_clock, captured_logs):
        store = _ConflictingStore(conflicts=1)
        reconciler = LedgerReconciler(store, clock=deterministic_clock)
        borrow = _receive_and_borrow_with_retry(reconciler, store)

        result = reconciler.accept_return(borrow.id, 1, 0, ACTOR)

        assert result.is_success
        assert store.commit_attempts == 3
        assert any(r["message"] == "ledger_conflict_retry" for r in captured_logs())

    def test_conflict_surfaces_after_retry_limit(self, deterministic_clock):
        store = _ConflictingStore(conflicts=0)
        reconciler = LedgerReconciler(store, clock=deterministic_clock)
        borrow = _receive_and_borrow(reconciler)
        store.conflicts = 5
        attempts_before = store.commit_attempts

        result = reconciler.accept_return(borrow.id, 1, 0, ACTOR)

        assert result.status is ReconcileStatus.CONFLICT
        assert result.error_code == "CONFLICT"
        assert store.commit_attempts - attempts_before == 2

    def test_retry_limit_zero_disables_retry(self, deterministic_clock):
        store = _ConflictingStore(conflicts=0)
        reconciler = LedgerReconciler(
            store, policy=ReconcilerPolicy(conflict_retry_limit=0), clock=deterministic_clock
        )
        borrow = _receive_and_borrow(reconciler)
        store.conflicts = 1

        assert reconciler.accept_return(borrow.id, 1, 0, ACTOR).status is ReconcileStatus.CONFLICT

    def test_retry_revalidates_against_fresh_snapshot(self, deterministic_clock):
        """A concurrent return consumed the outstanding quantity: the retry must see it."""
        store = InMemoryMovementStore()
        reconciler = LedgerReconciler(store, clock=deterministic_clock)
        borrow = _receive_and_borrow(reconciler)
        other = LedgerReconciler(store, clock=deterministic_clock)

        original_commit = store.commit
        state = {"raced": False}

        def racing_commit(batch):
            if batch.guards and not state["raced"]:
                state["raced"] = True
                assert other.accept_return(borrow.id, 6, 0, "other").is_success
            original_commit(batch)

        store.commit = racing_commit
        result = reconciler.accept_return(borrow.id, 6, 0, ACTOR)

        assert result.status is ReconcileStatus.EXCEEDS_OUTSTANDING
        assert result.outstanding_qty == Decimal("0")
        assert store.guard_version(borrow_guard_key(borrow.id)) == 1


class TestStoreUnavailable:

    def test_reported_as_status(self, deterministic_clock):
        reconciler = LedgerReconciler(_UnavailableStore(), clock=deterministic_clock)
        result = reconciler.accept_return(uuid4(), 1, 0, ACTOR)
        assert result.status is ReconcileStatus.STORE_UNAVAILABLE
        assert result.error_code == "STORE_UNAVAILABLE"

    def test_views_propagate(self, deterministic_clock):
        reconciler = LedgerReconciler(_UnavailableStore(), clock=deterministic_clock)
        with pytest.raises(StoreUnavailableError):
            reconciler.compute_balances()


def _receive_and_borrow_with_retry(reconciler, store):
    """Receipt is unguarded; the borrow consumes the single scripted conflict."""
    reconciler.record_receipt("Pipe A", "A", "1", 10, ACTOR)
    borrow = reconciler.accept_issuance("Pipe A", "A", "1", 6, "borrow", ACTOR)
    assert borrow.is_success
    return borrow.record
