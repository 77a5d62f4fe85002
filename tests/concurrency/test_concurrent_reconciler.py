"""
Race tests for the ledger guards.

Many threads hit the same borrow (or the same stock key) at once through a
Barrier.  Whatever interleaving the scheduler picks:

- returned + lost never exceeds borrowed
- an accepted issuance never drives a balance negative
- every caller gets a definitive result, never an exception

Runs against both stores; the SQL store uses a SQLite file (BEGIN IMMEDIATE
serializes writers) or DATABASE_URL when set.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from inventory_kernel.domain.movements import BorrowStatus, MovementKind, StockKey
from inventory_kernel.domain.policy import ReconcilerPolicy
from inventory_kernel.services.reconciler_service import LedgerReconciler, ReconcileStatus

pytestmark = pytest.mark.slow

THREADS = 8
KEY = StockKey("Drill", "B", "4")


@pytest.fixture
def racing_reconciler(store, deterministic_clock) -> LedgerReconciler:
    return LedgerReconciler(
        store,
        policy=ReconcilerPolicy(conflict_retry_limit=THREADS * 2),
        clock=deterministic_clock,
    )


def _race(count, call):
    """Run ``call(i)`` on ``count`` threads released together; return the results."""
    barrier = Barrier(count)

    def worker(i):
        barrier.wait(timeout=30)
        return call(i)

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(worker, range(count)))


def _stock(reconciler, quantity):
    result = reconciler.record_receipt(KEY.item_name, KEY.zone, KEY.channel, quantity, actor="anan")
    assert result.is_success


class TestConcurrentReturns:

    def test_returns_never_exceed_borrowed(self, racing_reconciler):
        _stock(racing_reconciler, 10)
        borrow = racing_reconciler.accept_issuance(
            KEY.item_name, KEY.zone, KEY.channel, 6, MovementKind.BORROW, actor="anan"
        ).record

        results = _race(
            THREADS,
            lambda i: racing_reconciler.accept_return(borrow.id, 2, actor=f"worker-{i}"),
        )

        statuses = {r.status for r in results}
        assert statuses <= {
            ReconcileStatus.ACCEPTED,
            ReconcileStatus.EXCEEDS_OUTSTANDING,
            ReconcileStatus.CONFLICT,
        }
        accepted = [r for r in results if r.is_success]
        returned = sum((r.return_record.quantity for r in accepted), Decimal("0"))
        assert returned <= Decimal("6")

        (row,) = racing_reconciler.compute_outstanding()
        assert row.returned_qty == returned
        assert row.outstanding_qty == Decimal("6") - returned
        assert not row.is_anomalous
        if ReconcileStatus.CONFLICT not in statuses:
            assert len(accepted) == 3
            assert row.status is BorrowStatus.CLOSED

    def test_mixed_returns_and_losses(self, racing_reconciler):
        _stock(racing_reconciler, 10)
        borrow = racing_reconciler.accept_issuance(
            KEY.item_name, KEY.zone, KEY.channel, 5, MovementKind.BORROW, actor="anan"
        ).record

        def settle(i):
            if i % 2:
                return racing_reconciler.accept_return(
                    borrow.id, 0, loss_qty=1, actor="anan", reason="broken bit"
                )
            return racing_reconciler.accept_return(borrow.id, 1, actor="anan")

        results = _race(THREADS, settle)

        (row,) = racing_reconciler.compute_outstanding()
        settled = row.returned_qty + row.lost_qty
        assert settled <= row.borrowed_qty
        assert settled == sum(
            (sum((rec.quantity for rec in r.records), Decimal("0")) for r in results if r.is_success),
            Decimal("0"),
        )


class TestConcurrentIssuance:

    def test_consumption_never_overdraws(self, racing_reconciler):
        _stock(racing_reconciler, 5)

        results = _race(
            THREADS,
            lambda i: racing_reconciler.accept_issuance(
                KEY.item_name, KEY.zone, KEY.channel, 1, MovementKind.CONSUME, actor="anan"
            ),
        )

        accepted = sum(1 for r in results if r.is_success)
        assert accepted <= 5
        assert {r.status for r in results} <= {
            ReconcileStatus.ACCEPTED,
            ReconcileStatus.INSUFFICIENT_STOCK,
            ReconcileStatus.CONFLICT,
        }
        balance = racing_reconciler.compute_balances()[KEY].balance
        assert balance == Decimal(5 - accepted)
        assert balance >= 0

    def test_borrow_and_consume_share_the_stock_guard(self, racing_reconciler):
        _stock(racing_reconciler, 4)

        def issue(i):
            kind = MovementKind.BORROW if i % 2 else MovementKind.CONSUME
            return racing_reconciler.accept_issuance(
                KEY.item_name, KEY.zone, KEY.channel, 1, kind, actor="anan"
            )

        results = _race(THREADS, issue)

        assert sum(1 for r in results if r.is_success) <= 4
        assert racing_reconciler.compute_balances()[KEY].balance >= 0

    def test_receipts_are_never_lost(self, racing_reconciler):
        results = _race(
            THREADS,
            lambda i: racing_reconciler.record_receipt(
                KEY.item_name, KEY.zone, KEY.channel, 1, actor=f"worker-{i}"
            ),
        )

        assert all(r.is_success for r in results)
        assert racing_reconciler.compute_balances()[KEY].total_in == Decimal(THREADS)
