"""
SqlMovementStore -- SQLAlchemy-backed MovementStore.

Responsibility:
    Persists movement records and ledger guards, and reads consistent
    snapshots for the reconciler.

Architecture position:
    Kernel > Services -- imperative shell.  Uses MovementSelector for reads;
    owns its sessions (one transaction per operation via session_scope).

Invariants enforced:
    - Guard check-and-advance is a single conditional UPDATE per key:
      ``UPDATE ledger_guards SET version = version + 1
        WHERE guard_key = :key AND version = :expected``.
      A zero rowcount means another writer committed first -> ConflictError.
      A guard expected at version 0 is created inside a SAVEPOINT; a unique
      violation there is the same conflict.
    - Guards are advanced in sorted key order.
    - Records, guard advances and status updates commit together or not at all.

Failure modes:
    - ConflictError: guard moved since the snapshot (never retried here).
    - StoreUnavailableError: OperationalError/InterfaceError persisted across
      every attempt of the StoreRetryPolicy (linear backoff).
    - ImmutabilityViolationError: attempt to re-open a closed borrow.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import TypeVar
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.db.engine import get_session_factory, session_scope
from inventory_kernel.domain.filters import HistoryPage, MovementFilter
from inventory_kernel.domain.movements import (
    Borrow,
    BorrowStatus,
    MovementKind,
    MovementRecord,
)
from inventory_kernel.domain.policy import StoreRetryPolicy
from inventory_kernel.exceptions import (
    BorrowNotFoundError,
    ConflictError,
    StoreUnavailableError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.guard import LedgerGuardModel
from inventory_kernel.models.movement import MovementRecordModel
from inventory_kernel.selectors.movement_selector import MovementSelector
from inventory_kernel.services.movement_store import (
    LedgerSnapshot,
    MovementBatch,
    MovementStore,
    check_record_quantities,
)

logger = get_logger("services.sql_store")

T = TypeVar("T")


def model_from_record(record: MovementRecord) -> MovementRecordModel:
    images = getattr(record, "images", ())
    return MovementRecordModel(
        id=record.id,
        kind=record.kind.value,
        item_name=record.item_name,
        quantity=record.quantity,
        unit=record.unit,
        zone=getattr(record, "zone", None),
        channel=getattr(record, "channel", None),
        parent_id=getattr(record, "parent_id", None),
        status=record.status.value if isinstance(record, Borrow) else None,
        actor=record.actor,
        remark=record.remark,
        reason=getattr(record, "reason", None),
        images=list(images) if images else None,
        created_at=record.created_at,
    )


class SqlMovementStore(MovementStore):
    """
    MovementStore over the movement_records and ledger_guards tables.

    Args:
        session_factory: sessionmaker to use; defaults to the engine's.
        retry_policy: attempts/backoff for transient database errors.
        sleep: injectable for tests.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        retry_policy: StoreRetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._retry_policy = retry_policy or StoreRetryPolicy()
        self._sleep = sleep

    def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        attempts = self._retry_policy.attempts
        for attempt in range(1, attempts + 1):
            try:
                with session_scope(self._session_factory) as session:
                    return work(session)
            except (OperationalError, InterfaceError) as exc:
                detail = str(getattr(exc, "orig", None) or exc)
                if attempt >= attempts:
                    logger.error(
                        "store_unavailable",
                        extra={"operation": operation, "attempts": attempts, "detail": detail},
                    )
                    raise StoreUnavailableError(operation, attempts, detail) from exc
                delay = self._retry_policy.delay_for(attempt)
                logger.warning(
                    "store_retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "delay_seconds": delay,
                        "detail": detail,
                    },
                )
                self._sleep(delay)
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_snapshot(
        self,
        movement_filter: MovementFilter | None = None,
        guard_keys: Iterable[str] = (),
    ) -> LedgerSnapshot:
        keys = tuple(guard_keys)

        def work(session: Session) -> LedgerSnapshot:
            selector = MovementSelector(session)
            versions = selector.guard_versions(keys)
            records = tuple(selector.find(movement_filter))
            return LedgerSnapshot(records=records, guard_versions=versions)

        return self._run("read_snapshot", work)

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
        kind_list = list(kinds) if kinds else None
        return self._run(
            "history",
            lambda session: MovementSelector(session).history(
                kind_list, search, page, limit,
                default_limit=default_limit, max_limit=max_limit,
            ),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def commit(self, batch: MovementBatch) -> None:
        check_record_quantities(batch.records)
        self._run("commit", lambda session: self._apply(session, batch))
        logger.debug(
            "movement_batch_committed",
            extra={
                "record_count": len(batch.records),
                "guard_count": len(batch.guards),
                "closed_borrows": len(batch.closed_borrows),
            },
        )

    def _apply(self, session: Session, batch: MovementBatch) -> None:
        for key in sorted(batch.guards):
            self._advance_guard(session, key, batch.guards[key])

        for record in batch.records:
            session.add(model_from_record(record))
        session.flush()

        for borrow_id in batch.closed_borrows:
            self._close_borrow(session, borrow_id)
        session.flush()

    def _advance_guard(self, session: Session, guard_key: str, expected: int) -> None:
        if expected == 0:
            try:
                with session.begin_nested():
                    session.add(LedgerGuardModel(guard_key=guard_key, version=1))
                return
            except IntegrityError:
                logger.info(
                    "ledger_guard_conflict",
                    extra={"guard_key": guard_key, "expected_version": expected},
                )
                raise ConflictError(guard_key, expected) from None

        result = session.execute(
            update(LedgerGuardModel)
            .where(
                LedgerGuardModel.guard_key == guard_key,
                LedgerGuardModel.version == expected,
            )
            .values(version=LedgerGuardModel.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "ledger_guard_conflict",
                extra={"guard_key": guard_key, "expected_version": expected},
            )
            raise ConflictError(guard_key, expected)

    @staticmethod
    def _close_borrow(session: Session, borrow_id: UUID) -> None:
        row = session.get(MovementRecordModel, borrow_id)
        if row is None or row.kind != MovementKind.BORROW.value:
            raise BorrowNotFoundError(str(borrow_id))
        if row.status != BorrowStatus.CLOSED.value:
            row.status = BorrowStatus.CLOSED.value
