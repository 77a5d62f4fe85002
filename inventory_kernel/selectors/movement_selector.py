"""
Module: inventory_kernel.selectors.movement_selector
Responsibility: Read-only queries over movement_records and ledger_guards,
    returning domain MovementRecord variants.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - ``find`` applies exactly the semantics of ``MovementFilter.matches``.
    - Results are ordered (created_at, id) ascending; ``history`` is newest
      first.  Folds do not depend on order.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.sql import Select

from inventory_kernel.domain.filters import HistoryPage, MovementFilter, clamp_page
from inventory_kernel.domain.movements import (
    Borrow,
    BorrowStatus,
    Consumption,
    Loss,
    MovementKind,
    MovementRecord,
    Receipt,
    Return,
)
from inventory_kernel.models.guard import LedgerGuardModel
from inventory_kernel.models.movement import MovementRecordModel
from inventory_kernel.selectors.base import BaseSelector


def record_from_model(model: MovementRecordModel) -> MovementRecord:
    """Map a persisted row back to its movement variant."""
    kind = MovementKind(model.kind)
    common = dict(
        id=model.id,
        item_name=model.item_name,
        quantity=Decimal(model.quantity),
        unit=model.unit,
        created_at=model.created_at,
        actor=model.actor,
        remark=model.remark,
    )
    images = tuple(model.images or ())

    if kind is MovementKind.RECEIVE:
        return Receipt(zone=model.zone, channel=model.channel, images=images, **common)
    if kind is MovementKind.CONSUME:
        return Consumption(zone=model.zone, channel=model.channel, **common)
    if kind is MovementKind.BORROW:
        return Borrow(
            zone=model.zone,
            channel=model.channel,
            status=BorrowStatus(model.status or BorrowStatus.OPEN.value),
            **common,
        )
    if kind is MovementKind.RETURN:
        return Return(
            parent_id=model.parent_id, zone=model.zone, channel=model.channel, **common
        )
    return Loss(
        parent_id=model.parent_id,
        reason=model.reason,
        zone=model.zone,
        channel=model.channel,
        **common,
    )


class MovementSelector(BaseSelector[MovementRecordModel]):
    """Read access to the movement ledger."""

    def _apply_filter(self, stmt: Select, movement_filter: MovementFilter | None) -> Select:
        if movement_filter is None:
            return stmt
        m = MovementRecordModel
        if movement_filter.item_name is not None:
            stmt = stmt.where(m.item_name == movement_filter.item_name)
        if movement_filter.borrow_id is not None:
            stmt = stmt.where(
                or_(m.id == movement_filter.borrow_id, m.parent_id == movement_filter.borrow_id)
            )
        if movement_filter.parent_id is not None:
            stmt = stmt.where(m.parent_id == movement_filter.parent_id)
        if movement_filter.kinds is not None:
            stmt = stmt.where(m.kind.in_(sorted(k.value for k in movement_filter.kinds)))
        term = movement_filter.search_term
        if term is not None:
            stmt = stmt.where(
                or_(
                    *(
                        column.icontains(term, autoescape=True)
                        for column in (m.item_name, m.zone, m.channel, m.actor, m.remark)
                    )
                )
            )
        return stmt

    def find(self, movement_filter: MovementFilter | None = None) -> list[MovementRecord]:
        stmt = self._apply_filter(select(MovementRecordModel), movement_filter).order_by(
            MovementRecordModel.created_at, MovementRecordModel.id
        )
        return [record_from_model(row) for row in self.session.scalars(stmt)]

    def get(self, record_id: UUID) -> MovementRecord | None:
        row = self.session.get(MovementRecordModel, record_id)
        return record_from_model(row) if row is not None else None

    def count(self, movement_filter: MovementFilter | None = None) -> int:
        stmt = self._apply_filter(
            select(func.count()).select_from(MovementRecordModel), movement_filter
        )
        return int(self.session.scalar(stmt) or 0)

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
        """
        One page of movements, newest first.

        ``limit`` is clamped to [1, max_limit]; ``page`` is 1-based.
        """
        page, size = clamp_page(page, limit, default_limit, max_limit)
        movement_filter = MovementFilter(
            kinds=frozenset(MovementKind(k) for k in kinds) if kinds else None,
            search=search,
        )
        total = self.count(movement_filter)
        stmt = (
            self._apply_filter(select(MovementRecordModel), movement_filter)
            .order_by(MovementRecordModel.created_at.desc(), MovementRecordModel.id.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        items = [record_from_model(row) for row in self.session.scalars(stmt)]
        return HistoryPage(items=items, total=total, page=page, limit=size)

    def guard_versions(self, guard_keys: Iterable[str]) -> dict[str, int]:
        """Current version per key; keys without a row are version 0."""
        keys = sorted(set(guard_keys))
        if not keys:
            return {}
        rows = self.session.execute(
            select(LedgerGuardModel.guard_key, LedgerGuardModel.version).where(
                LedgerGuardModel.guard_key.in_(keys)
            )
        ).all()
        versions = {key: 0 for key in keys}
        versions.update({key: int(version) for key, version in rows})
        return versions
