"""
StockViewService -- presentation-ready views over the ledger.

Stock summary, product locations, open borrows and movement history.  Every
view re-reads the store; nothing is cached.  Hiding non-positive balances is
a presentation choice made here, never in the reconciler folds.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from inventory_kernel.domain.filters import HistoryPage, MovementFilter
from inventory_kernel.domain.movements import MovementKind
from inventory_kernel.domain.quantities import ZERO
from inventory_kernel.domain.reconciler import (
    OutstandingBorrow,
    StockBalance,
    compute_balances,
    compute_outstanding,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.services.movement_store import MovementStore

logger = get_logger("services.stock_view")


@dataclass(frozen=True)
class StockSummaryRow:
    item_name: str
    unit: str
    zone: str | None
    channel: str | None
    total_in: Decimal
    total_out: Decimal
    balance: Decimal
    last_in_at: datetime | None
    last_out_at: datetime | None
    last_movement_at: datetime

    @classmethod
    def from_balance(cls, row: StockBalance) -> StockSummaryRow:
        return cls(
            item_name=row.item_name,
            unit=row.unit,
            zone=row.zone,
            channel=row.channel,
            total_in=row.total_in,
            total_out=row.total_out,
            balance=row.balance,
            last_in_at=row.last_in_at,
            last_out_at=row.last_out_at,
            last_movement_at=row.last_movement_at,
        )


@dataclass(frozen=True)
class ProductLocation:
    zone: str | None
    channel: str | None
    quantity: Decimal
    unit: str


@dataclass(frozen=True)
class ProductLocations:
    """Where one item is stocked (positive balances only)."""

    item_name: str
    total_quantity: Decimal
    locations: tuple[ProductLocation, ...]

    @property
    def unit(self) -> str:
        return self.locations[0].unit if self.locations else ""


def _matches_search(row: StockBalance, term: str | None) -> bool:
    if term is None:
        return True
    return any(
        value and term in value.lower()
        for value in (row.item_name, row.zone, row.channel)
    )


def _normalize_search(search: str | None) -> str | None:
    if search is None or not search.strip():
        return None
    return search.strip().lower()


class StockViewService:
    """
    Read-only stock views.

    Args:
        store: MovementStore to read from.
        hide_non_positive: default for ``stock_summary(include_non_positive=None)``.
        history_page_size / history_max_page_size: pagination defaults.
    """

    def __init__(
        self,
        store: MovementStore,
        hide_non_positive: bool = True,
        history_page_size: int = 20,
        history_max_page_size: int = 1000,
    ):
        self._store = store
        self._hide_non_positive = hide_non_positive
        self._history_page_size = history_page_size
        self._history_max_page_size = history_max_page_size

    def _balances(self) -> list[StockBalance]:
        return list(compute_balances(self._store.fetch_movement_records()).values())

    def stock_summary(
        self,
        search: str | None = None,
        include_non_positive: bool | None = None,
    ) -> list[StockSummaryRow]:
        """
        One row per (item, zone, channel), highest balance first.

        ``search`` is a case-insensitive substring of item name, zone or channel.
        """
        include = (
            not self._hide_non_positive
            if include_non_positive is None
            else include_non_positive
        )
        term = _normalize_search(search)
        rows = [
            row for row in self._balances()
            if (include or row.balance > ZERO) and _matches_search(row, term)
        ]
        rows.sort(key=lambda r: (r.item_name, r.zone or "", r.channel or ""))
        rows.sort(key=lambda r: r.balance, reverse=True)
        logger.debug("stock_summary_built", extra={"rows": len(rows), "search": term})
        return [StockSummaryRow.from_balance(row) for row in rows]

    def product_locations(self, search: str | None = None) -> list[ProductLocations]:
        """Positive balances grouped by item name, items sorted by name."""
        term = _normalize_search(search)
        grouped: dict[str, list[StockBalance]] = {}
        for row in self._balances():
            if row.balance > ZERO and _matches_search(row, term):
                grouped.setdefault(row.item_name, []).append(row)

        result: list[ProductLocations] = []
        for item_name in sorted(grouped):
            rows = sorted(grouped[item_name], key=lambda r: (r.zone or "", r.channel or ""))
            result.append(
                ProductLocations(
                    item_name=item_name,
                    total_quantity=sum((r.balance for r in rows), ZERO),
                    locations=tuple(
                        ProductLocation(zone=r.zone, channel=r.channel, quantity=r.balance, unit=r.unit)
                        for r in rows
                    ),
                )
            )
        return result

    def open_borrows(self) -> list[OutstandingBorrow]:
        records = self._store.fetch_movement_records(
            MovementFilter(
                kinds=frozenset({MovementKind.BORROW, MovementKind.RETURN, MovementKind.LOSS})
            )
        )
        return compute_outstanding(records, open_only=True)

    def history(
        self,
        kinds: Iterable[MovementKind | str] | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> HistoryPage:
        return self._store.history(
            kinds,
            search,
            page,
            limit,
            default_limit=self._history_page_size,
            max_limit=self._history_max_page_size,
        )
