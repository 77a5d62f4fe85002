"""
Read filters and pages over the movement ledger.

``MovementFilter`` is interpreted twice: as SQL by MovementSelector and as a
predicate by InMemoryMovementStore.  ``matches`` is the reference semantics;
the SQL translation must agree with it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from inventory_kernel.domain.movements import MovementKind, MovementRecord


@dataclass(frozen=True)
class MovementFilter:
    """
    Conjunction of optional criteria.  An empty filter matches every record.

    - item_name: exact, case-sensitive.
    - borrow_id: the BORROW itself plus every RETURN/LOSS referencing it.
    - parent_id: records whose parent_id equals this id.
    - kinds: record kind is one of these.
    - search: case-insensitive substring of item_name, zone, channel,
      actor or remark.
    """

    item_name: str | None = None
    borrow_id: UUID | None = None
    parent_id: UUID | None = None
    kinds: frozenset[MovementKind] | None = None
    search: str | None = None

    def __post_init__(self) -> None:
        if self.kinds is not None and not isinstance(self.kinds, frozenset):
            object.__setattr__(
                self, "kinds", frozenset(MovementKind(k) for k in self.kinds)
            )
        if self.search is not None and not self.search.strip():
            object.__setattr__(self, "search", None)

    @property
    def search_term(self) -> str | None:
        return self.search.strip().lower() if self.search else None

    def matches(self, record: MovementRecord) -> bool:
        if self.item_name is not None and record.item_name != self.item_name:
            return False
        parent_id = getattr(record, "parent_id", None)
        if self.borrow_id is not None and not (
            record.id == self.borrow_id or parent_id == self.borrow_id
        ):
            return False
        if self.parent_id is not None and parent_id != self.parent_id:
            return False
        if self.kinds is not None and record.kind not in self.kinds:
            return False
        term = self.search_term
        if term is not None:
            haystack = (
                record.item_name,
                getattr(record, "zone", None),
                getattr(record, "channel", None),
                record.actor,
                record.remark,
            )
            if not any(value and term in value.lower() for value in haystack):
                return False
        return True


@dataclass(frozen=True)
class HistoryPage:
    """One page of movement history, newest first."""

    items: list[MovementRecord] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def pages(self) -> int:
        return max(1, -(-self.total // self.limit)) if self.limit else 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


def clamp_page(page: int, limit: int | None, default_limit: int, max_limit: int) -> tuple[int, int]:
    """Normalize (page, limit): page >= 1, 1 <= limit <= max_limit."""
    page = max(1, int(page or 1))
    size = default_limit if limit is None else int(limit)
    size = min(max(1, size), max_limit)
    return page, size
