"""
ShelfLayoutService -- per-zone rack dimensions.

Zones are configured with ``floors`` x ``slots_per_floor`` channels.  The
reconciler consults ``get(zone)`` to validate receipt locations when the
policy enforces shelf layouts.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.db.engine import get_session_factory, session_scope
from inventory_kernel.domain.shelf import ShelfLayout, ShelfPosition
from inventory_kernel.exceptions import ShelfLayoutNotFoundError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import ShelfLayoutModel

logger = get_logger("services.shelf_layout")


def _to_layout(row: ShelfLayoutModel) -> ShelfLayout:
    return ShelfLayout(zone=row.zone, floors=row.floors, slots_per_floor=row.slots_per_floor)


class ShelfLayoutService:
    """CRUD over shelf_layouts, returning ShelfLayout value objects."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory or get_session_factory()

    def upsert(self, zone: str, floors: int, slots_per_floor: int) -> ShelfLayout:
        """
        Create or resize a zone's layout.

        Raises:
            InvalidShelfLayoutError: blank zone or non-positive dimensions.
        """
        layout = ShelfLayout(
            zone=zone.strip() if isinstance(zone, str) else zone,
            floors=floors,
            slots_per_floor=slots_per_floor,
        )
        with session_scope(self._session_factory) as session:
            row = session.scalar(
                select(ShelfLayoutModel).where(ShelfLayoutModel.zone == layout.zone)
            )
            created = row is None
            if row is None:
                row = ShelfLayoutModel(zone=layout.zone)
                session.add(row)
            row.floors = layout.floors
            row.slots_per_floor = layout.slots_per_floor

        logger.info(
            "shelf_layout_saved",
            extra={
                "zone": layout.zone,
                "floors": layout.floors,
                "slots_per_floor": layout.slots_per_floor,
                "created": created,
            },
        )
        return layout

    def delete(self, zone: str) -> None:
        with session_scope(self._session_factory) as session:
            row = session.scalar(select(ShelfLayoutModel).where(ShelfLayoutModel.zone == zone))
            if row is None:
                raise ShelfLayoutNotFoundError(zone)
            session.delete(row)
        logger.info("shelf_layout_deleted", extra={"zone": zone})

    def get(self, zone: str) -> ShelfLayout | None:
        with session_scope(self._session_factory) as session:
            row = session.scalar(select(ShelfLayoutModel).where(ShelfLayoutModel.zone == zone))
            return _to_layout(row) if row is not None else None

    def require(self, zone: str) -> ShelfLayout:
        layout = self.get(zone)
        if layout is None:
            raise ShelfLayoutNotFoundError(zone)
        return layout

    def list_layouts(self) -> list[ShelfLayout]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(select(ShelfLayoutModel).order_by(ShelfLayoutModel.zone))
            return [_to_layout(row) for row in rows]

    def position_of(self, zone: str, channel: str) -> ShelfPosition:
        return self.require(zone).position_of(channel)
