"""
Module: inventory_kernel.models.movement
Responsibility: ORM persistence for movement records, the append-only ledger
    of receipts, consumptions, borrows, returns and losses.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - quantity > 0 (CHECK constraint ck_movement_records_positive_quantity).
    - kind is one of receive/consume/borrow/return/loss.
    - status is set only on BORROW rows and is 'open' or 'closed'.
    - RETURN and LOSS rows carry parent_id; LOSS rows carry a reason.
    - Write-once: every column except BORROW status is immutable after
      INSERT (db/immutability.py), and rows are never deleted.

Failure modes:
    - IntegrityError on any CHECK violation.
    - ImmutabilityViolationError from the ORM listeners on UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UTCDateTime, UUIDString


class MovementRecordModel(Base):
    """
    One row per movement record.

    Contract:
        Rows are inserted by a MovementStore with the id and created_at the
        reconciler assigned.  The only permitted UPDATE is a BORROW status
        moving from 'open' to 'closed'.

    Non-goals:
        - Balances and outstanding quantities are NOT stored; they are
          derived on every read by the reconciler folds.
    """

    __tablename__ = "movement_records"

    __table_args__ = (
        CheckConstraint(
            "quantity > 0",
            name="ck_movement_records_positive_quantity",
        ),
        CheckConstraint(
            "kind IN ('receive', 'consume', 'borrow', 'return', 'loss')",
            name="ck_movement_records_valid_kind",
        ),
        CheckConstraint(
            "(kind = 'borrow' AND status IS NOT NULL AND status IN ('open', 'closed')) "
            "OR (kind <> 'borrow' AND status IS NULL)",
            name="ck_movement_records_borrow_status",
        ),
        CheckConstraint(
            "(kind IN ('return', 'loss')) = (parent_id IS NOT NULL)",
            name="ck_movement_records_parent",
        ),
        # Query: all records for an item (balances, stock summary)
        Index("idx_movement_item", "item_name"),
        # Query: children of a borrow (outstanding, return validation)
        Index("idx_movement_parent", "parent_id"),
        # Query: one balance key
        Index("idx_movement_item_location", "item_name", "zone", "channel"),
        # Query: history, newest first
        Index("idx_movement_created_at", "created_at"),
        Index("idx_movement_kind", "kind"),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    item_name: Mapped[str] = mapped_column(String(255), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit: Mapped[str] = mapped_column(String(50), nullable=False)

    zone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    channel: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Originating BORROW for RETURN/LOSS rows
    parent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Derived; BORROW rows only
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)

    remark: Mapped[str | None] = mapped_column(Text, nullable=True)

    # LOSS rows only
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Image references (URLs/paths), RECEIVE rows only
    images: Mapped[list | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<MovementRecord {self.id}: {self.kind} {self.item_name} "
            f"qty={self.quantity} @ {self.zone}/{self.channel}>"
        )
