"""
Module: inventory_kernel.models.catalog
Responsibility: ORM persistence for the product catalog and per-zone shelf
    layouts.  Unlike movement records these are mutable reference data.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from sqlalchemy import CheckConstraint, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TimestampedBase


class ProductModel(TimestampedBase):
    """
    A registered product name.

    ``normalized_name`` is unique so two spellings of the same product
    (``1/2"`` vs ``1/2 inch``) cannot both be registered.
    """

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    normalized_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    unit: Mapped[str | None] = mapped_column(String(50), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Product {self.name!r}>"


class ShelfLayoutModel(TimestampedBase):
    """Rack dimensions for one zone."""

    __tablename__ = "shelf_layouts"

    __table_args__ = (
        CheckConstraint("floors >= 1", name="ck_shelf_layouts_floors"),
        CheckConstraint("slots_per_floor >= 1", name="ck_shelf_layouts_slots"),
    )

    zone: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    floors: Mapped[int] = mapped_column(Integer, nullable=False)

    slots_per_floor: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<ShelfLayout {self.zone}: {self.floors}x{self.slots_per_floor}>"
