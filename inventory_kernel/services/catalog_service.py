"""
CatalogService -- product registry with duplicate-name detection.

Responsibility:
    Registers product names and warns about near-duplicates before a new
    product is created ("PVC 1/2 inch" vs 'pvc 1/2"').

Architecture position:
    Kernel > Services.  Normalization rules live in domain/naming.py.

Invariants enforced:
    - At most one product per normalized name (unique column plus an
      application check; a race on insert surfaces as DuplicateProductError).

Failure modes:
    - DuplicateProductError: normalized name already registered.
    - InvalidMovementError: blank name, or name/unit wider than its column.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.db.engine import get_session_factory, session_scope
from inventory_kernel.domain import naming
from inventory_kernel.domain.reconciler import MAX_ITEM_NAME_LENGTH, MAX_UNIT_LENGTH
from inventory_kernel.exceptions import DuplicateProductError, InvalidMovementError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import ProductModel

logger = get_logger("services.catalog")


@dataclass(frozen=True)
class ProductInfo:
    id: UUID
    name: str
    normalized_name: str
    unit: str | None
    description: str | None
    created_at: datetime | None


def _to_info(row: ProductModel) -> ProductInfo:
    return ProductInfo(
        id=row.id,
        name=row.name,
        normalized_name=row.normalized_name,
        unit=row.unit,
        description=row.description,
        created_at=row.created_at,
    )


class CatalogService:
    """Product catalog over the products table."""

    normalize_name = staticmethod(naming.normalize_name)
    is_exact_name_match = staticmethod(naming.is_exact_name_match)

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        similarity_min_length: int = 2,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._similarity_min_length = similarity_min_length

    def similar_candidates(self, query: str, candidates: Iterable[str]) -> list[str]:
        return naming.similar_candidates(
            query, tuple(candidates), min_length=self._similarity_min_length
        )

    def register_product(
        self,
        name: str,
        unit: str | None = None,
        description: str | None = None,
    ) -> ProductInfo:
        """
        Register a product.

        Raises:
            InvalidMovementError: name is blank after normalization or a field
                is wider than its column.
            DuplicateProductError: another product has the same normalized name.
        """
        display_name = name.strip() if isinstance(name, str) else ""
        normalized = naming.normalize_name(display_name)
        if not normalized:
            raise InvalidMovementError("item_name", "must not be blank")
        if max(len(display_name), len(normalized)) > MAX_ITEM_NAME_LENGTH:
            raise InvalidMovementError(
                "item_name", f"at most {MAX_ITEM_NAME_LENGTH} characters"
            )
        if unit is not None and len(unit) > MAX_UNIT_LENGTH:
            raise InvalidMovementError("unit", f"at most {MAX_UNIT_LENGTH} characters")

        existing = self.get_by_normalized_name(normalized)
        if existing is not None:
            logger.info(
                "product_duplicate_rejected",
                extra={"product_name": display_name, "existing_name": existing.name},
            )
            raise DuplicateProductError(display_name, existing.name)

        try:
            with session_scope(self._session_factory) as session:
                row = ProductModel(
                    name=display_name,
                    normalized_name=normalized,
                    unit=unit,
                    description=description,
                )
                session.add(row)
                session.flush()
                session.refresh(row)
                info = _to_info(row)
        except IntegrityError:
            winner = self.get_by_normalized_name(normalized)
            raise DuplicateProductError(
                display_name, winner.name if winner else display_name
            ) from None

        logger.info(
            "product_registered",
            extra={"product_id": str(info.id), "product_name": info.name},
        )
        return info

    def get_by_normalized_name(self, normalized_name: str) -> ProductInfo | None:
        with session_scope(self._session_factory) as session:
            row = session.scalar(
                select(ProductModel).where(ProductModel.normalized_name == normalized_name)
            )
            return _to_info(row) if row is not None else None

    def list_products(self) -> list[ProductInfo]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(select(ProductModel).order_by(ProductModel.name))
            return [_to_info(row) for row in rows]

    def find_similar(self, name: str, extra_candidates: Iterable[str] = ()) -> list[str]:
        """
        Registered (and extra) names that look like ``name``.

        Exact normalized matches are included; callers show them as
        "already exists" and the rest as "did you mean".
        """
        names = [p.name for p in self.list_products()]
        names.extend(extra_candidates)
        return self.similar_candidates(name, names)
