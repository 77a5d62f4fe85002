"""
Module: inventory_kernel.models.guard
Responsibility: Version rows that serialize writers touching the same borrow
    or the same stock key.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - guard_key is unique.
    - version only increases; a writer advances it with
      ``UPDATE ... SET version = version + 1 WHERE guard_key = ? AND version = ?``
      and treats a zero rowcount as a conflict.
"""

from sqlalchemy import BigInteger, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class LedgerGuardModel(Base):
    """
    Optimistic-concurrency guard.

    Each row names a resource whose validation depends on prior ledger state:
    ``borrow:<uuid>`` for returns/losses against one borrow, and
    ``stock:<item>|<zone>|<channel>`` for issuances from one location.  A
    missing row is version 0.
    """

    __tablename__ = "ledger_guards"

    __table_args__ = (
        CheckConstraint("version > 0", name="ck_ledger_guards_positive_version"),
    )

    guard_key: Mapped[str] = mapped_column(
        String(400),
        nullable=False,
        unique=True,
    )

    version: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=1,
    )

    def __repr__(self) -> str:
        return f"<LedgerGuard {self.guard_key} v{self.version}>"
