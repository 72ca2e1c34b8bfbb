"""
Module: stock_kernel.models.movement
Responsibility: ORM persistence for the append-only stock movement log.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Positive movement: CHECK (quantity > 0).
    - Known direction: CHECK (direction IN ('in', 'out')).
    - Idempotency: UNIQUE (idempotency_key).  A second insert with the same
      key fails with IntegrityError, which the ledger maps to
      DUPLICATE_IGNORED.
    - Immutability: ORM before_update / before_delete listeners
      (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate idempotency_key or constraint violation.
    - ImmutabilityViolationError on any UPDATE or DELETE through the ORM.

Audit relevance:
    quantity_before / quantity_after record the product state observed inside
    the ledger's atomic section, so the log alone proves the sequence of
    committed states per product.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class Movement(Base):
    """
    Committed stock movement.

    Contract:
        Created exactly once, by a successful StockLedger commit, in the same
        transaction as the product quantity adjustment.  Never updated or
        deleted afterwards.

    Guarantees:
        - quantity > 0; the sign comes from direction.
        - quantity_after == quantity_before +/- quantity.
        - idempotency_key is unique across all movements.
        - (product_id, sequence) is unique, so two commits against one
          product can never claim the same position in its history.
    """

    __tablename__ = "movements"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_movement_idempotency"),
        UniqueConstraint("product_id", "sequence", name="uq_movement_product_sequence"),
        CheckConstraint("quantity > 0", name="ck_movement_quantity_positive"),
        CheckConstraint(
            "direction IN ('in', 'out')", name="ck_movement_direction"
        ),
        CheckConstraint(
            "quantity_after >= 0", name="ck_movement_quantity_after_non_negative"
        ),
        Index("idx_movement_product_occurred", "product_id", "occurred_at"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    # "in" / "out" (Direction value)
    direction: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
    )

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    supplier_ref: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )

    note: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    actor_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    idempotency_key: Mapped[str] = mapped_column(
        String(300),
        nullable=False,
        unique=True,
    )

    # Product quantity observed inside the atomic section
    quantity_before: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    quantity_after: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    # Per-product commit order, 1-based, assigned inside the atomic section
    sequence: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.direction == "in" else -self.quantity

    def __repr__(self) -> str:
        return (
            f"<Movement {self.direction} {self.quantity} "
            f"product={self.product_id} key={self.idempotency_key}>"
        )
