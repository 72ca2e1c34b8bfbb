"""
Module: stock_kernel.models.product
Responsibility: ORM persistence for the product row whose quantity the ledger
    owns.  Master data (name, price, minimum stock) is maintained elsewhere;
    this model carries only what the ledger needs.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Non-negative stock: CHECK (quantity >= 0) rejects any commit that would
      leave the product negative, even if application checks are bypassed.
    - Ledger ownership: ORM writes to quantity / initial_quantity are blocked
      by db/immutability.py.  The ledger adjusts quantity with a Core UPDATE.

Failure modes:
    - IntegrityError when a write violates ck_product_quantity_non_negative.
    - ImmutabilityViolationError on an ORM write to a ledger-owned field.
"""

from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class Product(Base):
    """
    Stock-holding product.

    Contract:
        ``quantity`` always equals ``initial_quantity`` plus the signed sum of
        this product's committed movements.

    Guarantees:
        - quantity >= 0 (CHECK constraint).
        - initial_quantity >= 0 (CHECK constraint) and never changes after
          creation.

    Non-goals:
        - Category / supplier relationships.  Those belong to master-data
          management, which is outside the ledger.
    """

    __tablename__ = "products"

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_product_quantity_non_negative"),
        CheckConstraint(
            "initial_quantity >= 0", name="ck_product_initial_quantity_non_negative"
        ),
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    # Current on-hand quantity, adjusted only by StockLedger
    quantity: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    # On-hand quantity when the product entered the ledger
    initial_quantity: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    # Low-stock threshold; None disables the signal
    minimum_stock: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
        default=Decimal("0"),
    )

    def __init__(self, **kwargs):
        # A new product starts with quantity == initial_quantity so the
        # ledger balance holds before the first movement.
        if "initial_quantity" in kwargs and "quantity" not in kwargs:
            kwargs["quantity"] = kwargs["initial_quantity"]
        elif "quantity" in kwargs and "initial_quantity" not in kwargs:
            kwargs["initial_quantity"] = kwargs["quantity"]
        super().__init__(**kwargs)

    def is_below_minimum(self, quantity: int | None = None) -> bool:
        """True when ``quantity`` (default: current) is at or below minimum_stock."""
        if self.minimum_stock is None:
            return False
        value = self.quantity if quantity is None else quantity
        return value <= self.minimum_stock

    def __repr__(self) -> str:
        return f"<Product {self.name} qty={self.quantity}>"
