"""
QuantityStore -- adapter over the per-product current quantity.

Responsibility:
    Reads the current quantity of a product (plain or locked) and applies
    signed deltas atomically.  The only code path that changes
    ``products.quantity``.

Architecture position:
    Kernel > Services -- imperative shell.  ``QuantityStore`` is the
    abstract collaborator; ``SqlQuantityStore`` is the SQLAlchemy
    implementation bound to the caller's session.

Invariants enforced:
    - Non-negative stock: ``atomic_adjust`` is a single conditional
      ``UPDATE ... SET quantity = quantity + :delta WHERE quantity + :delta >= 0``.
      A delta that would drive the row negative updates nothing and raises,
      even if a concurrent writer slipped past every application-level lock.
    - Locked read: ``read_quantity_for_update`` issues ``SELECT ... FOR UPDATE``
      on PostgreSQL.  SQLite has no row locks; the engine's BEGIN IMMEDIATE
      already holds the database write lock for the whole transaction.

Failure modes:
    - ProductNotFoundError if the product row does not exist.
    - ZeroStockError or InsufficientStockError if the conditional UPDATE
      matched no row because the delta would make the quantity negative.
    - SQLAlchemyError subclasses propagate to the ledger, which rolls back.
"""

from abc import ABC, abstractmethod
from uuid import UUID

from sqlalchemy import select, update

from stock_kernel.domain.validation import stock_shortfall
from stock_kernel.exceptions import InsufficientStockError, ProductNotFoundError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.product import Product
from stock_kernel.services.base import BaseService

logger = get_logger("services.quantity_store")


class QuantityStore(ABC):
    """
    Holds the current quantity per product.

    Contract:
        Implementations participate in the caller's transaction.  They never
        commit.
    """

    @abstractmethod
    def read_quantity(self, product_id: UUID) -> int:
        """Current quantity, unserialized.  Advisory only."""

    @abstractmethod
    def read_quantity_for_update(self, product_id: UUID) -> int:
        """Current quantity, read under the product's serialization point."""

    @abstractmethod
    def atomic_adjust(self, product_id: UUID, signed_delta: int) -> int:
        """Apply ``signed_delta`` and return the new quantity."""

    def read_minimum_stock(self, product_id: UUID) -> int | None:
        """Low-stock threshold for the product, or None if it has none."""
        return None


class SqlQuantityStore(BaseService[Product], QuantityStore):
    """
    SQLAlchemy-backed quantity store over the ``products`` table.

    Guarantees:
        - Flush-only: never commits or rolls back.
        - ``atomic_adjust`` returns the quantity read back inside the same
          transaction, after the UPDATE.
    """

    def _quantity_query(self, product_id: UUID):
        return select(Product.quantity).where(Product.id == product_id)

    def read_quantity(self, product_id: UUID) -> int:
        quantity = self.session.execute(
            self._quantity_query(product_id)
        ).scalar_one_or_none()
        if quantity is None:
            raise ProductNotFoundError(str(product_id))
        return int(quantity)

    def read_quantity_for_update(self, product_id: UUID) -> int:
        quantity = self.session.execute(
            self._quantity_query(product_id).with_for_update()
        ).scalar_one_or_none()
        if quantity is None:
            raise ProductNotFoundError(str(product_id))
        return int(quantity)

    def atomic_adjust(self, product_id: UUID, signed_delta: int) -> int:
        result = self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .where(Product.quantity + signed_delta >= 0)
            .values(quantity=Product.quantity + signed_delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Either the row is gone or the delta would make it negative.
            current = self.read_quantity(product_id)
            logger.warning(
                "atomic_adjust_refused",
                extra={
                    "product_id": str(product_id),
                    "signed_delta": signed_delta,
                    "current_quantity": current,
                },
            )
            error = stock_shortfall(str(product_id), -signed_delta, current)
            if error is None:
                error = InsufficientStockError(str(product_id), -signed_delta, current)
            raise error

        new_quantity = self.read_quantity(product_id)
        logger.debug(
            "quantity_adjusted",
            extra={
                "product_id": str(product_id),
                "signed_delta": signed_delta,
                "new_quantity": new_quantity,
            },
        )
        return new_quantity

    def read_minimum_stock(self, product_id: UUID) -> int | None:
        value = self.session.execute(
            select(Product.minimum_stock).where(Product.id == product_id)
        ).scalar_one_or_none()
        return None if value is None else int(value)
