"""
Module: stock_kernel.selectors.movement_selector
Responsibility: Read-only access to the movement log and the quantities it
    implies.  Converts ORM rows to MovementRecord DTOs.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/dtos.py and selectors/base.py.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - History is ordered by the per-product commit sequence, so ties on
      occurred_at never reorder it.

Failure modes:
    - Returns None or an empty list when nothing matches (never raises on
      absence of data).

Feeds:
    list_for_product() is one product's history; list_recent() is the
    cross-product feed of the latest movements with product names.

Audit relevance:
    projected_quantity() recomputes a product's quantity from the log alone.
    The reconciliation monitor compares it against the stored quantity to
    detect ledger imbalance.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import case, func, select

from stock_kernel.domain.dtos import MovementRecord
from stock_kernel.models.movement import Movement
from stock_kernel.models.product import Product
from stock_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class MovementTotals:
    """Aggregate of a product's committed movements."""

    product_id: UUID
    total_in: int
    total_out: int
    count: int

    @property
    def net(self) -> int:
        return self.total_in - self.total_out


@dataclass(frozen=True)
class RecentMovement:
    """A movement from the cross-product feed, with its product's name."""

    movement: MovementRecord
    product_name: str


class MovementSelector(BaseSelector[Movement]):
    """Query movements and derived quantities."""

    def get(self, movement_id: UUID) -> MovementRecord | None:
        movement = self.session.get(Movement, movement_id)
        return MovementRecord.from_model(movement) if movement else None

    def get_by_idempotency_key(self, idempotency_key: str) -> MovementRecord | None:
        movement = self.session.execute(
            select(Movement).where(Movement.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        return MovementRecord.from_model(movement) if movement else None

    def list_for_product(
        self,
        product_id: UUID,
        limit: int | None = None,
    ) -> list[MovementRecord]:
        """
        Movement history for a product, newest first.

        Args:
            product_id: Product to list.
            limit: Maximum number of records; None returns the full history.
        """
        query = (
            select(Movement)
            .where(Movement.product_id == product_id)
            .order_by(Movement.sequence.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        rows = self.session.execute(query).scalars().all()
        return [MovementRecord.from_model(m) for m in rows]

    def list_recent(self, limit: int = 50) -> list[RecentMovement]:
        """
        Most recent movements across all products, newest first.

        Ties on occurred_at are broken by product and then by the
        per-product sequence, so the order is stable between calls.
        """
        rows = self.session.execute(
            select(Movement, Product.name)
            .join(Product, Product.id == Movement.product_id)
            .order_by(
                Movement.occurred_at.desc(),
                Movement.product_id,
                Movement.sequence.desc(),
            )
            .limit(limit)
        ).all()
        return [
            RecentMovement(movement=MovementRecord.from_model(m), product_name=name)
            for m, name in rows
        ]

    def last_sequence(self, product_id: UUID) -> int:
        """Highest committed sequence for the product, 0 when it has no history."""
        value = self.session.execute(
            select(func.max(Movement.sequence)).where(Movement.product_id == product_id)
        ).scalar()
        return int(value or 0)

    def totals(self, product_id: UUID) -> MovementTotals:
        total_in = func.coalesce(
            func.sum(case((Movement.direction == "in", Movement.quantity), else_=0)), 0
        )
        total_out = func.coalesce(
            func.sum(case((Movement.direction == "out", Movement.quantity), else_=0)), 0
        )
        row = self.session.execute(
            select(total_in, total_out, func.count(Movement.id)).where(
                Movement.product_id == product_id
            )
        ).one()
        return MovementTotals(
            product_id=product_id,
            total_in=int(row[0]),
            total_out=int(row[1]),
            count=int(row[2]),
        )

    def projected_quantity(self, product_id: UUID) -> int | None:
        """
        Quantity implied by the log: initial quantity plus signed movements.

        Returns None if the product does not exist.
        """
        initial = self.session.execute(
            select(Product.initial_quantity).where(Product.id == product_id)
        ).scalar_one_or_none()
        if initial is None:
            return None
        return int(initial) + self.totals(product_id).net
