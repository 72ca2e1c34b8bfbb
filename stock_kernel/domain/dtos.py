"""
DTOs -- Immutable data transfer objects for the stock ledger.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

These are plain frozen dataclasses.  ORM rows are converted to
MovementRecord at the selector boundary so callers never hold a live
session-bound object.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from stock_kernel.domain.values import Direction, RejectReason


@dataclass(frozen=True)
class MovementMetadata:
    """
    Caller-supplied context for a movement.

    ``idempotency_key`` identifies one logical submission.  Resubmitting with
    the same key never applies the delta twice.
    """

    idempotency_key: str
    supplier_ref: str | None = None
    note: str | None = None
    actor_id: str | None = None

    def __post_init__(self) -> None:
        if not self.idempotency_key or not self.idempotency_key.strip():
            raise ValueError("idempotency_key must be a non-empty string")


class LedgerStatus(str, Enum):
    """Outcome of a ledger submission."""

    COMMITTED = "committed"
    DUPLICATE_IGNORED = "duplicate_ignored"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class LedgerResult:
    """Result of StockLedger.submit()."""

    status: LedgerStatus
    product_id: UUID
    idempotency_key: str
    movement_id: UUID | None = None
    reason: RejectReason | None = None
    message: str | None = None
    quantity_before: int | None = None
    quantity_after: int | None = None
    below_minimum: bool = False

    @property
    def is_success(self) -> bool:
        """Committed now or earlier under the same idempotency key."""
        return self.status in (LedgerStatus.COMMITTED, LedgerStatus.DUPLICATE_IGNORED)

    @property
    def is_retryable(self) -> bool:
        return self.status is LedgerStatus.FAILED and (
            self.reason is None or self.reason.is_retryable
        )


@dataclass(frozen=True)
class MovementRecord:
    """Read-side view of a committed movement."""

    id: UUID
    product_id: UUID
    quantity: int
    direction: Direction
    occurred_at: datetime
    idempotency_key: str
    quantity_before: int
    quantity_after: int
    sequence: int
    supplier_ref: str | None = None
    note: str | None = None
    actor_id: str | None = None

    @property
    def signed_quantity(self) -> int:
        return self.direction.signed(self.quantity)

    @classmethod
    def from_model(cls, movement: Any) -> "MovementRecord":
        return cls(
            id=movement.id,
            product_id=movement.product_id,
            quantity=movement.quantity,
            direction=Direction(movement.direction),
            occurred_at=movement.occurred_at,
            idempotency_key=movement.idempotency_key,
            quantity_before=movement.quantity_before,
            quantity_after=movement.quantity_after,
            sequence=movement.sequence,
            supplier_ref=movement.supplier_ref,
            note=movement.note,
            actor_id=movement.actor_id,
        )
