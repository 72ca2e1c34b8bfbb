"""
Validation Gate -- Pure movement acceptance rules.

Responsibility:
    Decides whether a requested movement may be applied to a product holding
    a given quantity, and whether its metadata satisfies the configured
    MovementPolicy.  The same functions run twice per submission: once before
    the ledger's atomic section (shape and metadata only), and once inside it
    against a fresh locked read of the product quantity.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Imports only from
    stock_kernel.domain.values and stock_kernel.exceptions.

Invariants enforced:
    - Positive movement: quantities must be positive integers.  Booleans,
      NaN, infinities, non-integral and non-numeric values are rejected.
      Integral floats and Decimals (``5.0``) are accepted as integers.
    - Non-negative stock: an ``out`` larger than the current quantity is
      rejected, with ZERO_STOCK distinguished from INSUFFICIENT_STOCK.

Failure modes:
    None raised to callers of evaluate / check_metadata / evaluate_request.
    Every rejection is returned as a GateDecision whose ``reason`` matches the
    ``code`` of the corresponding exception.  ``normalize_quantity`` raises
    InvalidQuantityError for callers that want an exception.
"""

import math
from dataclasses import dataclass
from decimal import Decimal
from numbers import Number

from stock_kernel.domain.values import Direction, RejectReason, SupplierRequirement
from stock_kernel.exceptions import (
    InsufficientStockError,
    InvalidDirectionError,
    InvalidNoteError,
    InvalidQuantityError,
    MissingSupplierError,
    StockKernelError,
    StockRejectionError,
    ZeroStockError,
)

DEFAULT_MAX_QUANTITY = 999_999
DEFAULT_NOTE_MAX_LENGTH = 500


@dataclass(frozen=True)
class MovementPolicy:
    """
    Configurable acceptance policy shared by both gate call sites.

    Contract:
        Policy decides which movements are acceptable.  It can never switch
        off a KernelInvariant.
    """

    supplier_requirement: SupplierRequirement = SupplierRequirement.OPTIONAL
    max_quantity: int = DEFAULT_MAX_QUANTITY
    note_max_length: int = DEFAULT_NOTE_MAX_LENGTH

    def __post_init__(self) -> None:
        if self.max_quantity <= 0:
            raise ValueError(f"max_quantity must be positive, got {self.max_quantity}")
        if self.note_max_length <= 0:
            raise ValueError(
                f"note_max_length must be positive, got {self.note_max_length}"
            )


DEFAULT_POLICY = MovementPolicy()


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a gate evaluation."""

    accepted: bool
    reason: RejectReason | None = None
    message: str | None = None

    @classmethod
    def accept(cls) -> "GateDecision":
        return _ACCEPTED

    @classmethod
    def reject(cls, reason: RejectReason, message: str) -> "GateDecision":
        return cls(accepted=False, reason=reason, message=message)

    @classmethod
    def from_error(cls, error: StockKernelError) -> "GateDecision":
        """Build a rejection from a typed kernel exception."""
        return cls.reject(RejectReason(error.code), str(error))

    @property
    def rejected(self) -> bool:
        return not self.accepted


_ACCEPTED = GateDecision(accepted=True)


def normalize_quantity(value: object, policy: MovementPolicy = DEFAULT_POLICY) -> int:
    """
    Coerce a requested quantity to a positive int within policy bounds.

    Raises:
        InvalidQuantityError: If the value is not a positive integer no
            greater than ``policy.max_quantity``.
    """
    # bool is an int subclass; True must not become a quantity of 1
    if isinstance(value, bool) or not isinstance(value, Number):
        raise InvalidQuantityError(value, "must be a number")

    if isinstance(value, int):
        quantity = value
    elif isinstance(value, float):
        if math.isnan(value) or math.isinf(value) or not value.is_integer():
            raise InvalidQuantityError(value, "must be a whole number")
        quantity = int(value)
    elif isinstance(value, Decimal):
        if not value.is_finite() or value != value.to_integral_value():
            raise InvalidQuantityError(value, "must be a whole number")
        quantity = int(value)
    else:
        raise InvalidQuantityError(value, "must be a whole number")

    if quantity <= 0:
        raise InvalidQuantityError(value, "must be greater than zero")
    if quantity > policy.max_quantity:
        raise InvalidQuantityError(
            value, f"must not exceed {policy.max_quantity}"
        )
    return quantity


def _check_shape(
    requested_quantity: object,
    direction: object,
    policy: MovementPolicy,
) -> tuple[GateDecision, int | None, Direction | None]:
    try:
        quantity = normalize_quantity(requested_quantity, policy)
        parsed = Direction.parse(direction)
    except (InvalidQuantityError, InvalidDirectionError) as exc:
        return GateDecision.from_error(exc), None, None
    return _ACCEPTED, quantity, parsed


def stock_shortfall(
    product_id: str, requested: int, available: int
) -> StockRejectionError | None:
    """ZERO_STOCK when nothing is on hand, INSUFFICIENT_STOCK when short, else None."""
    if available <= 0:
        return ZeroStockError(product_id, requested)
    if requested > available:
        return InsufficientStockError(product_id, requested, available)
    return None


def evaluate(
    current_quantity: int,
    requested_quantity: object,
    direction: Direction | str,
    policy: MovementPolicy = DEFAULT_POLICY,
    *,
    product_id: str = "",
) -> GateDecision:
    """
    Decide whether a movement may be applied to ``current_quantity``.

    ``in`` movements are accepted regardless of current quantity.  ``out``
    movements need ``current_quantity >= requested``; an empty product is
    reported as ZERO_STOCK, a short one as INSUFFICIENT_STOCK.

    Pure: no I/O, no mutation.  Callers that need an authoritative answer
    must pass a quantity read under the product's serialization point.
    """
    decision, quantity, parsed = _check_shape(requested_quantity, direction, policy)
    if decision.rejected:
        return decision

    if parsed is Direction.OUT:
        shortfall = stock_shortfall(product_id, quantity, current_quantity)
        if shortfall is not None:
            return GateDecision.from_error(shortfall)

    return _ACCEPTED


def check_metadata(
    direction: Direction | str,
    supplier_ref: str | None,
    note: str | None,
    policy: MovementPolicy = DEFAULT_POLICY,
) -> GateDecision:
    """Apply the supplier-requirement policy and the note length cap."""
    try:
        parsed = Direction.parse(direction)
    except InvalidDirectionError as exc:
        return GateDecision.from_error(exc)

    if policy.supplier_requirement.requires(parsed):
        if supplier_ref is None or not supplier_ref.strip():
            return GateDecision.from_error(MissingSupplierError(parsed.value))

    if note is not None and len(note) > policy.note_max_length:
        return GateDecision.from_error(
            InvalidNoteError(len(note), policy.note_max_length)
        )

    return _ACCEPTED


def evaluate_request(
    requested_quantity: object,
    direction: Direction | str,
    supplier_ref: str | None = None,
    note: str | None = None,
    policy: MovementPolicy = DEFAULT_POLICY,
) -> GateDecision:
    """
    Shape and metadata checks that need no stock read.

    Run before the ledger takes any lock, so malformed requests never reach
    the atomic section.
    """
    decision, _, _ = _check_shape(requested_quantity, direction, policy)
    if decision.rejected:
        return decision
    return check_metadata(direction, supplier_ref, note, policy)
