"""
Values -- Enumerated domain vocabulary for stock movements.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

These enums are ``str`` subclasses so they serialize directly into log
payloads, DB columns and API responses.
"""

from enum import Enum

from stock_kernel.exceptions import InvalidDirectionError


class Direction(str, Enum):
    """Direction of a stock movement."""

    IN = "in"
    OUT = "out"

    @property
    def sign(self) -> int:
        """+1 for entries, -1 for exits."""
        return 1 if self is Direction.IN else -1

    def signed(self, quantity: int) -> int:
        """Signed delta this direction applies for ``quantity``."""
        return self.sign * quantity

    @classmethod
    def parse(cls, value: "Direction | str") -> "Direction":
        """
        Parse a direction from its wire form.

        Accepts ``"in"`` / ``"out"`` in any case, with surrounding
        whitespace, or a Direction instance.

        Raises:
            InvalidDirectionError: If the value is not a known direction.
        """
        if isinstance(value, Direction):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidDirectionError(value)


class RejectReason(str, Enum):
    """Machine-readable reason a movement was not applied.

    Values match the ``code`` attribute of the corresponding exception in
    ``stock_kernel.exceptions``.
    """

    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_DIRECTION = "INVALID_DIRECTION"
    MISSING_SUPPLIER = "MISSING_SUPPLIER"
    INVALID_NOTE = "INVALID_NOTE"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    ZERO_STOCK = "ZERO_STOCK"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    DUPLICATE_SUPPRESSED = "DUPLICATE_SUPPRESSED"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    LOCK_TIMEOUT = "LOCK_TIMEOUT"
    OUTCOME_UNKNOWN = "OUTCOME_UNKNOWN"

    @property
    def is_business_rejection(self) -> bool:
        """True for rejections the caller fixes by changing the input."""
        return self in _BUSINESS_REJECTIONS

    @property
    def is_retryable(self) -> bool:
        """True for infrastructure failures that may be retried with the same key."""
        return self in _RETRYABLE


_BUSINESS_REJECTIONS = frozenset({
    RejectReason.INVALID_QUANTITY,
    RejectReason.INVALID_DIRECTION,
    RejectReason.MISSING_SUPPLIER,
    RejectReason.INVALID_NOTE,
    RejectReason.INSUFFICIENT_STOCK,
    RejectReason.ZERO_STOCK,
    RejectReason.PRODUCT_NOT_FOUND,
})

_RETRYABLE = frozenset({
    RejectReason.PERSISTENCE_FAILURE,
    RejectReason.LOCK_TIMEOUT,
    RejectReason.OUTCOME_UNKNOWN,
})


class SupplierRequirement(str, Enum):
    """Which movement directions must carry a supplier reference."""

    OPTIONAL = "optional"
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    ALL = "all"

    def requires(self, direction: Direction) -> bool:
        if self is SupplierRequirement.ALL:
            return True
        if self is SupplierRequirement.INBOUND:
            return direction is Direction.IN
        if self is SupplierRequirement.OUTBOUND:
            return direction is Direction.OUT
        return False
