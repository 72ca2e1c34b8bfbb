"""
Pure domain layer for the stock kernel.

Nothing in this package performs I/O.  The gate, value types and DTOs can be
used and tested without a database.
"""

from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.dtos import (
    LedgerResult,
    LedgerStatus,
    MovementMetadata,
    MovementRecord,
)
from stock_kernel.domain.validation import (
    DEFAULT_POLICY,
    GateDecision,
    MovementPolicy,
    check_metadata,
    evaluate,
    evaluate_request,
    normalize_quantity,
)
from stock_kernel.domain.values import Direction, RejectReason, SupplierRequirement

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "Direction",
    "RejectReason",
    "SupplierRequirement",
    "MovementPolicy",
    "DEFAULT_POLICY",
    "GateDecision",
    "evaluate",
    "check_metadata",
    "evaluate_request",
    "normalize_quantity",
    "MovementMetadata",
    "LedgerStatus",
    "LedgerResult",
    "MovementRecord",
]
