"""
Kernel Invariants Contract.

These invariants are structural law for the stock ledger. They are
enforced in the ledger's atomic section, the ORM listeners and the
database check constraints. No MovementPolicy value may switch them off.

This module only declares them. Enforcement is distributed across
StockLedger, SqlQuantityStore, db.immutability and the model constraints.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel.

    Policy decides *which* movements are acceptable (e.g. whether a
    supplier is required), never *whether* these rules apply.
    """

    LEDGER_BALANCE = "ledger_balance"
    """Product quantity equals initial quantity plus the signed sum of all
    committed movements. Enforced by appending the movement and adjusting
    the quantity in one transaction."""

    NON_NEGATIVE_STOCK = "non_negative_stock"
    """Quantity is never negative at a committed state. Enforced by the
    authoritative gate check, the conditional UPDATE and a DB check
    constraint."""

    POSITIVE_MOVEMENT = "positive_movement"
    """Movement quantity is a positive integer. Enforced by the gate and a
    DB check constraint."""

    MOVEMENT_IMMUTABILITY = "movement_immutability"
    """Committed movements are append-only. Enforced by ORM listeners
    (stock_kernel.db.immutability)."""

    IDEMPOTENCY = "idempotency"
    """The same idempotency key never applies a delta twice. Enforced by
    StockLedger lookup plus a UNIQUE constraint."""

    PER_PRODUCT_LINEARIZABILITY = "per_product_linearizability"
    """Commits against one product behave as if executed in some
    sequential order. Enforced by ProductLockRegistry and
    SELECT ... FOR UPDATE."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "stock_services",
    "stock_config",
)
