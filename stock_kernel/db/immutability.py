"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement log is the ledger's evidence.  Product quantity must always be
explainable as initial quantity plus the signed sum of committed movements,
so a committed movement can never be edited or removed, and a product's
quantity can never be written around the ledger.

SQLAlchemy fires mapper events before UPDATE/DELETE operations reach the
database.  We register listeners that intercept these events:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity      | When Immutable                        | Why
------------|---------------------------------------|-------------------------------
Movement    | ALWAYS (from creation)                | Append-only log
Product     | quantity / initial_quantity, via ORM  | Only the ledger adjusts stock

The ledger adjusts Product.quantity with a Core UPDATE statement, which does
not fire mapper events.  Any ORM attribute write to those two columns is
therefore an attempt to bypass the ledger.

===============================================================================
USAGE
===============================================================================

    from stock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_LEDGER_OWNED_PRODUCT_FIELDS = ("quantity", "initial_quantity")


def _check_movement_immutability(mapper, connection, target):
    """Movements are append-only: block any UPDATE."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Movement",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Movement",
        entity_id=str(target.id),
        reason="Committed movements cannot be modified",
    )


def _check_movement_delete(mapper, connection, target):
    """Movements are append-only: block any DELETE."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Movement",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Movement",
        entity_id=str(target.id),
        reason="Committed movements cannot be deleted",
    )


def _check_product_quantity_immutability(mapper, connection, target):
    """
    Block ORM writes to ledger-owned product fields.

    Master-data fields (name, price, minimum_stock) may change freely.
    """
    insp = inspect(target)
    for field in _LEDGER_OWNED_PRODUCT_FIELDS:
        if insp.attrs[field].history.has_changes():
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "Product",
                    "entity_id": str(target.id),
                    "operation": "UPDATE",
                    "field": field,
                },
            )
            raise ImmutabilityViolationError(
                entity_type="Product",
                entity_id=str(target.id),
                reason=f"Field '{field}' is changed only by the stock ledger",
            )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are not added twice.
    """
    from stock_kernel.models.movement import Movement
    from stock_kernel.models.product import Product

    for target, event_name, fn in _listeners(Movement, Product):
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _listeners(movement_cls, product_cls):
    return (
        (movement_cls, "before_update", _check_movement_immutability),
        (movement_cls, "before_delete", _check_movement_delete),
        (product_cls, "before_update", _check_product_quantity_immutability),
    )


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from stock_kernel.models.movement import Movement
    from stock_kernel.models.product import Product

    for target, event_name, fn in _listeners(Movement, Product):
        _safe_remove_listener(target, event_name, fn)
