"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger must tell "nothing available" from "not enough
available", and a business rejection from an infrastructure failure whose
outcome is unknown. Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Business rejections are normally returned as result values (LedgerResult,
MovementResponse) carrying the same codes. The exceptions are raised inside
the kernel and translated at the service boundary.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- MovementValidationError
    |   +-- InvalidQuantityError
    |   +-- InvalidDirectionError
    |   +-- MissingSupplierError
    |   +-- InvalidNoteError
    |
    +-- StockRejectionError
    |   +-- InsufficientStockError
    |   +-- ZeroStockError
    |
    +-- ProductError
    |   +-- ProductNotFoundError
    |
    +-- InfrastructureError
    |   +-- PersistenceFailureError
    |   +-- ProductLockTimeoutError
    |   +-- CommitTimeoutError
    |
    +-- SubmissionError
    |   +-- LeaseStateError
    |   +-- CancellationNotAllowedError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                      | When Raised
----------------|---------------------------|------------------------------------------
Validation      | INVALID_QUANTITY          | Quantity <= 0, non-integer, above cap
                | INVALID_DIRECTION         | Direction is not "in" / "out"
                | MISSING_SUPPLIER          | Policy requires supplier_ref
                | INVALID_NOTE              | Note longer than policy allows
----------------|---------------------------|------------------------------------------
Stock           | INSUFFICIENT_STOCK        | Out quantity exceeds on-hand quantity
                | ZERO_STOCK                | Out requested while on-hand is zero
----------------|---------------------------|------------------------------------------
Product         | PRODUCT_NOT_FOUND         | Product ID does not exist
----------------|---------------------------|------------------------------------------
Infrastructure  | PERSISTENCE_FAILURE       | DB error inside the atomic section
                | LOCK_TIMEOUT              | Per-product lock not acquired in time
                | OUTCOME_UNKNOWN           | Commit did not finish within timeout
----------------|---------------------------|------------------------------------------
Submission      | LEASE_STATE               | Lease used after it reached a terminal state
                | CANCELLATION_NOT_ALLOWED  | Cancel requested after commit started
----------------|---------------------------|------------------------------------------
Immutability    | IMMUTABILITY_VIOLATION    | Update/delete of a committed movement

===============================================================================
HANDLING PATTERNS
===============================================================================

1. SURFACE BUSINESS REJECTIONS VERBATIM:

    except StockRejectionError as e:
        return {"error": e.code, "available": e.available, "requested": e.requested}

2. INFRASTRUCTURE FAILURES ARE RETRYABLE, BUT ONLY WITH THE SAME KEY:

    except InfrastructureError as e:
        # outcome may be unknown; resubmit with the same idempotency key
        schedule_retry(request.idempotency_key)

3. IMMUTABILITY ERRORS ARE BUGS, NOT USER ERRORS:

    except ImmutabilityViolationError as e:
        alert_on_call(e)
"""


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Validation exceptions (input shape, resolved before the atomic section)


class MovementValidationError(StockKernelError):
    """Base exception for malformed movement input."""

    code: str = "MOVEMENT_VALIDATION_ERROR"


class InvalidQuantityError(MovementValidationError):
    """Requested quantity is not a positive integer within the allowed range."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object, reason: str = "must be a positive integer"):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity!r}: {reason}")


class InvalidDirectionError(MovementValidationError):
    """Direction is not one of the supported movement directions."""

    code: str = "INVALID_DIRECTION"

    def __init__(self, direction: object):
        self.direction = direction
        super().__init__(f"Invalid movement direction {direction!r}: expected 'in' or 'out'")


class MissingSupplierError(MovementValidationError):
    """Supplier reference is required by policy for this direction."""

    code: str = "MISSING_SUPPLIER"

    def __init__(self, direction: str):
        self.direction = direction
        super().__init__(f"Supplier reference is required for '{direction}' movements")


class InvalidNoteError(MovementValidationError):
    """Note exceeds the configured maximum length."""

    code: str = "INVALID_NOTE"

    def __init__(self, length: int, max_length: int):
        self.length = length
        self.max_length = max_length
        super().__init__(f"Note is {length} characters long; maximum is {max_length}")


# Stock rejections (business rules at authoritative check time)


class StockRejectionError(StockKernelError):
    """Base exception for stock-level business rejections."""

    code: str = "STOCK_REJECTION"


class InsufficientStockError(StockRejectionError):
    """Out movement exceeds the quantity on hand."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Available: {available}, requested: {requested}"
        )


class ZeroStockError(StockRejectionError):
    """Out movement requested while nothing is on hand."""

    code: str = "ZERO_STOCK"

    def __init__(self, product_id: str, requested: int):
        self.product_id = product_id
        self.requested = requested
        self.available = 0
        super().__init__(f"Product {product_id} has no stock available")


# Product exceptions


class ProductError(StockKernelError):
    """Base exception for product lookup errors."""

    code: str = "PRODUCT_ERROR"


class ProductNotFoundError(ProductError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


# Infrastructure exceptions (retryable only with the same idempotency key)


class InfrastructureError(StockKernelError):
    """Base exception for infrastructure failures."""

    code: str = "INFRASTRUCTURE_ERROR"


class PersistenceFailureError(InfrastructureError):
    """Database error inside the ledger's atomic section. Nothing was applied."""

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, product_id: str, detail: str):
        self.product_id = product_id
        self.detail = detail
        super().__init__(f"Persistence failure for product {product_id}: {detail}")


class ProductLockTimeoutError(InfrastructureError):
    """Per-product serialization point was not acquired within the timeout."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, product_id: str, timeout_seconds: float):
        self.product_id = product_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for lock on product {product_id}"
        )


class CommitTimeoutError(InfrastructureError):
    """
    Commit did not reach a definitive outcome within the timeout.

    The movement MAY have been applied. Callers must retry with the same
    idempotency key, never with a fresh one.
    """

    code: str = "OUTCOME_UNKNOWN"

    def __init__(self, submission_key: str, timeout_seconds: float):
        self.submission_key = submission_key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Submission {submission_key} did not complete within {timeout_seconds}s; "
            "outcome unknown"
        )


# Submission lifecycle exceptions


class SubmissionError(StockKernelError):
    """Base exception for submission lifecycle errors."""

    code: str = "SUBMISSION_ERROR"


class LeaseStateError(SubmissionError):
    """Lease was committed or released after reaching a terminal state."""

    code: str = "LEASE_STATE"

    def __init__(self, submission_key: str, state: str, action: str):
        self.submission_key = submission_key
        self.state = state
        self.action = action
        super().__init__(
            f"Cannot {action} lease for {submission_key}: already {state}"
        )


class CancellationNotAllowedError(SubmissionError):
    """Submission is already committing and runs to a terminal state."""

    code: str = "CANCELLATION_NOT_ALLOWED"

    def __init__(self, submission_key: str, state: str):
        self.submission_key = submission_key
        self.state = state
        super().__init__(
            f"Submission {submission_key} cannot be cancelled in state {state}"
        )


# Immutability exceptions


class ImmutabilityError(StockKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
