"""
Idempotency key generation utilities.

An idempotency key identifies one logical movement submission.  The ledger
stores it on the movement row under a unique constraint, so a retry that
reuses the key can never apply the delta twice.
"""

from uuid import UUID, uuid4


def generate_idempotency_key(
    origin: str,
    product_id: UUID | str,
    submission_id: UUID | str,
) -> str:
    """
    Generate an idempotency key for a movement submission.

    Format: origin:product_id:submission_id

    Args:
        origin: Channel or system that produced the submission (e.g. "ui").
        product_id: Product the movement targets.
        submission_id: Identifier of the logical submission, stable across
            retries of that submission.

    Example:
        >>> generate_idempotency_key("ui", product_id, form_id)
        "ui:550e8400-e29b-41d4-a716-446655440000:7c9e6679-7425-40de-944b-e07fc1f90ae7"
    """
    if not origin or ":" in origin:
        raise ValueError(f"Invalid idempotency key origin: {origin!r}")
    return f"{origin}:{product_id}:{submission_id}"


def new_idempotency_key(origin: str, product_id: UUID | str) -> str:
    """Generate a key for a fresh submission with a random submission id."""
    return generate_idempotency_key(origin, product_id, uuid4())


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """
    Parse an idempotency key into (origin, product_id, submission_id).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1], parts[2]
