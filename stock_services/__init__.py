"""
stock_services -- caller-facing movement services.

Responsibility:
    Request/response handling, submission lifecycle, commit timeouts and
    cancellation on top of the stock kernel.

Architecture position:
    Services -- orchestration over stock_kernel.

        stock_services/ -> stock_kernel/   (allowed)
        stock_services/ -> stock_config/   (allowed)
        stock_kernel/   -> stock_services/ (FORBIDDEN)
"""

from stock_services.movement_service import (
    MovementPreview,
    MovementRequest,
    MovementResponse,
    MovementService,
    SubmissionPhase,
)

__all__ = [
    "MovementService",
    "MovementRequest",
    "MovementResponse",
    "MovementPreview",
    "SubmissionPhase",
]
