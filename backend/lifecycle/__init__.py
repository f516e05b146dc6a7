# lifecycle/__init__.py
# ============================================================================
# PAID Q&A SERVICE — LIFECYCLE MODULE
# ============================================================================
# Error taxonomy, state machine, pricing and access rules. The engine itself
# is imported from lifecycle.engine, since storage depends on this package.
# ============================================================================

from lifecycle.errors import (
    AccessDenied,
    InvalidInput,
    InvalidStatus,
    NotFound,
    PaymentNotCompleted,
    PaymentSessionError,
    PersistenceError,
    QuestionServiceError,
    RefundError,
    SessionVerificationError,
)
from lifecycle.state_machine import (
    ADMIN_SETTABLE,
    TERMINAL_STATES,
    TransitionEvent,
    validate_transition,
)

__all__ = [
    # Errors
    "AccessDenied",
    "InvalidInput",
    "InvalidStatus",
    "NotFound",
    "PaymentNotCompleted",
    "PaymentSessionError",
    "PersistenceError",
    "QuestionServiceError",
    "RefundError",
    "SessionVerificationError",
    # State machine
    "ADMIN_SETTABLE",
    "TERMINAL_STATES",
    "TransitionEvent",
    "validate_transition",
]
