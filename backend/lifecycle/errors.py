# lifecycle/errors.py
# ============================================================================
# PAID Q&A SERVICE — ERROR TAXONOMY
# ============================================================================
# Every failure surfaced by the lifecycle engine carries a stable `kind`
# and a human message. The HTTP layer picks a status code from the kind;
# messages never include storage internals.
# ============================================================================


class QuestionServiceError(Exception):
    """Base error for all lifecycle operations."""

    kind = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


class InvalidInput(QuestionServiceError):
    kind = "invalid_input"


class NotFound(QuestionServiceError):
    kind = "not_found"


class AccessDenied(QuestionServiceError):
    kind = "access_denied"


class InvalidStatus(QuestionServiceError):
    kind = "invalid_status"


class PaymentSessionError(QuestionServiceError):
    """The gateway could not create a checkout session."""
    kind = "payment_session_error"


class SessionVerificationError(QuestionServiceError):
    """The gateway could not be reached to verify a session."""
    kind = "session_verification_error"


class PaymentNotCompleted(QuestionServiceError):
    kind = "payment_not_completed"


class RefundError(QuestionServiceError):
    kind = "refund_error"


class PersistenceError(QuestionServiceError):
    """The question store is unavailable or rejected the write."""
    kind = "persistence_error"
