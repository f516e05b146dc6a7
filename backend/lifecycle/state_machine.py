# lifecycle/state_machine.py
# ============================================================================
# PAID Q&A SERVICE — QUESTION STATE MACHINE
# ============================================================================
#
#   PENDING_PAYMENT ──(payment confirmed)──► RECEIVED ──► IN_PROGRESS
#                                               │              │
#                                               └──(answer)────┴──► ANSWERED
#
#   Any non-terminal state ──(admin)──► CANCELLED | REFUNDED
#
# ANSWERED, CANCELLED and REFUNDED are terminal. Nothing moves backward.
# ============================================================================

from enum import Enum

from schemas.question_models import QuestionStatus
from lifecycle.errors import InvalidStatus


class TransitionEvent(str, Enum):
    PAYMENT_CONFIRMED = "payment_confirmed"
    ADMIN_SET_STATUS = "admin_set_status"
    ANSWER_PUBLISHED = "answer_published"
    REFUND_ISSUED = "refund_issued"


TERMINAL_STATES = frozenset({
    QuestionStatus.ANSWERED,
    QuestionStatus.CANCELLED,
    QuestionStatus.REFUNDED,
})

_NON_TERMINAL = (
    QuestionStatus.PENDING_PAYMENT,
    QuestionStatus.RECEIVED,
    QuestionStatus.IN_PROGRESS,
)

# (from, event) -> allowed targets
TRANSITIONS: dict[tuple[QuestionStatus, TransitionEvent], frozenset[QuestionStatus]] = {
    (QuestionStatus.PENDING_PAYMENT, TransitionEvent.PAYMENT_CONFIRMED): frozenset({
        QuestionStatus.RECEIVED,
    }),
    (QuestionStatus.PENDING_PAYMENT, TransitionEvent.ADMIN_SET_STATUS): frozenset({
        QuestionStatus.RECEIVED,
        QuestionStatus.CANCELLED,
        QuestionStatus.REFUNDED,
    }),
    (QuestionStatus.RECEIVED, TransitionEvent.ADMIN_SET_STATUS): frozenset({
        QuestionStatus.IN_PROGRESS,
        QuestionStatus.CANCELLED,
        QuestionStatus.REFUNDED,
    }),
    (QuestionStatus.IN_PROGRESS, TransitionEvent.ADMIN_SET_STATUS): frozenset({
        QuestionStatus.CANCELLED,
        QuestionStatus.REFUNDED,
    }),
    (QuestionStatus.RECEIVED, TransitionEvent.ANSWER_PUBLISHED): frozenset({
        QuestionStatus.ANSWERED,
    }),
    (QuestionStatus.IN_PROGRESS, TransitionEvent.ANSWER_PUBLISHED): frozenset({
        QuestionStatus.ANSWERED,
    }),
    **{
        (state, TransitionEvent.REFUND_ISSUED): frozenset({QuestionStatus.REFUNDED})
        for state in _NON_TERMINAL
    },
}

# Statuses an admin may request through the set-status operation
ADMIN_SETTABLE = frozenset({
    QuestionStatus.RECEIVED,
    QuestionStatus.IN_PROGRESS,
    QuestionStatus.CANCELLED,
    QuestionStatus.REFUNDED,
})


def is_terminal(status: QuestionStatus) -> bool:
    return status in TERMINAL_STATES


def allowed_targets(current: QuestionStatus, event: TransitionEvent) -> frozenset[QuestionStatus]:
    return TRANSITIONS.get((current, event), frozenset())


def can_transition(current: QuestionStatus, target: QuestionStatus, event: TransitionEvent) -> bool:
    return target in allowed_targets(current, event)


def parse_status(value) -> QuestionStatus:
    """Coerce a raw status value into the closed enum."""
    if isinstance(value, QuestionStatus):
        return value
    try:
        return QuestionStatus(value)
    except ValueError:
        raise InvalidStatus(f"Unknown status: {value!r}") from None


def validate_transition(
    current: QuestionStatus,
    target: QuestionStatus,
    event: TransitionEvent,
) -> None:
    """
    Raise InvalidStatus unless `current -> target` is legal for `event`.

    Admin set-status requests are also checked against ADMIN_SETTABLE so an
    answer can only be recorded through the publish-answer path.
    """
    if event == TransitionEvent.ADMIN_SET_STATUS and target not in ADMIN_SETTABLE:
        raise InvalidStatus(
            f"Status '{target.value}' cannot be set directly"
        )
    if is_terminal(current):
        raise InvalidStatus(
            f"Question is already {current.value}; no further transitions allowed"
        )
    if not can_transition(current, target, event):
        raise InvalidStatus(
            f"Cannot move question from {current.value} to {target.value}"
        )
