"""Tests for the question status transition table."""

import pytest

from lifecycle.errors import InvalidStatus
from lifecycle.state_machine import (
    ADMIN_SETTABLE,
    TERMINAL_STATES,
    TransitionEvent,
    allowed_targets,
    can_transition,
    is_terminal,
    parse_status,
    validate_transition,
)
from schemas.question_models import QuestionStatus as S

ADMIN = TransitionEvent.ADMIN_SET_STATUS


class TestTransitionTable:

    @pytest.mark.parametrize("current,target,event", [
        (S.PENDING_PAYMENT, S.RECEIVED, TransitionEvent.PAYMENT_CONFIRMED),
        (S.PENDING_PAYMENT, S.RECEIVED, ADMIN),
        (S.PENDING_PAYMENT, S.CANCELLED, ADMIN),
        (S.PENDING_PAYMENT, S.REFUNDED, ADMIN),
        (S.RECEIVED, S.IN_PROGRESS, ADMIN),
        (S.RECEIVED, S.CANCELLED, ADMIN),
        (S.RECEIVED, S.REFUNDED, ADMIN),
        (S.IN_PROGRESS, S.CANCELLED, ADMIN),
        (S.IN_PROGRESS, S.REFUNDED, ADMIN),
        (S.RECEIVED, S.ANSWERED, TransitionEvent.ANSWER_PUBLISHED),
        (S.IN_PROGRESS, S.ANSWERED, TransitionEvent.ANSWER_PUBLISHED),
        (S.RECEIVED, S.REFUNDED, TransitionEvent.REFUND_ISSUED),
    ])
    def test_legal_transitions(self, current, target, event):
        assert can_transition(current, target, event)
        validate_transition(current, target, event)

    @pytest.mark.parametrize("current,target", [
        (S.CANCELLED, S.RECEIVED),
        (S.REFUNDED, S.IN_PROGRESS),
        (S.ANSWERED, S.IN_PROGRESS),
        (S.IN_PROGRESS, S.RECEIVED),
        (S.PENDING_PAYMENT, S.IN_PROGRESS),
        (S.RECEIVED, S.RECEIVED),
    ])
    def test_illegal_admin_transitions(self, current, target):
        with pytest.raises(InvalidStatus):
            validate_transition(current, target, ADMIN)

    def test_answered_not_admin_settable(self):
        assert S.ANSWERED not in ADMIN_SETTABLE
        with pytest.raises(InvalidStatus, match="cannot be set directly"):
            validate_transition(S.IN_PROGRESS, S.ANSWERED, ADMIN)

    def test_payment_event_only_from_pending(self):
        with pytest.raises(InvalidStatus):
            validate_transition(S.RECEIVED, S.RECEIVED, TransitionEvent.PAYMENT_CONFIRMED)

    def test_answer_requires_payment(self):
        with pytest.raises(InvalidStatus):
            validate_transition(S.PENDING_PAYMENT, S.ANSWERED, TransitionEvent.ANSWER_PUBLISHED)

    def test_terminal_states_have_no_exits(self):
        for state in TERMINAL_STATES:
            assert is_terminal(state)
            for event in TransitionEvent:
                assert allowed_targets(state, event) == frozenset()

    def test_non_terminal_states(self):
        for state in (S.PENDING_PAYMENT, S.RECEIVED, S.IN_PROGRESS):
            assert not is_terminal(state)


class TestParseStatus:

    def test_parses_known_value(self):
        assert parse_status("in_progress") is S.IN_PROGRESS

    def test_passes_enum_through(self):
        assert parse_status(S.RECEIVED) is S.RECEIVED

    def test_unknown_value(self):
        with pytest.raises(InvalidStatus):
            parse_status("shipped")
