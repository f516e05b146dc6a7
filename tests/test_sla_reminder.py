"""Tests for the SLA reminder scan."""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest

from conftest import paid_question, submit_question
from schemas.question_models import NotificationType, utcnow
from tasks.sla_reminder import find_due_soon, send_sla_reminders, sla_reminder_loop


class TestFindDueSoon:

    @pytest.mark.asyncio
    async def test_picks_open_questions_in_window(self, engine, store):
        urgent = await paid_question(engine, urgency="urgent")      # due in 6h
        await paid_question(engine, urgency="standard")             # due in 24h
        await submit_question(engine, urgency="urgent")             # unpaid

        due = await find_due_soon(store, window_hours=8)
        assert [q.id for q in due] == [urgent.id]

    @pytest.mark.asyncio
    async def test_includes_overdue(self, engine, store):
        question = await paid_question(engine, urgency="urgent")
        due = await find_due_soon(store, window_hours=1, now=utcnow() + timedelta(hours=10))
        assert [q.id for q in due] == [question.id]

    @pytest.mark.asyncio
    async def test_skips_answered(self, engine, store, admin):
        question = await paid_question(engine, urgency="urgent")
        await engine.admin_publish_answer(question.id, "Answer", admin)
        assert await find_due_soon(store, window_hours=8) == []


class TestSendReminders:

    @pytest.mark.asyncio
    async def test_reminds_admin_once(self, engine, store, sender):
        question = await paid_question(engine, urgency="urgent")
        reminded = set()

        with patch("lifecycle.engine.settings.ADMIN_EMAIL", "ops@askyaguy.com"):
            first = await send_sla_reminders(engine, window_hours=8, reminded=reminded)
            second = await send_sla_reminders(engine, window_hours=8, reminded=reminded)

        assert first == 1
        assert second == 0
        assert sender.sent[-1]["to"] == "ops@askyaguy.com"
        assert sender.sent[-1]["subject"].startswith("SLA Alert")

        records = await store.get_notifications(question.id)
        assert records[-1].notification_type == NotificationType.SLA_REMINDER

    @pytest.mark.asyncio
    async def test_forgets_closed_questions(self, engine, admin):
        question = await paid_question(engine, urgency="urgent")
        reminded = set()

        await send_sla_reminders(engine, window_hours=8, reminded=reminded)
        assert reminded == {question.id}

        await engine.admin_publish_answer(question.id, "Answer", admin)
        await send_sla_reminders(engine, window_hours=8, reminded=reminded)
        assert reminded == set()

    @pytest.mark.asyncio
    async def test_nothing_due(self, engine):
        await paid_question(engine, urgency="standard")
        assert await send_sla_reminders(engine, window_hours=1, reminded=set()) == 0


class TestLoop:

    @pytest.mark.asyncio
    async def test_disabled_loop_returns(self, engine):
        with patch("tasks.sla_reminder.settings.SLA_REMINDER_ENABLED", False):
            await asyncio.wait_for(sla_reminder_loop(engine, interval=1), timeout=1)

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self, engine):
        calls = []

        async def flaky(_engine):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("store hiccup")

        with patch("tasks.sla_reminder.settings.SLA_REMINDER_ENABLED", True), \
                patch("tasks.sla_reminder.send_sla_reminders", flaky):
            task = asyncio.create_task(sla_reminder_loop(engine, interval=0.01))
            for _ in range(100):
                if len(calls) >= 2:
                    break
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert len(calls) >= 2
