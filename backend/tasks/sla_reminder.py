"""
SLA Reminder Loop
=================
Background task that warns the operator about paid questions whose answer
deadline is close or already past.

Features:
- Runs every SLA_REMINDER_INTERVAL seconds (default 10 minutes)
- Picks up received / in_progress questions due within the window
- Emails ADMIN_EMAIL once per question per process
- Records each reminder in the notification log
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

import structlog

from config import settings
from schemas.question_models import Question, QuestionStatus, utcnow
from storage.question_store import IQuestionStore

logger = structlog.get_logger().bind(component="sla_reminder")

OPEN_STATUSES = (QuestionStatus.RECEIVED, QuestionStatus.IN_PROGRESS)

# Question ids already reminded by this process
_reminded: set[str] = set()


# =============================================================================
# SCAN
# =============================================================================

async def find_due_soon(
    store: IQuestionStore,
    window_hours: float = None,
    now: Optional[datetime] = None,
) -> list[Question]:
    """
    Return open questions due within `window_hours` of `now`.

    Overdue questions are included. Results are ordered by due date.
    """
    window = timedelta(hours=settings.SLA_REMINDER_WINDOW_HOURS if window_hours is None else window_hours)
    now = now or utcnow()
    questions = await store.list_by_status(OPEN_STATUSES)
    return [q for q in questions if q.due_date - now <= window]


async def send_sla_reminders(
    engine,
    window_hours: float = None,
    now: Optional[datetime] = None,
    reminded: set[str] = None,
) -> int:
    """
    Send one reminder per due question not yet reminded.

    Returns the number of reminders attempted this cycle.
    """
    reminded = _reminded if reminded is None else reminded
    now = now or utcnow()
    due = await find_due_soon(engine.store, window_hours, now)

    # Open questions stay due until answered or closed; forget the rest
    reminded.intersection_update(q.id for q in due)

    sent = 0
    for question in due:
        if question.id in reminded:
            continue

        hours_remaining = (question.due_date - now).total_seconds() / 3600
        await engine.send_sla_reminder(question, hours_remaining)
        reminded.add(question.id)
        sent += 1

        logger.warning(
            "sla_reminder_sent",
            question_id=question.id,
            urgency=question.urgency.value,
            hours_remaining=round(hours_remaining, 2),
        )

    if due:
        logger.info("sla_cycle_complete", due=len(due), reminded=sent)
    return sent


# =============================================================================
# LOOP
# =============================================================================

async def sla_reminder_loop(engine, interval: int = None):
    """Run send_sla_reminders forever; started from the API lifespan."""
    interval = interval or settings.SLA_REMINDER_INTERVAL

    logger.info(
        "sla_loop_started",
        interval=interval,
        window_hours=settings.SLA_REMINDER_WINDOW_HOURS,
        enabled=settings.SLA_REMINDER_ENABLED,
    )

    if not settings.SLA_REMINDER_ENABLED:
        logger.info("sla_loop_disabled")
        return

    while True:
        try:
            await send_sla_reminders(engine)
        except Exception as e:
            logger.error("sla_loop_error", error=str(e))

        await asyncio.sleep(interval)


def reset_reminders() -> None:
    _reminded.clear()
