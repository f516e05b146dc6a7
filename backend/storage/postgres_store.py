# storage/postgres_store.py
# ============================================================================
# PAID Q&A SERVICE — POSTGRES QUESTION STORE
# ============================================================================
# asyncpg-backed IQuestionStore. Each transaction() holds a row lock
# (SELECT ... FOR UPDATE) on one question, so concurrent confirmations of
# the same question serialize and the loser sees the advanced state.
# ============================================================================

import json
from contextlib import asynccontextmanager
from typing import Iterable, Optional

import asyncpg
import structlog

from database import Database
from schemas.question_models import (
    AdminAction,
    Attachment,
    DashboardStats,
    EmailNotification,
    Question,
    QuestionStatus,
    Urgency,
)
from lifecycle.errors import NotFound, PersistenceError
from storage.question_store import IQuestionStore, QuestionTransaction

logger = structlog.get_logger().bind(component="postgres_store")

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_QUESTION_COLUMNS = (
    "id, user_id, email, title, details, urgency, status, price_cents, "
    "payment_session_id, payment_status, due_date, created_at, answered_at, "
    "answer_text, admin_notes"
)


def _row_to_question(row: asyncpg.Record) -> Question:
    return Question(**dict(row))


def _row_to_action(row: asyncpg.Record) -> AdminAction:
    data = dict(row)
    if isinstance(data.get("details"), str):
        data["details"] = json.loads(data["details"])
    return AdminAction(**data)


@asynccontextmanager
async def _guarded(operation: str):
    """Translate backend failures into PersistenceError."""
    try:
        yield
    except _STORE_ERRORS as e:
        logger.error("store_operation_failed", operation=operation, error=str(e))
        raise PersistenceError("Question store unavailable") from e


class _PostgresTransaction(QuestionTransaction):
    def __init__(self, conn: asyncpg.Connection, question: Question):
        self._conn = conn
        self.question = question

    async def save(self, question: Question) -> Question:
        await self._conn.execute(
            """
            UPDATE questions
            SET status = $2, payment_session_id = $3, payment_status = $4,
                answered_at = $5, answer_text = $6, admin_notes = $7
            WHERE id = $1
            """,
            question.id,
            question.status.value,
            question.payment_session_id,
            question.payment_status.value,
            question.answered_at,
            question.answer_text,
            question.admin_notes,
        )
        self.question = question
        return question

    async def append_action(self, action: AdminAction) -> AdminAction:
        await self._conn.execute(
            """
            INSERT INTO admin_actions (id, admin_id, action_type, question_id, details, created_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6)
            """,
            action.id,
            action.admin_id,
            action.action_type.value,
            action.question_id,
            json.dumps(action.details),
            action.created_at,
        )
        return action


class PostgresQuestionStore(IQuestionStore):
    """Question store backed by the shared asyncpg pool"""

    async def create(self, question: Question) -> Question:
        async with _guarded("create"):
            await Database.execute(
                f"""
                INSERT INTO questions ({_QUESTION_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
                """,
                question.id,
                question.user_id,
                question.email,
                question.title,
                question.details,
                question.urgency.value,
                question.status.value,
                question.price_cents,
                question.payment_session_id,
                question.payment_status.value,
                question.due_date,
                question.created_at,
                question.answered_at,
                question.answer_text,
                question.admin_notes,
            )
        return question

    async def get(self, question_id: str) -> Optional[Question]:
        async with _guarded("get"):
            row = await Database.fetch_one(
                f"SELECT {_QUESTION_COLUMNS} FROM questions WHERE id = $1",
                question_id,
            )
        return _row_to_question(row) if row else None

    async def delete(self, question_id: str) -> bool:
        async with _guarded("delete"):
            result = await Database.execute("DELETE FROM questions WHERE id = $1", question_id)
        return result == "DELETE 1"

    @asynccontextmanager
    async def transaction(self, question_id: str):
        async with _guarded("transaction"):
            async with Database.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        f"SELECT {_QUESTION_COLUMNS} FROM questions WHERE id = $1 FOR UPDATE",
                        question_id,
                    )
                    if row is None:
                        raise NotFound("Question not found")
                    yield _PostgresTransaction(conn, _row_to_question(row))

    async def list_for_owner(self, user_id: Optional[str], email: Optional[str]) -> list[Question]:
        async with _guarded("list_for_owner"):
            rows = await Database.fetch_all(
                f"""
                SELECT {_QUESTION_COLUMNS} FROM questions
                WHERE ($1::text IS NOT NULL AND user_id = $1)
                   OR ($2::text IS NOT NULL AND email = $2)
                ORDER BY created_at DESC
                """,
                user_id,
                email or None,
            )
        return [_row_to_question(r) for r in rows]

    async def list_all(
        self,
        status: Optional[QuestionStatus] = None,
        urgency: Optional[Urgency] = None,
    ) -> list[Question]:
        conditions = []
        params = []

        if status is not None:
            params.append(status.value)
            conditions.append(f"status = ${len(params)}")

        if urgency is not None:
            params.append(urgency.value)
            conditions.append(f"urgency = ${len(params)}")

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        async with _guarded("list_all"):
            rows = await Database.fetch_all(
                f"SELECT {_QUESTION_COLUMNS} FROM questions {where_clause} ORDER BY created_at DESC",
                *params,
            )
        return [_row_to_question(r) for r in rows]

    async def list_by_status(self, statuses: Iterable[QuestionStatus]) -> list[Question]:
        async with _guarded("list_by_status"):
            rows = await Database.fetch_all(
                f"""
                SELECT {_QUESTION_COLUMNS} FROM questions
                WHERE status = ANY($1::text[])
                ORDER BY due_date ASC
                """,
                [s.value for s in statuses],
            )
        return [_row_to_question(r) for r in rows]

    async def add_attachment(self, attachment: Attachment) -> Attachment:
        try:
            async with _guarded("add_attachment"):
                await Database.execute(
                    """
                    INSERT INTO attachments (id, question_id, filename, file_url, file_size, mime_type, uploaded_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    attachment.id,
                    attachment.question_id,
                    attachment.filename,
                    attachment.file_url,
                    attachment.file_size,
                    attachment.mime_type,
                    attachment.uploaded_at,
                )
        except PersistenceError as e:
            if isinstance(e.__cause__, asyncpg.ForeignKeyViolationError):
                raise NotFound("Question not found") from None
            raise
        return attachment

    async def get_attachments(self, question_id: str) -> list[Attachment]:
        async with _guarded("get_attachments"):
            rows = await Database.fetch_all(
                "SELECT * FROM attachments WHERE question_id = $1 ORDER BY uploaded_at",
                question_id,
            )
        return [Attachment(**dict(r)) for r in rows]

    async def get_admin_actions(self, question_id: str) -> list[AdminAction]:
        async with _guarded("get_admin_actions"):
            rows = await Database.fetch_all(
                "SELECT * FROM admin_actions WHERE question_id = $1 ORDER BY created_at",
                question_id,
            )
        return [_row_to_action(r) for r in rows]

    async def record_notification(self, notification: EmailNotification) -> EmailNotification:
        async with _guarded("record_notification"):
            await Database.execute(
                """
                INSERT INTO email_notifications
                (id, user_email, question_id, notification_type, status, provider_message_id, error, sent_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                notification.id,
                notification.user_email,
                notification.question_id,
                notification.notification_type.value,
                notification.status.value,
                notification.provider_message_id,
                notification.error,
                notification.sent_at,
            )
        return notification

    async def get_notifications(self, question_id: str) -> list[EmailNotification]:
        async with _guarded("get_notifications"):
            rows = await Database.fetch_all(
                "SELECT * FROM email_notifications WHERE question_id = $1 ORDER BY sent_at",
                question_id,
            )
        return [EmailNotification(**dict(r)) for r in rows]

    async def stats(self) -> DashboardStats:
        async with _guarded("stats"):
            count_rows = await Database.fetch_all(
                "SELECT status, COUNT(*) AS count FROM questions GROUP BY status"
            )
            revenue = await Database.fetch_one(
                """
                SELECT COALESCE(SUM(price_cents), 0) AS total
                FROM questions WHERE payment_status = 'succeeded' AND status <> 'refunded'
                """
            )
            response = await Database.fetch_one(
                """
                SELECT AVG(EXTRACT(EPOCH FROM (answered_at - created_at)) / 3600) AS hours
                FROM questions WHERE answered_at IS NOT NULL
                """
            )

        counts = {status.value: 0 for status in QuestionStatus}
        for row in count_rows:
            counts[row["status"]] = row["count"]

        hours = response["hours"] if response and response["hours"] is not None else 0.0
        return DashboardStats(
            total=sum(counts.values()),
            count_by_status=counts,
            total_revenue_cents=int(revenue["total"]) if revenue else 0,
            average_response_hours=round(float(hours), 2),
        )
