"""Tests for the in-memory question store."""

import asyncio
from datetime import timedelta

import pytest

from lifecycle.errors import NotFound
from schemas.question_models import (
    AdminAction,
    AdminActionType,
    Attachment,
    DeliveryStatus,
    EmailNotification,
    NotificationType,
    PaymentStatus,
    Question,
    QuestionStatus,
    Urgency,
    utcnow,
)
from storage import get_question_store
from storage.question_store import InMemoryQuestionStore, compute_stats


def make_question(**overrides) -> Question:
    now = utcnow()
    data = dict(
        user_id="user-1",
        email="alice@example.com",
        title="Title",
        details="Details",
        urgency=Urgency.STANDARD,
        price_cents=4900,
        due_date=now + timedelta(hours=24),
        created_at=now,
    )
    data.update(overrides)
    return Question(**data)


class TestCrud:

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        q = await store.create(make_question())
        assert (await store.get(q.id)) == q

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("nope") is None

    @pytest.mark.asyncio
    async def test_delete_cascades(self, store):
        q = await store.create(make_question())
        await store.add_attachment(Attachment(question_id=q.id, filename="a.png", file_url="/a.png"))
        async with store.transaction(q.id) as tx:
            await tx.append_action(AdminAction(
                admin_id="admin-1", action_type=AdminActionType.NOTES_UPDATED, question_id=q.id,
            ))

        assert await store.delete(q.id)
        assert await store.get(q.id) is None
        assert await store.get_attachments(q.id) == []
        assert await store.get_admin_actions(q.id) == []
        assert not await store.delete(q.id)

    @pytest.mark.asyncio
    async def test_attachment_requires_question(self, store):
        with pytest.raises(NotFound):
            await store.add_attachment(Attachment(question_id="nope", filename="a", file_url="/a"))


class TestTransaction:

    @pytest.mark.asyncio
    async def test_commit_on_clean_exit(self, store):
        q = await store.create(make_question())
        async with store.transaction(q.id) as tx:
            await tx.save(tx.question.model_copy(update={"status": QuestionStatus.RECEIVED}))
            await tx.append_action(AdminAction(
                admin_id="admin-1", action_type=AdminActionType.STATUS_CHANGE, question_id=q.id,
            ))

        assert (await store.get(q.id)).status == QuestionStatus.RECEIVED
        assert len(await store.get_admin_actions(q.id)) == 1

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, store):
        q = await store.create(make_question())
        with pytest.raises(RuntimeError):
            async with store.transaction(q.id) as tx:
                await tx.save(tx.question.model_copy(update={"status": QuestionStatus.CANCELLED}))
                await tx.append_action(AdminAction(
                    admin_id="admin-1", action_type=AdminActionType.STATUS_CHANGE, question_id=q.id,
                ))
                raise RuntimeError("boom")

        assert (await store.get(q.id)).status == QuestionStatus.PENDING_PAYMENT
        assert await store.get_admin_actions(q.id) == []

    @pytest.mark.asyncio
    async def test_missing_question(self, store):
        with pytest.raises(NotFound):
            async with store.transaction("nope"):
                pass

    @pytest.mark.asyncio
    async def test_working_copy_is_isolated(self, store):
        q = await store.create(make_question())
        async with store.transaction(q.id) as tx:
            await tx.save(tx.question.model_copy(update={"admin_notes": "draft"}))
            assert (await store.get(q.id)).admin_notes is None
        assert (await store.get(q.id)).admin_notes == "draft"

    @pytest.mark.asyncio
    async def test_serializes_writers(self, store):
        q = await store.create(make_question())
        order = []

        async def writer(name):
            async with store.transaction(q.id):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(writer("a"), writer("b"))
        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
        assert store._question_locks == {}

    @pytest.mark.asyncio
    async def test_locks_released_after_failure_and_delete(self, store):
        q = await store.create(make_question())
        with pytest.raises(RuntimeError):
            async with store.transaction(q.id):
                raise RuntimeError("boom")
        with pytest.raises(NotFound):
            async with store.transaction("nope"):
                pass
        await store.delete(q.id)

        assert store._question_locks == {}


class TestListing:

    @pytest.mark.asyncio
    async def test_list_for_owner_matches_id_or_email(self, store):
        now = utcnow()
        by_id = await store.create(make_question(created_at=now - timedelta(minutes=2)))
        by_email = await store.create(make_question(user_id=None, created_at=now - timedelta(minutes=1)))
        await store.create(make_question(user_id="user-2", email="bob@example.com"))

        found = await store.list_for_owner("user-1", "alice@example.com")
        assert [q.id for q in found] == [by_email.id, by_id.id]

    @pytest.mark.asyncio
    async def test_list_for_owner_without_identity(self, store):
        await store.create(make_question(user_id=None))
        assert await store.list_for_owner(None, None) == []

    @pytest.mark.asyncio
    async def test_list_all_filters(self, store):
        await store.create(make_question(urgency=Urgency.URGENT))
        await store.create(make_question(status=QuestionStatus.RECEIVED))
        urgent_received = await store.create(
            make_question(urgency=Urgency.URGENT, status=QuestionStatus.RECEIVED)
        )

        assert len(await store.list_all()) == 3
        assert len(await store.list_all(urgency=Urgency.URGENT)) == 2
        found = await store.list_all(status=QuestionStatus.RECEIVED, urgency=Urgency.URGENT)
        assert [q.id for q in found] == [urgent_received.id]

    @pytest.mark.asyncio
    async def test_list_by_status_sorted_by_due_date(self, store):
        now = utcnow()
        later = await store.create(make_question(status=QuestionStatus.RECEIVED, due_date=now + timedelta(hours=5)))
        sooner = await store.create(make_question(status=QuestionStatus.IN_PROGRESS, due_date=now + timedelta(hours=1)))
        await store.create(make_question(status=QuestionStatus.ANSWERED))

        found = await store.list_by_status([QuestionStatus.RECEIVED, QuestionStatus.IN_PROGRESS])
        assert [q.id for q in found] == [sooner.id, later.id]


class TestNotificationsAndStats:

    @pytest.mark.asyncio
    async def test_record_notification(self, store):
        q = await store.create(make_question())
        await store.record_notification(EmailNotification(
            user_email=q.email,
            question_id=q.id,
            notification_type=NotificationType.CONFIRMATION,
            status=DeliveryStatus.SENT,
        ))
        records = await store.get_notifications(q.id)
        assert len(records) == 1
        assert records[0].status == DeliveryStatus.SENT

    def test_compute_stats(self):
        created = utcnow() - timedelta(hours=10)
        questions = [
            make_question(status=QuestionStatus.ANSWERED, payment_status=PaymentStatus.SUCCEEDED,
                          price_cents=9900, created_at=created, answered_at=created + timedelta(hours=4)),
            make_question(status=QuestionStatus.ANSWERED, payment_status=PaymentStatus.SUCCEEDED,
                          price_cents=4900, created_at=created, answered_at=created + timedelta(hours=2)),
            make_question(status=QuestionStatus.RECEIVED, payment_status=PaymentStatus.SUCCEEDED),
            make_question(status=QuestionStatus.REFUNDED, payment_status=PaymentStatus.SUCCEEDED,
                          price_cents=9900),
            make_question(),
        ]

        stats = compute_stats(questions)
        assert stats.total == 5
        assert stats.count_by_status["answered"] == 2
        assert stats.count_by_status["received"] == 1
        assert stats.count_by_status["pending_payment"] == 1
        assert stats.count_by_status["cancelled"] == 0
        assert stats.count_by_status["refunded"] == 1
        assert stats.total_revenue_cents == 9900 + 4900 + 4900
        assert stats.average_response_hours == 3.0

    def test_compute_stats_empty(self):
        stats = compute_stats([])
        assert stats.total == 0
        assert stats.average_response_hours == 0.0


class TestFactory:

    def test_memory_backend(self):
        assert isinstance(get_question_store("memory"), InMemoryQuestionStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            get_question_store("sqlite")
