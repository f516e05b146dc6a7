# storage/question_store.py
# ============================================================================
# PAID Q&A SERVICE — QUESTION STORE
# ============================================================================
# Durable record of every question. The store owns the authoritative status
# value; mutations go through `transaction()`, which serializes writers per
# question id and commits the question update together with any admin
# actions appended inside it.
# ============================================================================

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional

from schemas.question_models import (
    AdminAction,
    Attachment,
    DashboardStats,
    EmailNotification,
    PaymentStatus,
    Question,
    QuestionStatus,
    Urgency,
)
from lifecycle.errors import NotFound


# =============================================================================
# INTERFACES
# =============================================================================

class QuestionTransaction(ABC):
    """Unit of work over one locked question."""

    question: Question

    @abstractmethod
    async def save(self, question: Question) -> Question:
        pass

    @abstractmethod
    async def append_action(self, action: AdminAction) -> AdminAction:
        pass


class IQuestionStore(ABC):
    """Question persistence interface"""

    @abstractmethod
    async def create(self, question: Question) -> Question:
        pass

    @abstractmethod
    async def get(self, question_id: str) -> Optional[Question]:
        pass

    @abstractmethod
    async def delete(self, question_id: str) -> bool:
        """Delete a question together with its attachments and admin actions."""
        pass

    @abstractmethod
    def transaction(self, question_id: str) -> AsyncIterator[QuestionTransaction]:
        """
        Async context manager yielding a QuestionTransaction.

        Raises NotFound if the question does not exist. Nothing is committed
        if the body raises.
        """
        pass

    @abstractmethod
    async def list_for_owner(self, user_id: Optional[str], email: Optional[str]) -> list[Question]:
        pass

    @abstractmethod
    async def list_all(
        self,
        status: Optional[QuestionStatus] = None,
        urgency: Optional[Urgency] = None,
    ) -> list[Question]:
        pass

    @abstractmethod
    async def list_by_status(self, statuses: Iterable[QuestionStatus]) -> list[Question]:
        pass

    @abstractmethod
    async def add_attachment(self, attachment: Attachment) -> Attachment:
        pass

    @abstractmethod
    async def get_attachments(self, question_id: str) -> list[Attachment]:
        pass

    @abstractmethod
    async def get_admin_actions(self, question_id: str) -> list[AdminAction]:
        pass

    @abstractmethod
    async def record_notification(self, notification: EmailNotification) -> EmailNotification:
        pass

    @abstractmethod
    async def get_notifications(self, question_id: str) -> list[EmailNotification]:
        pass

    @abstractmethod
    async def stats(self) -> DashboardStats:
        pass


def compute_stats(questions: Iterable[Question]) -> DashboardStats:
    """Aggregate dashboard numbers from a set of questions. Refunded questions earn nothing."""
    questions = list(questions)
    counts = {status.value: 0 for status in QuestionStatus}
    revenue = 0
    response_hours = []

    for q in questions:
        counts[q.status.value] += 1
        if q.payment_status == PaymentStatus.SUCCEEDED and q.status != QuestionStatus.REFUNDED:
            revenue += q.price_cents
        if q.answered_at is not None:
            response_hours.append((q.answered_at - q.created_at).total_seconds() / 3600)

    return DashboardStats(
        total=len(questions),
        count_by_status=counts,
        total_revenue_cents=revenue,
        average_response_hours=(
            round(sum(response_hours) / len(response_hours), 2) if response_hours else 0.0
        ),
    )


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class _InMemoryTransaction(QuestionTransaction):
    def __init__(self, question: Question):
        self.question = question
        self.actions: list[AdminAction] = []

    async def save(self, question: Question) -> Question:
        self.question = question
        return question

    async def append_action(self, action: AdminAction) -> AdminAction:
        self.actions.append(action)
        return action


class InMemoryQuestionStore(IQuestionStore):
    """Process-local question store with per-question locking"""

    def __init__(self):
        self._questions: dict[str, Question] = {}
        self._attachments: dict[str, list[Attachment]] = defaultdict(list)
        self._actions: dict[str, list[AdminAction]] = defaultdict(list)
        self._notifications: list[EmailNotification] = []
        self._lock = asyncio.Lock()
        # question id -> (lock, number of transactions holding or awaiting it)
        self._question_locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._question_locks_mutex = asyncio.Lock()

    async def _get_question_lock(self, question_id: str) -> asyncio.Lock:
        async with self._question_locks_mutex:
            lock, users = self._question_locks.get(question_id, (None, 0))
            if lock is None:
                lock = asyncio.Lock()
            self._question_locks[question_id] = (lock, users + 1)
            return lock

    async def _release_question_lock(self, question_id: str) -> None:
        async with self._question_locks_mutex:
            lock, users = self._question_locks[question_id]
            if users <= 1:
                del self._question_locks[question_id]
            else:
                self._question_locks[question_id] = (lock, users - 1)

    async def create(self, question: Question) -> Question:
        async with self._lock:
            self._questions[question.id] = question
            return question

    async def get(self, question_id: str) -> Optional[Question]:
        async with self._lock:
            return self._questions.get(question_id)

    async def delete(self, question_id: str) -> bool:
        async with self._lock:
            if question_id not in self._questions:
                return False
            del self._questions[question_id]
            self._attachments.pop(question_id, None)
            self._actions.pop(question_id, None)
            return True

    @asynccontextmanager
    async def transaction(self, question_id: str):
        lock = await self._get_question_lock(question_id)
        try:
            async with lock:
                async with self._lock:
                    current = self._questions.get(question_id)
                if current is None:
                    raise NotFound("Question not found")

                tx = _InMemoryTransaction(current.model_copy(deep=True))
                yield tx

                async with self._lock:
                    self._questions[question_id] = tx.question
                    self._actions[question_id].extend(tx.actions)
        finally:
            # Drop the lock once no transaction holds or awaits it
            await self._release_question_lock(question_id)

    async def list_for_owner(self, user_id: Optional[str], email: Optional[str]) -> list[Question]:
        async with self._lock:
            matches = [
                q for q in self._questions.values()
                if (user_id is not None and q.user_id == user_id)
                or (email and q.email == email)
            ]
        return sorted(matches, key=lambda q: q.created_at, reverse=True)

    async def list_all(
        self,
        status: Optional[QuestionStatus] = None,
        urgency: Optional[Urgency] = None,
    ) -> list[Question]:
        async with self._lock:
            matches = [
                q for q in self._questions.values()
                if (status is None or q.status == status)
                and (urgency is None or q.urgency == urgency)
            ]
        return sorted(matches, key=lambda q: q.created_at, reverse=True)

    async def list_by_status(self, statuses: Iterable[QuestionStatus]) -> list[Question]:
        wanted = set(statuses)
        async with self._lock:
            matches = [q for q in self._questions.values() if q.status in wanted]
        return sorted(matches, key=lambda q: q.due_date)

    async def add_attachment(self, attachment: Attachment) -> Attachment:
        async with self._lock:
            if attachment.question_id not in self._questions:
                raise NotFound("Question not found")
            self._attachments[attachment.question_id].append(attachment)
            return attachment

    async def get_attachments(self, question_id: str) -> list[Attachment]:
        async with self._lock:
            return list(self._attachments.get(question_id, []))

    async def get_admin_actions(self, question_id: str) -> list[AdminAction]:
        async with self._lock:
            return list(self._actions.get(question_id, []))

    async def record_notification(self, notification: EmailNotification) -> EmailNotification:
        async with self._lock:
            self._notifications.append(notification)
            return notification

    async def get_notifications(self, question_id: str) -> list[EmailNotification]:
        async with self._lock:
            return [n for n in self._notifications if n.question_id == question_id]

    async def stats(self) -> DashboardStats:
        async with self._lock:
            questions = list(self._questions.values())
        return compute_stats(questions)
