"""
Shared fixtures for the paid Q&A service tests.

Everything runs against the in-memory store, the in-memory payment gateway
and a recording notification sender, so no network or database is needed.
"""

import pytest

from lifecycle.engine import QuestionLifecycleEngine
from lifecycle.pricing import PriceTier, PricingTable
from schemas.question_models import Caller, Urgency, UserRole
from services.notifications import INotificationSender, NotificationError, SendResult, TemplateManager
from services.payment_gateway import InMemoryPaymentGateway
from storage.question_store import InMemoryQuestionStore


class RecordingSender(INotificationSender):
    """Keeps every message in memory; can be told to fail."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        if self.fail:
            raise NotificationError("SMTP relay unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return SendResult(delivered=True, message_id=f"msg-{len(self.sent)}")


@pytest.fixture
def pricing():
    return PricingTable({
        Urgency.URGENT: PriceTier(price_cents=9900, sla_hours=6),
        Urgency.STANDARD: PriceTier(price_cents=4900, sla_hours=24),
    })


@pytest.fixture
def store():
    return InMemoryQuestionStore()


@pytest.fixture
def gateway():
    return InMemoryPaymentGateway(auto_pay=True, frontend_url="http://localhost:8000")


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def engine(store, gateway, sender, pricing):
    return QuestionLifecycleEngine(
        store=store,
        gateway=gateway,
        sender=sender,
        pricing=pricing,
        templates=TemplateManager(
            service_name="Ask YaGuy",
            frontend_url="http://localhost:8000",
            sla_hours={Urgency.URGENT: 6, Urgency.STANDARD: 24},
        ),
        currency="usd",
        frontend_url="http://localhost:8000",
    )


@pytest.fixture
def admin():
    return Caller(id="admin-1", email="admin@askyaguy.com", role=UserRole.ADMIN)


@pytest.fixture
def owner():
    return Caller(id="user-1", email="alice@example.com", role=UserRole.USER)


@pytest.fixture
def stranger():
    return Caller(id="user-2", email="mallory@example.com", role=UserRole.USER)


async def submit_question(engine, urgency="standard", email="alice@example.com", owner_id="user-1"):
    return await engine.submit(
        email=email,
        title="How do I size my water heater?",
        details="Family of four, gas line already in place.",
        urgency=urgency,
        owner_id=owner_id,
    )


async def paid_question(engine, urgency="standard", **kwargs):
    """Submit a question and confirm its payment; returns the Question."""
    result = await submit_question(engine, urgency=urgency, **kwargs)
    return await engine.confirm_payment(result.payment_session_id)
