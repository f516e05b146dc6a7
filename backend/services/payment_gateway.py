# services/payment_gateway.py
# ============================================================================
# PAID Q&A SERVICE — PAYMENT GATEWAY
# ============================================================================
# Hosted checkout sessions, session verification, refunds and webhook
# signature checks. The Stripe implementation talks to the real API; the
# in-memory implementation is a process-scoped stand-in for development
# and tests.
#
# pip install stripe structlog pydantic
# ============================================================================

import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from typing import Optional

import stripe
import structlog
from pydantic import BaseModel

from config import settings


class PaymentGatewayError(Exception):
    """The payment provider rejected the request or could not be reached."""


# =============================================================================
# RESULT TYPES
# =============================================================================

class CheckoutSession(BaseModel):
    session_id: str
    url: str


class SessionStatus(BaseModel):
    session_id: str
    payment_status: str  # "paid" | "unpaid" | "no_payment_required"
    correlation_id: Optional[str] = None
    amount_cents: Optional[int] = None
    payment_reference: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


class RefundResult(BaseModel):
    refund_id: str
    amount_cents: Optional[int] = None
    status: str = "succeeded"


# =============================================================================
# INTERFACE
# =============================================================================

class IPaymentGateway(ABC):
    """Payment provider contract consumed by the lifecycle engine"""

    @abstractmethod
    async def create_session(
        self,
        amount_cents: int,
        currency: str,
        correlation_id: str,
        success_url: str,
        cancel_url: str,
        description: str,
    ) -> CheckoutSession:
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> SessionStatus:
        pass

    @abstractmethod
    async def refund(self, payment_reference: str, amount_cents: int = None) -> RefundResult:
        pass

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> dict:
        """Verify a webhook payload. Raises ValueError on a bad signature."""
        pass


# =============================================================================
# STRIPE IMPLEMENTATION
# =============================================================================

class StripePaymentGateway(IPaymentGateway):
    """
    Stripe Checkout adapter.

    The stripe client is synchronous, so every call runs in a worker thread.
    The question id travels in session metadata as `question_id`.
    """

    def __init__(self, api_key: str = None, webhook_secret: str = None):
        stripe.api_key = api_key or settings.STRIPE_SECRET_KEY
        self._webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self._logger = structlog.get_logger().bind(component="stripe_gateway")

    async def create_session(
        self,
        amount_cents: int,
        currency: str,
        correlation_id: str,
        success_url: str,
        cancel_url: str,
        description: str,
    ) -> CheckoutSession:
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                mode="payment",
                payment_method_types=["card"],
                line_items=[{
                    "price_data": {
                        "currency": currency,
                        "product_data": {
                            "name": f"{settings.SERVICE_NAME} Answer",
                            "description": description,
                        },
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={"question_id": correlation_id},
            )
        except stripe.StripeError as e:
            self._logger.error("checkout_failed", question_id=correlation_id,
                               error=str(e), error_type=type(e).__name__)
            raise PaymentGatewayError(str(e)) from e

        self._logger.info("checkout_created", question_id=correlation_id,
                          stripe_session_id=session.id)
        return CheckoutSession(session_id=session.id, url=session.url)

    async def get_session(self, session_id: str) -> SessionStatus:
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.retrieve, session_id)
        except stripe.StripeError as e:
            self._logger.error("session_retrieve_failed", stripe_session_id=session_id, error=str(e))
            raise PaymentGatewayError(str(e)) from e

        metadata = session.metadata or {}
        return SessionStatus(
            session_id=session.id,
            payment_status=session.payment_status,
            correlation_id=metadata.get("question_id"),
            amount_cents=session.amount_total,
            payment_reference=session.payment_intent,
        )

    async def refund(self, payment_reference: str, amount_cents: int = None) -> RefundResult:
        params = {"payment_intent": payment_reference}
        if amount_cents is not None:
            params["amount"] = amount_cents

        try:
            refund = await asyncio.to_thread(stripe.Refund.create, **params)
        except stripe.StripeError as e:
            self._logger.error("refund_failed", payment_intent=payment_reference, error=str(e))
            raise PaymentGatewayError(str(e)) from e

        self._logger.info("refund_created", refund_id=refund.id, amount=refund.amount)
        return RefundResult(refund_id=refund.id, amount_cents=refund.amount, status=refund.status)

    def construct_event(self, payload: bytes, signature: str) -> dict:
        if not self._webhook_secret:
            self._logger.warning("webhook_secret_missing")
            raise ValueError("Webhook secret not configured")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            self._logger.warning("webhook_signature_invalid", error=str(e))
            raise ValueError("Invalid webhook signature")

        return event.to_dict()


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryPaymentGateway(IPaymentGateway):
    """
    Development gateway that never contacts a provider.

    With `auto_pay` enabled, sessions report "paid" as soon as they are
    created, so the hosted checkout step is skipped. Sessions live only as
    long as the process (or until `reset()`).
    """

    def __init__(self, auto_pay: bool = None, frontend_url: str = None):
        self.auto_pay = settings.MOCK_AUTO_PAY if auto_pay is None else auto_pay
        self._frontend_url = frontend_url or settings.FRONTEND_URL
        self._sessions: dict[str, SessionStatus] = {}
        self._refunds: dict[str, RefundResult] = {}
        self._lock = asyncio.Lock()
        self._logger = structlog.get_logger().bind(component="mock_gateway")

        # Failure injection for tests
        self.fail_create = False
        self.fail_retrieve = False
        self.fail_refund = False

    async def create_session(
        self,
        amount_cents: int,
        currency: str,
        correlation_id: str,
        success_url: str,
        cancel_url: str,
        description: str,
    ) -> CheckoutSession:
        if self.fail_create:
            raise PaymentGatewayError("Checkout session creation failed")

        session_id = f"cs_test_{uuid.uuid4().hex[:14]}"
        async with self._lock:
            self._sessions[session_id] = SessionStatus(
                session_id=session_id,
                payment_status="paid" if self.auto_pay else "unpaid",
                correlation_id=correlation_id,
                amount_cents=amount_cents,
                payment_reference=f"pi_test_{uuid.uuid4().hex[:14]}",
            )

        self._logger.info("mock_checkout_created", question_id=correlation_id,
                          session_id=session_id, auto_pay=self.auto_pay)
        url = (
            f"{self._frontend_url}/thanks.html?session_id={session_id}"
            f"&question_id={correlation_id}&mock=true"
        )
        return CheckoutSession(session_id=session_id, url=url)

    async def get_session(self, session_id: str) -> SessionStatus:
        if self.fail_retrieve:
            raise PaymentGatewayError("Session lookup failed")

        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise PaymentGatewayError(f"No such checkout session: {session_id}")
        return session

    async def refund(self, payment_reference: str, amount_cents: int = None) -> RefundResult:
        if self.fail_refund:
            raise PaymentGatewayError("Refund failed")

        async with self._lock:
            session = next(
                (s for s in self._sessions.values() if s.payment_reference == payment_reference),
                None,
            )
            if session is None:
                raise PaymentGatewayError(f"No such payment: {payment_reference}")

            result = RefundResult(
                refund_id=f"re_test_{uuid.uuid4().hex[:14]}",
                amount_cents=amount_cents if amount_cents is not None else session.amount_cents,
            )
            self._refunds[result.refund_id] = result

        self._logger.info("mock_refund_created", refund_id=result.refund_id,
                          payment_reference=payment_reference)
        return result

    def construct_event(self, payload: bytes, signature: str) -> dict:
        # No signing secret in mock mode; the payload is trusted as-is
        try:
            return json.loads(payload)
        except (TypeError, ValueError):
            raise ValueError("Invalid webhook payload")

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    async def mark_paid(self, session_id: str) -> None:
        async with self._lock:
            session = self._sessions[session_id]
            self._sessions[session_id] = session.model_copy(update={"payment_status": "paid"})

    async def mark_unpaid(self, session_id: str) -> None:
        async with self._lock:
            session = self._sessions[session_id]
            self._sessions[session_id] = session.model_copy(update={"payment_status": "unpaid"})

    @property
    def refunds(self) -> list[RefundResult]:
        return list(self._refunds.values())

    def reset(self) -> None:
        self._sessions.clear()
        self._refunds.clear()
