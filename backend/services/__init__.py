# services/__init__.py
# ============================================================================
# PAID Q&A SERVICE — SERVICES MODULE
# ============================================================================
# External collaborators (payment provider, email delivery) and the factory
# functions that pick an implementation from configuration.
# ============================================================================

from config import settings
from services.payment_gateway import (
    CheckoutSession,
    IPaymentGateway,
    InMemoryPaymentGateway,
    PaymentGatewayError,
    RefundResult,
    SessionStatus,
    StripePaymentGateway,
)
from services.notifications import (
    FileNotificationSender,
    INotificationSender,
    NotificationError,
    RenderedEmail,
    SendGridNotificationSender,
    SendResult,
    TemplateManager,
)


def get_payment_gateway(backend: str = None) -> IPaymentGateway:
    """Build the configured payment gateway (`mock` or `stripe`)."""
    backend = backend or settings.PAYMENT_BACKEND
    if backend == "stripe":
        return StripePaymentGateway()
    if backend == "mock":
        return InMemoryPaymentGateway()
    raise ValueError(f"Unknown PAYMENT_BACKEND: {backend}")


def get_notification_sender(backend: str = None) -> INotificationSender:
    """Build the configured email sender (`file` or `sendgrid`)."""
    backend = backend or settings.NOTIFICATION_BACKEND
    if backend == "sendgrid":
        return SendGridNotificationSender()
    if backend == "file":
        return FileNotificationSender()
    raise ValueError(f"Unknown NOTIFICATION_BACKEND: {backend}")


__all__ = [
    # Payments
    "CheckoutSession",
    "IPaymentGateway",
    "InMemoryPaymentGateway",
    "PaymentGatewayError",
    "RefundResult",
    "SessionStatus",
    "StripePaymentGateway",
    "get_payment_gateway",
    # Notifications
    "FileNotificationSender",
    "INotificationSender",
    "NotificationError",
    "RenderedEmail",
    "SendGridNotificationSender",
    "SendResult",
    "TemplateManager",
    "get_notification_sender",
]
