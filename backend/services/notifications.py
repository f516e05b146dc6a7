# services/notifications.py
# ============================================================================
# PAID Q&A SERVICE — NOTIFICATION SENDER
# ============================================================================
# Transactional email for question owners and the operator. The file sender
# writes each message as a JSON document (development); the SendGrid sender
# delivers for real. Rendering lives in TemplateManager so both senders get
# identical content.
#
# pip install sendgrid structlog pydantic
# ============================================================================

import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from html import escape
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from config import settings
from schemas.question_models import NotificationType, Question, Urgency, utcnow


class NotificationError(Exception):
    """The email could not be handed to the delivery backend."""


class SendResult(BaseModel):
    delivered: bool
    message_id: Optional[str] = None


class RenderedEmail(BaseModel):
    subject: str
    html: str
    text: str


# =============================================================================
# INTERFACE
# =============================================================================

class INotificationSender(ABC):
    """Email delivery contract"""

    @abstractmethod
    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        pass


# =============================================================================
# FILE SENDER (development)
# =============================================================================

class FileNotificationSender(INotificationSender):
    """Writes every email to `<emails_dir>/<timestamp>_<id>.json`."""

    def __init__(self, emails_dir: str = None):
        self.emails_dir = Path(emails_dir or settings.EMAILS_DIR)
        self._logger = structlog.get_logger().bind(component="file_sender")

    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        email_id = str(uuid.uuid4())
        timestamp = utcnow().isoformat()
        payload = {
            "id": email_id,
            "to": to,
            "subject": subject,
            "html": html,
            "text": text,
            "timestamp": timestamp,
        }
        filepath = self.emails_dir / f"{timestamp.replace(':', '-')}_{email_id}.json"

        try:
            await asyncio.to_thread(self._write, filepath, payload)
        except OSError as e:
            self._logger.error("email_write_failed", to=to, error=str(e))
            raise NotificationError(str(e)) from e

        self._logger.info("email_saved", to=to, subject=subject, filename=filepath.name)
        return SendResult(delivered=True, message_id=email_id)

    def _write(self, filepath: Path, payload: dict) -> None:
        self.emails_dir.mkdir(parents=True, exist_ok=True)
        filepath.write_text(json.dumps(payload, indent=2), encoding="utf-8")


# =============================================================================
# SENDGRID SENDER
# =============================================================================

class SendGridNotificationSender(INotificationSender):
    def __init__(self, api_key: str = None, from_email: str = None):
        self._client = SendGridAPIClient(api_key or settings.SENDGRID_API_KEY)
        self._from_email = from_email or settings.SENDGRID_FROM_EMAIL
        self._logger = structlog.get_logger().bind(component="sendgrid_sender")

    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        message = Mail(
            from_email=self._from_email,
            to_emails=to,
            subject=subject,
            html_content=html,
            plain_text_content=text,
        )

        try:
            response = await asyncio.to_thread(self._client.send, message)
        except Exception as e:
            # python-http-client raises HTTPError subclasses; transport errors surface as-is
            self._logger.error("sendgrid_send_failed", to=to, error=str(e))
            raise NotificationError(str(e)) from e

        message_id = response.headers.get("X-Message-Id")
        delivered = 200 <= response.status_code < 300
        self._logger.info("sendgrid_sent", to=to, status_code=response.status_code,
                          message_id=message_id)
        return SendResult(delivered=delivered, message_id=message_id)


# =============================================================================
# TEMPLATES
# =============================================================================

class TemplateManager:
    """Renders subject, HTML and plain-text bodies per notification type."""

    def __init__(self, service_name: str = None, frontend_url: str = None, sla_hours: dict = None):
        self.service_name = service_name or settings.SERVICE_NAME
        self.frontend_url = frontend_url or settings.FRONTEND_URL
        self.sla_hours = sla_hours or {
            Urgency.URGENT: settings.URGENT_SLA_HOURS,
            Urgency.STANDARD: settings.STANDARD_SLA_HOURS,
        }

    def question_url(self, question: Question) -> str:
        return f"{self.frontend_url}/question.html?id={question.id}"

    def admin_url(self, question: Question) -> str:
        return f"{self.frontend_url}/admin.html#question-{question.id}"

    @staticmethod
    def _format_due(due: datetime) -> str:
        return due.strftime("%Y-%m-%d %H:%M %Z").strip()

    def _urgency_label(self, urgency: Urgency) -> str:
        hours = self.sla_hours.get(urgency)
        return f"{urgency.value.capitalize()} ({hours} hours)"

    def render(self, notification_type: NotificationType, question: Question, **extra) -> RenderedEmail:
        if notification_type == NotificationType.CONFIRMATION:
            return self.confirmation(question)
        if notification_type == NotificationType.ANSWER_DELIVERED:
            return self.answer_delivered(question)
        if notification_type == NotificationType.SLA_REMINDER:
            return self.sla_reminder(question, extra.get("hours_remaining", 0))
        raise ValueError(f"Unknown notification type: {notification_type}")

    def confirmation(self, question: Question) -> RenderedEmail:
        price = f"${question.price_cents / 100:.2f}"
        due = self._format_due(question.due_date)
        urgency = self._urgency_label(question.urgency)
        link = self.question_url(question)

        html = f"""
<h1>Question Received!</h1>
<p>Thank you for submitting your question to {self.service_name}.</p>

<h2>Question Details:</h2>
<p><strong>Title:</strong> {escape(question.title)}</p>
<p><strong>Urgency:</strong> {urgency}</p>
<p><strong>Due Date:</strong> {due}</p>
<p><strong>Price:</strong> {price}</p>

<p>You will receive an email when your answer is ready.</p>

<p><a href="{link}">View Question</a></p>
"""
        text = f"""
Question Received!

Thank you for submitting your question to {self.service_name}.

Question Details:
Title: {question.title}
Urgency: {urgency}
Due Date: {due}
Price: {price}

You will receive an email when your answer is ready.

View Question: {link}
"""
        return RenderedEmail(subject=f"Question Received - {question.title}", html=html, text=text)

    def answer_delivered(self, question: Question) -> RenderedEmail:
        link = self.question_url(question)

        html = f"""
<h1>Your Answer is Ready!</h1>
<p>Great news! Your question has been answered.</p>

<h2>Question:</h2>
<p><strong>{escape(question.title)}</strong></p>

<p><a href="{link}">View Full Answer</a></p>
"""
        text = f"""
Your Answer is Ready!

Great news! Your question has been answered.

Question: {question.title}

View Full Answer: {link}
"""
        return RenderedEmail(subject=f"Answer Ready - {question.title}", html=html, text=text)

    def sla_reminder(self, question: Question, hours_remaining: float) -> RenderedEmail:
        hours = round(hours_remaining, 1)
        due = self._format_due(question.due_date)
        link = self.admin_url(question)

        html = f"""
<h1>SLA Reminder</h1>
<p>Question due in {hours} hours!</p>

<h2>Question Details:</h2>
<p><strong>ID:</strong> {question.id}</p>
<p><strong>Title:</strong> {escape(question.title)}</p>
<p><strong>Urgency:</strong> {question.urgency.value}</p>
<p><strong>Status:</strong> {question.status.value}</p>
<p><strong>Due:</strong> {due}</p>

<p><a href="{link}">Answer Now</a></p>
"""
        text = f"""
SLA Reminder

Question due in {hours} hours!

Question Details:
ID: {question.id}
Title: {question.title}
Urgency: {question.urgency.value}
Status: {question.status.value}
Due: {due}

Answer Now: {link}
"""
        return RenderedEmail(subject=f"SLA Alert: Question due in {hours}h", html=html, text=text)
