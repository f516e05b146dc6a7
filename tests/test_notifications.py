"""Tests for email rendering and the development file sender."""

import json
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from schemas.question_models import NotificationType, Question, QuestionStatus, Urgency, utcnow
from services import get_notification_sender
from services.notifications import (
    FileNotificationSender,
    NotificationError,
    SendGridNotificationSender,
    TemplateManager,
)


@pytest.fixture
def templates():
    return TemplateManager(
        service_name="Ask YaGuy",
        frontend_url="https://askyaguy.com",
        sla_hours={Urgency.URGENT: 6, Urgency.STANDARD: 24},
    )


@pytest.fixture
def question():
    return Question(
        id="q-123",
        email="alice@example.com",
        title="Is <b>this</b> safe?",
        details="Details",
        urgency=Urgency.URGENT,
        status=QuestionStatus.RECEIVED,
        price_cents=9900,
        due_date=utcnow() + timedelta(hours=6),
    )


class TestTemplates:

    def test_confirmation(self, templates, question):
        email = templates.render(NotificationType.CONFIRMATION, question)
        assert email.subject == "Question Received - Is <b>this</b> safe?"
        assert "$99.00" in email.text
        assert "Urgent (6 hours)" in email.text
        assert "https://askyaguy.com/question.html?id=q-123" in email.html

    def test_html_escapes_title(self, templates, question):
        email = templates.confirmation(question)
        assert "Is &lt;b&gt;this&lt;/b&gt; safe?" in email.html
        assert "Is <b>this</b> safe?" in email.text

    def test_answer_delivered(self, templates, question):
        email = templates.render(NotificationType.ANSWER_DELIVERED, question)
        assert email.subject.startswith("Answer Ready")
        assert "View Full Answer" in email.html

    def test_sla_reminder(self, templates, question):
        email = templates.render(NotificationType.SLA_REMINDER, question, hours_remaining=1.5)
        assert email.subject == "SLA Alert: Question due in 1.5h"
        assert "ID: q-123" in email.text
        assert "https://askyaguy.com/admin.html#question-q-123" in email.html


class TestFileSender:

    @pytest.mark.asyncio
    async def test_writes_json_file(self, tmp_path):
        sender = FileNotificationSender(emails_dir=str(tmp_path / "emails"))
        result = await sender.send("alice@example.com", "Hello", "<p>Hi</p>", "Hi")

        assert result.delivered
        [path] = list((tmp_path / "emails").glob("*.json"))
        data = json.loads(path.read_text())
        assert data["id"] == result.message_id
        assert data["to"] == "alice@example.com"
        assert data["subject"] == "Hello"
        assert ":" not in path.name

    @pytest.mark.asyncio
    async def test_write_failure_raises(self, tmp_path):
        blocker = tmp_path / "emails"
        blocker.write_text("not a directory")
        sender = FileNotificationSender(emails_dir=str(blocker))

        with pytest.raises(NotificationError):
            await sender.send("alice@example.com", "Hello", "<p>Hi</p>", "Hi")


class TestSendGridSender:

    @pytest.mark.asyncio
    async def test_reports_message_id(self):
        response = MagicMock(status_code=202, headers={"X-Message-Id": "sg-abc"})
        with patch("services.notifications.SendGridAPIClient") as client_cls:
            client_cls.return_value.send.return_value = response
            sender = SendGridNotificationSender(api_key="SG.test", from_email="answers@askyaguy.com")
            result = await sender.send("alice@example.com", "Hello", "<p>Hi</p>", "Hi")

        assert result.delivered
        assert result.message_id == "sg-abc"

    @pytest.mark.asyncio
    async def test_wraps_client_errors(self):
        with patch("services.notifications.SendGridAPIClient") as client_cls:
            client_cls.return_value.send.side_effect = RuntimeError("401 Unauthorized")
            sender = SendGridNotificationSender(api_key="SG.bad")
            with pytest.raises(NotificationError):
                await sender.send("alice@example.com", "Hello", "<p>Hi</p>", "Hi")


class TestFactory:

    def test_file_backend(self, tmp_path):
        assert isinstance(get_notification_sender("file"), FileNotificationSender)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            get_notification_sender("carrier-pigeon")
