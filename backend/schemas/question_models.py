# schemas/question_models.py
# ============================================================================
# PAID Q&A SERVICE — DOMAIN MODELS
# ============================================================================
# Questions, attachments, audit records and notification records, plus the
# caller identity consulted by the access policy.
# ============================================================================

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class Urgency(str, Enum):
    STANDARD = "standard"
    URGENT = "urgent"


class QuestionStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    RECEIVED = "received"
    IN_PROGRESS = "in_progress"
    ANSWERED = "answered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class AdminActionType(str, Enum):
    STATUS_CHANGE = "status_change"
    ANSWER_PUBLISHED = "answer_published"
    REFUND_ISSUED = "refund_issued"
    NOTES_UPDATED = "notes_updated"


class NotificationType(str, Enum):
    CONFIRMATION = "confirmation"
    ANSWER_DELIVERED = "answer_delivered"
    SLA_REMINDER = "sla_reminder"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


# ============================================================================
# SECTION 2: CORE ENTITIES
# ============================================================================

class Question(BaseModel):
    """A paid question and its full lifecycle state."""
    id: str = Field(default_factory=new_id)
    user_id: Optional[str] = None
    email: str
    title: str
    details: str
    urgency: Urgency
    status: QuestionStatus = QuestionStatus.PENDING_PAYMENT
    price_cents: int = Field(ge=0)
    payment_session_id: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    due_date: datetime
    created_at: datetime = Field(default_factory=utcnow)
    answered_at: Optional[datetime] = None
    answer_text: Optional[str] = None
    admin_notes: Optional[str] = None

    @computed_field
    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.SUCCEEDED


class QuestionSummary(BaseModel):
    """Listing row returned to question owners"""
    id: str
    title: str
    urgency: Urgency
    status: QuestionStatus
    price_cents: int
    due_date: datetime
    created_at: datetime
    answered_at: Optional[datetime] = None

    @classmethod
    def from_question(cls, question: Question) -> "QuestionSummary":
        return cls(
            id=question.id,
            title=question.title,
            urgency=question.urgency,
            status=question.status,
            price_cents=question.price_cents,
            due_date=question.due_date,
            created_at=question.created_at,
            answered_at=question.answered_at,
        )


class Attachment(BaseModel):
    """File metadata owned by a question"""
    id: str = Field(default_factory=new_id)
    question_id: str
    filename: str
    file_url: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=utcnow)


class AdminAction(BaseModel):
    """Immutable audit record for a privileged transition"""
    id: str = Field(default_factory=new_id)
    admin_id: str
    action_type: AdminActionType
    question_id: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class EmailNotification(BaseModel):
    """Immutable record of an attempted notification"""
    id: str = Field(default_factory=new_id)
    user_email: str
    question_id: Optional[str] = None
    notification_type: NotificationType
    status: DeliveryStatus
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    sent_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class QuestionDetail(BaseModel):
    question: Question
    attachments: list[Attachment] = Field(default_factory=list)


# ============================================================================
# SECTION 3: CALLER IDENTITY
# ============================================================================

class Caller(BaseModel):
    """Identity of whoever invokes an operation (token claims or anonymous)."""
    id: Optional[str] = None
    email: Optional[str] = None
    role: UserRole = UserRole.USER

    @computed_field
    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @computed_field
    @property
    def is_authenticated(self) -> bool:
        return self.id is not None

    @classmethod
    def anonymous(cls) -> "Caller":
        return cls()


# ============================================================================
# SECTION 4: OPERATION RESULTS
# ============================================================================

class SubmissionResult(BaseModel):
    question_id: str
    payment_session_id: str
    checkout_url: str


class DashboardStats(BaseModel):
    total: int
    count_by_status: dict[str, int]
    total_revenue_cents: int
    average_response_hours: float
