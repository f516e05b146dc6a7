# lifecycle/engine.py
# ============================================================================
# PAID Q&A SERVICE — QUESTION LIFECYCLE ENGINE
# ============================================================================
# Orchestrates every question operation:
#
#   submit ──► gateway session ──► confirm_payment ──► admin work ──► answer
#
# State changes and their admin action records commit in one store
# transaction. Notifications go out after commit; a failed send is recorded
# and logged but never undoes or fails the transition that triggered it.
# ============================================================================

from typing import Optional, Union

import structlog

from config import settings
from schemas.question_models import (
    AdminAction,
    AdminActionType,
    Caller,
    DashboardStats,
    DeliveryStatus,
    EmailNotification,
    NotificationType,
    PaymentStatus,
    Question,
    QuestionDetail,
    QuestionStatus,
    QuestionSummary,
    SubmissionResult,
    Urgency,
    utcnow,
)
from services.payment_gateway import IPaymentGateway, PaymentGatewayError
from services.notifications import INotificationSender, TemplateManager
from storage.question_store import IQuestionStore
from lifecycle import access_policy
from lifecycle.errors import (
    InvalidInput,
    InvalidStatus,
    NotFound,
    PaymentNotCompleted,
    PaymentSessionError,
    PersistenceError,
    RefundError,
    SessionVerificationError,
)
from lifecycle.pricing import PricingTable
from lifecycle.state_machine import (
    TransitionEvent,
    is_terminal,
    parse_status,
    validate_transition,
)


def _required(name: str, value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        raise InvalidInput(f"{name} is required")
    return str(value).strip()


class QuestionLifecycleEngine:
    """
    Single entry point for question operations.

    Collaborators are injected so the same engine runs against the
    in-memory adapters in tests and Stripe / SendGrid / Postgres in
    production.
    """

    def __init__(
        self,
        store: IQuestionStore,
        gateway: IPaymentGateway,
        sender: INotificationSender,
        pricing: PricingTable = None,
        templates: TemplateManager = None,
        currency: str = None,
        frontend_url: str = None,
    ):
        self.store = store
        self.gateway = gateway
        self.sender = sender
        self.pricing = pricing or PricingTable()
        self.templates = templates or TemplateManager()
        self.currency = currency or settings.CURRENCY
        self.frontend_url = frontend_url or settings.FRONTEND_URL
        self._logger = structlog.get_logger().bind(component="lifecycle_engine")

    def _get_logger(self, question_id: str = None):
        if question_id:
            return self._logger.bind(question_id=question_id)
        return self._logger

    async def _load(self, question_id: str) -> Question:
        question = await self.store.get(question_id)
        if question is None:
            raise NotFound("Question not found")
        return question

    # =========================================================================
    # CREATION
    # =========================================================================

    async def submit(
        self,
        email: str,
        title: str,
        details: str,
        urgency: Union[Urgency, str],
        owner_id: str = None,
    ) -> SubmissionResult:
        email = _required("email", email)
        title = _required("title", title)
        details = _required("details", details)
        try:
            urgency = Urgency(urgency)
        except ValueError:
            raise InvalidInput('Urgency must be "standard" or "urgent"') from None

        created_at = utcnow()
        question = Question(
            user_id=owner_id,
            email=email,
            title=title,
            details=details,
            urgency=urgency,
            price_cents=self.pricing.price_cents(urgency),
            due_date=self.pricing.due_date(urgency, created_at),
            created_at=created_at,
        )
        await self.store.create(question)

        log = self._get_logger(question.id)
        log.info("question_submitted", urgency=urgency.value, price_cents=question.price_cents)

        session = await self._open_session(question)

        async with self.store.transaction(question.id) as tx:
            await tx.save(tx.question.model_copy(update={"payment_session_id": session.session_id}))

        log.info("payment_session_attached", session_id=session.session_id)
        return SubmissionResult(
            question_id=question.id,
            payment_session_id=session.session_id,
            checkout_url=session.url,
        )

    async def _open_session(self, question: Question):
        try:
            return await self.gateway.create_session(
                amount_cents=question.price_cents,
                currency=self.currency,
                correlation_id=question.id,
                success_url=(
                    f"{self.frontend_url}/thanks.html?session_id={{CHECKOUT_SESSION_ID}}"
                    f"&question_id={question.id}"
                ),
                cancel_url=f"{self.frontend_url}/ask.html",
                description=question.title,
            )
        except PaymentGatewayError as e:
            self._get_logger(question.id).error("payment_session_failed", error=str(e))
            raise PaymentSessionError("Failed to create payment session") from e

    async def renew_payment_session(self, question_id: str, caller: Caller) -> SubmissionResult:
        """Issue a fresh checkout session for a question that is still unpaid."""
        question = await self._load(question_id)
        access_policy.require_view(caller, question)
        if question.status != QuestionStatus.PENDING_PAYMENT:
            raise InvalidStatus(f"Question is already {question.status.value}")

        session = await self._open_session(question)

        async with self.store.transaction(question_id) as tx:
            if tx.question.status != QuestionStatus.PENDING_PAYMENT:
                raise InvalidStatus(f"Question is already {tx.question.status.value}")
            await tx.save(tx.question.model_copy(update={
                "payment_session_id": session.session_id,
                "payment_status": PaymentStatus.PENDING,
            }))

        self._get_logger(question_id).info("payment_session_renewed", session_id=session.session_id)
        return SubmissionResult(
            question_id=question_id,
            payment_session_id=session.session_id,
            checkout_url=session.url,
        )

    # =========================================================================
    # PAYMENT
    # =========================================================================

    async def confirm_payment(self, session_id: str) -> Question:
        """
        Move a paid question from pending_payment to received.

        Safe to call any number of times for the same session: only the
        first call that finds the question unpaid changes it and sends the
        confirmation email.
        """
        session_id = _required("session_id", session_id)

        try:
            session = await self.gateway.get_session(session_id)
        except PaymentGatewayError as e:
            self._logger.error("session_verification_failed", session_id=session_id, error=str(e))
            raise SessionVerificationError("Failed to verify payment") from e

        if not session.is_paid:
            self._logger.info("payment_not_completed", session_id=session_id,
                              payment_status=session.payment_status)
            raise PaymentNotCompleted("Payment not completed")

        if not session.correlation_id:
            raise NotFound("No question linked to this payment session")

        log = self._get_logger(session.correlation_id)
        transitioned = False

        async with self.store.transaction(session.correlation_id) as tx:
            current = tx.question
            if current.status == QuestionStatus.PENDING_PAYMENT:
                validate_transition(current.status, QuestionStatus.RECEIVED,
                                    TransitionEvent.PAYMENT_CONFIRMED)
                await tx.save(current.model_copy(update={
                    "status": QuestionStatus.RECEIVED,
                    "payment_status": PaymentStatus.SUCCEEDED,
                    "payment_session_id": session_id,
                }))
                transitioned = True
            question = tx.question

        if transitioned:
            log.info("payment_confirmed", session_id=session_id, amount_cents=session.amount_cents)
            await self._notify(question, NotificationType.CONFIRMATION)
        else:
            log.info("payment_already_confirmed", session_id=session_id, status=question.status.value)

        return question

    async def mark_payment_failed(self, question_id: str, session_id: str) -> Optional[Question]:
        """Record an abandoned or expired checkout. Status is left unchanged."""
        try:
            async with self.store.transaction(question_id) as tx:
                current = tx.question
                if (
                    current.status != QuestionStatus.PENDING_PAYMENT
                    or current.payment_session_id not in (None, session_id)
                ):
                    return current
                await tx.save(current.model_copy(update={"payment_status": PaymentStatus.FAILED}))
                question = tx.question
        except NotFound:
            self._logger.warning("expired_session_unknown_question", question_id=question_id,
                                 session_id=session_id)
            return None

        self._get_logger(question_id).info("payment_marked_failed", session_id=session_id)
        return question

    async def handle_payment_event(self, event: dict) -> Optional[Question]:
        """Dispatch a verified provider webhook event."""
        event_type = event.get("type", "unknown")
        session = event.get("data", {}).get("object", {})
        session_id = session.get("id")

        self._logger.info("webhook_received", event_type=event_type, event_id=event.get("id"))

        if event_type == "checkout.session.completed" and session_id:
            try:
                return await self.confirm_payment(session_id)
            except PaymentNotCompleted:
                # Async payment methods complete later with their own event
                return None

        if event_type == "checkout.session.expired" and session_id:
            question_id = (session.get("metadata") or {}).get("question_id")
            if question_id:
                return await self.mark_payment_failed(question_id, session_id)
            return None

        self._logger.debug("webhook_ignored", event_type=event_type)
        return None

    # =========================================================================
    # READS
    # =========================================================================

    async def list_mine(self, caller_id: Optional[str], caller_email: Optional[str]) -> list[QuestionSummary]:
        if caller_id is None and not caller_email:
            return []
        questions = await self.store.list_for_owner(caller_id, caller_email)
        return [QuestionSummary.from_question(q) for q in questions]

    async def get_question(self, question_id: str, caller: Caller) -> QuestionDetail:
        question = await self._load(question_id)
        access_policy.require_view(caller, question)
        attachments = await self.store.get_attachments(question_id)
        return QuestionDetail(question=question, attachments=attachments)

    async def admin_list_all(
        self,
        actor: Caller,
        status: Union[QuestionStatus, str, None] = None,
        urgency: Union[Urgency, str, None] = None,
    ) -> list[Question]:
        access_policy.require_admin(actor)
        try:
            status = QuestionStatus(status) if status else None
            urgency = Urgency(urgency) if urgency else None
        except ValueError as e:
            raise InvalidInput(f"Invalid filter: {e}") from None
        return await self.store.list_all(status=status, urgency=urgency)

    async def admin_stats(self, actor: Caller) -> DashboardStats:
        access_policy.require_admin(actor)
        return await self.store.stats()

    # =========================================================================
    # ADMIN MUTATIONS
    # =========================================================================

    async def admin_set_status(
        self,
        question_id: str,
        new_status: Union[QuestionStatus, str],
        actor: Caller,
    ) -> Question:
        access_policy.require_admin(actor)
        target = parse_status(new_status)
        log = self._get_logger(question_id)

        async with self.store.transaction(question_id) as tx:
            current = tx.question
            validate_transition(current.status, target, TransitionEvent.ADMIN_SET_STATUS)
            await tx.save(current.model_copy(update={"status": target}))
            await tx.append_action(AdminAction(
                admin_id=actor.id,
                action_type=AdminActionType.STATUS_CHANGE,
                question_id=question_id,
                details={"old_status": current.status.value, "new_status": target.value},
            ))
            question = tx.question

        log.info("status_changed", old_status=current.status.value,
                 new_status=target.value, admin_id=actor.id)
        return question

    async def admin_publish_answer(self, question_id: str, text: str, actor: Caller) -> Question:
        access_policy.require_admin(actor)
        text = _required("answer_text", text)
        log = self._get_logger(question_id)

        async with self.store.transaction(question_id) as tx:
            current = tx.question
            validate_transition(current.status, QuestionStatus.ANSWERED,
                                TransitionEvent.ANSWER_PUBLISHED)
            await tx.save(current.model_copy(update={
                "status": QuestionStatus.ANSWERED,
                "answer_text": text,
                "answered_at": utcnow(),
            }))
            await tx.append_action(AdminAction(
                admin_id=actor.id,
                action_type=AdminActionType.ANSWER_PUBLISHED,
                question_id=question_id,
                details={"answer_length": len(text)},
            ))
            question = tx.question

        log.info("answer_published", admin_id=actor.id, answer_length=len(text))
        await self._notify(question, NotificationType.ANSWER_DELIVERED)
        return question

    async def admin_refund(self, question_id: str, actor: Caller, amount_cents: int = None) -> Question:
        """
        Refund a paid question and move it to refunded.

        The provider call runs while the question is locked, so concurrent
        refunds of one question cannot both reach the gateway.
        """
        access_policy.require_admin(actor)
        if amount_cents is not None and amount_cents <= 0:
            raise InvalidInput("Refund amount must be positive")

        log = self._get_logger(question_id)

        async with self.store.transaction(question_id) as tx:
            current = tx.question
            if is_terminal(current.status):
                raise InvalidStatus(f"Question is already {current.status.value}")
            if current.payment_status != PaymentStatus.SUCCEEDED or not current.payment_session_id:
                raise InvalidStatus("Question has no completed payment to refund")
            if amount_cents is not None and amount_cents > current.price_cents:
                raise InvalidInput("Refund amount exceeds the amount paid")
            validate_transition(current.status, QuestionStatus.REFUNDED, TransitionEvent.REFUND_ISSUED)

            try:
                session = await self.gateway.get_session(current.payment_session_id)
                if not session.payment_reference:
                    raise PaymentGatewayError("Payment session has no payment reference")
                refund = await self.gateway.refund(session.payment_reference, amount_cents)
            except PaymentGatewayError as e:
                log.error("refund_failed", error=str(e))
                raise RefundError("Refund could not be processed") from e

            try:
                await tx.save(current.model_copy(update={"status": QuestionStatus.REFUNDED}))
                await tx.append_action(AdminAction(
                    admin_id=actor.id,
                    action_type=AdminActionType.REFUND_ISSUED,
                    question_id=question_id,
                    details={
                        "refund_id": refund.refund_id,
                        "amount_cents": refund.amount_cents,
                        "old_status": current.status.value,
                    },
                ))
            except PersistenceError:
                # Money has moved; operators must reconcile by hand
                log.error("refund_issued_but_not_recorded", refund_id=refund.refund_id)
                raise
            question = tx.question

        log.info("refund_issued", refund_id=refund.refund_id, amount_cents=refund.amount_cents,
                 admin_id=actor.id)
        return question

    async def admin_update_notes(self, question_id: str, notes: Optional[str], actor: Caller) -> Question:
        access_policy.require_admin(actor)
        notes = notes.strip() if notes else None

        async with self.store.transaction(question_id) as tx:
            await tx.save(tx.question.model_copy(update={"admin_notes": notes}))
            await tx.append_action(AdminAction(
                admin_id=actor.id,
                action_type=AdminActionType.NOTES_UPDATED,
                question_id=question_id,
                details={"notes_length": len(notes) if notes else 0},
            ))
            question = tx.question

        self._get_logger(question_id).info("notes_updated", admin_id=actor.id)
        return question

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    async def send_sla_reminder(self, question: Question, hours_remaining: float,
                                to: str = None) -> Optional[EmailNotification]:
        return await self._notify(
            question,
            NotificationType.SLA_REMINDER,
            to=to or settings.ADMIN_EMAIL,
            hours_remaining=hours_remaining,
        )

    async def _notify(
        self,
        question: Question,
        notification_type: NotificationType,
        to: str = None,
        **extra,
    ) -> Optional[EmailNotification]:
        """Send one email and record the attempt. Never raises."""
        log = self._get_logger(question.id)
        recipient = to or question.email

        try:
            email = self.templates.render(notification_type, question, **extra)
            result = await self.sender.send(recipient, email.subject, email.html, email.text)
            if result.delivered:
                record = EmailNotification(
                    user_email=recipient,
                    question_id=question.id,
                    notification_type=notification_type,
                    status=DeliveryStatus.SENT,
                    provider_message_id=result.message_id,
                )
            else:
                record = EmailNotification(
                    user_email=recipient,
                    question_id=question.id,
                    notification_type=notification_type,
                    status=DeliveryStatus.FAILED,
                    provider_message_id=result.message_id,
                    error="Delivery backend did not accept the message",
                )
        except Exception as e:
            record = EmailNotification(
                user_email=recipient,
                question_id=question.id,
                notification_type=notification_type,
                status=DeliveryStatus.FAILED,
                error=str(e),
            )

        if record.status == DeliveryStatus.FAILED:
            log.error("notification_failed", notification_type=notification_type.value,
                      to=recipient, error=record.error)
        else:
            log.info("notification_sent", notification_type=notification_type.value,
                     to=recipient, message_id=record.provider_message_id)

        try:
            return await self.store.record_notification(record)
        except PersistenceError:
            log.error("notification_record_failed", notification_type=notification_type.value)
            return None
