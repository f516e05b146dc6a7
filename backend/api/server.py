# api/server.py
# ============================================================================
# PAID Q&A SERVICE — FASTAPI SERVER
# ============================================================================
# HTTP surface for question submission, payment confirmation, owner reads
# and the admin console, plus the payment provider webhook.
# ============================================================================

import asyncio
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Optional

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.auth import optional_caller, require_admin, require_caller
from config import settings
from database import close_database, init_database
from lifecycle.engine import QuestionLifecycleEngine
from lifecycle.errors import QuestionServiceError
from logging_config import configure_logging
from schemas.question_models import Caller, DashboardStats
from services import get_notification_sender, get_payment_gateway
from storage import get_question_store
from tasks.sla_reminder import sla_reminder_loop

logger = structlog.get_logger().bind(component="api")

VERSION = "1.0.0"

ERROR_STATUS_CODES = {
    "invalid_input": 400,
    "not_found": 404,
    "access_denied": 403,
    "invalid_status": 409,
    "payment_session_error": 502,
    "session_verification_error": 502,
    "payment_not_completed": 402,
    "refund_error": 502,
    "persistence_error": 503,
}

HTTP_ERROR_KINDS = {
    401: "unauthorized",
    403: "access_denied",
    404: "not_found",
    405: "method_not_allowed",
}


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class SubmitQuestionRequest(BaseModel):
    """Incoming question. Field values are validated by the engine."""
    email: str = ""
    title: str = ""
    details: str = ""
    urgency: str = ""


class ConfirmPaymentRequest(BaseModel):
    session_id: str = Field(
        default="",
        validation_alias=AliasChoices("session_id", "sessionId"),
    )


class StatusUpdateRequest(BaseModel):
    status: str = ""


class PublishAnswerRequest(BaseModel):
    answer_text: str = ""


class RefundRequest(BaseModel):
    amount_cents: Optional[int] = None


class NotesRequest(BaseModel):
    admin_notes: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    question_store: str
    payment_backend: str


START_TIME = datetime.now(timezone.utc)


def build_engine() -> QuestionLifecycleEngine:
    """Wire the engine from configured backends."""
    return QuestionLifecycleEngine(
        store=get_question_store(),
        gateway=get_payment_gateway(),
        sender=get_notification_sender(),
    )


def get_engine(request: Request) -> QuestionLifecycleEngine:
    return request.app.state.engine


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(engine: QuestionLifecycleEngine = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        logger.info("service_starting", version=VERSION, env=settings.ENV,
                    question_store=settings.QUESTION_STORE,
                    payment_backend=settings.PAYMENT_BACKEND)

        if settings.QUESTION_STORE == "postgres":
            await init_database()

        reminder_task = asyncio.create_task(sla_reminder_loop(app.state.engine))

        yield

        reminder_task.cancel()
        with suppress(asyncio.CancelledError):
            await reminder_task

        if settings.QUESTION_STORE == "postgres":
            await close_database()
        logger.info("service_stopped")

    app = FastAPI(
        title="Paid Q&A Service",
        description="Paid question intake, payment confirmation and answer delivery",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.engine = engine or build_engine()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        """Add response timing header."""
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        return response

    # ------------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------------

    @app.exception_handler(QuestionServiceError)
    async def service_error_handler(request: Request, exc: QuestionServiceError):
        status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
        if status_code >= 500:
            logger.error("request_failed", path=request.url.path, kind=exc.kind, detail=exc.message)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        detail = first.get("msg", "Invalid request body")
        return JSONResponse(status_code=400, content={"error": "invalid_input", "detail": detail})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        kind = HTTP_ERROR_KINDS.get(exc.status_code, "http_error")
        return JSONResponse(status_code=exc.status_code, content={"error": kind, "detail": exc.detail})

    # ------------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        uptime = (datetime.now(timezone.utc) - START_TIME).total_seconds()
        return HealthResponse(
            status="healthy",
            version=VERSION,
            uptime_seconds=uptime,
            question_store=settings.QUESTION_STORE,
            payment_backend=settings.PAYMENT_BACKEND,
        )

    # ------------------------------------------------------------------------
    # Owner routes
    # ------------------------------------------------------------------------

    @app.post("/api/questions", status_code=201)
    async def submit_question(
        body: SubmitQuestionRequest,
        caller: Caller = Depends(optional_caller),
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        result = await engine.submit(
            email=body.email,
            title=body.title,
            details=body.details,
            urgency=body.urgency,
            owner_id=caller.id,
        )
        return {
            "message": "Question created, proceed to payment",
            "question_id": result.question_id,
            "checkout_url": result.checkout_url,
            "session_id": result.payment_session_id,
        }

    @app.post("/api/questions/confirm-payment")
    async def confirm_payment(
        body: ConfirmPaymentRequest,
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        question = await engine.confirm_payment(body.session_id)
        return {"message": "Payment confirmed", "question": question.model_dump(mode="json")}

    @app.get("/api/questions/my-questions")
    async def my_questions(
        caller: Caller = Depends(require_caller),
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        summaries = await engine.list_mine(caller.id, caller.email)
        return {"questions": [s.model_dump(mode="json") for s in summaries]}

    @app.get("/api/questions/admin/stats")
    async def dashboard_stats(
        caller: Caller = Depends(require_admin),
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        stats: DashboardStats = await engine.admin_stats(caller)
        return {"stats": stats.model_dump(mode="json")}

    @app.get("/api/questions/{question_id}")
    async def get_question(
        question_id: str,
        caller: Caller = Depends(optional_caller),
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        detail = await engine.get_question(question_id, caller)
        return detail.model_dump(mode="json")

    @app.post("/api/questions/{question_id}/payment-session")
    async def renew_payment_session(
        question_id: str,
        caller: Caller = Depends(require_caller),
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        result = await engine.renew_payment_session(question_id, caller)
        return {
            "question_id": result.question_id,
            "checkout_url": result.checkout_url,
            "session_id": result.payment_session_id,
        }

    # ------------------------------------------------------------------------
    # Admin routes
    # ------------------------------------------------------------------------

    @app.get("/api/questions")
    async def list_all_questions(
        status: Optional[str] = None,
        urgency: Optional[str] = None,
        caller: Caller = Depends(require_admin),
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        questions = await engine.admin_list_all(caller, status=status, urgency=urgency)
        return {"questions": [q.model_dump(mode="json") for q in questions]}

    @app.patch("/api/questions/{question_id}/status")
    async def update_status(
        question_id: str,
        body: StatusUpdateRequest,
        caller: Caller = Depends(require_admin),
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        question = await engine.admin_set_status(question_id, body.status, caller)
        return {"message": "Status updated", "question": question.model_dump(mode="json")}

    @app.post("/api/questions/{question_id}/publish-answer")
    async def publish_answer(
        question_id: str,
        body: PublishAnswerRequest,
        caller: Caller = Depends(require_admin),
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        question = await engine.admin_publish_answer(question_id, body.answer_text, caller)
        return {"message": "Answer published", "question": question.model_dump(mode="json")}

    @app.post("/api/questions/{question_id}/refund")
    async def refund_question(
        question_id: str,
        body: RefundRequest,
        caller: Caller = Depends(require_admin),
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        question = await engine.admin_refund(question_id, caller, body.amount_cents)
        return {"message": "Refund issued", "question": question.model_dump(mode="json")}

    @app.patch("/api/questions/{question_id}/notes")
    async def update_notes(
        question_id: str,
        body: NotesRequest,
        caller: Caller = Depends(require_admin),
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        question = await engine.admin_update_notes(question_id, body.admin_notes, caller)
        return {"message": "Notes updated", "question": question.model_dump(mode="json")}

    # ------------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------------

    @app.post("/api/webhooks/stripe")
    async def stripe_webhook(
        request: Request,
        engine: QuestionLifecycleEngine = Depends(get_engine),
    ):
        payload = await request.body()
        signature = request.headers.get("stripe-signature", "")

        try:
            event = engine.gateway.construct_event(payload, signature)
        except ValueError as e:
            return JSONResponse(status_code=400, content={"error": "invalid_input", "detail": str(e)})

        await engine.handle_payment_event(event)
        return {"received": True}

    return app


app = create_app()


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower(),
    )
