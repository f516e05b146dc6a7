# storage/__init__.py
# ============================================================================
# PAID Q&A SERVICE — STORAGE MODULE
# ============================================================================
# Question store interface plus in-memory and PostgreSQL implementations
# ============================================================================

from config import settings
from storage.question_store import (
    IQuestionStore,
    InMemoryQuestionStore,
    QuestionTransaction,
    compute_stats,
)


def get_question_store(backend: str = None) -> IQuestionStore:
    """Build the configured question store (`memory` or `postgres`)."""
    backend = backend or settings.QUESTION_STORE
    if backend == "postgres":
        from storage.postgres_store import PostgresQuestionStore
        return PostgresQuestionStore()
    if backend == "memory":
        return InMemoryQuestionStore()
    raise ValueError(f"Unknown QUESTION_STORE: {backend}")


__all__ = [
    "IQuestionStore",
    "InMemoryQuestionStore",
    "QuestionTransaction",
    "compute_stats",
    "get_question_store",
]
