"""
Database Module
===============
PostgreSQL persistence for the question store.

This module provides:
- AsyncPG connection pool (process-wide, explicit initialize/close)
- Idempotent schema creation for questions, attachments, admin_actions
  and email_notifications

User and admin ids come from bearer tokens issued by the account
service, so they are stored as plain text columns.

pip install asyncpg
"""

from contextlib import asynccontextmanager
from typing import List, Optional

import asyncpg
import structlog

from config import settings

logger = structlog.get_logger().bind(component="database")


# =============================================================================
# SCHEMA
# =============================================================================

MIGRATIONS = [
    """
    CREATE TABLE IF NOT EXISTS questions (
        id TEXT PRIMARY KEY,
        user_id TEXT,
        email TEXT NOT NULL,
        title TEXT NOT NULL,
        details TEXT NOT NULL,
        urgency VARCHAR(10) NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'pending_payment',
        price_cents INTEGER NOT NULL,
        payment_session_id TEXT,
        payment_status VARCHAR(10) NOT NULL DEFAULT 'pending',
        due_date TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        answered_at TIMESTAMPTZ,
        answer_text TEXT,
        admin_notes TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attachments (
        id TEXT PRIMARY KEY,
        question_id TEXT NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
        filename TEXT NOT NULL,
        file_url TEXT NOT NULL,
        file_size INTEGER,
        mime_type TEXT,
        uploaded_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS admin_actions (
        id TEXT PRIMARY KEY,
        admin_id TEXT NOT NULL,
        action_type VARCHAR(30) NOT NULL,
        question_id TEXT NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
        details JSONB NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS email_notifications (
        id TEXT PRIMARY KEY,
        user_email TEXT NOT NULL,
        question_id TEXT REFERENCES questions(id) ON DELETE SET NULL,
        notification_type VARCHAR(30) NOT NULL,
        status VARCHAR(10) NOT NULL,
        provider_message_id TEXT,
        error TEXT,
        sent_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_questions_user_id ON questions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_questions_email ON questions(email)",
    "CREATE INDEX IF NOT EXISTS idx_questions_status ON questions(status)",
    "CREATE INDEX IF NOT EXISTS idx_questions_due_date ON questions(due_date)",
    "CREATE INDEX IF NOT EXISTS idx_questions_session ON questions(payment_session_id)",
    "CREATE INDEX IF NOT EXISTS idx_attachments_question_id ON attachments(question_id)",
    "CREATE INDEX IF NOT EXISTS idx_admin_actions_question_id ON admin_actions(question_id)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_question_id ON email_notifications(question_id)",
]


# =============================================================================
# CONNECTION POOL
# =============================================================================

class Database:
    """Async database connection pool manager"""

    _pool: Optional[asyncpg.Pool] = None
    _initialized: bool = False

    @classmethod
    async def initialize(cls, dsn: str = None):
        """Initialize the connection pool and create the schema"""
        if cls._initialized:
            return

        try:
            cls._pool = await asyncpg.create_pool(
                dsn or settings.DATABASE_URL,
                min_size=settings.DB_MIN_POOL_SIZE,
                max_size=settings.DB_MAX_POOL_SIZE,
            )
            cls._initialized = True
            logger.info("pool_initialized")

            await cls._run_migrations()

        except Exception as e:
            logger.error("pool_initialization_failed", error=str(e))
            raise

    @classmethod
    async def close(cls):
        """Close the connection pool"""
        if cls._pool:
            await cls._pool.close()
            cls._pool = None
            cls._initialized = False
            logger.info("pool_closed")

    @classmethod
    @asynccontextmanager
    async def acquire(cls):
        """Acquire a connection from the pool"""
        if not cls._pool:
            await cls.initialize()

        async with cls._pool.acquire() as conn:
            yield conn

    @classmethod
    async def execute(cls, query: str, *args) -> str:
        async with cls.acquire() as conn:
            return await conn.execute(query, *args)

    @classmethod
    async def fetch_one(cls, query: str, *args) -> Optional[asyncpg.Record]:
        async with cls.acquire() as conn:
            return await conn.fetchrow(query, *args)

    @classmethod
    async def fetch_all(cls, query: str, *args) -> List[asyncpg.Record]:
        async with cls.acquire() as conn:
            return await conn.fetch(query, *args)

    @classmethod
    async def _run_migrations(cls):
        async with cls.acquire() as conn:
            async with conn.transaction():
                for migration in MIGRATIONS:
                    await conn.execute(migration)

        logger.info("migrations_complete", statements=len(MIGRATIONS))


async def init_database():
    """Initialize database on app startup"""
    await Database.initialize()


async def close_database():
    """Close database on app shutdown"""
    await Database.close()
