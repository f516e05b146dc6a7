# logging_config.py
# ============================================================================
# PAID Q&A SERVICE — STRUCTURED LOGGING SETUP
# ============================================================================

import logging

import structlog

from config import settings


def configure_logging(level: str = None, json_output: bool = None) -> None:
    """Configure structlog once for the whole process."""
    level_name = (level or settings.LOG_LEVEL).upper()
    if json_output is None:
        json_output = not settings.is_development

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level_name, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
