"""
Structured logging configuration using structlog.
"""
import logging

import structlog

from app.config import settings

# Event keys that may carry shop credentials
REDACTED_KEYS = frozenset({"access_token", "webhook_secret", "authorization", "token"})


def redact_credentials(logger, method_name, event_dict):
    """Mask credential values so they never reach log output."""
    for key in REDACTED_KEYS.intersection(event_dict):
        value = event_dict[key]
        if value:
            event_dict[key] = f"{str(value)[:4]}***"
    return event_dict


def _log_level() -> int:
    level = logging.getLevelName(settings.log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging():
    """
    Configure structured logging for the application.

    Production renders one JSON object per line with exceptions formatted
    into the event; other environments use the colored console renderer.
    """
    production = settings.app_environment == "production"
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_credentials,
        structlog.processors.StackInfoRenderer(),
    ]
    if production:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.dev.set_exc_info, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_log_level()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
