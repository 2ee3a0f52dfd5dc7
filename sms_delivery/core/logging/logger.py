#!/usr/bin/env python3
"""
Structured Logging Module using structlog

This module provides structured logging with:
- Delivery context correlation (message_id / tenant_id) via context variables
- Stage tags for execution flow (CB.*, RL.*, DLV.*, DLQ.*, LOCK.*)
- JSON formatting for log aggregation
- Automatic PII redaction (recipient phone numbers, emails)

Architectural Decision: structlog for production logging
- Context-aware logging with automatic field injection
- JSON output for log aggregation (ELK, Loki, etc.)
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, WrappedLogger

from sms_delivery.core.config.settings import get_settings

# Delivery correlation context
message_id_ctx: ContextVar[str | None] = ContextVar("message_id", default=None)
tenant_id_ctx: ContextVar[str | None] = ContextVar("tenant_id", default=None)

_EMAIL_PATTERN = re.compile(r"\b[\w.-]+@[\w.-]+\.\w+\b")
_PHONE_PATTERN = re.compile(r"\+?\b\d{1,3}?[-. ]?\(?\d{3}\)?[-. ]?\d{3}[-. ]?\d{4}\b")

# Event fields that always hold a recipient address
_RECIPIENT_FIELDS = ("recipient", "to")


def add_delivery_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add message/tenant correlation fields from context variables.

    STAGE-L.1: Correlation injection
    """
    message_id = message_id_ctx.get()
    if message_id and "message_id" not in event_dict:
        event_dict["message_id"] = message_id
    tenant_id = tenant_id_ctx.get()
    if tenant_id and "tenant_id" not in event_dict:
        event_dict["tenant_id"] = tenant_id
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add ISO timestamp to log event.

    STAGE-L.2: Timestamp injection
    """
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def mask_recipient(value: str) -> str:
    """Keep the last four characters of an address, mask the rest."""
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]


def redact_pii(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact PII from log entries.

    STAGE-L.3: PII redaction

    - Email addresses and phone numbers in the event text
    - Recipient fields are masked down to their last four characters
    """
    message = event_dict.get("event", "")

    if isinstance(message, str):
        message = _EMAIL_PATTERN.sub("[EMAIL]", message)
        message = _PHONE_PATTERN.sub("[PHONE]", message)
        event_dict["event"] = message

    for field in _RECIPIENT_FIELDS:
        value = event_dict.get(field)
        if isinstance(value, str):
            event_dict[field] = mask_recipient(value)

    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Upper-case the log level.

    STAGE-L.4: Log level injection
    """
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Setup structured logging with structlog.

    STAGE-L: Logging initialization

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
    """
    settings = get_settings()

    log_level = log_level or settings.logging.LOG_LEVEL
    log_format = log_format or settings.logging.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_delivery_context,
            add_timestamp,
            structlog.stdlib.add_log_level,
            add_log_level_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_pii,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value", stage="DLV.1")
    """
    return structlog.get_logger(name)


def bind_delivery_context(message_id: str | None, tenant_id: str | None = None) -> None:
    """
    Attach message/tenant correlation to every log entry of the current task.

    asyncio tasks copy the context on creation, so each recipient task of a
    broadcast carries its own values.
    """
    message_id_ctx.set(message_id)
    tenant_id_ctx.set(tenant_id)


def get_delivery_context() -> tuple[str | None, str | None]:
    """Return the (message_id, tenant_id) bound to the current context."""
    return message_id_ctx.get(), tenant_id_ctx.get()


def clear_delivery_context() -> None:
    """Clear delivery correlation from the current context."""
    message_id_ctx.set(None)
    tenant_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger, stage: str, message: str, level: str = "info", **kwargs
) -> None:
    """
    Log a message with stage information.

    Usage:
        log_stage(logger, "DLQ.1", "Dead letter stored", message_id="abc")
    """
    log_func = getattr(logger, level.lower())
    log_func(message, stage=stage, **kwargs)
