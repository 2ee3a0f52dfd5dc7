"""
Unit Tests for Logging Module

Tests the structlog processors, delivery context propagation and PII
redaction.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from sms_delivery.core.logging.logger import (
    add_delivery_context,
    add_log_level_name,
    bind_delivery_context,
    clear_delivery_context,
    get_delivery_context,
    get_logger,
    log_stage,
    mask_recipient,
    redact_pii,
    setup_logging,
)


@pytest.fixture(autouse=True)
def clean_context():
    clear_delivery_context()
    yield
    clear_delivery_context()


@pytest.mark.unit
class TestLoggerCreation:
    def test_get_logger_returns_logger_instance(self):
        logger = get_logger(__name__)
        assert hasattr(logger, "info")

    @pytest.mark.parametrize("log_format", ["json", "console"])
    def test_setup_logging(self, log_format):
        setup_logging(log_level="DEBUG", log_format=log_format)
        get_logger("setup-test").info("configured", stage="TEST")


@pytest.mark.unit
class TestDeliveryContext:
    def test_bind_and_clear(self):
        bind_delivery_context("msg-1", "tenant-a")
        assert get_delivery_context() == ("msg-1", "tenant-a")

        clear_delivery_context()
        assert get_delivery_context() == (None, None)

    def test_processor_injects_context(self):
        bind_delivery_context("msg-1", "tenant-a")
        event = add_delivery_context(None, "info", {"event": "x"})
        assert event["message_id"] == "msg-1"
        assert event["tenant_id"] == "tenant-a"

    def test_explicit_fields_win(self):
        bind_delivery_context("msg-1")
        event = add_delivery_context(None, "info", {"event": "x", "message_id": "other"})
        assert event["message_id"] == "other"
        assert "tenant_id" not in event

    @pytest.mark.asyncio
    async def test_tasks_carry_their_own_context(self):
        async def worker(message_id):
            bind_delivery_context(message_id)
            await asyncio.sleep(0)
            return get_delivery_context()[0]

        results = await asyncio.gather(worker("a"), worker("b"))
        assert results == ["a", "b"]
        assert get_delivery_context() == (None, None)


@pytest.mark.unit
class TestRedaction:
    def test_mask_recipient_keeps_last_four(self):
        assert mask_recipient("+15551234567") == "********4567"
        assert mask_recipient("123") == "***"

    def test_recipient_fields_are_masked(self):
        event = redact_pii(None, "info", {"event": "sent", "recipient": "+15551234567", "to": "+15557654321"})
        assert event["recipient"] == "********4567"
        assert event["to"] == "********4321"

    def test_event_text_is_scrubbed(self):
        event = redact_pii(None, "info", {"event": "Sending to +15551234567 for ops@example.com"})
        assert "+15551234567" not in event["event"]
        assert "[PHONE]" in event["event"]
        assert "[EMAIL]" in event["event"]

    def test_non_string_fields_untouched(self):
        event = redact_pii(None, "info", {"event": "x", "recipient": None, "attempts": 3})
        assert event["recipient"] is None
        assert event["attempts"] == 3

    def test_level_is_upper_cased(self):
        assert add_log_level_name(None, "warning", {"level": "warning"})["level"] == "WARNING"


@pytest.mark.unit
class TestLogStage:
    def test_log_stage_dispatches_by_level(self):
        logger = MagicMock()
        log_stage(logger, "DLQ.1", "Dead letter stored", level="warning", message_id="abc")
        logger.warning.assert_called_once_with("Dead letter stored", stage="DLQ.1", message_id="abc")
