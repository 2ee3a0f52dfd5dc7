"""
Delivery layer: retry pipeline, dead letter store, rate-limited send service
and the background broadcast dispatcher.
"""

from sms_delivery.delivery.dead_letter import DeadLetterStore
from sms_delivery.delivery.dispatcher import BroadcastDispatcher, BroadcastJob
from sms_delivery.delivery.models import (
    BroadcastResult,
    DeadLetterEntry,
    DeliveryAttempt,
    DeliveryOptions,
    DeliveryResult,
    SendReport,
)
from sms_delivery.delivery.pipeline import DeliveryPipeline, broadcast_dead_letter_id
from sms_delivery.delivery.send_service import MessageSendService

__all__ = [
    "BroadcastDispatcher",
    "BroadcastJob",
    "BroadcastResult",
    "DeadLetterEntry",
    "DeadLetterStore",
    "DeliveryAttempt",
    "DeliveryOptions",
    "DeliveryPipeline",
    "DeliveryResult",
    "MessageSendService",
    "SendReport",
    "broadcast_dead_letter_id",
]
