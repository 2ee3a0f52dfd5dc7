"""
Test Fixtures Package

Shared test utilities and helpers for consistent testing across all modules.
"""

from .sender_factory import RecipientSender, ScriptedSender, SenderTestFactory, SlowSender
from .time_doubles import ManualClock, RecordingSleep

__all__ = [
    "ManualClock",
    "RecordingSleep",
    "RecipientSender",
    "ScriptedSender",
    "SenderTestFactory",
    "SlowSender",
]
