from sms_delivery.core.interfaces.sender import MessageSender
from sms_delivery.core.interfaces.store import InMemoryStore, SharedStore

__all__ = ["InMemoryStore", "MessageSender", "SharedStore"]
