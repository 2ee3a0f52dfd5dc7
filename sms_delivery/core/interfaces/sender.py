"""
Message Sender Protocol

The carrier client is owned outside this package; the delivery pipeline only
depends on this one-call contract.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class MessageSender(Protocol):
    """
    Upstream carrier contract.

    `send` returns the provider's message id or raises on any failure
    (transport error, rejection). The circuit breaker protects exactly this
    call.
    """

    async def send(self, to: str, body: str, tenant_id: str) -> str:
        ...
