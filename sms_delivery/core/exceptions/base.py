"""
Base Exception Class

This module contains the base exception class that all other exceptions
inherit from. Specialized exceptions live in their themed modules.
"""

from typing import Any


class DeliveryBaseError(Exception):
    """
    Base exception for all delivery-layer errors.

    All custom exceptions inherit from this class to enable:
    - Consistent error handling
    - Correlation with the message or job being processed
    - Structured error logging

    Attributes:
        message: Error message
        correlation_id: Message id or job name for correlation (if available)
        details: Additional error details (dict)

    Example:
        raise UpstreamSendError(
            "Carrier rejected the request",
            correlation_id="msg-123",
            details={"recipient": "+15550100", "status": 503}
        )
    """

    def __init__(
        self,
        message: str,
        correlation_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.correlation_id = correlation_id
        self.details = (details or {}).copy()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging/API responses.

        Returns:
            Dict with error_type, message, correlation_id, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "correlation_id": self.correlation_id,
            "details": self.details,
        }

    def with_context(self, **context) -> "DeliveryBaseError":
        """
        Add additional context to the error details.

        Returns:
            Self (for method chaining)
        """
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        correlation_str = f", correlation_id='{self.correlation_id}'" if self.correlation_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{correlation_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        correlation_id: str | None = None,
        **details
    ) -> "DeliveryBaseError":
        """
        Create an error from another exception.

        Useful for wrapping third-party exceptions (redis, carrier SDKs) with
        additional context.

        Example:
            >>> try:
            ...     await client.get(key)
            ... except redis.RedisError as e:
            ...     raise StoreUnavailableError.from_exception(e, key=key)
        """
        error_message = message or str(exc) or exc.__class__.__name__
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, correlation_id=correlation_id, details=error_details)


class ConfigurationError(DeliveryBaseError):
    """Raised when configuration is invalid or missing."""
    pass
