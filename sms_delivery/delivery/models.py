"""
Delivery value models.

Pydantic models for the retry policy, per-attempt records, results and dead
letter entries. DeadLetterEntry is the only model persisted (as JSON in the
shared store).
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sms_delivery.core.config.settings import get_settings


class DeliveryOptions(BaseModel):
    """Retry and backoff policy for one delivery."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=1, description="Total attempts, including the first")
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=8000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)

    @model_validator(mode="after")
    def check_delays(self) -> "DeliveryOptions":
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self

    @classmethod
    def from_settings(cls) -> "DeliveryOptions":
        delivery = get_settings().delivery
        return cls(
            max_retries=delivery.DELIVERY_MAX_RETRIES,
            initial_delay_ms=delivery.DELIVERY_INITIAL_DELAY_MS,
            max_delay_ms=delivery.DELIVERY_MAX_DELAY_MS,
            backoff_multiplier=delivery.DELIVERY_BACKOFF_MULTIPLIER,
        )

    def backoff_delay_ms(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        return min(self.max_delay_ms, self.initial_delay_ms * self.backoff_multiplier ** (attempt - 1))


class DeliveryAttempt(BaseModel):
    """One iteration of the retry loop. Never persisted."""

    recipient: str
    tenant_id: str
    message_id: str
    attempt: int
    outcome: str  # success | failure | timeout | circuit_open
    error: str | None = None
    backoff_ms: float | None = None


class DeliveryResult(BaseModel):
    """Outcome of delivering one message to one recipient."""

    success: bool
    attempts: int
    recipient: str
    message_id: str
    provider_message_id: str | None = None
    last_error: str | None = None
    dead_lettered: bool = False
    history: list[DeliveryAttempt] = Field(default_factory=list)


class BroadcastResult(BaseModel):
    """Aggregated outcome of delivering one message to many recipients."""

    message_id: str
    successful: list[DeliveryResult] = Field(default_factory=list)
    failed: list[DeliveryResult] = Field(default_factory=list)
    dead_letter_count: int = 0

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)


class DeadLetterEntry(BaseModel):
    """A message that exhausted its retries, awaiting replay or expiry."""

    message_id: str
    recipient: str
    body: str
    tenant_id: str
    reason: str
    attempts: int
    enqueued_at: float
    origin_message_id: str | None = None


class SendReport(BaseModel):
    """What the sending caller gets back for a rate-limited broadcast."""

    message_id: str
    successful: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    rate_limited: list[str] = Field(default_factory=list)
    dead_letter_count: int = 0
