"""
Rate limit analytics: violation tracking (abuse detection trail) and
per-endpoint usage counters.

Each rejected admission can be recorded as a violation on a per-subject list
in the shared store. The list is bounded (newest RATE_LIMIT_VIOLATION_HISTORY
entries) and expires RATE_LIMIT_VIOLATION_TTL seconds after the last
violation, which makes it a rolling window.

Admitted requests increment a per-subject, per-endpoint counter that expires
RATE_LIMIT_USAGE_TTL seconds after the first request it counted.

Severity:
- high:   more than 100 violations in the window, or more than 10 in the last hour
- medium: more than 50 violations in the window
- low:    anything else
"""

import asyncio
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field

import orjson

from sms_delivery.core.config.constants import (
    KEY_USAGE,
    KEY_VIOLATIONS,
    VIOLATIONS_HIGH_THRESHOLD,
    VIOLATIONS_MEDIUM_THRESHOLD,
    VIOLATIONS_SPIKE_THRESHOLD,
    VIOLATIONS_SPIKE_WINDOW_SECONDS,
    AbuseSeverity,
)
from sms_delivery.core.config.settings import get_settings
from sms_delivery.core.exceptions import StoreUnavailableError
from sms_delivery.core.interfaces.store import SharedStore
from sms_delivery.core.logging.logger import get_logger
from sms_delivery.core.resilience.store_guard import guarded_call

logger = get_logger(__name__)


@dataclass(frozen=True)
class Violation:
    subject: str
    endpoint: str
    timestamp: float


@dataclass(frozen=True)
class AbuseReport:
    subject: str
    violation_count: int
    recent_count: int
    last_violation: float
    severity: AbuseSeverity
    endpoints: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class UsageStats:
    subject: str
    request_count: int
    violation_count: int
    endpoints: dict[str, int] = field(default_factory=dict)


def classify_severity(total: int, recent: int) -> AbuseSeverity:
    """Map violation counts to a severity tier; a recent spike always wins."""
    if recent > VIOLATIONS_SPIKE_THRESHOLD or total > VIOLATIONS_HIGH_THRESHOLD:
        return AbuseSeverity.HIGH
    if total > VIOLATIONS_MEDIUM_THRESHOLD:
        return AbuseSeverity.MEDIUM
    return AbuseSeverity.LOW


class ViolationTracker:
    """
    Append-only, per-subject, time-bounded violation sink.

    Recording is best effort: a store failure is logged and swallowed so
    abuse tracking never blocks message sending.
    """

    def __init__(
        self,
        store: SharedStore,
        history_size: int | None = None,
        ttl_seconds: int | None = None,
        usage_ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self._store = store
        self._history_size = history_size or settings.rate_limit.RATE_LIMIT_VIOLATION_HISTORY
        self._ttl_seconds = ttl_seconds or settings.rate_limit.RATE_LIMIT_VIOLATION_TTL
        self._usage_ttl_seconds = usage_ttl_seconds or settings.rate_limit.RATE_LIMIT_USAGE_TTL
        self._clock = clock
        self._timeout = timeout if timeout is not None else settings.store.STORE_OPERATION_TIMEOUT

    @staticmethod
    def _key(subject: str) -> str:
        return f"{KEY_VIOLATIONS}{subject}"

    @staticmethod
    def _usage_prefix(subject: str) -> str:
        # colons in the subject are escaped so one subject never prefixes another
        escaped = subject.replace("%", "%25").replace(":", "%3A")
        return f"{KEY_USAGE}{escaped}:"

    async def record(self, subject: str, endpoint: str) -> bool:
        """
        Append a violation for `subject`.

        Returns:
            False if the store could not record it
        """
        key = self._key(subject)
        entry = orjson.dumps({"endpoint": endpoint, "timestamp": self._clock()}).decode()
        try:
            await guarded_call(self._store.lpush(key, entry), self._timeout, "lpush", key)
            await guarded_call(self._store.ltrim(key, 0, self._history_size - 1), self._timeout, "ltrim", key)
            await guarded_call(self._store.expire(key, self._ttl_seconds), self._timeout, "expire", key)
        except StoreUnavailableError as e:
            logger.error("Failed to record violation", stage="RL.5", subject=subject, error=e.message)
            return False

        logger.info("Violation recorded", stage="RL.5", subject=subject, endpoint=endpoint)
        return True

    async def history(self, subject: str, limit: int = 100) -> list[Violation]:
        """Newest-first violations for `subject`."""
        if limit <= 0:
            return []
        key = self._key(subject)
        try:
            raw_entries = await guarded_call(self._store.lrange(key, 0, limit - 1), self._timeout, "lrange", key)
        except StoreUnavailableError as e:
            logger.error("Failed to read violations", stage="RL.6", subject=subject, error=e.message)
            return []

        violations = []
        for raw in raw_entries:
            try:
                data = orjson.loads(raw)
                violations.append(
                    Violation(subject=subject, endpoint=data["endpoint"], timestamp=float(data["timestamp"]))
                )
            except (orjson.JSONDecodeError, KeyError, TypeError, ValueError):
                logger.warning("Skipping unreadable violation entry", stage="RL.6", subject=subject)
        return violations

    async def abuse_report(self, subject: str) -> AbuseReport | None:
        """
        Summarize a subject's violations in the rolling window.

        Returns:
            None when the subject has no violations
        """
        now = self._clock()
        window_start = now - self._ttl_seconds
        violations = [
            v for v in await self.history(subject, self._history_size) if v.timestamp >= window_start
        ]
        if not violations:
            return None

        recent = sum(1 for v in violations if v.timestamp > now - VIOLATIONS_SPIKE_WINDOW_SECONDS)
        return AbuseReport(
            subject=subject,
            violation_count=len(violations),
            recent_count=recent,
            last_violation=max(v.timestamp for v in violations),
            severity=classify_severity(len(violations), recent),
            endpoints=dict(Counter(v.endpoint for v in violations)),
        )

    async def top_abusers(self, limit: int = 10) -> list[AbuseReport]:
        """Subjects with the most violations, most first."""
        try:
            keys = await guarded_call(
                self._store.keys_with_prefix(KEY_VIOLATIONS), self._timeout, "keys_with_prefix", KEY_VIOLATIONS
            )
        except StoreUnavailableError as e:
            logger.error("Failed to list violation keys", stage="RL.7", error=e.message)
            return []

        subjects = [key[len(KEY_VIOLATIONS):] for key in keys]
        reports = await asyncio.gather(*(self.abuse_report(subject) for subject in subjects))
        ranked = sorted(
            (report for report in reports if report is not None),
            key=lambda report: report.violation_count,
            reverse=True,
        )
        return ranked[:limit]

    async def detect_anomalies(self, scan_limit: int = 100) -> list[AbuseReport]:
        """High-severity reports among the top `scan_limit` abusers."""
        anomalies = [
            report for report in await self.top_abusers(scan_limit) if report.severity == AbuseSeverity.HIGH
        ]
        for report in anomalies:
            logger.warning(
                "High severity abuse detected",
                stage="RL.7",
                subject=report.subject,
                violation_count=report.violation_count,
                recent_count=report.recent_count,
            )
        return anomalies

    async def record_usage(self, subject: str, endpoint: str) -> bool:
        """
        Count one admitted request by `subject` against `endpoint`.

        Returns:
            False if the store could not count it
        """
        key = f"{self._usage_prefix(subject)}{endpoint}"
        try:
            count = await guarded_call(self._store.incr(key), self._timeout, "incr", key)
            if count == 1:
                await guarded_call(self._store.expire(key, self._usage_ttl_seconds), self._timeout, "expire", key)
        except StoreUnavailableError as e:
            logger.error("Failed to record usage", stage="RL.8", subject=subject, error=e.message)
            return False
        return True

    async def usage_stats(self, subject: str) -> UsageStats:
        """Request counts per endpoint within the usage window, plus the violation total."""
        prefix = self._usage_prefix(subject)
        endpoints: dict[str, int] = {}
        try:
            keys = await guarded_call(self._store.keys_with_prefix(prefix), self._timeout, "keys_with_prefix", prefix)
            for key in keys:
                raw = await guarded_call(self._store.get(key), self._timeout, "get", key)
                if raw is None:
                    continue
                try:
                    endpoints[key[len(prefix):]] = int(raw)
                except ValueError:
                    logger.warning("Skipping unreadable usage counter", stage="RL.8", key=key)
        except StoreUnavailableError as e:
            logger.error("Failed to read usage", stage="RL.8", subject=subject, error=e.message)

        violations = await self.history(subject, self._history_size)
        return UsageStats(
            subject=subject,
            request_count=sum(endpoints.values()),
            violation_count=len(violations),
            endpoints=endpoints,
        )
