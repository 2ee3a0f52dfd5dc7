"""
Dead Letter Store

Holds messages whose delivery exhausted every retry until an operator replays
or discards them, or until the retention TTL (24h by default) expires them.

Layout in the shared store:
    dlq:{message_id}   JSON DeadLetterEntry, expires after ttl_seconds
    dlq:messages       index list of message ids, newest first, bounded

Index entries can outlive their record (TTL expiry); readers skip and prune
them.
"""

from pydantic import ValidationError

from sms_delivery.core.config.constants import KEY_DEAD_LETTER, KEY_DEAD_LETTER_INDEX
from sms_delivery.core.config.settings import get_settings
from sms_delivery.core.interfaces.store import SharedStore
from sms_delivery.core.logging.logger import get_logger
from sms_delivery.core.resilience.store_guard import guarded_call
from sms_delivery.delivery.models import DeadLetterEntry

logger = get_logger(__name__)


class DeadLetterStore:
    """
    Shared-store persistence for DeadLetterEntry records.

    All methods raise StoreUnavailableError when the store cannot be reached;
    the delivery pipeline decides how to surface that.
    """

    def __init__(
        self,
        store: SharedStore,
        ttl_seconds: int | None = None,
        index_max_length: int | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self._store = store
        self._ttl_seconds = ttl_seconds or settings.delivery.DLQ_TTL_SECONDS
        self._index_max_length = index_max_length or settings.delivery.DLQ_INDEX_MAX_LENGTH
        self._timeout = timeout if timeout is not None else settings.store.STORE_OPERATION_TIMEOUT

    @staticmethod
    def _key(message_id: str) -> str:
        return f"{KEY_DEAD_LETTER}{message_id}"

    async def _call(self, operation, name: str, key: str):
        return await guarded_call(operation, self._timeout, name, key)

    async def add(self, entry: DeadLetterEntry) -> None:
        """
        Store (or overwrite) an entry and put it at the head of the index.

        STAGE-DLQ.1: Dead letter write
        """
        key = self._key(entry.message_id)
        await self._call(self._store.set(key, entry.model_dump_json(), ttl=self._ttl_seconds), "set", key)
        await self._call(self._store.lrem(KEY_DEAD_LETTER_INDEX, 0, entry.message_id), "lrem", KEY_DEAD_LETTER_INDEX)
        await self._call(self._store.lpush(KEY_DEAD_LETTER_INDEX, entry.message_id), "lpush", KEY_DEAD_LETTER_INDEX)
        await self._call(
            self._store.ltrim(KEY_DEAD_LETTER_INDEX, 0, self._index_max_length - 1), "ltrim", KEY_DEAD_LETTER_INDEX
        )
        await self._call(self._store.expire(KEY_DEAD_LETTER_INDEX, self._ttl_seconds), "expire", KEY_DEAD_LETTER_INDEX)

        logger.warning(
            "Message moved to dead letter store",
            stage="DLQ.1",
            dead_letter_id=entry.message_id,
            recipient=entry.recipient,
            attempts=entry.attempts,
            reason=entry.reason,
        )

    async def get(self, message_id: str) -> DeadLetterEntry | None:
        key = self._key(message_id)
        raw = await self._call(self._store.get(key), "get", key)
        if raw is None:
            return None
        try:
            return DeadLetterEntry.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Unreadable dead letter entry", stage="DLQ.2", dead_letter_id=message_id, error=str(e))
            return None

    async def list(self, limit: int = 50) -> list[DeadLetterEntry]:
        """
        Newest-first entries, at most `limit`.

        STAGE-DLQ.2: Dead letter listing
        """
        if limit <= 0:
            return []

        entries: list[DeadLetterEntry] = []
        stale: list[str] = []
        start = 0
        while len(entries) < limit:
            ids = await self._call(
                self._store.lrange(KEY_DEAD_LETTER_INDEX, start, start + limit - 1), "lrange", KEY_DEAD_LETTER_INDEX
            )
            if not ids:
                break
            for message_id in ids:
                entry = await self.get(message_id)
                if entry is None:
                    stale.append(message_id)
                elif len(entries) < limit:
                    entries.append(entry)
            start += len(ids)

        for message_id in stale:
            await self._call(self._store.lrem(KEY_DEAD_LETTER_INDEX, 0, message_id), "lrem", KEY_DEAD_LETTER_INDEX)
        if stale:
            logger.debug("Pruned expired dead letter index entries", stage="DLQ.2", pruned=len(stale))

        return entries

    async def remove(self, message_id: str) -> bool:
        """
        Delete an entry and its index reference.

        Returns:
            True if the entry existed
        """
        key = self._key(message_id)
        deleted = await self._call(self._store.delete(key), "delete", key)
        await self._call(self._store.lrem(KEY_DEAD_LETTER_INDEX, 0, message_id), "lrem", KEY_DEAD_LETTER_INDEX)
        if deleted:
            logger.info("Removed dead letter entry", stage="DLQ.3", dead_letter_id=message_id)
        return deleted > 0

    async def count(self) -> int:
        """Number of live entries."""
        return len(await self.list(self._index_max_length))
