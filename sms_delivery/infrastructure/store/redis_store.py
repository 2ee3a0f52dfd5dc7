"""
Redis-backed Shared Store

Architecture:
    RedisStore (SharedStore implementation)
        ├── ConnectionManager (Connection lifecycle and pooling)
        └── Lua scripts (compare-and-delete, compare-and-set)

Atomicity:
    - set_if_absent      -> SET key value NX PX ttl
    - delete_if_equals   -> Lua: GET + DEL in one script
    - compare_and_set    -> Lua: GET + SET PX in one script
    - incr               -> INCR

Scripts are registered once per client and invoked with EVALSHA.
    - keys_with_prefix   -> SCAN MATCH prefix* (never KEYS)

Every Redis error is translated to StoreUnavailableError (StoreTimeoutError
for timeouts) at this boundary; callers never see redis exceptions.
"""

import time
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.commands.core import AsyncScript
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from sms_delivery.core.config.settings import Settings, get_settings
from sms_delivery.core.exceptions import StoreTimeoutError, StoreUnavailableError
from sms_delivery.core.logging.logger import get_logger

logger = get_logger(__name__)


DELETE_IF_EQUALS_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

# ARGV: expected, new value, ttl in ms ('' for none), '1' when the key must be absent
COMPARE_AND_SET_SCRIPT = """
local current = redis.call('get', KEYS[1])
if ARGV[4] == '1' then
    if current then
        return 0
    end
elseif current ~= ARGV[1] then
    return 0
end
if ARGV[3] ~= '' then
    redis.call('set', KEYS[1], ARGV[2], 'PX', ARGV[3])
else
    redis.call('set', KEYS[1], ARGV[2])
end
return 1
"""

_GLOB_SPECIALS = "\\*?[]"


def escape_glob(value: str) -> str:
    """Escape Redis MATCH pattern metacharacters."""
    return "".join(f"\\{char}" if char in _GLOB_SPECIALS else char for char in value)


# =============================================================================
# CONNECTION MANAGEMENT
# =============================================================================


class ConnectionManager:
    """
    Manages Redis connection lifecycle and pooling.

    Pool Configuration (from settings.redis):
    - Max connections: 100
    - Socket timeout: 5s
    - Health check interval: 30s
    - Decode responses: True (returns strings, not bytes)
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._pool: ConnectionPool | None = None
        self._client: redis.Redis | None = None
        self._is_connected = False

    async def connect(self) -> redis.Redis:
        """
        Establish connection to Redis with connection pooling.

        STAGE-STORE.1: Connection establishment

        Raises:
            StoreUnavailableError: If connection fails
        """
        if self._is_connected and self._client:
            return self._client

        redis_settings = self._settings.redis
        try:
            self._pool = ConnectionPool(
                host=redis_settings.REDIS_HOST,
                port=redis_settings.REDIS_PORT,
                db=redis_settings.REDIS_DB,
                password=redis_settings.REDIS_PASSWORD,
                max_connections=redis_settings.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=redis_settings.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=redis_settings.REDIS_SOCKET_TIMEOUT,
                retry_on_timeout=True,
                health_check_interval=redis_settings.REDIS_HEALTH_CHECK_INTERVAL,
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self._pool)
            await self._client.ping()
            self._is_connected = True

            logger.info(
                "Redis connected successfully",
                stage="STORE.1",
                host=redis_settings.REDIS_HOST,
                port=redis_settings.REDIS_PORT,
                max_connections=redis_settings.REDIS_MAX_CONNECTIONS,
            )
            return self._client

        except (ConnectionError, TimeoutError) as e:
            logger.error("Failed to connect to Redis", stage="STORE.1", error=str(e))
            raise StoreUnavailableError(
                f"Failed to connect to Redis: {e}",
                details={"host": redis_settings.REDIS_HOST, "port": redis_settings.REDIS_PORT},
            ) from e

    async def disconnect(self) -> None:
        """
        Close Redis connection and pool.

        STAGE-STORE.2: Connection cleanup
        """
        if self._client:
            await self._client.aclose()
        if self._pool:
            await self._pool.disconnect()
        self._client = None
        self._pool = None
        self._is_connected = False
        logger.info("Redis disconnected", stage="STORE.2")

    def get_pool(self) -> ConnectionPool | None:
        return self._pool

    def is_connected(self) -> bool:
        return self._is_connected


# =============================================================================
# SHARED STORE
# =============================================================================


class RedisStore:
    """
    SharedStore implementation on redis.asyncio.

    Usage:
        store = RedisStore()
        await store.connect()
        ...
        await store.disconnect()

    Tests and callers that already own a client pass it directly:
        store = RedisStore(client=existing_client)
    """

    def __init__(self, settings: Settings | None = None, client: redis.Redis | None = None):
        self._settings = settings or get_settings()
        self._conn_mgr = ConnectionManager(self._settings)
        self._client = client
        self._scripts: dict[str, AsyncScript] = {}

    async def connect(self) -> None:
        if self._client is None:
            self._client = await self._conn_mgr.connect()

    async def disconnect(self) -> None:
        await self._conn_mgr.disconnect()
        self._client = None
        self._scripts.clear()

    async def __aenter__(self) -> "RedisStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise StoreUnavailableError("Redis store is not connected")
        return self._client

    async def _execute(self, operation: str, key: str | None, coro_factory) -> Any:
        """
        Run one Redis command, translating redis errors.

        STAGE-STORE.3: Command execution
        """
        try:
            return await coro_factory(self.client)
        except TimeoutError as e:
            logger.error(f"Redis {operation} timed out", stage="STORE.3", key=key, error=str(e))
            raise StoreTimeoutError.from_exception(e, f"Redis {operation} timed out", key=key) from e
        except RedisError as e:
            logger.error(f"Redis {operation} failed", stage="STORE.3", key=key, error=str(e))
            raise StoreUnavailableError.from_exception(e, f"Redis {operation} failed: {e}", key=key) from e

    # -------------------------------------------------------------------------
    # Basic Operations
    # -------------------------------------------------------------------------

    async def ping(self) -> bool:
        try:
            return bool(await self._execute("PING", None, lambda c: c.ping()))
        except StoreUnavailableError:
            return False

    async def get(self, key: str) -> str | None:
        return await self._execute("GET", key, lambda c: c.get(key))

    async def set(self, key: str, value: str, ttl: float | None = None) -> bool:
        px = max(1, int(ttl * 1000)) if ttl is not None else None
        result = await self._execute("SET", key, lambda c: c.set(key, value, px=px))
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._execute("DEL", keys[0], lambda c: c.delete(*keys)))

    async def exists(self, key: str) -> bool:
        return int(await self._execute("EXISTS", key, lambda c: c.exists(key))) > 0

    async def expire(self, key: str, ttl: float) -> bool:
        ttl_ms = max(1, int(ttl * 1000))
        return bool(await self._execute("PEXPIRE", key, lambda c: c.pexpire(key, ttl_ms)))

    # -------------------------------------------------------------------------
    # Atomic Operations
    # -------------------------------------------------------------------------

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        result = await self._execute("SET NX", key, lambda c: c.set(key, value, nx=True, px=ttl_ms))
        return bool(result)

    def _script(self, client: redis.Redis, source: str) -> AsyncScript:
        script = self._scripts.get(source)
        if script is None:
            script = client.register_script(source)
            self._scripts[source] = script
        return script

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        result = await self._execute(
            "EVALSHA delete_if_equals",
            key,
            lambda c: self._script(c, DELETE_IF_EQUALS_SCRIPT)(keys=[key], args=[expected]),
        )
        return int(result) == 1

    async def compare_and_set(
        self, key: str, expected: str | None, value: str, ttl_ms: int | None = None
    ) -> bool:
        args = (
            expected if expected is not None else "",
            value,
            str(int(ttl_ms)) if ttl_ms is not None else "",
            "1" if expected is None else "0",
        )
        result = await self._execute(
            "EVALSHA compare_and_set",
            key,
            lambda c: self._script(c, COMPARE_AND_SET_SCRIPT)(keys=[key], args=list(args)),
        )
        return int(result) == 1

    async def incr(self, key: str) -> int:
        return int(await self._execute("INCR", key, lambda c: c.incr(key)))

    async def keys_with_prefix(self, prefix: str) -> list[str]:
        async def scan(client: redis.Redis) -> list[str]:
            return [key async for key in client.scan_iter(match=f"{escape_glob(prefix)}*", count=500)]

        return await self._execute("SCAN", prefix, scan)

    # -------------------------------------------------------------------------
    # List Operations
    # -------------------------------------------------------------------------

    async def lpush(self, key: str, *values: str) -> int:
        return int(await self._execute("LPUSH", key, lambda c: c.lpush(key, *values)))

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        return list(await self._execute("LRANGE", key, lambda c: c.lrange(key, start, end)))

    async def lrem(self, key: str, count: int, value: str) -> int:
        return int(await self._execute("LREM", key, lambda c: c.lrem(key, count, value)))

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        return bool(await self._execute("LTRIM", key, lambda c: c.ltrim(key, start, end)))

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def health_check(self) -> dict[str, Any]:
        """
        Perform health check on the Redis connection.

        STAGE-STORE.HEALTH: Store health check
        """
        health: dict[str, Any] = {
            "status": "healthy",
            "host": self._settings.redis.REDIS_HOST,
            "port": self._settings.redis.REDIS_PORT,
            "pool_size": 0,
            "ping_latency_ms": None,
        }
        if self._client is None:
            health["status"] = "unhealthy"
            health["error"] = "Client not initialized"
            return health

        start = time.perf_counter()
        if not await self.ping():
            health["status"] = "unhealthy"
            health["error"] = "Ping failed"
            return health
        health["ping_latency_ms"] = round((time.perf_counter() - start) * 1000, 2)

        pool = self._conn_mgr.get_pool()
        if pool is not None:
            health["pool_size"] = pool.max_connections
        return health
