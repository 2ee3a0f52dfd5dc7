from sms_delivery.infrastructure.store.redis_store import ConnectionManager, RedisStore

__all__ = ["ConnectionManager", "RedisStore"]
