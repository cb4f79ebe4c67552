"""
Key-value surfaces used for best-effort client state (signup progress,
profile and symptom stores).
"""
import logging
from typing import Dict, Optional, Protocol
from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """
    Process-local store. Used in dev and tests, or when REDIS_URL is not set.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class RedisKeyValueStore:
    """
    Redis backed store. Every value is written with a TTL so abandoned
    entries expire on the server as well.

    Errors are not swallowed here; callers decide whether a failure is fatal.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        ttl_seconds: int = 86400,
        client: Optional[Redis] = None,
    ) -> None:
        """
        Args:
            redis_url: Redis connection URL (e.g. redis://localhost:6379/0)
            ttl_seconds: expiry applied to every write
            client: already configured client, takes precedence over redis_url
        """
        if client is None:
            if not redis_url:
                raise ValueError("redis_url or client is required")
            client = Redis.from_url(redis_url, decode_responses=True)
        self._redis = client
        self._ttl_seconds = ttl_seconds

        try:
            self._redis.ping()
            logger.info(f"RedisKeyValueStore initialized: ttl={ttl_seconds}s")
        except RedisError as e:
            logger.error(f"Could not connect to Redis: {e}")
            raise

    def get(self, key: str) -> Optional[str]:
        value = self._redis.get(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        self._redis.setex(key, self._ttl_seconds, value)

    def remove(self, key: str) -> None:
        self._redis.delete(key)

    def ping(self) -> bool:
        try:
            return bool(self._redis.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False


class NamespacedKeyValueStore:
    """
    Prefixes every key, so one backing store can hold the state of many
    signup sessions or users.
    """

    def __init__(self, storage: KeyValueStore, prefix: str) -> None:
        self._storage = storage
        self._prefix = prefix

    def get(self, key: str) -> Optional[str]:
        return self._storage.get(self._prefix + key)

    def set(self, key: str, value: str) -> None:
        self._storage.set(self._prefix + key, value)

    def remove(self, key: str) -> None:
        self._storage.remove(self._prefix + key)
