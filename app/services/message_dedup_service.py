import threading
import time
from collections import OrderedDict
from typing import Optional

import redis.asyncio as redis_async

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("message_dedup_service")

LOCAL_CACHE_SIZE = 5000
REDIS_SOCKET_TIMEOUT_SECONDS = 0.3


class RecentIdCache:
    """Bounded in-process record of seen message ids with a TTL."""

    def __init__(self, max_size: int = LOCAL_CACHE_SIZE, ttl_seconds: int = 86400):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._seen: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()

    def check_and_add(self, key: str, now: Optional[float] = None) -> bool:
        """True when the key was already seen and has not expired."""
        now = time.monotonic() if now is None else now
        with self._lock:
            seen_at = self._seen.get(key)
            if seen_at is not None and now - seen_at < self.ttl_seconds:
                return True
            self._seen[key] = now
            self._seen.move_to_end(key)
            while len(self._seen) > self.max_size:
                self._seen.popitem(last=False)
            return False


class MessageDeduplicator:
    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None, redis_client=None):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.dedup_ttl_seconds
        self.local = RecentIdCache(ttl_seconds=self.ttl_seconds)
        self._redis = redis_client

    def _get_redis(self):
        if self._redis is None and self.redis_url:
            self._redis = redis_async.Redis.from_url(
                self.redis_url,
                socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
                socket_connect_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
            )
        return self._redis

    async def is_duplicate_message_id(self, channel: str, message_id: Optional[str]) -> bool:
        if not message_id:
            return False

        key = f"nexus:dedup:{channel}:{message_id}"
        redis_client = self._get_redis()
        if redis_client is not None:
            try:
                was_set = await redis_client.set(key, "1", ex=self.ttl_seconds, nx=True)
                if not was_set:
                    logger.info("Duplicate message_id (redis)", extra={"context": {"message_id": message_id}})
                return not was_set
            except Exception as e:
                logger.warning(f"Dedup redis unavailable, falling back to local cache: {e}")

        duplicate = self.local.check_and_add(key)
        if duplicate:
            logger.info("Duplicate message_id (local)", extra={"context": {"message_id": message_id}})
        return duplicate

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
