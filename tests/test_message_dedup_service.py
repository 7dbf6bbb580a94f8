import asyncio
from unittest.mock import AsyncMock

from app.services.message_dedup_service import MessageDeduplicator, RecentIdCache


class TestRecentIdCache:
    def test_second_sighting_is_duplicate(self):
        cache = RecentIdCache()
        assert cache.check_and_add("a", now=0) is False
        assert cache.check_and_add("a", now=1) is True

    def test_expired_ids_are_admitted_again(self):
        cache = RecentIdCache(ttl_seconds=10)
        cache.check_and_add("a", now=0)
        assert cache.check_and_add("a", now=11) is False

    def test_bounded_size(self):
        cache = RecentIdCache(max_size=2)
        for key in ("a", "b", "c"):
            cache.check_and_add(key, now=0)
        assert cache.check_and_add("a", now=1) is False


class TestMessageDeduplicator:
    def test_missing_id_is_never_duplicate(self):
        dedup = MessageDeduplicator()
        assert asyncio.run(dedup.is_duplicate_message_id("whatsapp", None)) is False
        assert asyncio.run(dedup.is_duplicate_message_id("whatsapp", "")) is False

    def test_local_fallback(self):
        dedup = MessageDeduplicator()
        assert asyncio.run(dedup.is_duplicate_message_id("whatsapp", "MSG1")) is False
        assert asyncio.run(dedup.is_duplicate_message_id("whatsapp", "MSG1")) is True
        assert asyncio.run(dedup.is_duplicate_message_id("instagram", "MSG1")) is False

    def test_redis_set_nx(self):
        redis_client = AsyncMock()
        redis_client.set.side_effect = [True, None]
        dedup = MessageDeduplicator(ttl_seconds=60, redis_client=redis_client)

        assert asyncio.run(dedup.is_duplicate_message_id("whatsapp", "MSG1")) is False
        assert asyncio.run(dedup.is_duplicate_message_id("whatsapp", "MSG1")) is True
        redis_client.set.assert_called_with("nexus:dedup:whatsapp:MSG1", "1", ex=60, nx=True)

    def test_redis_error_falls_back_to_local_cache(self):
        redis_client = AsyncMock()
        redis_client.set.side_effect = ConnectionError("redis down")
        dedup = MessageDeduplicator(redis_client=redis_client)

        assert asyncio.run(dedup.is_duplicate_message_id("whatsapp", "MSG1")) is False
        assert asyncio.run(dedup.is_duplicate_message_id("whatsapp", "MSG1")) is True
