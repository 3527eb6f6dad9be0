from unittest.mock import AsyncMock, MagicMock

import pytest

from dishola.cache.cache_manager import CacheManager


def _redis():
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.setex = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.info = AsyncMock(return_value={"used_memory_human": "1M", "keyspace_hits": 3, "keyspace_misses": 1})
    client.aclose = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_json_round_trip_uses_prefixed_keys():
    redis_client = _redis()
    cache = CacheManager(redis_client=redis_client)

    assert await cache.set_json("parsed_query:pho", {"dishName": "pho"}, expire=60) is True
    redis_client.setex.assert_awaited_once_with("dishola:parsed_query:pho", 60, '{"dishName": "pho"}')

    redis_client.get.return_value = b'{"dishName": "pho"}'
    assert await cache.get_json("parsed_query:pho") == {"dishName": "pho"}


@pytest.mark.asyncio
async def test_redis_errors_degrade_to_misses():
    redis_client = _redis()
    redis_client.get.side_effect = ConnectionError("refused")
    redis_client.setex.side_effect = ConnectionError("refused")
    redis_client.info.side_effect = ConnectionError("refused")
    cache = CacheManager(redis_client=redis_client)

    assert await cache.get_json("k") is None
    assert await cache.set_json("k", {"a": 1}) is False
    stats = await cache.get_stats()
    assert stats["connected"] is False


@pytest.mark.asyncio
async def test_clear_pattern_deletes_matching_keys():
    redis_client = _redis()

    async def scan_iter(match):
        assert match == "dishola:parsed_query:*"
        for key in (b"dishola:parsed_query:a", b"dishola:parsed_query:b"):
            yield key

    redis_client.scan_iter = scan_iter
    cache = CacheManager(redis_client=redis_client)

    assert await cache.clear_pattern("parsed_query:*") == 2
    redis_client.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_stats_report_connection():
    cache = CacheManager(redis_client=_redis())
    stats = await cache.get_stats()
    assert stats == {"connected": True, "used_memory": "1M", "keyspace_hits": 3, "keyspace_misses": 1}
