"""
Redis-backed JSON cache, used for parsed search queries.
"""
import json
from typing import Any, Dict, Optional

import redis.asyncio as redis

from dishola.utils.config import get_settings
from dishola.utils.logger import app_logger


class CacheManager:
    """Namespaced JSON values in Redis. Every operation degrades to a miss when Redis is down."""

    def __init__(self, redis_client=None, prefix: str = "dishola"):
        self.settings = get_settings()
        self.prefix = prefix
        self.redis_client = redis_client if redis_client is not None else self._connect()

    def _connect(self):
        # from_url is lazy: a missing server only shows up on the first command
        try:
            client = redis.from_url(self.settings.redis_url, decode_responses=False)
        except Exception as e:
            app_logger.warning(f"⚠️ Parsed-query cache disabled, bad Redis URL: {e}")
            return None
        app_logger.info(f"🗃️ Parsed-query cache using {self.settings.redis_url}")
        return client

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get_json(self, key: str) -> Optional[Any]:
        if not self.redis_client:
            return None
        try:
            raw = await self.redis_client.get(self._key(key))
        except Exception as e:
            app_logger.debug(f"Cache read failed for {key}: {e}")
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            app_logger.warning(f"Discarding unreadable cache entry {key}")
            return None

    async def set_json(self, key: str, value: Any, expire: int = 3600) -> bool:
        """Store ``value`` for ``expire`` seconds. Returns False when nothing was written."""
        if not self.redis_client:
            return False
        try:
            await self.redis_client.setex(self._key(key), expire, json.dumps(value))
        except Exception as e:
            app_logger.debug(f"Cache write failed for {key}: {e}")
            return False
        return True

    async def clear_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern; returns how many were removed."""
        if not self.redis_client:
            return 0
        try:
            keys = [key async for key in self.redis_client.scan_iter(match=self._key(pattern))]
            if keys:
                await self.redis_client.delete(*keys)
        except Exception as e:
            app_logger.warning(f"Cache clear failed for {pattern}: {e}")
            return 0
        return len(keys)

    async def get_stats(self) -> Dict[str, Any]:
        if not self.redis_client:
            return {"connected": False}
        try:
            info = await self.redis_client.info()
        except Exception as e:
            return {"connected": False, "error": str(e)}
        return {
            "connected": True,
            "used_memory": info.get("used_memory_human", "N/A"),
            "keyspace_hits": info.get("keyspace_hits", 0),
            "keyspace_misses": info.get("keyspace_misses", 0),
        }

    async def close(self):
        if self.redis_client:
            await self.redis_client.aclose()
            app_logger.info("Parsed-query cache connection closed")
