"""
In-memory TTL cache for completed search results.
"""
import json
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional


class SearchCache:
    """Bounded key-value store whose entries expire after ``ttl_seconds``.

    Instances are created by the application and handed to the search
    orchestrator; there is no shared module-level cache.
    """

    def __init__(self, ttl_seconds: float = 600, max_entries: int = 500,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._store: "OrderedDict[str, tuple]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._store.get(key)
        if entry is None:
            self.misses += 1
            return None

        data, stored_at = entry
        if self._clock() - stored_at > self.ttl:
            del self._store[key]
            self.misses += 1
            return None

        self.hits += 1
        return data

    def set(self, key: str, data: Dict[str, Any]) -> None:
        if key in self._store:
            del self._store[key]
        self._store[key] = (data, self._clock())
        while len(self._store) > self.max_entries:
            self._store.popitem(last=False)

    def clear(self) -> int:
        """Drop every entry and return how many were removed."""
        size = len(self._store)
        self._store.clear()
        return size

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._store),
            "maxAge": int(self.ttl * 1000),
            "maxEntries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
        }

    @staticmethod
    def create_key(q: Optional[str], lat: str, long: str,
                   tastes: Optional[List[str]], sort: Optional[str]) -> str:
        return json.dumps({"q": q, "lat": lat, "long": long, "tastes": tastes or None, "sort": sort})
