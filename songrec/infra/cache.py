"""
Recommendation Result Cache

TWO TIERS:
==========
- Hot (TTLCache): recent requests, expires after the TTL (default 5 min)
- Warm (LRUCache): larger, no expiry; a warm hit is promoted to hot

Entries are keyed by (user, algorithm hint, limit). Any change to a
user's history, or to the feature model, must invalidate them:

    user plays / likes / rates → invalidate_user(user_id)
    data completion finished   → invalidate_all()

One cache per application, built by the composition root.
"""

import threading
from typing import Any, Dict, Hashable, List, Optional, Tuple

from cachetools import LRUCache, TTLCache
from loguru import logger

from songrec import settings
from songrec.models.entities import RecommendationResult


CacheKey = Tuple[str, str, int]


class RecommendationCache:
    def __init__(
        self,
        hot_cache_size: int = settings.HOT_CACHE_SIZE,
        warm_cache_size: int = settings.WARM_CACHE_SIZE,
        hot_ttl_seconds: float = settings.CACHE_TTL_SECONDS,
    ):
        self.hot_cache = TTLCache(maxsize=hot_cache_size, ttl=hot_ttl_seconds)
        self.warm_cache = LRUCache(maxsize=warm_cache_size)
        self.lock = threading.RLock()
        self.metrics = {'hot_hits': 0, 'warm_hits': 0, 'misses': 0}

        logger.info(f"Cache initialized - Hot: {hot_cache_size}, Warm: {warm_cache_size}")

    @staticmethod
    def make_key(user_id: Hashable, hint: str, limit: int) -> CacheKey:
        return (str(user_id), hint, limit)

    def get(self, user_id: Hashable, hint: str, limit: int) -> Optional[List[RecommendationResult]]:
        key = self.make_key(user_id, hint, limit)

        with self.lock:
            if key in self.hot_cache:
                self.metrics['hot_hits'] += 1
                logger.debug(f"HOT cache hit for user {user_id}")
                return self.hot_cache[key]

            if key in self.warm_cache:
                self.metrics['warm_hits'] += 1
                logger.debug(f"WARM cache hit for user {user_id}")
                results = self.warm_cache[key]
                self.hot_cache[key] = results
                return results

            self.metrics['misses'] += 1
            return None

    def set(self, user_id: Hashable, hint: str, limit: int, results: List[RecommendationResult]):
        key = self.make_key(user_id, hint, limit)
        with self.lock:
            self.hot_cache[key] = results
            self.warm_cache[key] = results
        logger.debug(f"Cached {len(results)} recs for user {user_id} ({hint})")

    def invalidate_user(self, user_id: Hashable):
        user_key = str(user_id)
        with self.lock:
            for cache in (self.hot_cache, self.warm_cache):
                for key in [k for k in cache.keys() if k[0] == user_key]:
                    cache.pop(key, None)
        logger.debug(f"Invalidated cache for user {user_id}")

    def invalidate_all(self):
        with self.lock:
            self.hot_cache.clear()
            self.warm_cache.clear()
        logger.info("All recommendation caches invalidated")

    def get_metrics(self) -> Dict[str, Any]:
        with self.lock:
            total = sum(self.metrics.values())
            hits = self.metrics['hot_hits'] + self.metrics['warm_hits']
            return {
                'hit_rate': hits / total if total else 0.0,
                'miss_rate': self.metrics['misses'] / total if total else 0.0,
                'total_requests': total,
                'hot_cache_size': len(self.hot_cache),
                'warm_cache_size': len(self.warm_cache),
                **self.metrics,
            }
