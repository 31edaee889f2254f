import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ....domain.entities.recommendation import Recommendation


class RedisCacheRepository:
    """Redis cache for served recommendation lists.

    The cache is best-effort: read and write failures are logged and reported
    as a miss, so callers fall through to the database.
    """

    def __init__(self, redis_client: Redis, default_ttl: int = 1800):
        self.redis = redis_client
        self.default_ttl = default_ttl
        self.logger = logging.getLogger(__name__)

        # Cache key prefixes
        self.prefixes = {
            'recommendations': 'rec:',
        }

    def _recommendations_key(self, user_id: UUID, variant: str) -> str:
        return f"{self.prefixes['recommendations']}{user_id}:{variant}"

    async def get_cached_recommendations(self, user_id: UUID, variant: str) -> Optional[List[Recommendation]]:
        """Get a cached recommendation list for one user and query variant"""
        full_key = self._recommendations_key(user_id, variant)
        try:
            cached_data = await self.redis.get(full_key)
            if not cached_data:
                self.logger.debug(f"Cache miss for key: {full_key}")
                return None

            data = json.loads(cached_data)
            if not self._is_cache_valid(data):
                await self.redis.delete(full_key)
                self.logger.debug(f"Cache expired for key: {full_key}")
                return None

            self.logger.debug(f"Cache hit for key: {full_key}")
            return [Recommendation.from_dict(item) for item in data.get('payload', [])]

        except RedisError as e:
            self.logger.error(f"Failed to get cached recommendations for {user_id}: {e}")
            return None
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning(f"Discarding unreadable cache entry {full_key}: {e}")
            return None

    async def cache_recommendations(self, user_id: UUID, variant: str,
                                    recommendations: List[Recommendation],
                                    ttl_seconds: Optional[int] = None) -> bool:
        """Cache a recommendation list with TTL"""
        ttl = ttl_seconds or self.default_ttl
        full_key = self._recommendations_key(user_id, variant)
        cache_data = {
            'payload': [rec.to_dict() for rec in recommendations],
            'cached_at': datetime.utcnow().isoformat(),
            'ttl': ttl,
        }
        try:
            success = await self.redis.setex(full_key, ttl, json.dumps(cache_data, default=self._json_serializer))
            if success:
                self.logger.debug(f"Cached {len(recommendations)} recommendations for {full_key}, TTL: {ttl}s")
                return True
            self.logger.warning(f"Failed to cache recommendations for key: {full_key}")
            return False

        except RedisError as e:
            self.logger.error(f"Failed to cache recommendations for {user_id}: {e}")
            return False

    async def invalidate_user(self, user_id: UUID) -> int:
        """Drop every cached list of a user"""
        return await self.clear_cache(f"{self.prefixes['recommendations']}{user_id}:*")

    async def clear_cache(self, pattern: str) -> int:
        """Clear cache entries matching pattern"""
        try:
            keys = await self.redis.keys(pattern)
            if not keys:
                self.logger.debug(f"No cache entries found for pattern: {pattern}")
                return 0

            deleted_count = await self.redis.delete(*keys)
            self.logger.info(f"Cleared {deleted_count} cache entries matching pattern: {pattern}")
            return deleted_count

        except RedisError as e:
            self.logger.error(f"Failed to clear cache with pattern {pattern}: {e}")
            return 0

    async def clear_recommendations(self) -> int:
        return await self.clear_cache(f"{self.prefixes['recommendations']}*")

    def _is_cache_valid(self, cache_data: Dict) -> bool:
        """Check if cached data is still valid based on TTL"""
        try:
            cached_at = datetime.fromisoformat(cache_data['cached_at'])
            ttl_seconds = cache_data.get('ttl', self.default_ttl)
            return datetime.utcnow() - cached_at < timedelta(seconds=ttl_seconds)
        except (KeyError, ValueError):
            return False

    def _json_serializer(self, obj: Any):
        if isinstance(obj, UUID):
            return str(obj)
        elif isinstance(obj, datetime):
            return obj.isoformat()
        elif hasattr(obj, 'to_dict'):
            return obj.to_dict()

        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

    async def health_check(self) -> bool:
        """Check Redis connection health"""
        try:
            await self.redis.ping()
            return True
        except (RedisError, OSError) as e:
            self.logger.error(f"Redis health check failed: {e}")
            return False
