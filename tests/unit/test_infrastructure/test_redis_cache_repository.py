"""
Unit tests for the Redis recommendation cache.
"""

import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.domain.entities.recommendation import Recommendation, RecommendationType
from src.infrastructure.data.repositories import RedisCacheRepository


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.setex.return_value = True
    return client


@pytest.fixture
def cache(redis_client):
    return RedisCacheRepository(redis_client, default_ttl=600)


def sample_recommendations(user_id):
    return [
        Recommendation.create(user_id, uuid4(), RecommendationType.CONTENT_BASED, 0.9, "90% match",
                              matching_features={"city": "Kathmandu"}),
        Recommendation.create(user_id, uuid4(), RecommendationType.TRENDING, 0.4, "Trending"),
    ]


class TestRedisCacheRepository:

    @pytest.mark.asyncio
    async def test_cache_writes_with_ttl(self, cache, redis_client):
        user_id = uuid4()

        assert await cache.cache_recommendations(user_id, "all:10", sample_recommendations(user_id))

        key, ttl, payload = redis_client.setex.await_args.args
        assert key == f"rec:{user_id}:all:10"
        assert ttl == 600
        assert len(json.loads(payload)["payload"]) == 2

    @pytest.mark.asyncio
    async def test_cached_list_round_trips(self, cache, redis_client):
        user_id = uuid4()
        recommendations = sample_recommendations(user_id)
        await cache.cache_recommendations(user_id, "all:10", recommendations, ttl_seconds=60)
        redis_client.get.return_value = redis_client.setex.await_args.args[2]

        cached = await cache.get_cached_recommendations(user_id, "all:10")

        assert [r.id for r in cached] == [r.id for r in recommendations]
        assert cached[0].recommendation_type == RecommendationType.CONTENT_BASED
        assert cached[0].matching_features == {"city": "Kathmandu"}

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, cache, redis_client):
        redis_client.get.return_value = None
        assert await cache.get_cached_recommendations(uuid4(), "all:10") is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_deleted(self, cache, redis_client):
        stale = {
            "payload": [],
            "cached_at": (datetime.utcnow() - timedelta(hours=2)).isoformat(),
            "ttl": 60,
        }
        redis_client.get.return_value = json.dumps(stale)

        assert await cache.get_cached_recommendations(uuid4(), "all:10") is None
        redis_client.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_a_miss(self, cache, redis_client):
        redis_client.get.return_value = "not json"
        assert await cache.get_cached_recommendations(uuid4(), "all:10") is None

    @pytest.mark.asyncio
    async def test_redis_outage_is_a_miss(self, cache, redis_client):
        redis_client.get.side_effect = RedisConnectionError("refused")
        redis_client.setex.side_effect = RedisConnectionError("refused")
        user_id = uuid4()

        assert await cache.get_cached_recommendations(user_id, "all:10") is None
        assert await cache.cache_recommendations(user_id, "all:10", []) is False

    @pytest.mark.asyncio
    async def test_invalidate_user_deletes_matching_keys(self, cache, redis_client):
        user_id = uuid4()
        redis_client.keys.return_value = [f"rec:{user_id}:all:10", f"rec:{user_id}:trending:5"]
        redis_client.delete.return_value = 2

        assert await cache.invalidate_user(user_id) == 2
        redis_client.keys.assert_awaited_once_with(f"rec:{user_id}:*")

    @pytest.mark.asyncio
    async def test_clear_with_no_keys(self, cache, redis_client):
        redis_client.keys.return_value = []

        assert await cache.clear_recommendations() == 0
        redis_client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_health_check(self, cache, redis_client):
        assert await cache.health_check() is True

        redis_client.ping.side_effect = RedisConnectionError("refused")
        assert await cache.health_check() is False
