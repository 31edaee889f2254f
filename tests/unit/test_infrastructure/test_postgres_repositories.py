"""
Unit tests for the PostgreSQL repositories against a mocked async session.
"""

from contextlib import asynccontextmanager
import time
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch
from uuid import uuid4

import numpy as np
import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from src.domain.entities.recommendation import Recommendation, RecommendationType
from src.domain.entities.user import UserPreferenceProfile
from src.domain.exceptions import PersistenceError
from src.infrastructure.data.repositories import (
    PostgresModelRepository,
    PostgresPropertyRepository,
    PostgresRecommendationRepository,
)


class FakeDatabase:
    """Hands out one mocked session for both reads and transactions"""

    def __init__(self, session):
        self.session = session

    @asynccontextmanager
    async def get_session(self):
        yield self.session

    @asynccontextmanager
    async def get_transaction(self):
        yield self.session


def compiled_sql(session, call=-1):
    statement = session.execute.await_args_list[call].args[0]
    return str(statement.compile(dialect=postgresql.dialect()))


@pytest.fixture
def session():
    return AsyncMock()


@pytest.fixture
def database(session):
    return FakeDatabase(session)


def recommendation_row(**overrides):
    values = dict(
        id=uuid4(),
        user_id=uuid4(),
        listing_id=uuid4(),
        recommendation_type="content_based",
        confidence_score=0.8,
        similarity_score=None,
        matching_features=None,
        explanation="80% match",
        created_at=datetime(2024, 5, 1),
        is_clicked=None,
        clicked_at=None,
        is_dismissed=False,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestPostgresModelRepository:

    @pytest.mark.asyncio
    async def test_upsert_property_vector_conflicts_on_listing(self, database, session):
        repository = PostgresModelRepository(database)

        saved = await repository.upsert_property_vector(
            uuid4(), np.array([0.6, 0.8]), {"normalized_rent": 0.1, "vocabulary_version": "abc"}
        )

        assert saved is True
        sql = compiled_sql(session)
        assert "INSERT INTO property_feature_vectors" in sql
        assert "ON CONFLICT (listing_id) DO UPDATE" in sql

    @pytest.mark.asyncio
    async def test_get_user_profile_rebuilds_vector(self, database, session):
        user_id = uuid4()
        row = SimpleNamespace(
            user_id=user_id,
            city_counts={"Kathmandu": 3},
            type_counts={},
            amenity_counts={"wifi": 2},
            preferred_min_rent=5000.0,
            preferred_max_rent=15000.0,
            average_rent=10000.0,
            preferred_bedrooms=2,
            total_searches=2,
            total_views=1,
            total_favorites=None,
            tfidf_vector=[0.0, 1.0],
            vector_version="v1",
            updated_at=datetime(2024, 5, 1),
        )
        session.execute.return_value = Mock(scalar_one_or_none=Mock(return_value=row))

        profile = await PostgresModelRepository(database).get_user_profile(user_id)

        assert isinstance(profile, UserPreferenceProfile)
        assert profile.preferred_cities == ["Kathmandu"]
        assert profile.total_favorites == 0
        assert profile.vector.dtype == np.float64
        np.testing.assert_allclose(profile.vector, [0.0, 1.0])

    @pytest.mark.asyncio
    async def test_missing_profile_returns_none(self, database, session):
        session.execute.return_value = Mock(scalar_one_or_none=Mock(return_value=None))
        assert await PostgresModelRepository(database).get_user_profile(uuid4()) is None

    @pytest.mark.asyncio
    async def test_outage_surfaces_as_persistence_error(self, database, session):
        session.execute.side_effect = OperationalError("SELECT", {}, ConnectionError("down"))
        repository = PostgresModelRepository(database)

        with patch("src.infrastructure.data.db_utils.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(PersistenceError):
                await repository.get_user_profile(uuid4())

        assert session.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_operations_are_timed(self, database, session):
        session.execute.return_value = Mock(scalar_one_or_none=Mock(return_value=None))
        repository = PostgresModelRepository(database)

        await repository.get_user_profile(uuid4())

        assert [m.query_type for m in repository.get_performance_metrics()] == ["get_user_profile"]

    @pytest.mark.asyncio
    async def test_prune_clusters_keeps_current_ids(self, database, session):
        session.execute.return_value = Mock(rowcount=4)

        deleted = await PostgresModelRepository(database).prune_clusters([0, 1])

        sql = compiled_sql(session)
        assert "DELETE FROM geo_clusters" in sql
        assert "NOT IN" in sql
        assert deleted == 4


class TestPostgresRecommendationRepository:

    @pytest.mark.asyncio
    async def test_upsert_targets_dedup_constraint(self, database, session):
        recommendation = Recommendation.create(
            uuid4(), uuid4(), RecommendationType.TRENDING, 0.5, "Trending property in Kathmandu"
        )
        stored = recommendation_row(
            id=uuid4(),
            user_id=recommendation.user_id,
            listing_id=recommendation.property_id,
            recommendation_type="trending",
            confidence_score=0.5,
            is_clicked=True,
        )
        session.execute.return_value = Mock(scalar_one=Mock(return_value=stored))

        result = await PostgresRecommendationRepository(database).upsert(recommendation)

        sql = compiled_sql(session)
        assert "ON CONFLICT ON CONSTRAINT uq_ml_rec_user_listing_type DO UPDATE" in sql
        assert "RETURNING" in sql
        assert result.id == stored.id
        assert result.is_clicked is True

    @pytest.mark.asyncio
    async def test_get_for_user_maps_rows(self, database, session):
        rows = [recommendation_row(), recommendation_row(recommendation_type="cold_start_geo")]
        scalars = Mock(all=Mock(return_value=rows))
        session.execute.return_value = Mock(scalars=Mock(return_value=scalars))

        results = await PostgresRecommendationRepository(database).get_for_user(uuid4(), limit=5)

        assert [r.recommendation_type for r in results] == [
            RecommendationType.CONTENT_BASED, RecommendationType.COLD_START_GEO
        ]
        # similarity falls back to confidence when not stored
        assert results[0].similarity_score == 0.8
        assert results[0].matching_features == {}
        assert results[0].is_clicked is False

    @pytest.mark.asyncio
    async def test_mark_clicked_reports_missing_row(self, database, session):
        session.execute.return_value = Mock(rowcount=0)
        assert await PostgresRecommendationRepository(database).mark_clicked(uuid4()) is False

    @pytest.mark.asyncio
    async def test_delete_older_than_returns_count(self, database, session):
        session.execute.return_value = Mock(rowcount=4)

        deleted = await PostgresRecommendationRepository(database).delete_older_than(7)

        assert deleted == 4
        assert "DELETE FROM ml_recommendations" in compiled_sql(session)


class TestPostgresPropertyRepository:

    def test_row_mapping(self):
        row = SimpleNamespace(
            id=uuid4(), title="Flat", description="Sunny", city="Pokhara", type="flat",
            furnished="furnished", college_name=None, rent_amount=15000.0, bedrooms=2,
            bathrooms=1.0, latitude=28.2, longitude=83.98, amenities=None,
            created_at=datetime(2024, 1, 1), status="active"
        )

        property = PostgresPropertyRepository._to_entity(row)

        assert property.property_type == "flat"
        assert property.amenities == []
        assert property.is_active

    @pytest.mark.asyncio
    async def test_refresh_trending_upserts_then_drops_stale(self, database, session):
        session.execute.return_value = Mock(rowcount=9)

        scored = await PostgresPropertyRepository(database).refresh_trending(7)

        assert scored == 9
        assert session.execute.await_count == 2

        upsert = compiled_sql(session, 0)
        assert "INSERT INTO trending_listings" in upsert
        assert "gen_random_uuid()" in upsert
        assert "count(DISTINCT listing_views.id)" in upsert
        assert "LEFT OUTER JOIN favorites" in upsert
        assert "LEFT OUTER JOIN messages" in upsert
        assert "ON CONFLICT (listing_id) DO UPDATE" in upsert

        assert "DELETE FROM trending_listings" in compiled_sql(session, 1)


@pytest.fixture
def clock_behind_utc(monkeypatch):
    """Local time five hours behind UTC for the duration of a test"""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "EST+05")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


class TestRetentionClock:

    @staticmethod
    def delete_cutoff(session) -> datetime:
        statement = session.execute.await_args.args[0]
        (cutoff,) = statement.compile().params.values()
        return cutoff

    @pytest.mark.asyncio
    async def test_cutoff_uses_recommendation_clock(self, database, session, clock_behind_utc):
        session.execute.return_value = Mock(rowcount=0)
        recommendation = Recommendation.create(uuid4(), uuid4(), RecommendationType.TRENDING, 0.5, "Trending")

        await PostgresRecommendationRepository(database).delete_older_than(7)
        cutoff = self.delete_cutoff(session)

        assert recommendation.created_at - timedelta(days=6, hours=22) > cutoff
        assert recommendation.created_at - timedelta(days=7, hours=1) < cutoff

    def test_click_time_uses_same_clock(self, clock_behind_utc):
        recommendation = Recommendation.create(uuid4(), uuid4(), RecommendationType.TRENDING, 0.5, "Trending")
        recommendation.mark_clicked()

        assert abs(recommendation.clicked_at - datetime.utcnow()) < timedelta(minutes=1)
        assert abs(recommendation.created_at - datetime.utcnow()) < timedelta(minutes=1)
