"""
End-to-end test of the recommendation pipeline over in-memory storage.

Twelve Kathmandu listings (six budget rooms, six luxury apartments) are
trained on, then recommendations are generated and served for a user with
history and for a brand-new user.
"""

from datetime import datetime
from uuid import uuid4

import pytest

from src.domain.entities.recommendation import RecommendationType
from src.domain.entities.user import SearchEvent, ColdStartPreferences
from src.domain.services.recommendation_service import RecommendationService
from tests.utils.data_factories import IdentityStemmer


@pytest.fixture
def pipeline(property_repository, user_repository, model_repository, recommendation_repository,
             cache_repository, model_store, ml_config, kathmandu_properties):
    for property in kathmandu_properties:
        property_repository.add(property)

    service = RecommendationService(
        property_repository=property_repository,
        user_repository=user_repository,
        model_repository=model_repository,
        recommendation_repository=recommendation_repository,
        cache_repository=cache_repository,
        model_store=model_store,
        config=ml_config,
        stemmer=IdentityStemmer()
    )
    yield service
    service.close()


class TestRecommendationPipeline:

    @pytest.mark.asyncio
    async def test_user_with_history_gets_content_based(self, pipeline, user_repository, model_repository,
                                                        model_store, interaction_factory,
                                                        kathmandu_properties):
        user_id = uuid4()
        for _ in range(2):
            user_repository.add_search(SearchEvent.from_filters(
                user_id, {"city": "Kathmandu", "maxRent": 15000}, created_at=datetime.now()
            ))
        viewed = next(p for p in kathmandu_properties if p.rent_amount == 8000)
        user_repository.add_view(interaction_factory.view(user_id, viewed))

        recommendations = await pipeline.generate_recommendations(user_id)

        snapshot = model_store.current()
        assert snapshot.cluster_count >= 2
        assert model_repository.profiles[user_id].vector is not None

        assert recommendations
        for recommendation in recommendations:
            assert recommendation.recommendation_type == RecommendationType.CONTENT_BASED
            assert recommendation.similarity_score >= 0.3
            assert recommendation.property_id != viewed.id

        served = await pipeline.get_recommendations_for_user(user_id, limit=20)
        assert {r.id for r in served} == {r.id for r in recommendations}

    @pytest.mark.asyncio
    async def test_new_user_gets_cluster_listings(self, pipeline, kathmandu_properties):
        await pipeline.trigger_retrain()
        user_id = uuid4()

        lazimpat = ColdStartPreferences(latitude=27.7230, longitude=85.3190, min_rent=30000, max_rent=40000)

        recommendations = await pipeline.generate_recommendations(user_id, preferences=lazimpat)

        apartments = {p.id for p in kathmandu_properties if p.property_type == "apartment"}
        assert {r.property_id for r in recommendations} == apartments
        assert all(r.recommendation_type == RecommendationType.COLD_START_GEO for r in recommendations)

    @pytest.mark.asyncio
    async def test_retrain_after_new_listings(self, pipeline, property_repository, property_factory, model_store):
        first = await pipeline.trigger_retrain()
        for property in property_factory.create_batch(8):
            property_repository.add(property)

        second = await pipeline.trigger_retrain()

        assert second.snapshot.version == first.snapshot.version + 1
        assert model_store.current() is second.snapshot
        assert second.snapshot.property_count == 20
        # the first snapshot is untouched by the second run
        assert first.snapshot.property_count == 12
