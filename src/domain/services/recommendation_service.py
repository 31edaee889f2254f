"""
Recommendation orchestration for the rental marketplace.

Owns the published model snapshot lifecycle (retrain, publish, persist), picks
the content-based, cold-start or trending path per user, stores every
recommendation with its explanation and serves stored recommendations through
the optional cache.
"""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Union, Any
from uuid import UUID

from ..entities.property import CorpusSnapshot, Property
from ..entities.recommendation import Recommendation, RecommendationType
from ..entities.user import ColdStartPreferences
from ..exceptions import InsufficientDataError, PersistenceError, RecommendationError
from ..repositories.property_repository import PropertyRepository
from ..repositories.user_repository import UserInteractionRepository
from ..repositories.model_repository import ModelRepository
from ..repositories.recommendation_repository import RecommendationRepository
from .user_profile_service import UserProfileService
from ...infrastructure.ml.config import MLConfig
from ...infrastructure.ml.models.text_features import format_number
from ...infrastructure.ml.serving.model_store import ModelStore
from ...infrastructure.ml.training.ml_trainer import (
    RecommendationModelTrainer, ModelSnapshot, TrainingResult, scalar_features
)


@dataclass
class RecommendationMetrics:
    """Counters for recommendation generation and serving"""
    total_recommendations: int = 0
    content_based_count: int = 0
    cold_start_count: int = 0
    trending_count: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    persistence_errors: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


class RecommendationService:
    """Generates, stores and serves recommendations from the published model snapshot.

    Users with enough history get content-based recommendations (TF-IDF cosine
    similarity between their preference profile and every listing). Everyone
    else is placed in the nearest geo/price cluster; when no clusters exist the
    trending listings are used instead.
    """

    def __init__(self,
                 property_repository: PropertyRepository,
                 user_repository: UserInteractionRepository,
                 model_repository: ModelRepository,
                 recommendation_repository: RecommendationRepository,
                 cache_repository=None,
                 model_store: Optional[ModelStore] = None,
                 config: Optional[MLConfig] = None,
                 stemmer=None):
        self.property_repository = property_repository
        self.user_repository = user_repository
        self.model_repository = model_repository
        self.recommendation_repository = recommendation_repository
        self.cache_repository = cache_repository
        self.model_store = model_store or ModelStore()
        self.ml_config = config or MLConfig()
        self.config = self.ml_config.recommendation

        self.logger = logging.getLogger(__name__)

        self.trainer = RecommendationModelTrainer(
            tfidf_config=self.ml_config.tfidf,
            clustering_config=self.ml_config.clustering,
            stemmer=stemmer,
            min_corpus_size=self.config.min_training_corpus
        )
        self.profile_service = UserProfileService(user_repository, model_repository, self.config)

        self.metrics = RecommendationMetrics()
        self.is_training = False
        self._training_lock = asyncio.Lock()
        self._last_failed_training: Optional[float] = None

        # Fitting is CPU-bound; keep it off the event loop
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="model-training")

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    async def trigger_retrain(self) -> TrainingResult:
        """Fit new models on the current listings and publish them.

        A failed run leaves the previously published snapshot in place.
        """
        async with self._training_lock:
            return await self._retrain()

    async def _ensure_model(self) -> Optional[ModelSnapshot]:
        """Train once when nothing is published; concurrent callers share that run.

        After a failed run, lazy training waits ``retrain_backoff_seconds`` so a
        batch over many users does not refit for each of them.
        """
        async with self._training_lock:
            if self.model_store.current() is None and not self._in_retrain_backoff():
                self.logger.info("No published model; training before generating recommendations")
                await self._retrain()
        return self.model_store.current()

    def _in_retrain_backoff(self) -> bool:
        if self._last_failed_training is None:
            return False
        return time.monotonic() - self._last_failed_training < self.config.retrain_backoff_seconds

    async def _retrain(self) -> TrainingResult:
        self.is_training = True
        start_time = time.time()
        # cleared only once the new snapshot is published
        self._last_failed_training = time.monotonic()
        try:
            properties = await self.property_repository.get_all_active()
            corpus = CorpusSnapshot.capture(properties)
            version = self.model_store.next_version()

            loop = asyncio.get_running_loop()
            snapshot = await loop.run_in_executor(self.executor, self.trainer.train, corpus, version)

            self.model_store.publish(snapshot)
            self._last_failed_training = None
            await self._persist_model(snapshot)

            return TrainingResult(
                success=True,
                stats=snapshot.stats(),
                snapshot=snapshot,
                training_time=time.time() - start_time
            )

        except InsufficientDataError as e:
            self.logger.warning(f"Model training skipped: {e}")
            return TrainingResult(success=False, error=str(e), training_time=time.time() - start_time)
        except (RecommendationError, ValueError) as e:
            self.logger.error(f"Model training failed: {e}")
            return TrainingResult(success=False, error=str(e), training_time=time.time() - start_time)
        finally:
            self.is_training = False

    async def _persist_model(self, snapshot: ModelSnapshot):
        """Store listing vectors and clusters; failures are logged per item"""
        saved_vectors = 0
        for item in snapshot.property_vectors:
            property = snapshot.get_property(item.property_id)
            features = scalar_features(property, snapshot.clusterer)
            features["vocabulary_version"] = snapshot.vocabulary_version
            try:
                await self.model_repository.upsert_property_vector(item.property_id, item.vector, features)
                saved_vectors += 1
            except PersistenceError as e:
                self.metrics.persistence_errors += 1
                self.logger.error(f"Failed to save vector for property {item.property_id}: {e}")

        saved_clusters = 0
        clusters = snapshot.clusterer.get_cluster_metadata() if snapshot.has_clusters else []
        for cluster in clusters:
            try:
                await self.model_repository.upsert_cluster(cluster)
                saved_clusters += 1
            except PersistenceError as e:
                self.metrics.persistence_errors += 1
                self.logger.error(f"Failed to save cluster {cluster.cluster_id}: {e}")

        # Any other stored cluster belongs to an older model
        try:
            await self.model_repository.prune_clusters([cluster.cluster_id for cluster in clusters])
        except PersistenceError as e:
            self.metrics.persistence_errors += 1
            self.logger.error(f"Failed to delete stale clusters: {e}")

        self.logger.info(
            f"Saved {saved_vectors}/{len(snapshot.property_vectors)} property vectors "
            f"and {saved_clusters} clusters for model v{snapshot.version}"
        )

    def get_model_status(self) -> Dict[str, Any]:
        status = self.model_store.status()
        status["is_training"] = self.is_training
        return status

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def has_sufficient_history(self, user_id: UUID, threshold: Optional[int] = None) -> bool:
        threshold = self.config.history_threshold if threshold is None else threshold
        count = await self.user_repository.get_interaction_count(user_id)
        return count >= threshold

    async def generate_recommendations(self, user_id: UUID,
                                       preferences: Optional[ColdStartPreferences] = None,
                                       top_n: Optional[int] = None) -> List[Recommendation]:
        """Generate and store recommendations for one user.

        Storage failures and a missing model yield an empty list.
        """
        top_n = top_n or self.config.top_n

        snapshot = self.model_store.current() or await self._ensure_model()
        if snapshot is None:
            return []

        try:
            if await self.has_sufficient_history(user_id):
                recommendations = await self._generate_content_based(user_id, snapshot, top_n)
            else:
                recommendations = await self._generate_cold_start(user_id, snapshot, preferences, top_n)
        except PersistenceError as e:
            self.logger.error(f"Failed to generate recommendations for user {user_id}: {e}")
            return []

        self.metrics.total_recommendations += len(recommendations)
        await self._invalidate_user_cache(user_id)
        return recommendations

    async def _generate_content_based(self, user_id: UUID, snapshot: ModelSnapshot,
                                      top_n: int) -> List[Recommendation]:
        self.logger.info(f"Generating content-based recommendations for user {user_id}")

        user_vector = await self._get_user_vector(user_id, snapshot)
        if user_vector is None:
            self.logger.info(f"No usable preference vector for user {user_id}")
            return []

        similarities = snapshot.vectorizer.find_similar(user_vector, snapshot.property_vectors, top_n * 2)

        views = await self.user_repository.get_property_views(user_id, self.config.view_history_limit)
        viewed_ids = {view.property_id for view in views}

        recommendations = []
        for result in similarities:
            if result.property_id in viewed_ids:
                continue
            if result.similarity < self.config.similarity_threshold:
                continue

            property = snapshot.get_property(result.property_id)
            if property is None:
                continue

            recommendation = Recommendation.create(
                user_id=user_id,
                property_id=property.id,
                recommendation_type=RecommendationType.CONTENT_BASED,
                score=result.similarity,
                explanation=self.generate_explanation(property, result.similarity),
                matching_features={
                    "city": property.city,
                    "rent": property.rent_amount,
                    "bedrooms": property.bedrooms,
                    "type": property.property_type,
                }
            )
            saved = await self._save(recommendation)
            if saved is not None:
                recommendations.append(saved)
            if len(recommendations) >= top_n:
                break

        self.metrics.content_based_count += len(recommendations)
        self.logger.info(f"Generated {len(recommendations)} content-based recommendations")
        return recommendations

    async def _get_user_vector(self, user_id: UUID, snapshot: ModelSnapshot):
        profile = await self.profile_service.build_profile(user_id, snapshot)
        if profile is not None and profile.vector is not None:
            return profile.vector

        stored = await self.model_repository.get_user_profile(user_id)
        if stored is None or stored.vector is None:
            return None
        if stored.vector_version != snapshot.vocabulary_version:
            self.logger.warning(
                f"Discarding stored vector for user {user_id}: "
                f"vocabulary {stored.vector_version} != {snapshot.vocabulary_version}"
            )
            return None
        return stored.vector

    async def _generate_cold_start(self, user_id: UUID, snapshot: ModelSnapshot,
                                   preferences: Optional[ColdStartPreferences],
                                   top_n: int) -> List[Recommendation]:
        clusterer = snapshot.clusterer
        if clusterer is None or not clusterer.is_trained:
            self.logger.warning("Clusters unavailable; falling back to trending listings")
            return await self._generate_trending(user_id, top_n)

        self.logger.info(f"Generating cold-start recommendations for user {user_id}")
        if preferences is None or preferences.is_empty():
            preferences = await self._derive_preferences(user_id)

        prediction = clusterer.predict(preferences)
        self.logger.info(f"User {user_id} assigned to cluster {prediction.cluster_id}")

        property_ids = prediction.metadata.property_ids
        if not property_ids:
            return []

        properties = await self.property_repository.get_by_ids(property_ids)
        confidence = max(0.0, 1 - prediction.distance)

        recommendations = []
        for property in properties[:top_n]:
            recommendation = Recommendation.create(
                user_id=user_id,
                property_id=property.id,
                recommendation_type=RecommendationType.COLD_START_GEO,
                score=confidence,
                explanation=(
                    f"Property in {property.city} matching your location and budget preferences "
                    f"(Avg rent: Rs. {prediction.metadata.avg_rent})"
                ),
                matching_features={
                    "cluster": prediction.cluster_id,
                    "city": property.city,
                    "avg_rent": prediction.metadata.avg_rent,
                }
            )
            saved = await self._save(recommendation)
            if saved is not None:
                recommendations.append(saved)

        self.metrics.cold_start_count += len(recommendations)
        self.logger.info(f"Generated {len(recommendations)} cold-start recommendations")
        return recommendations

    async def _derive_preferences(self, user_id: UUID) -> ColdStartPreferences:
        """Location and budget from recent searches, else from the stored profile"""
        searches = await self.user_repository.get_search_history(user_id, self.config.search_history_limit)
        preferences = self.profile_service.aggregate(user_id, searches, [], []).to_cold_start_preferences()
        if not preferences.is_empty():
            return preferences

        stored = await self.model_repository.get_user_profile(user_id)
        if stored is not None:
            return stored.to_cold_start_preferences()
        return preferences

    async def _generate_trending(self, user_id: UUID, top_n: int) -> List[Recommendation]:
        trending = await self.property_repository.get_trending(min(top_n, self.config.trending_limit))

        recommendations = []
        for property, trend_score in trending:
            recommendation = Recommendation.create(
                user_id=user_id,
                property_id=property.id,
                recommendation_type=RecommendationType.TRENDING,
                score=min(0.95, trend_score / 100),
                explanation=f"Trending property in {property.city}, popular with other renters right now",
                matching_features={"trend_score": trend_score, "city": property.city}
            )
            saved = await self._save(recommendation)
            if saved is not None:
                recommendations.append(saved)

        self.metrics.trending_count += len(recommendations)
        return recommendations

    async def _save(self, recommendation: Recommendation) -> Optional[Recommendation]:
        try:
            return await self.recommendation_repository.upsert(recommendation)
        except PersistenceError as e:
            self.metrics.persistence_errors += 1
            self.logger.error(f"Failed to save recommendation for property {recommendation.property_id}: {e}")
            return None

    async def generate_for_users(self, user_ids: List[UUID], top_n: Optional[int] = None) -> Dict[UUID, Optional[int]]:
        """Generate for many users concurrently; a failed user maps to None"""
        semaphore = asyncio.Semaphore(self.config.max_workers)

        async def generate(user_id: UUID) -> int:
            async with semaphore:
                return len(await self.generate_recommendations(user_id, top_n=top_n))

        results = await asyncio.gather(*(generate(uid) for uid in user_ids), return_exceptions=True)

        counts = {}
        for user_id, result in zip(user_ids, results):
            if isinstance(result, BaseException):
                self.logger.error(f"Recommendation generation failed for user {user_id}: {result}")
                counts[user_id] = None
            else:
                counts[user_id] = result
        return counts

    @staticmethod
    def generate_explanation(property: Property, similarity: float) -> str:
        return (
            f"{similarity * 100:.0f}% match based on your search history and preferences. "
            f"Located in {property.city}, {_display(property.bedrooms)} bedrooms, "
            f"Rs. {_display(property.rent_amount)}/month."
        )

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    async def get_recommendations_for_user(self, user_id: UUID, limit: int = 10,
                                           algorithm: Union[RecommendationType, str, None] = None
                                           ) -> List[Recommendation]:
        """Last generated recommendations, excluding dismissed ones. Never trains."""
        recommendation_type = RecommendationType(algorithm) if isinstance(algorithm, str) else algorithm
        variant = f"{recommendation_type.value if recommendation_type else 'all'}:{limit}"

        if self.cache_repository is not None:
            cached = await self.cache_repository.get_cached_recommendations(user_id, variant)
            if cached is not None:
                self.metrics.cache_hits += 1
                return cached
            self.metrics.cache_misses += 1

        try:
            recommendations = await self.recommendation_repository.get_for_user(
                user_id, limit=limit, recommendation_type=recommendation_type
            )
        except PersistenceError as e:
            self.logger.error(f"Failed to load recommendations for user {user_id}: {e}")
            return []

        if self.cache_repository is not None:
            await self.cache_repository.cache_recommendations(
                user_id, variant, recommendations, ttl_seconds=self.config.cache_ttl_seconds
            )
        return recommendations

    async def record_click(self, recommendation_id: UUID) -> bool:
        return await self._update_feedback(recommendation_id, self.recommendation_repository.mark_clicked)

    async def dismiss(self, recommendation_id: UUID) -> bool:
        return await self._update_feedback(recommendation_id, self.recommendation_repository.dismiss)

    async def _update_feedback(self, recommendation_id: UUID, update) -> bool:
        try:
            recommendation = await self.recommendation_repository.get_by_id(recommendation_id)
            if recommendation is None:
                return False
            updated = await update(recommendation_id)
        except PersistenceError as e:
            self.logger.error(f"Failed to update recommendation {recommendation_id}: {e}")
            return False

        if updated:
            await self._invalidate_user_cache(recommendation.user_id)
        return updated

    async def prune_recommendations(self, days: int) -> int:
        try:
            deleted = await self.recommendation_repository.delete_older_than(days)
        except PersistenceError as e:
            self.logger.error(f"Failed to prune recommendations: {e}")
            return 0

        if deleted and self.cache_repository is not None:
            await self.cache_repository.clear_recommendations()
        return deleted

    async def refresh_trending(self, days: int = 7) -> int:
        """Recompute listing trend scores used by the trending fallback"""
        try:
            return await self.property_repository.refresh_trending(days)
        except PersistenceError as e:
            self.logger.error(f"Failed to refresh trending listings: {e}")
            return 0

    async def _invalidate_user_cache(self, user_id: UUID):
        if self.cache_repository is not None:
            await self.cache_repository.invalidate_user(user_id)

    def get_metrics(self) -> RecommendationMetrics:
        return self.metrics

    def close(self):
        self.executor.shutdown(wait=False)


def _display(value: Any) -> str:
    return format_number(value) if value is not None else "N/A"
