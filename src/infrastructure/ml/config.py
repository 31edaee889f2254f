"""
Machine-learning configuration for the recommendation core.

Hyperparameters for feature extraction, TF-IDF, K-Means and the orchestrator,
with environment variable overrides.
"""

import os
import logging
from typing import Dict, Tuple
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


DEFAULT_CITY_COORDINATES: Dict[str, Tuple[float, float]] = {
    "kathmandu": (27.7172, 85.3240),
    "lalitpur": (27.6667, 85.3167),
    "bhaktapur": (27.6710, 85.4298),
    "pokhara": (28.2096, 83.9856),
}


@dataclass
class RentBuckets:
    """Upper bounds (exclusive) of the rent buckets, in listing currency units"""
    very_low: float = 5000
    low: float = 10000
    medium: float = 20000
    high: float = 30000

    def bucket_for(self, rent: float) -> str:
        if rent < self.very_low:
            return "very_low"
        if rent < self.low:
            return "low"
        if rent < self.medium:
            return "medium"
        if rent < self.high:
            return "high"
        return "very_high"


@dataclass
class TfidfConfig:
    """TF-IDF vocabulary configuration"""
    max_features: int = 500
    min_doc_frequency: int = 2
    max_doc_ratio: float = 0.8
    rent_buckets: RentBuckets = field(default_factory=RentBuckets)


@dataclass
class ClusteringConfig:
    """K-Means geo/price clustering configuration"""
    max_clusters: int = 10
    properties_per_cluster: int = 5
    max_iterations: int = 100
    min_corpus_size: int = 10
    random_state: int = 42
    city_coordinates: Dict[str, Tuple[float, float]] = field(
        default_factory=lambda: dict(DEFAULT_CITY_COORDINATES)
    )
    default_coordinates: Tuple[float, float] = (27.7000, 85.3000)
    default_latitude_range: Tuple[float, float] = (27.6, 27.8)
    default_longitude_range: Tuple[float, float] = (85.2, 85.4)
    default_rent_range: Tuple[float, float] = (0.0, 50000.0)

    def clusters_for_corpus(self, corpus_size: int) -> int:
        """Requested cluster count for a corpus, before the fit-time adaptive shrink"""
        return max(2, min(self.max_clusters, corpus_size // self.properties_per_cluster))


@dataclass
class RecommendationConfig:
    """Orchestrator configuration"""
    history_threshold: int = 3
    similarity_threshold: float = 0.3
    top_n: int = 20
    search_history_limit: int = 50
    view_history_limit: int = 100
    profile_top_amenities: int = 5
    view_weight: float = 2.0
    search_weight: float = 1.0
    favorite_weight: float = 2.0
    min_training_corpus: int = 3
    trending_limit: int = 5
    max_workers: int = 4
    cache_ttl_seconds: int = 1800
    retrain_backoff_seconds: float = 300.0


@dataclass
class SchedulerConfig:
    """Model lifecycle scheduler configuration"""
    training_interval_hours: float = 6.0
    generation_interval_minutes: float = 30.0
    initial_training_delay_seconds: float = 5.0
    initial_generation_delay_seconds: float = 60.0
    generation_batch_size: int = 100
    recommendations_per_user: int = 10
    active_user_min_interactions: int = 3
    active_user_window_days: int = 30
    retention_days: int = 7
    trending_window_days: int = 7


class MLConfig:
    """Main ML configuration class"""

    def __init__(self):
        self.tfidf = self._load_tfidf_config()
        self.clustering = self._load_clustering_config()
        self.recommendation = self._load_recommendation_config()
        self.scheduler = self._load_scheduler_config()

    def _load_tfidf_config(self) -> TfidfConfig:
        return TfidfConfig(
            max_features=int(os.getenv("ML_TFIDF_MAX_FEATURES", "500")),
            min_doc_frequency=int(os.getenv("ML_TFIDF_MIN_DOC_FREQUENCY", "2")),
            max_doc_ratio=float(os.getenv("ML_TFIDF_MAX_DOC_RATIO", "0.8")),
            rent_buckets=RentBuckets(
                very_low=float(os.getenv("ML_RENT_BUCKET_VERY_LOW", "5000")),
                low=float(os.getenv("ML_RENT_BUCKET_LOW", "10000")),
                medium=float(os.getenv("ML_RENT_BUCKET_MEDIUM", "20000")),
                high=float(os.getenv("ML_RENT_BUCKET_HIGH", "30000"))
            )
        )

    def _load_clustering_config(self) -> ClusteringConfig:
        return ClusteringConfig(
            max_clusters=int(os.getenv("ML_KMEANS_MAX_CLUSTERS", "10")),
            max_iterations=int(os.getenv("ML_KMEANS_MAX_ITERATIONS", "100")),
            min_corpus_size=int(os.getenv("ML_KMEANS_MIN_CORPUS_SIZE", "10")),
            random_state=int(os.getenv("ML_KMEANS_RANDOM_STATE", "42")),
            city_coordinates=self._load_city_coordinates()
        )

    def _load_city_coordinates(self) -> Dict[str, Tuple[float, float]]:
        """Merge ML_CITY_COORDINATES ("city:lat:lon;city:lat:lon") over the defaults"""
        coordinates = dict(DEFAULT_CITY_COORDINATES)
        raw = os.getenv("ML_CITY_COORDINATES", "")
        for entry in filter(None, (part.strip() for part in raw.split(";"))):
            try:
                city, lat, lon = entry.split(":")
                coordinates[city.strip().lower()] = (float(lat), float(lon))
            except ValueError:
                logger.warning(f"Ignoring malformed city coordinate entry: {entry!r}")
        return coordinates

    def _load_recommendation_config(self) -> RecommendationConfig:
        return RecommendationConfig(
            history_threshold=int(os.getenv("ML_HISTORY_THRESHOLD", "3")),
            similarity_threshold=float(os.getenv("ML_SIMILARITY_THRESHOLD", "0.3")),
            top_n=int(os.getenv("ML_TOP_N", "20")),
            search_history_limit=int(os.getenv("ML_SEARCH_HISTORY_LIMIT", "50")),
            view_history_limit=int(os.getenv("ML_VIEW_HISTORY_LIMIT", "100")),
            min_training_corpus=int(os.getenv("ML_MIN_TRAINING_CORPUS", "3")),
            max_workers=int(os.getenv("ML_MAX_WORKERS", "4")),
            cache_ttl_seconds=int(os.getenv("ML_CACHE_TTL_SECONDS", "1800")),
            retrain_backoff_seconds=float(os.getenv("ML_RETRAIN_BACKOFF_SECONDS", "300"))
        )

    def _load_scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            training_interval_hours=float(os.getenv("ML_TRAINING_INTERVAL_HOURS", "6")),
            generation_interval_minutes=float(os.getenv("ML_GENERATION_INTERVAL_MINUTES", "30")),
            initial_training_delay_seconds=float(os.getenv("ML_INITIAL_TRAINING_DELAY", "5")),
            initial_generation_delay_seconds=float(os.getenv("ML_INITIAL_GENERATION_DELAY", "60")),
            generation_batch_size=int(os.getenv("ML_GENERATION_BATCH_SIZE", "100")),
            recommendations_per_user=int(os.getenv("ML_RECOMMENDATIONS_PER_USER", "10")),
            retention_days=int(os.getenv("ML_RETENTION_DAYS", "7")),
            trending_window_days=int(os.getenv("ML_TRENDING_WINDOW_DAYS", "7"))
        )
