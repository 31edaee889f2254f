"""
Training for the recommendation models.

A training pass fits the TF-IDF vectorizer and the K-Means clusterer on the
same corpus snapshot and bundles the results, together with every listing's
vector, into an immutable ModelSnapshot. Nothing already published is touched;
the caller decides when to publish the new snapshot.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from functools import cached_property
from typing import Dict, Optional, Any, Tuple

from ....domain.entities.property import CorpusSnapshot, Property
from ....domain.exceptions import InsufficientDataError
from ..config import TfidfConfig, ClusteringConfig
from ..models.kmeans_clusterer import KMeansClusterer
from ..models.text_features import PropertyFeatureExtractor, Stemmer
from ..models.tfidf_vectorizer import TfidfVectorizer, PropertyVector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelSnapshot:
    """Fitted models for one corpus snapshot; never mutated after publication"""
    version: int
    vectorizer: TfidfVectorizer
    property_vectors: Tuple[PropertyVector, ...]
    clusterer: Optional[KMeansClusterer]
    corpus: CorpusSnapshot
    trained_at: datetime = field(default_factory=datetime.now)

    @property
    def property_count(self) -> int:
        return len(self.corpus)

    @property
    def cluster_count(self) -> int:
        if self.clusterer is None or not self.clusterer.is_trained:
            return 0
        return len(self.clusterer.clusters)

    @property
    def vocabulary_version(self) -> str:
        return self.vectorizer.version

    @property
    def has_clusters(self) -> bool:
        return self.cluster_count > 0

    def get_property(self, property_id: Any) -> Optional[Property]:
        return self.properties_by_id.get(property_id)

    @cached_property
    def properties_by_id(self) -> Dict[Any, Property]:
        return self.corpus.by_id()

    def stats(self) -> Dict[str, Any]:
        return {
            "model_version": self.version,
            "total_properties": self.property_count,
            "tfidf_vectors": len(self.property_vectors),
            "vocabulary_size": self.vectorizer.vocabulary_size,
            "clusters": self.cluster_count,
            "kmeans_enabled": self.has_clusters,
            "trained_at": self.trained_at.isoformat(),
        }


@dataclass
class TrainingResult:
    success: bool
    stats: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    snapshot: Optional[ModelSnapshot] = None
    training_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "stats": self.stats,
            "error": self.error,
            "training_time": self.training_time,
        }


class RecommendationModelTrainer:
    """Fits vectorizer and clusterer independently from one corpus snapshot."""

    def __init__(self, tfidf_config: Optional[TfidfConfig] = None,
                 clustering_config: Optional[ClusteringConfig] = None,
                 stemmer: Optional[Stemmer] = None,
                 min_corpus_size: int = 3):
        self.tfidf_config = tfidf_config or TfidfConfig()
        self.clustering_config = clustering_config or ClusteringConfig()
        self.stemmer = stemmer
        self.min_corpus_size = min_corpus_size

    def build_vectorizer(self, corpus: CorpusSnapshot) -> TfidfVectorizer:
        extractor = PropertyFeatureExtractor(
            stemmer=self.stemmer,
            rent_buckets=self.tfidf_config.rent_buckets
        )
        vectorizer = TfidfVectorizer(config=self.tfidf_config, feature_extractor=extractor)
        return vectorizer.fit(corpus.properties)

    def build_clusterer(self, corpus: CorpusSnapshot) -> Optional[KMeansClusterer]:
        clusterer = KMeansClusterer(
            n_clusters=self.clustering_config.clusters_for_corpus(len(corpus)),
            config=self.clustering_config
        )
        if not clusterer.fit(corpus.properties):
            return None
        return clusterer

    def train(self, corpus: CorpusSnapshot, version: int) -> ModelSnapshot:
        if len(corpus) < self.min_corpus_size:
            raise InsufficientDataError(
                f"Not enough properties for training ({len(corpus)}, "
                f"minimum {self.min_corpus_size} required)"
            )

        start_time = time.time()
        logger.info(f"Training recommendation models v{version} on {len(corpus)} properties")

        vectorizer = self.build_vectorizer(corpus)
        property_vectors = tuple(
            PropertyVector(property_id=p.id, vector=vectorizer.transform(p))
            for p in corpus.properties
        )
        clusterer = self.build_clusterer(corpus)
        if clusterer is None:
            logger.warning("K-Means clustering skipped; cold-start will fall back to trending")

        snapshot = ModelSnapshot(
            version=version,
            vectorizer=vectorizer,
            property_vectors=property_vectors,
            clusterer=clusterer,
            corpus=corpus
        )
        logger.info(
            f"Model training complete in {time.time() - start_time:.2f}s: "
            f"{snapshot.vectorizer.vocabulary_size} terms, {snapshot.cluster_count} clusters"
        )
        return snapshot


def scalar_features(property: Property, clusterer: Optional[KMeansClusterer]) -> Dict[str, Any]:
    """Denormalized columns stored next to a listing's TF-IDF vector"""
    cluster_id = None
    if clusterer is not None:
        cluster_id = clusterer.assignments.get(property.id)
    return {
        "normalized_rent": (property.rent_amount or 0) / 100000,
        "normalized_bedrooms": (property.bedrooms or 0) / 10,
        "normalized_bathrooms": (property.bathrooms or 0) / 10,
        "latitude": property.latitude,
        "longitude": property.longitude,
        "geo_cluster_id": cluster_id,
    }
