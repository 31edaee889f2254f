"""
K-Means geo/price clustering for cold-start recommendations.

Listings are embedded as min-max normalized (latitude, longitude, rent) points
and grouped with scikit-learn's Lloyd K-Means seeded by k-means++. A user
without history is placed in the nearest cluster by Euclidean distance and
served that cluster's listings.
"""

import logging
import warnings
from collections import Counter
from dataclasses import dataclass
from typing import List, Dict, Optional, Tuple, Sequence, Any

import numpy as np
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning

from ....domain.entities.cluster import GeoCluster
from ....domain.entities.property import Property
from ....domain.entities.user import ColdStartPreferences
from ....domain.exceptions import ModelNotTrainedError
from ..config import ClusteringConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureScaler:
    """Min-max scaler for one feature; a constant feature maps to 0.5"""
    min: float
    max: float

    def normalize(self, value: float) -> float:
        if self.max == self.min:
            return 0.5
        return (value - self.min) / (self.max - self.min)

    def denormalize(self, value: float) -> float:
        return value * (self.max - self.min) + self.min

    @classmethod
    def from_values(cls, values: Sequence[float], fallback: Tuple[float, float]) -> "FeatureScaler":
        if not values:
            return cls(min=float(fallback[0]), max=float(fallback[1]))
        return cls(min=float(min(values)), max=float(max(values)))


@dataclass
class ClusterPrediction:
    cluster_id: int
    distance: float
    metadata: GeoCluster


class KMeansClusterer:
    """Groups listings by location and rent; assigns users to the nearest group."""

    def __init__(self, n_clusters: Optional[int] = None, config: Optional[ClusteringConfig] = None):
        self.config = config or ClusteringConfig()
        self.requested_clusters = n_clusters or self.config.max_clusters
        self.n_clusters = self.requested_clusters
        self.max_iterations = self.config.max_iterations

        self.model: Optional[KMeans] = None
        self.centroids: np.ndarray = np.zeros((0, 3))
        self.clusters: Dict[int, GeoCluster] = {}
        self.assignments: Dict[Any, int] = {}
        self.iterations = 0
        self.scalers: Dict[str, FeatureScaler] = {}
        self._fill_rent = 0.0

    @property
    def is_trained(self) -> bool:
        return self.model is not None

    def get_city_coordinates(self, city: Optional[str]) -> Tuple[float, float]:
        if city:
            coords = self.config.city_coordinates.get(str(city).strip().lower())
            if coords:
                return coords
        return self.config.default_coordinates

    def resolve_coordinates(self, property: Property) -> Tuple[float, float]:
        fallback_lat, fallback_lon = self.get_city_coordinates(property.city)
        return (property.latitude or fallback_lat, property.longitude or fallback_lon)

    def calculate_feature_stats(self, properties: Sequence[Property]):
        coordinates = [self.resolve_coordinates(p) for p in properties]
        rents = [float(p.rent_amount) for p in properties if p.rent_amount and p.rent_amount > 0]

        self.scalers = {
            "latitude": FeatureScaler.from_values(
                [lat for lat, _ in coordinates], self.config.default_latitude_range
            ),
            "longitude": FeatureScaler.from_values(
                [lon for _, lon in coordinates], self.config.default_longitude_range
            ),
            "rent": FeatureScaler.from_values(rents, self.config.default_rent_range),
        }
        self._fill_rent = float(np.mean(rents)) if rents else sum(self.config.default_rent_range) / 2

    def normalize_point(self, latitude: float, longitude: float, rent: float) -> np.ndarray:
        return np.array([
            self.scalers["latitude"].normalize(latitude),
            self.scalers["longitude"].normalize(longitude),
            self.scalers["rent"].normalize(rent),
        ], dtype=np.float64)

    def prepare_feature_vectors(self, properties: Sequence[Property]) -> np.ndarray:
        points = []
        for property in properties:
            lat, lon = self.resolve_coordinates(property)
            rent = property.rent_amount if property.rent_amount and property.rent_amount > 0 else self._fill_rent
            points.append(self.normalize_point(lat, lon, rent))
        return np.vstack(points)

    def fit(self, properties: Sequence[Property]) -> bool:
        properties = list(properties)
        logger.info(f"Training K-Means on {len(properties)} properties")
        self._reset()

        if len(properties) < self.config.min_corpus_size:
            logger.warning(
                f"Too few properties ({len(properties)}), need at least "
                f"{self.config.min_corpus_size} for clustering"
            )
            return False

        self.n_clusters = self.requested_clusters
        if self.n_clusters > len(properties) / 2:
            self.n_clusters = max(2, len(properties) // 2)
            logger.info(f"Adjusted clusters to {self.n_clusters}")

        self.calculate_feature_stats(properties)
        features = self.prepare_feature_vectors(properties)

        model = KMeans(
            n_clusters=self.n_clusters,
            init="k-means++",
            n_init=1,
            max_iter=self.max_iterations,
            tol=0.0,
            algorithm="lloyd",
            random_state=self.config.random_state
        )
        try:
            with warnings.catch_warnings():
                # duplicate listings can leave fewer distinct points than clusters
                warnings.simplefilter("ignore", ConvergenceWarning)
                labels = model.fit_predict(features)
        except ValueError as e:
            logger.error(f"K-Means training failed: {e}")
            return False

        self.model = model
        self.centroids = model.cluster_centers_
        self.iterations = int(model.n_iter_)
        self.assignments = {p.id: int(label) for p, label in zip(properties, labels)}
        self.calculate_cluster_metadata(properties, labels)

        logger.info(
            f"K-Means training complete. Clusters: {self.n_clusters}, "
            f"Iterations: {self.iterations}"
        )
        return True

    def calculate_cluster_metadata(self, properties: Sequence[Property], labels: np.ndarray):
        self.clusters = {}

        for cluster_id in range(self.n_clusters):
            members = [p for p, label in zip(properties, labels) if label == cluster_id]
            if not members:
                continue

            rents = [float(p.rent_amount) for p in members if p.rent_amount and p.rent_amount > 0]
            cities = [p.city for p in members if p.city]
            # most_common keeps insertion order among equal counts
            primary_city = Counter(cities).most_common(1)[0][0] if cities else "Unknown"

            centroid = self.centroids[cluster_id]
            self.clusters[cluster_id] = GeoCluster(
                cluster_id=cluster_id,
                centroid=tuple(float(c) for c in centroid),
                centroid_latitude=self.scalers["latitude"].denormalize(centroid[0]),
                centroid_longitude=self.scalers["longitude"].denormalize(centroid[1]),
                centroid_rent=self.scalers["rent"].denormalize(centroid[2]),
                property_count=len(members),
                avg_rent=round(sum(rents) / len(rents)) if rents else 0,
                min_rent=round(min(rents)) if rents else 0,
                max_rent=round(max(rents)) if rents else 0,
                primary_city=primary_city,
                property_ids=[p.id for p in members]
            )

    def predict(self, preferences: ColdStartPreferences) -> ClusterPrediction:
        if not self.is_trained:
            raise ModelNotTrainedError()

        preferences = preferences or ColdStartPreferences()
        fallback_lat, fallback_lon = self.get_city_coordinates(preferences.city)
        lat = preferences.latitude or fallback_lat
        lon = preferences.longitude or fallback_lon

        default_min, default_max = self.config.default_rent_range
        rent = preferences.preferred_rent or (
            (preferences.min_rent or default_min) + (preferences.max_rent or default_max)
        ) / 2

        point = self.normalize_point(lat, lon, rent)

        nearest_cluster, min_distance = None, float("inf")
        for cluster_id in sorted(self.clusters):
            distance = float(np.linalg.norm(point - self.centroids[cluster_id]))
            if distance < min_distance:
                nearest_cluster, min_distance = cluster_id, distance

        return ClusterPrediction(
            cluster_id=nearest_cluster,
            distance=min_distance,
            metadata=self.clusters[nearest_cluster]
        )

    def get_cluster_properties(self, cluster_id: int) -> List[Any]:
        cluster = self.clusters.get(cluster_id)
        return list(cluster.property_ids) if cluster else []

    def get_cluster_metadata(self) -> List[GeoCluster]:
        return [self.clusters[cluster_id] for cluster_id in sorted(self.clusters)]

    def _reset(self):
        self.model = None
        self.centroids = np.zeros((0, 3))
        self.clusters = {}
        self.assignments = {}
        self.iterations = 0
