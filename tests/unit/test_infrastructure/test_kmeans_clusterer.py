"""
Unit tests for the K-Means geo/price clusterer.
"""

from uuid import uuid4

import numpy as np
import pytest

from src.domain.entities.property import Property
from src.domain.entities.user import ColdStartPreferences
from src.domain.exceptions import ModelNotTrainedError
from src.infrastructure.ml.config import ClusteringConfig
from src.infrastructure.ml.models.kmeans_clusterer import KMeansClusterer, FeatureScaler


def listing(city, lat, lon, rent):
    return Property(id=uuid4(), city=city, latitude=lat, longitude=lon, rent_amount=rent)


@pytest.fixture
def two_market_corpus():
    kathmandu = [listing("Kathmandu", 27.71 + i * 0.001, 85.32, 6000 + i * 100) for i in range(10)]
    pokhara = [listing("Pokhara", 28.20 + i * 0.001, 83.98, 40000 + i * 500) for i in range(10)]
    return kathmandu + pokhara


class TestFeatureScaler:

    def test_constant_feature_maps_to_half(self):
        scaler = FeatureScaler(min=5.0, max=5.0)
        assert scaler.normalize(5.0) == 0.5
        assert scaler.normalize(100.0) == 0.5

    def test_normalize_and_denormalize(self):
        scaler = FeatureScaler(min=1000.0, max=3000.0)
        assert scaler.normalize(2000.0) == pytest.approx(0.5)
        assert scaler.denormalize(0.25) == pytest.approx(1500.0)

    def test_fallback_range_when_no_values(self):
        scaler = FeatureScaler.from_values([], (0.0, 50000.0))
        assert (scaler.min, scaler.max) == (0.0, 50000.0)


class TestKMeansClusterer:

    def test_small_corpus_is_not_trained(self):
        clusterer = KMeansClusterer()
        corpus = [listing("Kathmandu", 27.7, 85.3, 10000) for _ in range(9)]

        assert clusterer.fit(corpus) is False
        assert not clusterer.is_trained

    def test_predict_before_fit_raises(self):
        with pytest.raises(ModelNotTrainedError):
            KMeansClusterer().predict(ColdStartPreferences(city="Kathmandu"))

    def test_every_property_is_assigned(self, two_market_corpus):
        clusterer = KMeansClusterer(n_clusters=2)

        assert clusterer.fit(two_market_corpus)
        assert set(clusterer.assignments) == {p.id for p in two_market_corpus}

        members = [pid for cluster in clusterer.clusters.values() for pid in cluster.property_ids]
        assert sorted(map(str, members)) == sorted(str(p.id) for p in two_market_corpus)

    def test_markets_are_separated(self, two_market_corpus):
        clusterer = KMeansClusterer(n_clusters=2)
        clusterer.fit(two_market_corpus)

        cities = sorted(cluster.primary_city for cluster in clusterer.clusters.values())
        assert cities == ["Kathmandu", "Pokhara"]
        for cluster in clusterer.clusters.values():
            assert cluster.property_count == 10

    def test_cluster_rent_metadata(self, two_market_corpus):
        clusterer = KMeansClusterer(n_clusters=2)
        clusterer.fit(two_market_corpus)

        kathmandu = next(c for c in clusterer.clusters.values() if c.primary_city == "Kathmandu")
        assert kathmandu.min_rent == 6000
        assert kathmandu.max_rent == 6900
        assert kathmandu.avg_rent == 6450

    def test_adaptive_cluster_count(self):
        corpus = [listing("Kathmandu", 27.7 + i * 0.01, 85.3, 5000 + i * 1000) for i in range(12)]
        clusterer = KMeansClusterer(n_clusters=10)

        assert clusterer.fit(corpus)
        assert clusterer.n_clusters == 6

    def test_refit_restores_requested_cluster_count(self):
        clusterer = KMeansClusterer(n_clusters=10)
        small = [listing("Kathmandu", 27.7 + i * 0.01, 85.3, 5000 + i * 1000) for i in range(12)]
        large = [listing("Kathmandu", 27.7 + i * 0.01, 85.3, 5000 + i * 1000) for i in range(30)]

        clusterer.fit(small)
        clusterer.fit(large)
        assert clusterer.n_clusters == 10

    def test_predict_returns_nearest_cluster(self, two_market_corpus):
        clusterer = KMeansClusterer(n_clusters=2)
        clusterer.fit(two_market_corpus)

        prediction = clusterer.predict(ColdStartPreferences(city="Pokhara", min_rent=38000, max_rent=46000))

        assert prediction.metadata.primary_city == "Pokhara"
        assert prediction.distance >= 0
        assert prediction.cluster_id in clusterer.clusters

    def test_predict_uses_explicit_coordinates(self, two_market_corpus):
        clusterer = KMeansClusterer(n_clusters=2)
        clusterer.fit(two_market_corpus)

        prediction = clusterer.predict(ColdStartPreferences(latitude=27.71, longitude=85.32, preferred_rent=6000))
        assert prediction.metadata.primary_city == "Kathmandu"

    def test_missing_coordinates_fall_back_to_city(self):
        clusterer = KMeansClusterer()
        property = Property(id=uuid4(), city="Lalitpur")
        assert clusterer.resolve_coordinates(property) == (27.6667, 85.3167)

    def test_unknown_city_uses_default_coordinates(self):
        config = ClusteringConfig(default_coordinates=(1.0, 2.0))
        clusterer = KMeansClusterer(config=config)
        assert clusterer.get_city_coordinates("Atlantis") == (1.0, 2.0)

    def test_injected_city_coordinates(self):
        config = ClusteringConfig(city_coordinates={"biratnagar": (26.45, 87.27)})
        clusterer = KMeansClusterer(config=config)
        assert clusterer.get_city_coordinates("Biratnagar") == (26.45, 87.27)

    def test_identical_listings_normalize_to_half(self):
        corpus = [listing("Kathmandu", 27.7, 85.3, 10000) for _ in range(10)]
        clusterer = KMeansClusterer(n_clusters=2)

        assert clusterer.fit(corpus)
        np.testing.assert_allclose(clusterer.prepare_feature_vectors(corpus[:1])[0], [0.5, 0.5, 0.5])

    def test_retraining_is_deterministic(self, two_market_corpus):
        first = KMeansClusterer(n_clusters=2)
        second = KMeansClusterer(n_clusters=2)
        first.fit(two_market_corpus)
        second.fit(two_market_corpus)

        assert first.assignments == second.assignments
        np.testing.assert_allclose(first.centroids, second.centroids)

    def test_get_cluster_properties(self, two_market_corpus):
        clusterer = KMeansClusterer(n_clusters=2)
        clusterer.fit(two_market_corpus)

        cluster_id = clusterer.assignments[two_market_corpus[0].id]
        assert two_market_corpus[0].id in clusterer.get_cluster_properties(cluster_id)
        assert clusterer.get_cluster_properties(99) == []
