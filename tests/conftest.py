"""
Global pytest configuration and fixtures for the recommendation core test suite.

Provides deterministic seeds, ML configuration fixtures, in-memory repositories
and listing corpora shared by the unit and integration tests.
"""

import os
import random

import numpy as np
import pytest

# Test environment setup
os.environ["TESTING"] = "1"

from src.infrastructure.ml.config import MLConfig
from src.infrastructure.ml.models.text_features import PropertyFeatureExtractor
from src.infrastructure.ml.serving.model_store import ModelStore
from tests.utils.data_factories import PropertyFactory, InteractionFactory, FactoryConfig, IdentityStemmer
from tests.utils.in_memory_repositories import (
    InMemoryPropertyRepository,
    InMemoryUserInteractionRepository,
    InMemoryModelRepository,
    InMemoryRecommendationRepository,
    InMemoryCacheRepository,
)


# =======================
# Test Configuration
# =======================

def pytest_configure(config):
    """Ensure deterministic behavior for ML tests."""
    np.random.seed(42)
    random.seed(42)


def pytest_collection_modifyitems(config, items):
    """Add markers based on test file location."""
    for item in items:
        path = str(item.fspath)
        if "test_ml" in path or "kmeans" in path or "tfidf" in path:
            item.add_marker(pytest.mark.ml)
        if "repositor" in path or "db_utils" in path:
            item.add_marker(pytest.mark.db)
        if "integration" in path:
            item.add_marker(pytest.mark.integration)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)


# =======================
# ML Fixtures
# =======================

@pytest.fixture
def ml_config():
    return MLConfig()


@pytest.fixture
def feature_extractor():
    return PropertyFeatureExtractor(stemmer=IdentityStemmer())


@pytest.fixture
def model_store():
    return ModelStore()


# =======================
# Data Fixtures
# =======================

@pytest.fixture
def property_factory():
    return PropertyFactory(FactoryConfig(seed=42))


@pytest.fixture
def interaction_factory():
    return InteractionFactory()


@pytest.fixture
def sample_properties(property_factory):
    return property_factory.create_batch(30)


@pytest.fixture
def kathmandu_properties(property_factory):
    return property_factory.create_kathmandu_corpus()


# =======================
# Repository Fixtures
# =======================

@pytest.fixture
def property_repository():
    return InMemoryPropertyRepository()


@pytest.fixture
def user_repository():
    return InMemoryUserInteractionRepository()


@pytest.fixture
def model_repository():
    return InMemoryModelRepository()


@pytest.fixture
def recommendation_repository():
    return InMemoryRecommendationRepository()


@pytest.fixture
def cache_repository():
    return InMemoryCacheRepository()
