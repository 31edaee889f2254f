"""
TF-IDF vectorizer for content-based property recommendations.

The vocabulary is bounded by document frequency: a token must occur in at
least ``min_doc_frequency`` listings and at most ``floor(max_doc_ratio * N)``
of them, and only the ``max_features`` most frequent survivors are kept.
IDF is smoothed as ``ln((N + 1) / (df + 1)) + 1``.
"""

import hashlib
import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import List, Dict, Optional, Sequence, Any, Iterable

import numpy as np

from ....domain.entities.property import Property
from ....domain.exceptions import DimensionMismatchError
from ..config import TfidfConfig
from .text_features import PropertyFeatureExtractor

logger = logging.getLogger(__name__)


@dataclass
class PropertyVector:
    property_id: Any
    vector: np.ndarray


@dataclass
class SimilarityResult:
    property_id: Any
    similarity: float


class TfidfVectorizer:
    """Fits a bounded vocabulary over listings and maps listings to unit-length TF-IDF vectors."""

    def __init__(self, config: Optional[TfidfConfig] = None,
                 feature_extractor: Optional[PropertyFeatureExtractor] = None):
        self.config = config or TfidfConfig()
        self.feature_extractor = feature_extractor or PropertyFeatureExtractor(
            rent_buckets=self.config.rent_buckets
        )
        self.vocabulary: Dict[str, int] = {}
        self.idf: np.ndarray = np.zeros(0)
        self.document_frequencies: Dict[str, int] = {}
        self.document_count = 0
        self.is_fitted = False
        self._version: Optional[str] = None

    @property
    def vocabulary_size(self) -> int:
        return len(self.vocabulary)

    @property
    def version(self) -> str:
        """Content hash of the ordered vocabulary and IDF table"""
        if self._version is None:
            digest = hashlib.sha1()
            for term, index in sorted(self.vocabulary.items(), key=lambda kv: kv[1]):
                digest.update(f"{term}:{self.idf[index]:.12f};".encode("utf-8"))
            self._version = digest.hexdigest()[:16]
        return self._version

    def fit(self, properties: Iterable[Property]) -> "TfidfVectorizer":
        properties = list(properties)
        logger.info(f"Fitting TF-IDF vectorizer on {len(properties)} properties")

        self.document_count = len(properties)
        document_frequencies: Counter = Counter()
        first_seen: Dict[str, int] = {}

        for property in properties:
            features = self.feature_extractor.extract_features(property)
            for term in features:
                if term not in first_seen:
                    first_seen[term] = len(first_seen)
            document_frequencies.update(set(features))

        min_docs = self.config.min_doc_frequency
        max_docs = math.floor(self.document_count * self.config.max_doc_ratio)

        retained = [
            (term, df) for term, df in document_frequencies.items()
            if min_docs <= df <= max_docs
        ]
        # df descending; first appearance in the corpus breaks ties
        retained.sort(key=lambda item: (-item[1], first_seen[item[0]]))
        retained = retained[:self.config.max_features]

        self.vocabulary = {term: index for index, (term, _) in enumerate(retained)}
        self.document_frequencies = {term: df for term, df in retained}
        self.idf = np.array(
            [math.log((self.document_count + 1) / (df + 1)) + 1 for _, df in retained],
            dtype=np.float64
        )
        self.is_fitted = True
        self._version = None

        if not self.vocabulary:
            logger.warning("TF-IDF vocabulary is empty; the corpus is too small or too uniform")
        else:
            logger.info(f"TF-IDF vocabulary built with {self.vocabulary_size} terms")
        return self

    def transform(self, property: Property) -> np.ndarray:
        vector = np.zeros(self.vocabulary_size, dtype=np.float64)
        if not self.vocabulary:
            return vector

        features = self.feature_extractor.extract_features(property)
        if not features:
            return vector

        total_terms = len(features)
        for term, count in Counter(features).items():
            index = self.vocabulary.get(term)
            if index is None:
                continue
            vector[index] = (count / total_terms) * self.idf[index]

        return l2_normalize(vector)

    def transform_many(self, properties: Sequence[Property]) -> np.ndarray:
        if not properties:
            return np.zeros((0, self.vocabulary_size), dtype=np.float64)
        return np.vstack([self.transform(p) for p in properties])

    @staticmethod
    def cosine_similarity(vector_a: np.ndarray, vector_b: np.ndarray) -> float:
        vector_a = np.asarray(vector_a, dtype=np.float64)
        vector_b = np.asarray(vector_b, dtype=np.float64)
        if vector_a.shape != vector_b.shape:
            raise DimensionMismatchError(vector_a.size, vector_b.size)

        norm_a = np.linalg.norm(vector_a)
        norm_b = np.linalg.norm(vector_b)
        if norm_a == 0 or norm_b == 0:
            return 0.0

        similarity = float(np.dot(vector_a, vector_b) / (norm_a * norm_b))
        return max(-1.0, min(1.0, similarity))

    def find_similar(self, user_vector: np.ndarray, property_vectors: Sequence[PropertyVector],
                     top_n: int = 20) -> List[SimilarityResult]:
        """Rank candidates by cosine similarity, highest first; ties keep candidate order."""
        similarities = [
            SimilarityResult(
                property_id=item.property_id,
                similarity=self.cosine_similarity(user_vector, item.vector)
            )
            for item in property_vectors
        ]
        similarities.sort(key=lambda result: result.similarity, reverse=True)
        return similarities[:max(0, top_n)]


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    magnitude = np.linalg.norm(vector)
    if magnitude > 0:
        return vector / magnitude
    return vector
