"""
Property feature extraction for content-based filtering.

Turns a listing into a bag of tokens: stemmed words from the title and
description plus tagged tokens for the structured attributes (city, college,
bedrooms, bathrooms, type, furnishing, amenities and a rent bucket).
"""

import logging
import re
from typing import List, Optional, Any, Protocol

from nltk.stem import PorterStemmer
from nltk.tokenize import RegexpTokenizer

from ....domain.entities.property import Property
from ..config import RentBuckets

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_NUMERIC = re.compile(r"^\d+$")


class Stemmer(Protocol):
    """Anything that reduces an inflected word to its stem"""

    def stem(self, word: str) -> str:
        ...


class PorterStemmerAdapter:
    """Porter stemming backed by NLTK"""

    def __init__(self):
        self._stemmer = PorterStemmer()

    def stem(self, word: str) -> str:
        return self._stemmer.stem(word)


def slugify(value: Any) -> str:
    return _WHITESPACE.sub("_", str(value).strip().lower())


def format_number(value: Any) -> str:
    """Render whole floats without a decimal part so 2 and 2.0 share a token"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return slugify(value)
    if number.is_integer():
        return str(int(number))
    return str(number)


class PropertyFeatureExtractor:
    """Extracts the token bag used by the TF-IDF vectorizer."""

    def __init__(self, stemmer: Optional[Stemmer] = None,
                 rent_buckets: Optional[RentBuckets] = None,
                 min_token_length: int = 3):
        self.stemmer = stemmer or PorterStemmerAdapter()
        self.rent_buckets = rent_buckets or RentBuckets()
        self.min_token_length = min_token_length
        self.tokenizer = RegexpTokenizer(r"\w+")

    def preprocess_text(self, text: Optional[str]) -> List[str]:
        if not text or not isinstance(text, str):
            return []

        tokens = self.tokenizer.tokenize(text.lower())
        return [
            self.stemmer.stem(token)
            for token in tokens
            if len(token) >= self.min_token_length and not _NUMERIC.match(token)
        ]

    def extract_features(self, property: Property) -> List[str]:
        """Token bag for a property; duplicates are kept because they carry term frequency."""
        features: List[str] = []

        features.extend(self.preprocess_text(getattr(property, "title", None)))
        features.extend(self.preprocess_text(getattr(property, "description", None)))

        city = getattr(property, "city", None)
        if city:
            features.append(f"city_{slugify(city)}")

        college = getattr(property, "college_name", None)
        if college:
            features.append(f"college_{slugify(college)}")

        bedrooms = getattr(property, "bedrooms", None)
        if bedrooms:
            features.append(f"bedrooms_{format_number(bedrooms)}")

        bathrooms = getattr(property, "bathrooms", None)
        if bathrooms:
            features.append(f"bathrooms_{format_number(bathrooms)}")

        property_type = getattr(property, "property_type", None)
        if property_type:
            features.append(f"type_{slugify(property_type)}")

        furnished = getattr(property, "furnished", None)
        if furnished:
            features.append(f"furnished_{slugify(furnished)}")

        for amenity in getattr(property, "amenities", None) or []:
            if amenity:
                features.append(f"amenity_{slugify(amenity)}")

        rent = getattr(property, "rent_amount", None)
        bucket = self.rent_bucket(rent)
        if bucket:
            features.append(f"rent_{bucket}")

        return features

    def rent_bucket(self, rent: Any) -> Optional[str]:
        try:
            rent = float(rent)
        except (TypeError, ValueError):
            return None
        if rent <= 0:
            return None
        return self.rent_buckets.bucket_for(rent)
