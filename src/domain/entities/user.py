import json
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any
from datetime import datetime
from uuid import UUID

import numpy as np

from .property import as_float, as_int, as_list


@dataclass
class SearchEvent:
    """A search the user ran, reduced to the filters that carry preference signal."""
    user_id: UUID
    city: Optional[str] = None
    property_type: Optional[str] = None
    amenities: List[str] = field(default_factory=list)
    min_rent: Optional[float] = None
    max_rent: Optional[float] = None
    bedrooms: Optional[int] = None
    search_query: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_filters(cls, user_id: UUID, filters: Dict[str, Any],
                     search_query: str = None, created_at: datetime = None) -> "SearchEvent":
        """Read a stored search filter mapping.

        Filters are recorded from request query strings, so numbers may arrive
        as text and amenities as a comma-separated string. Older rows hold the
        whole mapping as JSON text.
        """
        if isinstance(filters, str):
            try:
                filters = json.loads(filters)
            except ValueError:
                filters = None
        if not isinstance(filters, dict):
            filters = {}
        return cls(
            user_id=user_id,
            city=filters.get("city"),
            property_type=filters.get("property_type", filters.get("type")),
            amenities=as_list(filters.get("amenities")),
            min_rent=as_float(filters.get("min_rent", filters.get("minRent"))),
            max_rent=as_float(filters.get("max_rent", filters.get("maxRent"))),
            bedrooms=as_int(filters.get("bedrooms")),
            search_query=search_query,
            created_at=created_at
        )


@dataclass
class PropertyView:
    """A listing the user opened, joined with the listing attributes at view time."""
    user_id: UUID
    property_id: UUID
    city: Optional[str] = None
    property_type: Optional[str] = None
    rent_amount: Optional[float] = None
    bedrooms: Optional[int] = None
    amenities: List[str] = field(default_factory=list)
    duration_seconds: Optional[int] = None
    viewed_at: Optional[datetime] = None


@dataclass
class ColdStartPreferences:
    """Stated or derived location/budget preferences used to place a user in a geo cluster."""
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    min_rent: Optional[float] = None
    max_rent: Optional[float] = None
    preferred_rent: Optional[float] = None

    def is_empty(self) -> bool:
        return not any([
            self.city, self.latitude, self.longitude,
            self.min_rent, self.max_rent, self.preferred_rent
        ])


@dataclass
class UserPreferenceProfile:
    user_id: UUID
    city_counts: Dict[str, float] = field(default_factory=dict)
    type_counts: Dict[str, float] = field(default_factory=dict)
    amenity_counts: Dict[str, float] = field(default_factory=dict)
    min_rent: Optional[float] = None
    max_rent: Optional[float] = None
    average_rent: Optional[float] = None
    preferred_bedrooms: Optional[int] = None
    total_searches: int = 0
    total_views: int = 0
    total_favorites: int = 0
    vector: Optional[np.ndarray] = None
    vector_version: Optional[str] = None
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def preferred_cities(self) -> List[str]:
        return _ranked(self.city_counts)

    @property
    def preferred_property_types(self) -> List[str]:
        return _ranked(self.type_counts)

    @property
    def preferred_amenities(self) -> List[str]:
        return _ranked(self.amenity_counts)

    @property
    def total_interactions(self) -> int:
        return self.total_searches + self.total_views + self.total_favorites

    def to_cold_start_preferences(self) -> ColdStartPreferences:
        cities = self.preferred_cities
        return ColdStartPreferences(
            city=cities[0] if cities else None,
            min_rent=self.min_rent,
            max_rent=self.max_rent,
            preferred_rent=self.average_rent
        )


def _ranked(counts: Dict[str, float]) -> List[str]:
    # sorted() is stable, so equal counts keep first-seen order
    return [key for key, _ in sorted(counts.items(), key=lambda kv: kv[1], reverse=True)]
