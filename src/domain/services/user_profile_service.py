"""
User preference profiles built from search, view and favorite history.

The profile is rendered as a pseudo-listing and vectorized with the
published TF-IDF vocabulary, so profile and listing vectors are comparable.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Iterable
from uuid import UUID

from ..entities.property import Property
from ..entities.user import UserPreferenceProfile, SearchEvent, PropertyView
from ..exceptions import PersistenceError
from ..repositories.user_repository import UserInteractionRepository
from ..repositories.model_repository import ModelRepository
from ...infrastructure.ml.config import RecommendationConfig
from ...infrastructure.ml.training.ml_trainer import ModelSnapshot

logger = logging.getLogger(__name__)


class _Accumulator:
    """Weighted frequency tables and running sums over a user's interactions"""

    def __init__(self):
        self.cities: Dict[str, float] = {}
        self.types: Dict[str, float] = {}
        self.amenities: Dict[str, float] = {}
        self.rent_sum = 0.0
        self.rent_count = 0
        self.bedrooms_sum = 0.0
        self.bedrooms_count = 0
        self.min_rent: Optional[float] = None
        self.max_rent: Optional[float] = None

    @staticmethod
    def _bump(table: Dict[str, float], key: Optional[str], weight: float):
        if key:
            table[key] = table.get(key, 0) + weight

    def add_listing_signal(self, city: Optional[str], property_type: Optional[str],
                           amenities: Iterable[str], weight: float):
        self._bump(self.cities, city, weight)
        self._bump(self.types, property_type, weight)
        for amenity in amenities or []:
            self._bump(self.amenities, amenity, weight)

    def add_rent(self, rent: Optional[float]):
        if rent:
            self.rent_sum += float(rent)
            self.rent_count += 1

    def add_bedrooms(self, bedrooms: Optional[int]):
        if bedrooms:
            self.bedrooms_sum += float(bedrooms)
            self.bedrooms_count += 1

    def add_requested_range(self, min_rent: Optional[float], max_rent: Optional[float]):
        if min_rent:
            self.min_rent = float(min_rent) if self.min_rent is None else min(self.min_rent, float(min_rent))
        if max_rent:
            self.max_rent = float(max_rent) if self.max_rent is None else max(self.max_rent, float(max_rent))

    @property
    def average_rent(self) -> Optional[float]:
        if self.rent_count:
            return self.rent_sum / self.rent_count
        return None

    @property
    def average_bedrooms(self) -> Optional[int]:
        if self.bedrooms_count:
            return int(round(self.bedrooms_sum / self.bedrooms_count))
        return None


class UserProfileService:
    """Builds a user's preference profile and its TF-IDF vector from interaction history.

    Searches count once per city/type/amenity, opened listings and favorites
    count twice. The profile is rendered as a pseudo-listing so it can be
    vectorized with the same vocabulary as real listings.
    """

    def __init__(self, user_repository: UserInteractionRepository,
                 model_repository: ModelRepository,
                 config: Optional[RecommendationConfig] = None):
        self.user_repository = user_repository
        self.model_repository = model_repository
        self.config = config or RecommendationConfig()

    async def build_profile(self, user_id: UUID, snapshot: Optional[ModelSnapshot]) -> Optional[UserPreferenceProfile]:
        """Aggregate history into a profile, vectorize it with the snapshot and persist it.

        Returns None when the user has no searches, views or favorites.
        """
        searches = await self.user_repository.get_search_history(user_id, self.config.search_history_limit)
        views = await self.user_repository.get_property_views(user_id, self.config.view_history_limit)
        favorites = await self.user_repository.get_favorites(user_id)

        if not searches and not views and not favorites:
            logger.info(f"No interaction history for user {user_id}")
            return None

        profile = self.aggregate(user_id, searches, views, favorites)

        if snapshot is not None:
            pseudo_property = self.to_pseudo_property(profile)
            profile.vector = snapshot.vectorizer.transform(pseudo_property)
            profile.vector_version = snapshot.vocabulary_version

        try:
            await self.model_repository.upsert_user_profile(profile)
        except PersistenceError as e:
            logger.error(f"Failed to save preference profile for user {user_id}: {e}")

        return profile

    def aggregate(self, user_id: UUID, searches: List[SearchEvent], views: List[PropertyView],
                  favorites: List[Property]) -> UserPreferenceProfile:
        acc = _Accumulator()

        for search in searches:
            acc.add_listing_signal(search.city, search.property_type, search.amenities,
                                   self.config.search_weight)
            acc.add_requested_range(search.min_rent, search.max_rent)
            acc.add_bedrooms(search.bedrooms)

        for view in views:
            acc.add_listing_signal(view.city, view.property_type, view.amenities,
                                   self.config.view_weight)
            acc.add_rent(view.rent_amount)
            acc.add_bedrooms(view.bedrooms)

        for favorite in favorites:
            acc.add_listing_signal(favorite.city, favorite.property_type, favorite.amenities,
                                   self.config.favorite_weight)
            acc.add_rent(favorite.rent_amount)
            acc.add_bedrooms(favorite.bedrooms)

        return UserPreferenceProfile(
            user_id=user_id,
            city_counts=acc.cities,
            type_counts=acc.types,
            amenity_counts=acc.amenities,
            min_rent=acc.min_rent,
            max_rent=acc.max_rent,
            average_rent=acc.average_rent,
            preferred_bedrooms=acc.average_bedrooms,
            total_searches=len(searches),
            total_views=len(views),
            total_favorites=len(favorites),
            updated_at=datetime.utcnow()
        )

    def to_pseudo_property(self, profile: UserPreferenceProfile) -> Property:
        """Render the dominant preferences as a listing for vectorization"""
        cities = profile.preferred_cities
        types = profile.preferred_property_types

        rent = profile.average_rent
        if rent is None and (profile.min_rent or profile.max_rent):
            rent = ((profile.min_rent or 0) + (profile.max_rent or 0)) / 2

        return Property(
            id=profile.user_id,
            title="User Preference Profile",
            description=f"User prefers properties in {', '.join(cities)}" if cities else None,
            city=cities[0] if cities else None,
            property_type=types[0] if types else None,
            rent_amount=rent,
            bedrooms=profile.preferred_bedrooms,
            amenities=profile.preferred_amenities[:self.config.profile_top_amenities]
        )
