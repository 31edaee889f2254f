from abc import ABC, abstractmethod
from typing import List
from uuid import UUID

from ..entities.property import Property
from ..entities.user import SearchEvent, PropertyView


class UserInteractionRepository(ABC):
    """Read access to search, view and favorite history, most recent first."""

    @abstractmethod
    async def get_search_history(self, user_id: UUID, limit: int = 50) -> List[SearchEvent]:
        pass

    @abstractmethod
    async def get_property_views(self, user_id: UUID, limit: int = 100) -> List[PropertyView]:
        pass

    @abstractmethod
    async def get_favorites(self, user_id: UUID) -> List[Property]:
        pass

    @abstractmethod
    async def get_interaction_count(self, user_id: UUID) -> int:
        pass

    @abstractmethod
    async def get_active_user_ids(self, min_interactions: int = 3, days: int = 30,
                                  limit: int = 100) -> List[UUID]:
        pass
