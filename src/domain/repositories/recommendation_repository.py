from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from ..entities.recommendation import Recommendation, RecommendationType


class RecommendationRepository(ABC):

    @abstractmethod
    async def upsert(self, recommendation: Recommendation) -> Recommendation:
        """Insert or refresh the row keyed by (user, property, type)."""
        pass

    @abstractmethod
    async def get_for_user(self, user_id: UUID, limit: int = 10,
                           recommendation_type: Optional[RecommendationType] = None) -> List[Recommendation]:
        pass

    @abstractmethod
    async def get_by_id(self, recommendation_id: UUID) -> Optional[Recommendation]:
        pass

    @abstractmethod
    async def mark_clicked(self, recommendation_id: UUID) -> bool:
        pass

    @abstractmethod
    async def dismiss(self, recommendation_id: UUID) -> bool:
        pass

    @abstractmethod
    async def delete_older_than(self, days: int) -> int:
        pass
