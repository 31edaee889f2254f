from abc import ABC, abstractmethod
from typing import List, Dict, Tuple
from uuid import UUID

from ..entities.property import Property


class PropertyRepository(ABC):

    @abstractmethod
    async def get_all_active(self) -> List[Property]:
        pass

    @abstractmethod
    async def get_by_ids(self, property_ids: List[UUID], active_only: bool = True) -> List[Property]:
        pass

    @abstractmethod
    async def get_trending(self, limit: int = 5) -> List[Tuple[Property, float]]:
        """Active properties with their trend score, highest first."""
        pass

    @abstractmethod
    async def refresh_trending(self, days: int = 7) -> int:
        """Recompute trend scores from the last ``days`` of views, favorites and
        inquiries. Returns the number of listings scored."""
        pass
