from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List
from uuid import UUID
import numpy as np

from ..entities.cluster import GeoCluster
from ..entities.user import UserPreferenceProfile


class ModelRepository(ABC):

    @abstractmethod
    async def upsert_property_vector(self, property_id: UUID, vector: np.ndarray,
                                     scalar_features: Dict[str, Any]) -> bool:
        pass

    @abstractmethod
    async def upsert_cluster(self, cluster: GeoCluster) -> bool:
        pass

    @abstractmethod
    async def prune_clusters(self, keep_ids: List[int]) -> int:
        """Delete stored clusters whose id is not in keep_ids; returns the number deleted."""
        pass

    @abstractmethod
    async def upsert_user_profile(self, profile: UserPreferenceProfile) -> bool:
        pass

    @abstractmethod
    async def get_user_profile(self, user_id: UUID) -> Optional[UserPreferenceProfile]:
        pass
