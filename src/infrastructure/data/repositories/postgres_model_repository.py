import logging
from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID

import numpy as np
from sqlalchemy import select, delete
from sqlalchemy.dialects.postgresql import insert

from ....domain.entities.cluster import GeoCluster
from ....domain.entities.user import UserPreferenceProfile
from ....domain.repositories.model_repository import ModelRepository
from ..db_utils import BasePostgresRepository, retry_on_db_error, measure_performance
from ..models import PropertyFeatureVectorModel, GeoClusterModel, UserMLPreferenceModel

logger = logging.getLogger(__name__)


class PostgresModelRepository(ModelRepository, BasePostgresRepository):
    """Persists listing vectors, geo clusters and user preference profiles"""

    @retry_on_db_error()
    @measure_performance("upsert_property_vector")
    async def upsert_property_vector(self, property_id: UUID, vector: np.ndarray,
                                     scalar_features: Dict[str, Any]) -> bool:
        values = {
            "listing_id": property_id,
            "tfidf_vector": np.asarray(vector, dtype=float).tolist(),
            "vocabulary_version": scalar_features.get("vocabulary_version"),
            "normalized_rent": scalar_features.get("normalized_rent"),
            "normalized_bedrooms": scalar_features.get("normalized_bedrooms"),
            "normalized_bathrooms": scalar_features.get("normalized_bathrooms"),
            "latitude": scalar_features.get("latitude"),
            "longitude": scalar_features.get("longitude"),
            "geo_cluster_id": scalar_features.get("geo_cluster_id"),
            "last_computed": datetime.utcnow(),
        }
        stmt = insert(PropertyFeatureVectorModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[PropertyFeatureVectorModel.listing_id],
            set_={key: stmt.excluded[key] for key in values if key != "listing_id"}
        )
        async with self.database.get_transaction() as session:
            await session.execute(stmt)
        return True

    @retry_on_db_error()
    @measure_performance("upsert_cluster")
    async def upsert_cluster(self, cluster: GeoCluster) -> bool:
        values = {
            "cluster_id": cluster.cluster_id,
            "centroid": list(cluster.centroid),
            "centroid_latitude": cluster.centroid_latitude,
            "centroid_longitude": cluster.centroid_longitude,
            "centroid_rent": cluster.centroid_rent,
            "property_count": cluster.property_count,
            "avg_rent": cluster.avg_rent,
            "min_rent": cluster.min_rent,
            "max_rent": cluster.max_rent,
            "primary_city": cluster.primary_city,
            "property_ids": [str(pid) for pid in cluster.property_ids],
            "last_computed": datetime.utcnow(),
        }
        stmt = insert(GeoClusterModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[GeoClusterModel.cluster_id],
            set_={key: stmt.excluded[key] for key in values if key != "cluster_id"}
        )
        async with self.database.get_transaction() as session:
            await session.execute(stmt)
        return True

    @retry_on_db_error()
    @measure_performance("prune_clusters")
    async def prune_clusters(self, keep_ids: List[int]) -> int:
        stmt = delete(GeoClusterModel).where(GeoClusterModel.cluster_id.not_in(keep_ids))
        async with self.database.get_transaction() as session:
            result = await session.execute(stmt)
            deleted = result.rowcount or 0

        if deleted:
            logger.info(f"Deleted {deleted} stale geo clusters")
        return deleted

    @retry_on_db_error()
    @measure_performance("upsert_user_profile")
    async def upsert_user_profile(self, profile: UserPreferenceProfile) -> bool:
        values = {
            "user_id": profile.user_id,
            "city_counts": profile.city_counts,
            "type_counts": profile.type_counts,
            "amenity_counts": profile.amenity_counts,
            "preferred_cities": profile.preferred_cities,
            "preferred_property_types": profile.preferred_property_types,
            "preferred_amenities": profile.preferred_amenities,
            "preferred_min_rent": profile.min_rent,
            "preferred_max_rent": profile.max_rent,
            "average_rent": profile.average_rent,
            "preferred_bedrooms": profile.preferred_bedrooms,
            "tfidf_vector": profile.vector.tolist() if profile.vector is not None else None,
            "vector_version": profile.vector_version,
            "total_searches": profile.total_searches,
            "total_views": profile.total_views,
            "total_favorites": profile.total_favorites,
            "updated_at": datetime.utcnow(),
        }
        stmt = insert(UserMLPreferenceModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserMLPreferenceModel.user_id],
            set_={key: stmt.excluded[key] for key in values if key != "user_id"}
        )
        async with self.database.get_transaction() as session:
            await session.execute(stmt)

        logger.debug(f"Saved preference profile for user {profile.user_id}")
        return True

    @retry_on_db_error()
    @measure_performance("get_user_profile")
    async def get_user_profile(self, user_id: UUID) -> Optional[UserPreferenceProfile]:
        async with self.database.get_session() as session:
            result = await session.execute(
                select(UserMLPreferenceModel).where(UserMLPreferenceModel.user_id == user_id)
            )
            row = result.scalar_one_or_none()

        if row is None:
            return None

        return UserPreferenceProfile(
            user_id=row.user_id,
            city_counts=row.city_counts or {},
            type_counts=row.type_counts or {},
            amenity_counts=row.amenity_counts or {},
            min_rent=row.preferred_min_rent,
            max_rent=row.preferred_max_rent,
            average_rent=row.average_rent,
            preferred_bedrooms=row.preferred_bedrooms,
            total_searches=row.total_searches or 0,
            total_views=row.total_views or 0,
            total_favorites=row.total_favorites or 0,
            vector=np.asarray(row.tfidf_vector, dtype=np.float64) if row.tfidf_vector is not None else None,
            vector_version=row.vector_version,
            updated_at=row.updated_at
        )
