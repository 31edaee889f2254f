import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update, delete
from sqlalchemy.dialects.postgresql import insert

from ....domain.entities.recommendation import Recommendation, RecommendationType
from ....domain.repositories.recommendation_repository import RecommendationRepository
from ..db_utils import BasePostgresRepository, retry_on_db_error, measure_performance
from ..models import MLRecommendationModel

logger = logging.getLogger(__name__)


class PostgresRecommendationRepository(RecommendationRepository, BasePostgresRepository):
    """Stores generated recommendations, one row per (user, listing, type)"""

    @retry_on_db_error()
    @measure_performance("upsert_recommendation")
    async def upsert(self, recommendation: Recommendation) -> Recommendation:
        values = {
            "id": recommendation.id,
            "user_id": recommendation.user_id,
            "listing_id": recommendation.property_id,
            "recommendation_type": recommendation.recommendation_type.value,
            "confidence_score": recommendation.confidence_score,
            "similarity_score": recommendation.similarity_score,
            "matching_features": recommendation.matching_features,
            "explanation": recommendation.explanation,
            "is_clicked": recommendation.is_clicked,
            "is_dismissed": recommendation.is_dismissed,
            "created_at": recommendation.created_at,
        }
        stmt = insert(MLRecommendationModel).values(**values)
        # A regenerated row keeps its id and click/dismiss state
        stmt = stmt.on_conflict_do_update(
            constraint="uq_ml_rec_user_listing_type",
            set_={
                "confidence_score": stmt.excluded.confidence_score,
                "similarity_score": stmt.excluded.similarity_score,
                "matching_features": stmt.excluded.matching_features,
                "explanation": stmt.excluded.explanation,
                "created_at": stmt.excluded.created_at,
            }
        ).returning(MLRecommendationModel)

        async with self.database.get_transaction() as session:
            result = await session.execute(stmt)
            row = result.scalar_one()
            return self._to_entity(row)

    @retry_on_db_error()
    @measure_performance("get_recommendations_for_user")
    async def get_for_user(self, user_id: UUID, limit: int = 10,
                           recommendation_type: Optional[RecommendationType] = None) -> List[Recommendation]:
        stmt = (
            select(MLRecommendationModel)
            .where(MLRecommendationModel.user_id == user_id)
            .where(MLRecommendationModel.is_dismissed.is_(False))
        )
        if recommendation_type is not None:
            stmt = stmt.where(MLRecommendationModel.recommendation_type == recommendation_type.value)
        stmt = stmt.order_by(
            MLRecommendationModel.confidence_score.desc(),
            MLRecommendationModel.created_at.desc()
        ).limit(limit)

        async with self.database.get_session() as session:
            result = await session.execute(stmt)
            return [self._to_entity(row) for row in result.scalars().all()]

    @retry_on_db_error()
    @measure_performance("get_recommendation_by_id")
    async def get_by_id(self, recommendation_id: UUID) -> Optional[Recommendation]:
        async with self.database.get_session() as session:
            row = await session.get(MLRecommendationModel, recommendation_id)
            return self._to_entity(row) if row is not None else None

    @retry_on_db_error()
    @measure_performance("mark_recommendation_clicked")
    async def mark_clicked(self, recommendation_id: UUID) -> bool:
        stmt = (
            update(MLRecommendationModel)
            .where(MLRecommendationModel.id == recommendation_id)
            .values(is_clicked=True, clicked_at=datetime.utcnow())
        )
        async with self.database.get_transaction() as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    @retry_on_db_error()
    @measure_performance("dismiss_recommendation")
    async def dismiss(self, recommendation_id: UUID) -> bool:
        stmt = (
            update(MLRecommendationModel)
            .where(MLRecommendationModel.id == recommendation_id)
            .values(is_dismissed=True)
        )
        async with self.database.get_transaction() as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    @retry_on_db_error()
    @measure_performance("delete_old_recommendations")
    async def delete_older_than(self, days: int) -> int:
        cutoff = datetime.utcnow() - timedelta(days=days)
        stmt = delete(MLRecommendationModel).where(MLRecommendationModel.created_at < cutoff)
        async with self.database.get_transaction() as session:
            result = await session.execute(stmt)
            deleted = result.rowcount or 0

        logger.info(f"Deleted {deleted} recommendations older than {days} days")
        return deleted

    @staticmethod
    def _to_entity(row: MLRecommendationModel) -> Recommendation:
        return Recommendation(
            id=row.id,
            user_id=row.user_id,
            property_id=row.listing_id,
            recommendation_type=RecommendationType(row.recommendation_type),
            confidence_score=row.confidence_score,
            similarity_score=row.similarity_score if row.similarity_score is not None else row.confidence_score,
            matching_features=row.matching_features or {},
            explanation=row.explanation or "",
            created_at=row.created_at,
            is_clicked=bool(row.is_clicked),
            clicked_at=row.clicked_at,
            is_dismissed=bool(row.is_dismissed)
        )
