import logging
from datetime import datetime, timedelta
from typing import List, Tuple
from uuid import UUID

from sqlalchemy import select, delete, func, distinct, literal, and_, DateTime
from sqlalchemy.dialects.postgresql import insert

from ....domain.entities.property import (
    Property, TREND_VIEW_WEIGHT, TREND_FAVORITE_WEIGHT, TREND_INQUIRY_WEIGHT, TREND_SCALE
)
from ....domain.repositories.property_repository import PropertyRepository
from ..db_utils import BasePostgresRepository, retry_on_db_error, measure_performance
from ..models import (
    ListingModel, TrendingListingModel, ListingViewModel, FavoriteModel, MessageModel
)

logger = logging.getLogger(__name__)


class PostgresPropertyRepository(PropertyRepository, BasePostgresRepository):
    """Marketplace listings (read-only) and their trend scores"""

    @retry_on_db_error()
    @measure_performance("get_all_active")
    async def get_all_active(self) -> List[Property]:
        async with self.database.get_session() as session:
            result = await session.execute(
                select(ListingModel)
                .where(ListingModel.status == "active")
                .order_by(ListingModel.created_at.desc())
            )
            properties = [self._to_entity(row) for row in result.scalars().all()]

        logger.debug(f"Loaded {len(properties)} active properties")
        return properties

    @retry_on_db_error()
    @measure_performance("get_by_ids")
    async def get_by_ids(self, property_ids: List[UUID], active_only: bool = True) -> List[Property]:
        if not property_ids:
            return []

        stmt = select(ListingModel).where(ListingModel.id.in_(property_ids))
        if active_only:
            stmt = stmt.where(ListingModel.status == "active")
        stmt = stmt.order_by(ListingModel.created_at.desc())

        async with self.database.get_session() as session:
            result = await session.execute(stmt)
            return [self._to_entity(row) for row in result.scalars().all()]

    @retry_on_db_error()
    @measure_performance("get_trending")
    async def get_trending(self, limit: int = 5) -> List[Tuple[Property, float]]:
        stmt = (
            select(ListingModel, TrendingListingModel.trend_score)
            .join(TrendingListingModel, TrendingListingModel.listing_id == ListingModel.id)
            .where(ListingModel.status == "active")
            .order_by(TrendingListingModel.trend_score.desc())
            .limit(limit)
        )
        async with self.database.get_session() as session:
            result = await session.execute(stmt)
            return [(self._to_entity(row), float(score or 0)) for row, score in result.all()]

    @retry_on_db_error()
    @measure_performance("refresh_trending")
    async def refresh_trending(self, days: int = 7) -> int:
        refreshed_at = datetime.utcnow()
        since = refreshed_at - timedelta(days=days)

        views = func.count(distinct(ListingViewModel.id))
        favorites = func.count(distinct(FavoriteModel.id))
        inquiries = func.count(distinct(MessageModel.id))
        score = (
            views * TREND_VIEW_WEIGHT
            + favorites * TREND_FAVORITE_WEIGHT
            + inquiries * TREND_INQUIRY_WEIGHT
        ) / TREND_SCALE

        activity = (
            select(
                func.gen_random_uuid(),
                ListingViewModel.listing_id,
                score,
                views,
                favorites,
                inquiries,
                literal(refreshed_at, DateTime),
            )
            .select_from(ListingViewModel)
            .outerjoin(FavoriteModel, and_(
                FavoriteModel.listing_id == ListingViewModel.listing_id,
                FavoriteModel.created_at >= since
            ))
            .outerjoin(MessageModel, and_(
                MessageModel.listing_id == ListingViewModel.listing_id,
                MessageModel.created_at >= since
            ))
            .where(ListingViewModel.created_at >= since)
            .group_by(ListingViewModel.listing_id)
        )

        columns = [
            "id", "listing_id", "trend_score", "views_last_7_days",
            "favorites_last_7_days", "inquiries_last_7_days", "updated_at",
        ]
        stmt = insert(TrendingListingModel).from_select(columns, activity)
        stmt = stmt.on_conflict_do_update(
            index_elements=[TrendingListingModel.listing_id],
            set_={key: stmt.excluded[key] for key in columns[2:]}
        )

        async with self.database.get_transaction() as session:
            result = await session.execute(stmt)
            scored = result.rowcount or 0
            # Listings with no activity in the window drop out of the trending set
            await session.execute(
                delete(TrendingListingModel).where(TrendingListingModel.updated_at < refreshed_at)
            )

        logger.info(f"Refreshed trend scores for {scored} listings over the last {days} days")
        return scored

    @staticmethod
    def _to_entity(row: ListingModel) -> Property:
        return Property.from_record({
            column.name: getattr(row, column.name) for column in ListingModel.__table__.columns
        })
