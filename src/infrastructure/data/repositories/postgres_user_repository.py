import logging
from datetime import datetime, timedelta
from typing import List
from uuid import UUID

from sqlalchemy import select, func, literal_column, union_all

from ....domain.entities.property import Property
from ....domain.entities.user import SearchEvent, PropertyView
from ....domain.repositories.user_repository import UserInteractionRepository
from ..db_utils import BasePostgresRepository, retry_on_db_error, measure_performance
from ..models import ListingModel, SearchHistoryModel, ListingViewModel, FavoriteModel
from .postgres_property_repository import PostgresPropertyRepository

logger = logging.getLogger(__name__)


class PostgresUserInteractionRepository(UserInteractionRepository, BasePostgresRepository):
    """Search, view and favorite history read from the marketplace tables"""

    @retry_on_db_error()
    @measure_performance("get_search_history")
    async def get_search_history(self, user_id: UUID, limit: int = 50) -> List[SearchEvent]:
        stmt = (
            select(SearchHistoryModel)
            .where(SearchHistoryModel.user_id == user_id)
            .order_by(SearchHistoryModel.created_at.desc())
            .limit(limit)
        )
        async with self.database.get_session() as session:
            result = await session.execute(stmt)
            return [
                SearchEvent.from_filters(
                    user_id=row.user_id,
                    filters=row.filters or {},
                    search_query=row.search_query,
                    created_at=row.created_at
                )
                for row in result.scalars().all()
            ]

    @retry_on_db_error()
    @measure_performance("get_property_views")
    async def get_property_views(self, user_id: UUID, limit: int = 100) -> List[PropertyView]:
        stmt = (
            select(ListingViewModel, ListingModel)
            .join(ListingModel, ListingModel.id == ListingViewModel.listing_id)
            .where(ListingViewModel.user_id == user_id)
            .order_by(ListingViewModel.created_at.desc())
            .limit(limit)
        )
        async with self.database.get_session() as session:
            result = await session.execute(stmt)
            return [
                PropertyView(
                    user_id=view.user_id,
                    property_id=view.listing_id,
                    city=listing.city,
                    property_type=listing.type,
                    rent_amount=listing.rent_amount,
                    bedrooms=listing.bedrooms,
                    amenities=list(listing.amenities or []),
                    duration_seconds=view.view_duration_seconds,
                    viewed_at=view.created_at
                )
                for view, listing in result.all()
            ]

    @retry_on_db_error()
    @measure_performance("get_favorites")
    async def get_favorites(self, user_id: UUID) -> List[Property]:
        stmt = (
            select(ListingModel)
            .join(FavoriteModel, FavoriteModel.listing_id == ListingModel.id)
            .where(FavoriteModel.user_id == user_id)
            .order_by(FavoriteModel.created_at.desc())
        )
        async with self.database.get_session() as session:
            result = await session.execute(stmt)
            return [PostgresPropertyRepository._to_entity(row) for row in result.scalars().all()]

    @retry_on_db_error()
    @measure_performance("get_interaction_count")
    async def get_interaction_count(self, user_id: UUID) -> int:
        async with self.database.get_session() as session:
            searches = await session.scalar(
                select(func.count()).select_from(SearchHistoryModel)
                .where(SearchHistoryModel.user_id == user_id)
            )
            views = await session.scalar(
                select(func.count()).select_from(ListingViewModel)
                .where(ListingViewModel.user_id == user_id)
            )
            favorites = await session.scalar(
                select(func.count()).select_from(FavoriteModel)
                .where(FavoriteModel.user_id == user_id)
            )
        return int(searches or 0) + int(views or 0) + int(favorites or 0)

    @retry_on_db_error()
    @measure_performance("get_active_user_ids")
    async def get_active_user_ids(self, min_interactions: int = 3, days: int = 30,
                                  limit: int = 100) -> List[UUID]:
        since = datetime.utcnow() - timedelta(days=days)
        interactions = union_all(
            select(SearchHistoryModel.user_id.label("user_id"), literal_column("1").label("hit"))
            .where(SearchHistoryModel.created_at > since),
            select(ListingViewModel.user_id.label("user_id"), literal_column("1").label("hit"))
            .where(ListingViewModel.created_at > since),
        ).subquery()

        stmt = (
            select(interactions.c.user_id)
            .group_by(interactions.c.user_id)
            .having(func.count() >= min_interactions)
            .order_by(func.count().desc())
            .limit(limit)
        )
        async with self.database.get_session() as session:
            result = await session.execute(stmt)
            user_ids = [row[0] for row in result.all()]

        logger.info(f"Found {len(user_ids)} active users with >= {min_interactions} interactions in {days} days")
        return user_ids
