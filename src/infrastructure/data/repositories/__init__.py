# Repository implementations
from .postgres_user_repository import PostgresUserInteractionRepository
from .postgres_property_repository import PostgresPropertyRepository
from .postgres_model_repository import PostgresModelRepository
from .postgres_recommendation_repository import PostgresRecommendationRepository
from .redis_cache_repository import RedisCacheRepository

__all__ = [
    'PostgresUserInteractionRepository',
    'PostgresPropertyRepository',
    'PostgresModelRepository',
    'PostgresRecommendationRepository',
    'RedisCacheRepository'
]
