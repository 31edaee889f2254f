# Data infrastructure layer
from .config import DataConfig, DatabaseConfig, RedisConfig
from .db_utils import AsyncDatabase
from .repository_factory import RepositoryFactory, RepositoryManager
from .repositories import (
    PostgresUserInteractionRepository,
    PostgresPropertyRepository,
    PostgresModelRepository,
    PostgresRecommendationRepository,
    RedisCacheRepository
)

__all__ = [
    # Configuration
    'DataConfig',
    'DatabaseConfig',
    'RedisConfig',
    'AsyncDatabase',

    # Factory and management
    'RepositoryFactory',
    'RepositoryManager',

    # Repository implementations
    'PostgresUserInteractionRepository',
    'PostgresPropertyRepository',
    'PostgresModelRepository',
    'PostgresRecommendationRepository',
    'RedisCacheRepository'
]
