import logging
from typing import Optional

from redis.exceptions import RedisError

from .config import DataConfig, RedisManager
from .db_utils import AsyncDatabase
from .repositories.postgres_user_repository import PostgresUserInteractionRepository
from .repositories.postgres_property_repository import PostgresPropertyRepository
from .repositories.postgres_model_repository import PostgresModelRepository
from .repositories.postgres_recommendation_repository import PostgresRecommendationRepository
from .repositories.redis_cache_repository import RedisCacheRepository

logger = logging.getLogger(__name__)


class RepositoryFactory:
    """Factory for creating and managing repository instances"""

    def __init__(self, config: Optional[DataConfig] = None):
        self.config = config or DataConfig()
        self.database: Optional[AsyncDatabase] = None
        self.redis_manager: Optional[RedisManager] = None

        # Repository instances
        self._user_repository: Optional[PostgresUserInteractionRepository] = None
        self._property_repository: Optional[PostgresPropertyRepository] = None
        self._model_repository: Optional[PostgresModelRepository] = None
        self._recommendation_repository: Optional[PostgresRecommendationRepository] = None
        self._cache_repository: Optional[RedisCacheRepository] = None

        self._initialized = False

    async def initialize(self):
        """Initialize all data connections and repositories"""
        if self._initialized:
            logger.warning("Repository factory already initialized")
            return

        db_config = self.config.database
        self.database = AsyncDatabase(
            db_config.url,
            pool_size=db_config.pool_size,
            max_overflow=db_config.max_overflow,
            pool_timeout=db_config.pool_timeout,
            pool_recycle=db_config.pool_recycle
        )
        if db_config.create_tables:
            await self.database.create_tables()

        self._user_repository = PostgresUserInteractionRepository(self.database)
        self._property_repository = PostgresPropertyRepository(self.database)
        self._model_repository = PostgresModelRepository(self.database)
        self._recommendation_repository = PostgresRecommendationRepository(self.database)

        if self.config.redis.enabled:
            await self._create_cache_repository()
        else:
            logger.info("Redis cache disabled; recommendations are served from the database")

        self._initialized = True
        logger.info("Repository factory initialized successfully")

    async def _create_cache_repository(self):
        # A missing cache degrades to database reads instead of failing startup
        manager = RedisManager(self.config.redis)
        try:
            client = await manager.initialize()
        except (RedisError, OSError) as e:
            logger.warning(f"Continuing without Redis cache: {e}")
            return

        self.redis_manager = manager
        self._cache_repository = RedisCacheRepository(
            client,
            default_ttl=self.config.redis.recommendation_ttl
        )

    async def close(self):
        """Close all connections and cleanup"""
        if self.redis_manager:
            await self.redis_manager.close()
        if self.database:
            await self.database.close()

        self._initialized = False
        logger.info("Repository factory closed successfully")

    def _require(self, repository, name: str):
        if not self._initialized or repository is None:
            raise RuntimeError(f"Repository factory not initialized or {name} repository not available")
        return repository

    def get_user_repository(self) -> PostgresUserInteractionRepository:
        return self._require(self._user_repository, "user")

    def get_property_repository(self) -> PostgresPropertyRepository:
        return self._require(self._property_repository, "property")

    def get_model_repository(self) -> PostgresModelRepository:
        return self._require(self._model_repository, "model")

    def get_recommendation_repository(self) -> PostgresRecommendationRepository:
        return self._require(self._recommendation_repository, "recommendation")

    def get_cache_repository(self) -> Optional[RedisCacheRepository]:
        """Cache repository, or None when Redis is disabled or unreachable"""
        return self._cache_repository

    async def health_check(self) -> dict:
        """Perform health check on all repositories"""
        health_status = {
            "database": False,
            "redis": None,
            "repositories": False,
            "overall": False
        }

        if self.database:
            health_status["database"] = await self.database.health_check()

        if self._cache_repository:
            health_status["redis"] = await self._cache_repository.health_check()

        health_status["repositories"] = all([
            self._user_repository is not None,
            self._property_repository is not None,
            self._model_repository is not None,
            self._recommendation_repository is not None
        ])

        health_status["overall"] = all([
            health_status["database"],
            health_status["redis"] is not False,
            health_status["repositories"]
        ])
        return health_status

    def is_initialized(self) -> bool:
        """Check if factory is initialized"""
        return self._initialized


class RepositoryManager:
    """Context manager for repository lifecycle"""

    def __init__(self, config: Optional[DataConfig] = None):
        self.config = config
        self.factory: Optional[RepositoryFactory] = None

    async def __aenter__(self) -> RepositoryFactory:
        """Initialize repositories when entering context"""
        self.factory = RepositoryFactory(self.config)
        await self.factory.initialize()
        return self.factory

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Close repositories when exiting context"""
        if self.factory:
            await self.factory.close()
