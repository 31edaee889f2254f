"""
Database and Redis connection settings read from the environment.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class DatabaseConfig:
    """Database configuration settings"""
    host: str
    port: int
    database: str
    username: str
    password: str
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 3600
    create_tables: bool = False

    @property
    def url(self) -> str:
        """Get database URL for SQLAlchemy"""
        return f"postgresql+asyncpg://{self.username}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class RedisConfig:
    """Redis configuration settings"""
    host: str
    port: int
    db: int = 0
    password: Optional[str] = None
    enabled: bool = True
    max_connections: int = 20
    socket_timeout: int = 5
    socket_connect_timeout: int = 5
    health_check_interval: int = 30
    recommendation_ttl: int = 1800

    @property
    def url(self) -> str:
        """Get Redis URL"""
        if self.password:
            return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
        else:
            return f"redis://{self.host}:{self.port}/{self.db}"


class DataConfig:
    """Main data configuration class"""

    def __init__(self):
        self.database = self._load_database_config()
        self.redis = self._load_redis_config()

    def _load_database_config(self) -> DatabaseConfig:
        """Load database configuration from environment variables"""
        return DatabaseConfig(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "rental_marketplace"),
            username=os.getenv("DB_USERNAME", "postgres"),
            password=os.getenv("DB_PASSWORD", "password"),
            pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "3600")),
            create_tables=_env_flag("DB_CREATE_TABLES", "false")
        )

    def _load_redis_config(self) -> RedisConfig:
        """Load Redis configuration from environment variables"""
        return RedisConfig(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            db=int(os.getenv("REDIS_DB", "0")),
            password=os.getenv("REDIS_PASSWORD"),
            enabled=_env_flag("REDIS_ENABLED", "true"),
            max_connections=int(os.getenv("REDIS_MAX_CONNECTIONS", "20")),
            socket_timeout=int(os.getenv("REDIS_SOCKET_TIMEOUT", "5")),
            socket_connect_timeout=int(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "5")),
            health_check_interval=int(os.getenv("REDIS_HEALTH_CHECK_INTERVAL", "30")),
            recommendation_ttl=int(os.getenv("REDIS_RECOMMENDATION_TTL", "1800"))
        )


class RedisManager:
    """Redis connection manager"""

    def __init__(self, config: RedisConfig):
        self.config = config
        self._client: Optional[Redis] = None

    async def initialize(self) -> Redis:
        """Initialize Redis client"""
        try:
            self._client = redis.from_url(
                self.config.url,
                max_connections=self.config.max_connections,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_connect_timeout,
                health_check_interval=self.config.health_check_interval
            )

            # Test connection
            await self._client.ping()

            logger.info("Redis client initialized successfully")
            return self._client

        except (RedisError, OSError) as e:
            logger.error(f"Failed to initialize Redis client: {e}")
            raise

    async def close(self):
        """Close Redis connection"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Redis client closed")

    @property
    def client(self) -> Optional[Redis]:
        """Get the Redis client"""
        return self._client
