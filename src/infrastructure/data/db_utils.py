import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import List, Optional

import asyncpg
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from ...domain.exceptions import PersistenceError
from .models import Base

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 3
RETRY_DELAY = 1.0
CONNECTION_TIMEOUT = 30.0
SLOW_QUERY_SECONDS = 1.0


@dataclass
class QueryMetrics:
    """Query performance metrics"""
    query_type: str
    execution_time: float
    timestamp: datetime


def retry_on_db_error(max_retries: int = MAX_RETRIES, delay: float = RETRY_DELAY):
    """Retry transient database errors with exponential backoff.

    Errors that survive the last attempt, and any other SQLAlchemy error, are
    raised as PersistenceError so callers can skip the affected item.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except (OperationalError, asyncpg.PostgresError, OSError) as e:
                    if attempt < max_retries - 1:
                        wait_time = delay * (2 ** attempt)
                        logger.warning(
                            f"Database operation {func.__name__} failed "
                            f"(attempt {attempt + 1}/{max_retries}), retrying in {wait_time}s: {e}"
                        )
                        await asyncio.sleep(wait_time)
                    else:
                        logger.error(f"Database operation {func.__name__} failed after {max_retries} attempts: {e}")
                        raise PersistenceError(func.__name__, e) from e
                except SQLAlchemyError as e:
                    logger.error(f"Non-retryable database error in {func.__name__}: {e}")
                    raise PersistenceError(func.__name__, e) from e
        return wrapper
    return decorator


def measure_performance(operation_name: str):
    """Record execution time and flag slow queries"""
    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            start_time = time.time()
            try:
                return await func(self, *args, **kwargs)
            finally:
                execution_time = time.time() - start_time
                metrics = getattr(self, "_performance_metrics", None)
                if metrics is not None:
                    metrics.append(QueryMetrics(
                        query_type=operation_name,
                        execution_time=execution_time,
                        timestamp=datetime.utcnow()
                    ))
                if execution_time > SLOW_QUERY_SECONDS:
                    logger.warning(f"Slow query detected: {operation_name} took {execution_time:.2f}s")
        return wrapper
    return decorator


class AsyncDatabase:
    """Engine and session factory shared by the PostgreSQL repositories"""

    def __init__(self, database_url: str, pool_size: int = 10, max_overflow: int = 20,
                 pool_timeout: int = 30, pool_recycle: int = 3600):
        self.database_url = database_url
        self.engine = create_async_engine(
            database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            echo=False,
            connect_args={
                "command_timeout": CONNECTION_TIMEOUT,
                "server_settings": {"application_name": "rental_recommendation_core"},
            }
        )
        self.async_session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncSession:
        async with self.async_session_factory() as session:
            try:
                yield session
            except Exception as e:
                await session.rollback()
                logger.error(f"Database session error: {e}")
                raise

    @asynccontextmanager
    async def get_transaction(self) -> AsyncSession:
        async with self.get_session() as session:
            async with session.begin():
                yield session

    async def create_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Recommendation tables created")

    async def health_check(self) -> bool:
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def close(self):
        await self.engine.dispose()


class BasePostgresRepository:

    def __init__(self, database: AsyncDatabase, enable_metrics: bool = True):
        self.database = database
        self._performance_metrics: Optional[List[QueryMetrics]] = [] if enable_metrics else None

    def get_performance_metrics(self) -> List[QueryMetrics]:
        return list(self._performance_metrics or [])
