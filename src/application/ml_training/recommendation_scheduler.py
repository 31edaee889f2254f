"""
Model lifecycle scheduler for the recommendation core.

Retrains the TF-IDF and K-Means models on a long interval and, on a short
one, refreshes listing trend scores and regenerates recommendations for
recently active users, with a bootstrap run shortly after start-up. Busy
flags keep two runs of the same kind from overlapping; they are
process-local, so only one scheduler should run per deployment.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Any
from uuid import UUID

from ...domain.exceptions import PersistenceError
from ...domain.services.recommendation_service import RecommendationService
from ...infrastructure.ml.config import SchedulerConfig
from ...infrastructure.ml.training.ml_trainer import TrainingResult

logger = logging.getLogger(__name__)


@dataclass
class GenerationStats:
    """Outcome of one generation pass"""
    started_at: datetime
    completed_at: Optional[datetime] = None
    users_processed: int = 0
    users_failed: int = 0
    recommendations_generated: int = 0
    recommendations_pruned: int = 0
    trending_refreshed: int = 0
    error: Optional[str] = None
    per_user: Dict[UUID, Optional[int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "users_processed": self.users_processed,
            "users_failed": self.users_failed,
            "recommendations_generated": self.recommendations_generated,
            "recommendations_pruned": self.recommendations_pruned,
            "trending_refreshed": self.trending_refreshed,
            "error": self.error,
        }


class RecommendationScheduler:
    """Periodic retraining and recommendation regeneration"""

    def __init__(self, recommendation_service: RecommendationService,
                 config: Optional[SchedulerConfig] = None):
        self.recommendation_service = recommendation_service
        self.config = config or SchedulerConfig()

        self.is_running = False
        self.is_training = False
        self.is_generating = False
        self.stop_event = asyncio.Event()
        self._tasks: Dict[str, asyncio.Task] = {}

        self.last_training_at: Optional[datetime] = None
        self.last_generation_at: Optional[datetime] = None
        self.last_training_result: Optional[TrainingResult] = None
        self.last_generation_stats: Optional[GenerationStats] = None

    @property
    def training_interval_seconds(self) -> float:
        return self.config.training_interval_hours * 3600

    @property
    def generation_interval_seconds(self) -> float:
        return self.config.generation_interval_minutes * 60

    async def start(self):
        """Start the training and generation loops"""
        if self.is_running:
            logger.warning("Recommendation scheduler is already running")
            return

        self.is_running = True
        self.stop_event.clear()

        self._tasks = {
            "training": asyncio.create_task(self._training_loop()),
            "generation": asyncio.create_task(self._generation_loop()),
        }
        logger.info(
            f"Recommendation scheduler started: training every {self.config.training_interval_hours}h, "
            f"generation every {self.config.generation_interval_minutes}min"
        )

    async def stop(self):
        """Stop both loops and cancel any run in progress"""
        if not self.is_running:
            return

        logger.info("Stopping recommendation scheduler")
        self.is_running = False
        self.stop_event.set()

        for task in list(self._tasks.values()):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Scheduler task ended with an error: {e}")
        self._tasks.clear()

        logger.info("Recommendation scheduler stopped")

    async def _wait(self, seconds: float) -> bool:
        """Sleep unless stopped; True when the scheduler was asked to stop"""
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _training_loop(self):
        if await self._wait(self.config.initial_training_delay_seconds):
            return
        while self.is_running:
            await self.train_models()
            if await self._wait(self.training_interval_seconds):
                break

    async def _generation_loop(self):
        if await self._wait(self.config.initial_generation_delay_seconds):
            return
        while self.is_running:
            await self.generate_recommendations()
            if await self._wait(self.generation_interval_seconds):
                break

    async def train_models(self) -> Optional[TrainingResult]:
        """Run one retrain; returns None when a retrain is already in progress"""
        if self.is_training:
            logger.info("Model training already in progress, skipping")
            return None

        self.is_training = True
        try:
            logger.info("Starting scheduled model training")
            result = await self.recommendation_service.trigger_retrain()

            if result.success:
                logger.info(f"Scheduled model training completed: {result.stats}")
            else:
                logger.warning(f"Scheduled model training failed: {result.error}")
        except Exception as e:
            # Only this run is lost; the loop retrains at the next interval
            logger.exception(f"Scheduled model training raised: {e}")
            result = TrainingResult(success=False, error=str(e))
        finally:
            self.is_training = False

        self.last_training_result = result
        self.last_training_at = datetime.now()
        return result

    async def generate_recommendations(self) -> Optional[GenerationStats]:
        """Refresh trend scores, regenerate recommendations for active users, then prune old ones"""
        if self.is_generating:
            logger.info("Recommendation generation already in progress, skipping")
            return None

        self.is_generating = True
        stats = GenerationStats(started_at=datetime.now())
        try:
            logger.info("Starting scheduled recommendation generation")
            await self._run_generation(stats)
            logger.info(
                f"Generated {stats.recommendations_generated} recommendations for "
                f"{stats.users_processed} users, pruned {stats.recommendations_pruned}"
            )
        except Exception as e:
            logger.exception(f"Scheduled recommendation generation raised: {e}")
            stats.error = str(e)
        finally:
            self.is_generating = False

        stats.completed_at = datetime.now()
        self.last_generation_stats = stats
        self.last_generation_at = stats.completed_at
        return stats

    async def _run_generation(self, stats: GenerationStats):
        stats.trending_refreshed = await self.recommendation_service.refresh_trending(
            self.config.trending_window_days
        )

        try:
            user_ids = await self.recommendation_service.user_repository.get_active_user_ids(
                min_interactions=self.config.active_user_min_interactions,
                days=self.config.active_user_window_days,
                limit=self.config.generation_batch_size
            )
        except PersistenceError as e:
            logger.error(f"Failed to load active users: {e}")
            user_ids = []

        if user_ids:
            stats.per_user = await self.recommendation_service.generate_for_users(
                user_ids, top_n=self.config.recommendations_per_user
            )
            stats.users_processed = len(stats.per_user)
            stats.users_failed = sum(1 for count in stats.per_user.values() if count is None)
            stats.recommendations_generated = sum(count or 0 for count in stats.per_user.values())
        else:
            logger.info("No active users for recommendation generation")

        stats.recommendations_pruned = await self.recommendation_service.prune_recommendations(
            self.config.retention_days
        )

    @property
    def state(self) -> str:
        if self.is_training:
            return "training"
        if self.is_generating:
            return "generating"
        return "idle"

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "state": self.state,
            "is_training": self.is_training,
            "is_generating": self.is_generating,
            "training_interval_hours": self.config.training_interval_hours,
            "generation_interval_minutes": self.config.generation_interval_minutes,
            "last_training_at": self.last_training_at.isoformat() if self.last_training_at else None,
            "last_generation_at": self.last_generation_at.isoformat() if self.last_generation_at else None,
            "last_training_result": self.last_training_result.to_dict() if self.last_training_result else None,
            "last_generation_stats": self.last_generation_stats.to_dict() if self.last_generation_stats else None,
            "model": self.recommendation_service.get_model_status(),
        }
