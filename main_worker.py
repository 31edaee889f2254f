"""
Background worker for the rental recommendation core.

Connects the repositories, starts the model lifecycle scheduler and runs
until interrupted.
"""

import asyncio
import logging
import os
import signal
from pathlib import Path

from dotenv import load_dotenv

# Load environment
load_dotenv(Path(__file__).parent / ".env")

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

from src.application.ml_training.recommendation_scheduler import RecommendationScheduler
from src.domain.services.recommendation_service import RecommendationService
from src.infrastructure.data.repository_factory import RepositoryManager
from src.infrastructure.ml.config import MLConfig


async def run_worker():
    ml_config = MLConfig()

    async with RepositoryManager() as factory:
        health_status = await factory.health_check()
        logger.info(f"Repository health: {health_status}")

        service = RecommendationService(
            property_repository=factory.get_property_repository(),
            user_repository=factory.get_user_repository(),
            model_repository=factory.get_model_repository(),
            recommendation_repository=factory.get_recommendation_repository(),
            cache_repository=factory.get_cache_repository(),
            config=ml_config
        )
        scheduler = RecommendationScheduler(service, ml_config.scheduler)

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        await scheduler.start()
        logger.info("Recommendation worker running")
        try:
            await stop.wait()
        finally:
            try:
                await scheduler.stop()
            finally:
                service.close()

    logger.info("Recommendation worker stopped")


if __name__ == "__main__":
    asyncio.run(run_worker())
