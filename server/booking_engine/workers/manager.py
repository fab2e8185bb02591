"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict

from ..core.config import Settings
from ..services.reservation_coordinator import ReservationCoordinator
from .base import BaseWorker
from .deadline_worker import DeadlineWorker
from .resource_status_worker import ResourceStatusWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Manages background workers for the application.

    Owned by the application lifespan, which starts the workers after the
    database is connected and stops them before it is disposed.
    """

    def __init__(self, coordinator: ReservationCoordinator, config: Settings):
        self.workers: Dict[str, BaseWorker] = {
            "deadline": DeadlineWorker(coordinator, config),
            "resource_status": ResourceStatusWorker(coordinator, config),
        }
        logger.info(f"Initialized {len(self.workers)} workers")

    async def start_all(self) -> None:
        """Start all workers."""
        logger.info("Starting all workers")

        for name, worker in self.workers.items():
            try:
                await worker.start()
            except Exception as e:
                logger.error(f"Failed to start worker {name}: {e!s}", exc_info=True)

        logger.info(f"Started {len(self.workers)} workers")

    async def stop_all(self) -> None:
        """Stop all workers gracefully."""
        logger.info("Stopping all workers")

        running = {name: worker for name, worker in self.workers.items() if worker.is_running}
        results = await asyncio.gather(*(w.stop() for w in running.values()), return_exceptions=True)

        for name, result in zip(running.keys(), results):
            if isinstance(result, Exception):
                logger.error(f"Error stopping worker {name}: {result!s}")
            else:
                logger.info(f"Stopped worker: {name}")

        logger.info("All workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        """Map worker names to their running state."""
        return {name: worker.is_running for name, worker in self.workers.items()}
