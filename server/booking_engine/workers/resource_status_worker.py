"""Background worker that moves flights and tours along with the clock."""

import logging
from datetime import datetime
from typing import Optional

from ..core.config import Settings
from ..models.resource import ResourceRef
from ..services.reservation_coordinator import ReservationCoordinator
from .base import BaseWorker

logger = logging.getLogger(__name__)


class ResourceStatusWorker(BaseWorker[ResourceRef]):
    """
    Applies time-driven status steps: departures, landings, tour starts and
    ends, and the step back to the pre-start status when a stored start time
    now lies in the future.
    """

    def __init__(self, coordinator: ReservationCoordinator, config: Settings):
        super().__init__(
            name="resource_status",
            interval_seconds=config.status_scan_interval_seconds,
            concurrency=config.scheduler_concurrency,
            item_max_attempts=config.scheduler_item_max_attempts,
            item_backoff_seconds=config.scheduler_item_backoff_seconds,
        )
        self.coordinator = coordinator
        self._now: Optional[datetime] = None

    async def scan(self) -> list[ResourceRef]:
        self._now = self.coordinator.clock()
        return await self.coordinator.find_due_resources(self._now)

    async def handle(self, ref: ResourceRef) -> bool:
        return bool(await self.coordinator.apply_scheduled_transitions(ref, self._now))
