"""Background worker that cancels bookings left unpaid past their deadline."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from ..core.config import Settings
from ..core.dependencies import Requestor
from ..services.reservation_coordinator import ReservationCoordinator
from .base import BaseWorker

logger = logging.getLogger(__name__)


class DeadlineWorker(BaseWorker[UUID]):
    """
    Expires PENDING bookings whose payment deadline has elapsed.

    Each expiry is the coordinator's guarded cancel-and-credit, so a booking
    picked up by two overlapping ticks is only released once.
    """

    def __init__(self, coordinator: ReservationCoordinator, config: Settings):
        super().__init__(
            name="deadline",
            interval_seconds=config.deadline_scan_interval_seconds,
            concurrency=config.scheduler_concurrency,
            item_max_attempts=config.scheduler_item_max_attempts,
            item_backoff_seconds=config.scheduler_item_backoff_seconds,
        )
        self.coordinator = coordinator
        self.requestor = Requestor.system(self.name)
        self._now: Optional[datetime] = None

    async def scan(self) -> list[UUID]:
        self._now = self.coordinator.clock()
        return await self.coordinator.find_expired_booking_ids(self._now)

    async def handle(self, booking_id: UUID) -> bool:
        expired = await self.coordinator.expire_booking(booking_id, self._now, self.requestor)
        if expired:
            logger.info(
                "Booking expired after payment deadline",
                extra={"booking_id": str(booking_id), "worker": self.name},
            )
        return expired
