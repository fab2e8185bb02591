"""Base worker class for background tasks."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Iterable, Optional, TypeVar

from ..core.observability import get_logger, metrics_collector

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RunSummary:
    """Outcome counts for one scheduler tick."""

    scanned: int = 0
    changed: int = 0
    unchanged: int = 0
    failed: int = 0


class BaseWorker(ABC, Generic[T]):
    """
    Abstract base class for periodic background workers.

    Each tick scans for items, then handles every item independently with
    bounded concurrency. An item whose handler keeps raising is retried with
    exponential backoff, then logged and left for the next tick; it never
    aborts the rest of the batch.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float = 60,
        concurrency: int = 10,
        item_max_attempts: int = 3,
        item_backoff_seconds: float = 5.0,
    ):
        """
        Initialize the worker.

        Args:
            name: Worker name for logging and metrics
            interval_seconds: How often to run a tick
            concurrency: Items handled in parallel
            item_max_attempts: Attempts per item within one tick
            item_backoff_seconds: First retry delay, doubled on each retry
        """
        self.name = name
        self.interval_seconds = interval_seconds
        self.concurrency = concurrency
        self.item_max_attempts = item_max_attempts
        self.item_backoff_seconds = item_backoff_seconds
        self.summary_logger = get_logger(__name__).with_context(worker=name)
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @abstractmethod
    async def scan(self) -> Iterable[T]:
        """Return the items due for this tick."""

    @abstractmethod
    async def handle(self, item: T) -> bool:
        """Process one item; return True when it changed something."""

    def describe(self, item: T) -> str:
        return str(item)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the worker."""
        if self._running:
            logger.warning(f"{self.name} worker is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"worker:{self.name}")
        logger.info(f"{self.name} worker started with {self.interval_seconds}s interval")

    async def stop(self) -> None:
        """Stop the worker, cancelling a tick in progress."""
        if not self._running:
            logger.warning(f"{self.name} worker is not running")
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(f"{self.name} worker stopped")

    async def run_once(self) -> RunSummary:
        """Run a single tick: scan, handle each item, then log and count the outcome."""
        items = list(await self.scan())
        summary = RunSummary(scanned=len(items))
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(item: T) -> Optional[bool]:
            async with semaphore:
                return await self._handle_with_retry(item)

        for outcome in await asyncio.gather(*(guarded(item) for item in items)):
            if outcome is None:
                summary.failed += 1
            elif outcome:
                summary.changed += 1
            else:
                summary.unchanged += 1

        metrics_collector.record_scheduler_run(self.name, summary.changed, summary.failed)
        if summary.scanned:
            self.summary_logger.info(
                "Scheduler run finished",
                scanned=summary.scanned,
                changed=summary.changed,
                unchanged=summary.unchanged,
                failed=summary.failed,
            )
        return summary

    async def _handle_with_retry(self, item: T) -> Optional[bool]:
        """Handle one item; None means every attempt failed."""
        for attempt in range(1, self.item_max_attempts + 1):
            try:
                return await self.handle(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt == self.item_max_attempts:
                    logger.error(
                        f"{self.name} gave up on item until the next run",
                        exc_info=True,
                        extra={"worker": self.name, "item": self.describe(item), "attempts": attempt},
                    )
                    return None
                delay = self.item_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"{self.name} item failed, retrying: {e!s}",
                    extra={
                        "worker": self.name,
                        "item": self.describe(item),
                        "attempt": attempt,
                        "delay_seconds": delay,
                    },
                )
                await asyncio.sleep(delay)
        return None

    async def _run(self) -> None:
        """Main worker loop."""
        logger.info(f"{self.name} worker loop started")

        while self._running:
            start_time = time.monotonic()
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info(f"{self.name} worker loop cancelled")
                break
            except Exception as e:
                # A failed scan is retried on the next tick
                logger.error(
                    f"{self.name} worker error: {e!s}",
                    exc_info=True,
                    extra={"worker": self.name},
                )

            duration = time.monotonic() - start_time
            logger.debug(
                f"{self.name} worker iteration completed",
                extra={"duration_seconds": duration, "worker": self.name},
            )
            try:
                await asyncio.sleep(max(0.0, self.interval_seconds - duration))
            except asyncio.CancelledError:
                logger.info(f"{self.name} worker loop cancelled")
                break
