"""Background task for retiring stale derivatives."""

import asyncio
import logging
from typing import Optional

from .service import MediaPipeline

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 6 * 3600


class RetentionTask:
    """
    Background task that periodically runs the retention sweep.
    """

    def __init__(
        self,
        pipeline: MediaPipeline,
        interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
        max_age_days: Optional[float] = None,
    ):
        """
        Initialize retention task.

        Args:
            pipeline: Pipeline whose media root is swept
            interval_seconds: Time between sweeps (default 6 hours)
            max_age_days: Age threshold; defaults to the pipeline's
        """
        self.pipeline = pipeline
        self.interval_seconds = interval_seconds
        self.max_age_days = max_age_days
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._running:
            logger.warning("Retention task already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started retention task (interval: {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Stopped retention task")

    async def _run(self) -> None:
        """Main loop for retention task."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)

                if not self._running:
                    break

                await self.run_once()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in retention task: {e}", exc_info=True)

    async def run_once(self) -> int:
        """Execute one sweep in a worker thread and return the removed count."""
        reports = await asyncio.to_thread(self.pipeline.sweep, self.max_age_days)
        return sum(len(r.removed) for r in reports)
