"""
MOTORCHECK+ Motor Service - Detection Loop

Fixed-period asyncio loop that pulls keypoints from a source and feeds them
to an assessment session. At most one estimate is in flight; a tick that
comes due while the previous one is still running is dropped.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .assessment_session import AssessmentSession, AssessmentStatus
from .keypoint_source import KeypointSource, NoFrameAvailable

logger = logging.getLogger(__name__)

StatusCallback = Callable[[AssessmentStatus], Awaitable[Any]]


class DetectionLoop:
    """
    Drives one session from one keypoint source.

    The loop ends by itself once the session stops running.
    """

    def __init__(
        self,
        session: AssessmentSession,
        source: KeypointSource,
        on_status: Optional[StatusCallback] = None,
        interval: Optional[float] = None
    ):
        self.session = session
        self.source = source
        self.on_status = on_status
        self.interval = interval or session.config.detection_interval

        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

        # Stats
        self.ticks = 0
        self.processed_ticks = 0
        self.skipped_ticks = 0
        self.dropped_ticks = 0
        self.failed_ticks = 0
        self.stale_results = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Begin ticking. A no-op if already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug(f"Detection loop started for {self.session.session_id} ({self.interval}s)")

    async def stop(self):
        """Cancel the loop and any in-flight tick."""
        current = asyncio.current_task()
        tasks = [t for t in (self._task, self._inflight) if t is not None and t is not current]
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._inflight = None

    async def wait(self):
        """Wait for the loop to end on its own."""
        if self._task is not None:
            await self._task

    async def _run(self):
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while self.session.is_running:
            self.ticks += 1
            if self._inflight is None or self._inflight.done():
                self._inflight = asyncio.create_task(self.tick())
            else:
                self.dropped_ticks += 1
                logger.debug(f"Tick dropped for {self.session.session_id}, previous still in flight")

            next_tick += self.interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

        if self._inflight is not None and not self._inflight.done():
            await self._inflight
        logger.debug(f"Detection loop ended for {self.session.session_id} ({self.session.state.value})")

    async def tick(self) -> Optional[AssessmentStatus]:
        """
        Run one detection pass.

        Returns:
            The updated status, or None if the tick was skipped or its result
            no longer applies to the current run.
        """
        if not self.session.is_running:
            return None

        generation = self.session.generation
        try:
            frame = await self.source.estimate()
        except NoFrameAvailable:
            self.skipped_ticks += 1
            return None
        except Exception as e:
            self.failed_ticks += 1
            logger.warning(f"⚠️ Keypoint estimation failed for {self.session.session_id}: {e}")
            if generation == self.session.generation:
                self.session.clear_side_statuses()
            return None

        if generation != self.session.generation or not self.session.is_running:
            self.stale_results += 1
            return None

        status = self.session.process_keypoints(frame)
        self.processed_ticks += 1

        if self.on_status:
            await self.on_status(status)
        return status

    def get_stats(self) -> dict:
        return {
            "running": self.running,
            "interval": self.interval,
            "ticks": self.ticks,
            "processed": self.processed_ticks,
            "skipped": self.skipped_ticks,
            "dropped": self.dropped_ticks,
            "failed": self.failed_ticks,
            "stale": self.stale_results,
        }
