"""
MOTORCHECK+ Worker Thread Pool

ThreadPoolExecutor for CPU-intensive frame decoding and estimator inference
without blocking the async event loop.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from core.config import settings

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Thread pool for blocking work awaited from async code.

    Features:
    - Fixed-size thread pool
    - Async-compatible execution (exceptions propagate to the awaiting caller)
    - In-flight, completed, failed and latency statistics
    """

    def __init__(
        self,
        max_workers: int = None,
        name: str = "worker_pool"
    ):
        self.max_workers = max_workers or settings.THREAD_POOL_SIZE
        self.name = name

        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix=f"{name}_"
        )
        self._lock = threading.Lock()

        # Stats
        self._in_flight = 0
        self._completed_count = 0
        self._failed_count = 0
        self._total_ms = 0.0

        logger.info(f"🧵 WorkerPool '{name}' initialized (workers: {self.max_workers})")

    async def submit_async(self, func: Callable, *args, **kwargs) -> Any:
        """Run `func` in the pool and await its result."""
        future = self._executor.submit(self._run_task, func, args, kwargs)
        return await asyncio.wrap_future(future)

    def _run_task(self, func: Callable, args: tuple, kwargs: dict) -> Any:
        with self._lock:
            self._in_flight += 1
        start = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            with self._lock:
                self._failed_count += 1
            logger.error(f"Task {getattr(func, '__name__', func)} failed in '{self.name}': {e}")
            raise
        else:
            with self._lock:
                self._completed_count += 1
                self._total_ms += (time.perf_counter() - start) * 1000
            return result
        finally:
            with self._lock:
                self._in_flight -= 1

    # ========================================
    # Lifecycle
    # ========================================

    def shutdown(self, wait: bool = True):
        """Shutdown the thread pool; queued tasks are cancelled."""
        logger.info(f"Shutting down WorkerPool '{self.name}'...")
        self._executor.shutdown(wait=wait, cancel_futures=True)
        logger.info(f"WorkerPool '{self.name}' shutdown complete")

    def get_stats(self) -> dict:
        """Get pool statistics."""
        with self._lock:
            completed = self._completed_count
            return {
                "name": self.name,
                "max_workers": self.max_workers,
                "in_flight_tasks": self._in_flight,
                "completed_tasks": completed,
                "failed_tasks": self._failed_count,
                "avg_task_ms": round(self._total_ms / completed, 2) if completed else None,
            }


# ============================================
# Global Worker Pools
# ============================================

# Frame decoding pool (JPEG frames pushed over the websocket, camera reads)
video_worker_pool = WorkerPool(name="video_processing")

# Estimator inference pool (pose + hand landmarks)
ml_worker_pool = WorkerPool(name="ml_inference", max_workers=settings.ML_POOL_SIZE)


async def process_video_frame(
    frame_processor: Callable,
    frame_data: Any
) -> Any:
    """
    Process a video frame using the video worker pool.

    Usage:
        frame = await process_video_frame(decode_jpeg_frame, jpeg_bytes)
    """
    return await video_worker_pool.submit_async(frame_processor, frame_data)


async def run_ml_inference(
    model_fn: Callable,
    input_data: Any
) -> Any:
    """
    Run ML inference using the ML worker pool.

    Usage:
        keypoints = await run_ml_inference(source.estimate_frame, frame)
    """
    return await ml_worker_pool.submit_async(model_fn, input_data)
