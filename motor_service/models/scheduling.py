"""
MOTORCHECK+ Motor Service - Scheduling

The timers in this service only need a clock and one-shot callbacks. The
asyncio event loop provides both (`loop.time()` / `loop.call_at()`), so it is
the default scheduler; tests substitute a manual clock.
"""

import asyncio
from typing import Any, Callable, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def time(self) -> float: ...

    def call_at(self, when: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


def get_scheduler(scheduler: Optional[Scheduler] = None) -> Scheduler:
    """Return the given scheduler or the running event loop."""
    if scheduler is not None:
        return scheduler
    return asyncio.get_running_loop()
