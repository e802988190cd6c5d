"""
MOTORCHECK+ Motor Service - Hold/Side State Machine

Decides, frame by frame, whether the current arm's hold starts, continues,
resets or completes, and when to move from the right arm to the left.

The countdown is time based: while a hold is in progress exactly one
one-second decrement is pending, owned by the machine and cancelled as soon
as the hold episode ends. Detection ticks (every ~100 ms) only confirm the
hold; they never decrement it themselves.
"""

import logging
from enum import Enum
from typing import List, Optional

from .keypoints import SIDE_ORDER, Side, SideStatus
from .scheduling import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class HoldPhase(Enum):
    """Persistent hold state."""
    IDLE = "idle"
    HOLDING = "holding"
    ALL_COMPLETE = "all_complete"


class HoldOutcome(Enum):
    """What a single frame did to the hold."""
    IDLE = "idle"  # not qualifying, nothing to reset
    RESET = "reset"  # qualifying hold interrupted
    STARTED = "started"
    HOLDING = "holding"
    SIDE_COMPLETE = "side_complete"
    ALL_COMPLETE = "all_complete"


class HoldStateMachine:
    """
    Tracks the current side and its hold countdown.

    Phases: IDLE -> HOLDING(n) -> ... -> HOLDING(0) -> side complete.
    After the right side completes the machine switches to the left side in
    IDLE; after the left side completes it stays in ALL_COMPLETE.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        hold_duration: int = 10
    ):
        """
        Args:
            scheduler: Clock and one-shot timer provider
            hold_duration: Seconds each side must be held
        """
        self.scheduler = scheduler
        self.hold_duration = hold_duration

        self.side: Side = SIDE_ORDER[0]
        self.phase: HoldPhase = HoldPhase.IDLE
        self.remaining: Optional[int] = None
        self.completed_sides: List[Side] = []

        self._handle: Optional[TimerHandle] = None
        self._episode = 0
        self._last_mark = 0.0

    # ═══════════════════════════════════════════════════════════════════════════
    # STATE
    # ═══════════════════════════════════════════════════════════════════════════

    @property
    def is_holding(self) -> bool:
        return self.phase is HoldPhase.HOLDING

    @property
    def is_complete(self) -> bool:
        return self.phase is HoldPhase.ALL_COMPLETE

    @property
    def elapsed(self) -> int:
        """Seconds held so far in the current episode."""
        if self.remaining is None:
            return 0
        return self.hold_duration - self.remaining

    @property
    def has_pending_decrement(self) -> bool:
        return self._handle is not None

    def reset(self):
        """Back to the right side, no hold, nothing completed."""
        self._end_episode()
        self.phase = HoldPhase.IDLE
        self.side = SIDE_ORDER[0]
        self.completed_sides = []

    def cancel_pending(self):
        """Freeze the countdown where it is (session stopped)."""
        self._cancel_handle()
        self._episode += 1

    # ═══════════════════════════════════════════════════════════════════════════
    # TRANSITIONS
    # ═══════════════════════════════════════════════════════════════════════════

    def step(self, status: SideStatus) -> HoldOutcome:
        """
        Apply one frame's status for the current side.

        Any disqualifying frame resets the hold; there is no grace period.
        """
        if self.phase is HoldPhase.ALL_COMPLETE:
            return HoldOutcome.ALL_COMPLETE

        if not status.ok:
            was_holding = self.is_holding
            self._end_episode()
            if was_holding:
                logger.debug(f"Hold on {self.side.value} side interrupted")
                return HoldOutcome.RESET
            return HoldOutcome.IDLE

        if self.phase is HoldPhase.IDLE:
            self._begin_episode()
            return HoldOutcome.STARTED

        if self.remaining > 0:
            self._arm_decrement()
            return HoldOutcome.HOLDING

        return self._complete_side()

    def _begin_episode(self):
        self._cancel_handle()
        self._episode += 1
        self.phase = HoldPhase.HOLDING
        self.remaining = self.hold_duration
        self._last_mark = self.scheduler.time()
        self._arm_decrement()
        logger.debug(f"Hold started on {self.side.value} side ({self.hold_duration}s)")

    def _end_episode(self):
        self._cancel_handle()
        self._episode += 1
        if self.phase is not HoldPhase.ALL_COMPLETE:
            self.phase = HoldPhase.IDLE
        self.remaining = None

    def _complete_side(self) -> HoldOutcome:
        finished = self.side
        self._end_episode()
        self.completed_sides.append(finished)

        position = SIDE_ORDER.index(finished)
        if position + 1 < len(SIDE_ORDER):
            self.side = SIDE_ORDER[position + 1]
            logger.info(f"✅ {finished.value.title()} side complete, switching to {self.side.value}")
            return HoldOutcome.SIDE_COMPLETE

        self.phase = HoldPhase.ALL_COMPLETE
        logger.info("🏁 Both sides complete")
        return HoldOutcome.ALL_COMPLETE

    # ═══════════════════════════════════════════════════════════════════════════
    # COUNTDOWN TIMER
    # ═══════════════════════════════════════════════════════════════════════════

    def _arm_decrement(self):
        """Schedule the next one-second decrement unless one is pending."""
        if self._handle is not None:
            return
        due = max(self._last_mark + 1.0, self.scheduler.time())
        self._handle = self.scheduler.call_at(due, self._on_second, self._episode)

    def _on_second(self, episode: int):
        if episode != self._episode or self.phase is not HoldPhase.HOLDING:
            return
        self._handle = None
        self._last_mark = self.scheduler.time()
        if self.remaining > 0:
            self.remaining -= 1

    def _cancel_handle(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
