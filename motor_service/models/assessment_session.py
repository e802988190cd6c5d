"""
MOTORCHECK+ Motor Service - Assessment Session

Session timer and session controller for the motor weakness assessment:
hold each arm at the target angle, shoulder on the line, for the hold
duration, right arm first, both within the session budget.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence
from enum import Enum
import logging

from .config import AssessmentConfig
from .frame_classifier import classify_frame
from .hold_machine import HoldOutcome, HoldPhase, HoldStateMachine
from .keypoints import FrameKeypoints, HandDetection, PoseDetection, Side, SideStatus, empty_statuses
from .scheduling import Scheduler, TimerHandle, get_scheduler

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Assessment session states."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = (SessionState.COMPLETED, SessionState.TIMED_OUT)


# ═══════════════════════════════════════════════════════════════════════════════
# SESSION TIMER
# ═══════════════════════════════════════════════════════════════════════════════

class SessionTimer:
    """
    One-second countdown from a fixed budget.

    Ticks are anchored to the start time, so late callbacks do not make the
    countdown drift. Stopping freezes the remaining seconds.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        budget: int,
        on_expired: Callable[[], None]
    ):
        self.scheduler = scheduler
        self.budget = budget
        self.remaining = budget
        self.on_expired = on_expired

        self._handle: Optional[TimerHandle] = None
        self._generation = 0
        self._started_at = 0.0

    @property
    def running(self) -> bool:
        return self._handle is not None

    @property
    def elapsed(self) -> int:
        return self.budget - self.remaining

    def start(self):
        """Restart the countdown from the full budget."""
        self.stop()
        self.remaining = self.budget
        self._started_at = self.scheduler.time()
        self._arm()

    def stop(self):
        """Freeze the countdown; pending ticks are cancelled and ignored."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._generation += 1

    def reset(self):
        self.stop()
        self.remaining = self.budget

    def _arm(self):
        due = self._started_at + (self.budget - self.remaining + 1)
        self._handle = self.scheduler.call_at(due, self._tick, self._generation)

    def _tick(self, generation: int):
        if generation != self._generation:
            return
        self._handle = None
        self.remaining = max(0, self.remaining - 1)
        if self.remaining == 0:
            self._generation += 1
            self.on_expired()
        else:
            self._arm()


# ═══════════════════════════════════════════════════════════════════════════════
# STATUS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class AssessmentStatus:
    """Externally observable state of a session (read-only snapshot)."""
    session_id: str
    state: SessionState
    current_side: Side
    sides: Dict[Side, SideStatus]
    hold_phase: HoldPhase
    hold_remaining: Optional[int]
    hold_elapsed: int
    hold_duration: int
    time_remaining: int
    session_budget: int
    completed_sides: List[Side] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "current_side": self.current_side.value,
            "sides": {side.value: status.to_dict() for side, status in self.sides.items()},
            "hold": {
                "phase": self.hold_phase.value,
                "remaining": self.hold_remaining,
                "elapsed": self.hold_elapsed,
                "duration": self.hold_duration,
            },
            "time_remaining": self.time_remaining,
            "session_budget": self.session_budget,
            "completed_sides": [side.value for side in self.completed_sides],
            "message": self.message,
        }


def guidance_message(
    state: SessionState,
    side: Side,
    side_status: SideStatus,
    hold_elapsed: int
) -> str:
    """One-line instruction for the user, derived from the status."""
    if state is SessionState.NOT_STARTED:
        return "Start the assessment to begin"
    if state is SessionState.COMPLETED:
        return "Assessment complete!"
    if state is SessionState.TIMED_OUT:
        return "Time's up! The assessment was not completed in time."

    name = side.value.title()
    if not side_status.detected:
        return f"Show your {name} arm to the camera"
    if not side_status.shoulder_on_line:
        return f"Position your {name} shoulder on the line"
    if not side_status.correct_angle:
        return f"Extend your {name} arm at a 45° angle"
    return f"Hold your {name} arm position! {hold_elapsed}s"


# ═══════════════════════════════════════════════════════════════════════════════
# SESSION CONTROLLER
# ═══════════════════════════════════════════════════════════════════════════════

class AssessmentSession:
    """
    Owns session state, timer, current side and hold state.

    Every timer callback and late estimator result is checked against the
    session generation, which changes on start() and reset(), so nothing
    from a previous run can touch the current one.
    """

    def __init__(
        self,
        session_id: str,
        config: Optional[AssessmentConfig] = None,
        scheduler: Optional[Scheduler] = None,
        on_complete: Optional[Callable[[AssessmentStatus], None]] = None,
        on_finished: Optional[Callable[[AssessmentStatus], None]] = None
    ):
        """
        Initialize an assessment session.

        Args:
            session_id: Session ID
            config: Assessment configuration (defaults from settings if None)
            scheduler: Clock/timer provider (running event loop if None)
            on_complete: Fired exactly once when the session becomes COMPLETED
            on_finished: Fired whenever the session leaves RUNNING on its own
                (completed or timed out)
        """
        self.session_id = session_id
        self.config = config or AssessmentConfig.from_settings()
        self.scheduler = get_scheduler(scheduler)
        self.on_complete = on_complete
        self.on_finished = on_finished

        self.state = SessionState.NOT_STARTED
        self.generation = 0
        self.side_statuses: Dict[Side, SideStatus] = empty_statuses()

        self.hold = HoldStateMachine(self.scheduler, self.config.hold_duration)
        self.timer = SessionTimer(self.scheduler, self.config.session_budget, self._on_timer_expired)

        # Run bookkeeping for the summary
        self.started_at: Optional[float] = None
        self.ended_at: Optional[float] = None
        self.side_completed_at: Dict[Side, float] = {}
        self.frames_processed = 0
        self._completion_notified = False

    @property
    def is_running(self) -> bool:
        return self.state is SessionState.RUNNING

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def current_side(self) -> Side:
        return self.hold.side

    # ═══════════════════════════════════════════════════════════════════════════
    # OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    def start(self) -> AssessmentStatus:
        """
        Start a run. A no-op while already running.
        """
        if self.is_running:
            logger.debug(f"Session {self.session_id} already running, start ignored")
            return self.status()

        self.generation += 1
        self.hold.reset()
        self.side_statuses = empty_statuses()
        self.side_completed_at = {}
        self.frames_processed = 0
        self._completion_notified = False

        self.state = SessionState.RUNNING
        self.started_at = self.scheduler.time()
        self.ended_at = None
        self.timer.start()

        logger.info(
            f"▶️ Session {self.session_id} started "
            f"(budget: {self.config.session_budget}s, hold: {self.config.hold_duration}s)"
        )
        return self.status()

    def reset(self) -> AssessmentStatus:
        """Return to NOT_STARTED from any state, dropping all pending timers."""
        self.generation += 1
        self.timer.reset()
        self.hold.reset()
        self.side_statuses = empty_statuses()
        self.side_completed_at = {}
        self.frames_processed = 0
        self.started_at = None
        self.ended_at = None
        self._completion_notified = False
        self.state = SessionState.NOT_STARTED

        logger.info(f"🔄 Session {self.session_id} reset")
        return self.status()

    def on_frame(
        self,
        pose: Optional[PoseDetection],
        hands: Sequence[HandDetection],
        frame_height: float
    ) -> AssessmentStatus:
        """
        Process one frame of detections.

        Args:
            pose: First pose detected this frame, if any
            hands: Hand detections this frame
            frame_height: Frame height in pixels

        Returns:
            Updated status (unchanged if the session is not running)
        """
        if not self.is_running:
            return self.status()

        self.side_statuses = classify_frame(pose, hands, frame_height, self.config)
        self.frames_processed += 1

        side = self.hold.side
        outcome = self.hold.step(self.side_statuses[side])

        if outcome is HoldOutcome.SIDE_COMPLETE:
            self.side_completed_at[side] = self.scheduler.time()
        elif outcome is HoldOutcome.ALL_COMPLETE:
            self.side_completed_at[side] = self.scheduler.time()
            self._finish(SessionState.COMPLETED)

        return self.status()

    def clear_side_statuses(self):
        """Forget the last frame's verdicts; nothing carries over from a failed estimate."""
        self.side_statuses = empty_statuses()

    def process_keypoints(self, frame: FrameKeypoints) -> AssessmentStatus:
        """on_frame() for a whole FrameKeypoints record."""
        return self.on_frame(frame.pose, frame.hands, frame.frame_height)

    def status(self) -> AssessmentStatus:
        """Snapshot of the observable state. No side effects."""
        side = self.hold.side
        return AssessmentStatus(
            session_id=self.session_id,
            state=self.state,
            current_side=side,
            sides={s: replace(st) for s, st in self.side_statuses.items()},
            hold_phase=self.hold.phase,
            hold_remaining=self.hold.remaining,
            hold_elapsed=self.hold.elapsed,
            hold_duration=self.config.hold_duration,
            time_remaining=self.timer.remaining,
            session_budget=self.config.session_budget,
            completed_sides=list(self.hold.completed_sides),
            message=guidance_message(self.state, side, self.side_statuses[side], self.hold.elapsed),
        )

    def summary(self) -> Dict[str, Any]:
        """In-memory summary of the latest run."""
        def offset(moment: Optional[float]) -> Optional[float]:
            if moment is None or self.started_at is None:
                return None
            return round(moment - self.started_at, 1)

        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "passed": self.state is SessionState.COMPLETED,
            "seconds_used": self.timer.elapsed,
            "time_remaining": self.timer.remaining,
            "frames_processed": self.frames_processed,
            "sides": {
                side.value: {
                    "completed": side in self.side_completed_at,
                    "completed_at_seconds": offset(self.side_completed_at.get(side)),
                }
                for side in Side
            },
            "duration_seconds": offset(self.ended_at),
            "config": self.config.to_dict(),
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # TERMINATION
    # ═══════════════════════════════════════════════════════════════════════════

    def _on_timer_expired(self):
        if not self.is_running:
            return
        if self.hold.is_complete:
            self._finish(SessionState.COMPLETED)
        else:
            logger.info(f"⏰ Session {self.session_id} timed out on {self.hold.side.value} side")
            self._finish(SessionState.TIMED_OUT)

    def _finish(self, state: SessionState):
        self.timer.stop()
        self.hold.cancel_pending()
        self.state = state
        self.ended_at = self.scheduler.time()

        status = self.status()
        if state is SessionState.COMPLETED:
            logger.info(
                f"🎉 Session {self.session_id} completed with {self.timer.remaining}s remaining"
            )
            if not self._completion_notified:
                self._completion_notified = True
                if self.on_complete:
                    self.on_complete(status)
        if self.on_finished:
            self.on_finished(status)
