"""
Test helpers: a manual clock standing in for the event loop, and keypoint
builders for typical frames.
"""

import math
from typing import Any, Callable, List, Optional, Tuple

from motor_service.models.keypoints import (
    FrameKeypoints,
    HandDetection,
    Keypoint,
    PoseDetection,
)

FRAME_WIDTH = 640.0
FRAME_HEIGHT = 480.0
LINE_Y = 336.0  # 0.7 * FRAME_HEIGHT

RIGHT_SHOULDER = (240.0, LINE_Y)
LEFT_SHOULDER = (400.0, LINE_Y)

# Timers due within this distance of the target time fire at the target
CLOCK_EPSILON = 1e-9


class FakeHandle:
    def __init__(self, when: float, seq: int, callback: Callable[..., Any], args: tuple):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock with call_at(), advanced explicitly by the test."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self._queue: List[FakeHandle] = []
        self._seq = 0

    def time(self) -> float:
        return self.now

    def call_at(self, when: float, callback: Callable[..., Any], *args: Any) -> FakeHandle:
        self._seq += 1
        handle = FakeHandle(when, self._seq, callback, args)
        self._queue.append(handle)
        return handle

    @property
    def pending(self) -> List[FakeHandle]:
        return [h for h in self._queue if not h.cancelled]

    def advance_to(self, target: float):
        """Fire every live callback due up to `target`, in time order."""
        while True:
            due = [h for h in self.pending if h.when <= target + CLOCK_EPSILON]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._queue.remove(handle)
            self.now = max(self.now, min(handle.when, target))
            handle.callback(*handle.args)
        self._queue = self.pending
        self.now = max(self.now, target)

    def advance(self, seconds: float):
        self.advance_to(self.now + seconds)


# ============================================
# Keypoint builders
# ============================================

def make_pose(
    right: Optional[Tuple[float, float]] = RIGHT_SHOULDER,
    left: Optional[Tuple[float, float]] = LEFT_SHOULDER,
    score: float = 0.9
) -> PoseDetection:
    """COCO-17 pose with only the shoulders placed meaningfully."""
    keypoints = [Keypoint(x=0.0, y=0.0, score=0.9) for _ in range(17)]
    if left is not None:
        keypoints[5] = Keypoint(x=left[0], y=left[1], score=score, name="left_shoulder")
    else:
        keypoints[5] = Keypoint(x=0.0, y=0.0, score=0.0, name="left_shoulder")
    if right is not None:
        keypoints[6] = Keypoint(x=right[0], y=right[1], score=score, name="right_shoulder")
    else:
        keypoints[6] = Keypoint(x=0.0, y=0.0, score=0.0, name="right_shoulder")
    return PoseDetection(keypoints=keypoints)


def make_hand(handedness: str, wrist: Tuple[float, float]) -> HandDetection:
    """21-landmark hand whose landmark 0 (wrist) is at `wrist`."""
    x, y = wrist
    fingers = [Keypoint(x=x + i, y=y - 2 * i) for i in range(1, 21)]
    return HandDetection(handedness=handedness, keypoints=[Keypoint(x=x, y=y)] + fingers)


def wrist_at(shoulder: Tuple[float, float], angle: float, length: float = 100.0) -> Tuple[float, float]:
    """Wrist position at `angle` degrees from the shoulder (y grows downward)."""
    rad = math.radians(angle)
    return shoulder[0] + length * math.cos(rad), shoulder[1] - length * math.sin(rad)


def make_frame(
    right_angle: Optional[float] = 45.0,
    left_angle: Optional[float] = 135.0,
    pose: Optional[PoseDetection] = None,
    frame_height: float = FRAME_HEIGHT
) -> FrameKeypoints:
    """
    Frame with a hand per side raised at the given angle.

    A side whose angle is None has no hand in view.
    """
    pose = pose or make_pose()
    hands = []
    if right_angle is not None:
        hands.append(make_hand("Right", wrist_at(RIGHT_SHOULDER, right_angle)))
    if left_angle is not None:
        hands.append(make_hand("Left", wrist_at(LEFT_SHOULDER, left_angle)))
    return FrameKeypoints(
        poses=[pose],
        hands=hands,
        frame_width=FRAME_WIDTH,
        frame_height=frame_height,
    )


def ok_frame() -> FrameKeypoints:
    """Both arms at their targets, both shoulders on the line."""
    return make_frame()


def idle_frame() -> FrameKeypoints:
    """Person in view, no hands."""
    return make_frame(right_angle=None, left_angle=None)


def feed_frames(session, scheduler: FakeScheduler, frame: FrameKeypoints, start_tenth: int, end_tenth: int):
    """
    Feed `frame` every 100 ms from start_tenth/10 to end_tenth/10 inclusive,
    firing due timers before each frame. Returns the last status.
    """
    status = None
    for k in range(start_tenth, end_tenth + 1):
        scheduler.advance_to(k / 10)
        status = session.process_keypoints(frame)
    return status
