"""
MOTORCHECK+ Motor Service - Keypoint Types

Per-frame keypoints reported by the pose and hand estimators, and the
per-side status derived from them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class Side(Enum):
    """Arm being assessed."""
    LEFT = "left"
    RIGHT = "right"

    @classmethod
    def from_handedness(cls, label: str) -> Optional["Side"]:
        """Map an estimator handedness label ("Left", "right", ...) to a side."""
        try:
            return cls(label.strip().lower())
        except (ValueError, AttributeError):
            return None


# Fixed assessment order: right arm first, then left
SIDE_ORDER = (Side.RIGHT, Side.LEFT)


class PoseKeypointIndex:
    """
    COCO-17 keypoint order used for pose detections (MoveNet layout).
    """
    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16

    SHOULDERS = {Side.LEFT: LEFT_SHOULDER, Side.RIGHT: RIGHT_SHOULDER}


# Hand landmark 0 is the wrist
HAND_WRIST_INDEX = 0


# ═══════════════════════════════════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Keypoint:
    """A single 2D keypoint in pixel coordinates with a confidence score."""
    x: float
    y: float
    score: float = 1.0
    name: Optional[str] = None


@dataclass
class HandDetection:
    """One detected hand: handedness label plus its landmarks."""
    handedness: str
    keypoints: List[Keypoint] = field(default_factory=list)

    @property
    def side(self) -> Optional[Side]:
        return Side.from_handedness(self.handedness)

    @property
    def wrist(self) -> Optional[Keypoint]:
        if len(self.keypoints) > HAND_WRIST_INDEX:
            return self.keypoints[HAND_WRIST_INDEX]
        return None


@dataclass
class PoseDetection:
    """One detected body pose (COCO-17 ordering)."""
    keypoints: List[Keypoint] = field(default_factory=list)

    def shoulder(self, side: Side) -> Optional[Keypoint]:
        """Shoulder keypoint for a side, or None if the pose does not carry it."""
        index = PoseKeypointIndex.SHOULDERS[side]
        if index < len(self.keypoints):
            return self.keypoints[index]
        return None


@dataclass
class FrameKeypoints:
    """Everything the keypoint source reported for one frame."""
    poses: List[PoseDetection] = field(default_factory=list)
    hands: List[HandDetection] = field(default_factory=list)
    frame_width: float = 0.0
    frame_height: float = 0.0
    timestamp: float = 0.0

    @property
    def pose(self) -> Optional[PoseDetection]:
        """First pose only; additional people are ignored."""
        return self.poses[0] if self.poses else None


@dataclass
class SideStatus:
    """Per-frame verdict for one arm."""
    detected: bool = False
    correct_angle: bool = False
    shoulder_on_line: bool = False
    angle: Optional[float] = None  # degrees, None when not measurable

    @property
    def ok(self) -> bool:
        return self.detected and self.correct_angle and self.shoulder_on_line

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "correct_angle": self.correct_angle,
            "shoulder_on_line": self.shoulder_on_line,
            "angle": round(self.angle, 1) if self.angle is not None else None,
        }


def empty_statuses() -> Dict[Side, SideStatus]:
    """Fresh all-false status for both sides."""
    return {side: SideStatus() for side in Side}


# ═══════════════════════════════════════════════════════════════════════════════
# PARSING
# ═══════════════════════════════════════════════════════════════════════════════

def _require_dict(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be an object")
    return value


def _require_list(value: Any, what: str) -> List[Any]:
    if not isinstance(value, list):
        raise ValueError(f"{what} must be a list")
    return value


def _number(data: Dict[str, Any], key: str, what: str, default: Any = None) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{what}.{key} must be a number")
    return float(value)


def keypoint_from_dict(data: Any) -> Keypoint:
    """
    Build a Keypoint from an estimator dict ({x, y, score, name?}).

    Raises:
        ValueError: not an object, or x/y/score not numeric
    """
    data = _require_dict(data, "keypoint")
    name = data.get("name")
    return Keypoint(
        x=_number(data, "x", "keypoint"),
        y=_number(data, "y", "keypoint"),
        score=_number(data, "score", "keypoint", default=1.0),
        name=str(name) if name is not None else None,
    )


def _keypoints_from(data: Dict[str, Any], what: str) -> List[Keypoint]:
    return [keypoint_from_dict(kp) for kp in _require_list(data.get("keypoints", []), f"{what}.keypoints")]


def frame_from_dict(data: Any) -> FrameKeypoints:
    """
    Build FrameKeypoints from the JSON shape browser-side estimators send.

    Expected shape:
        {
            "poses": [{"keypoints": [{"x", "y", "score"}, ...]}],
            "hands": [{"handedness": "Left", "keypoints": [...]}],
            "frame_width": 640, "frame_height": 480
        }

    Raises:
        ValueError: wrong shape, or frame_height missing or not positive
    """
    data = _require_dict(data, "keypoints payload")

    frame_height = _number(data, "frame_height", "keypoints payload")
    if frame_height <= 0:
        raise ValueError("keypoints payload.frame_height must be positive")

    poses = [
        PoseDetection(keypoints=_keypoints_from(_require_dict(pose, "pose"), "pose"))
        for pose in _require_list(data.get("poses", []), "poses")
    ]
    hands = []
    for hand in _require_list(data.get("hands", []), "hands"):
        hand = _require_dict(hand, "hand")
        hands.append(HandDetection(
            handedness=str(hand.get("handedness", "")),
            keypoints=_keypoints_from(hand, "hand"),
        ))

    return FrameKeypoints(
        poses=poses,
        hands=hands,
        frame_width=_number(data, "frame_width", "keypoints payload", default=0),
        frame_height=frame_height,
        timestamp=_number(data, "timestamp", "keypoints payload", default=0),
    )
