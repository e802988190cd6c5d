"""
MOTORCHECK+ Motor Service - Geometry Evaluator

Pure functions judging one arm in one frame: is the shoulder on the
reference line, and is the shoulder-to-wrist vector at the target angle.
Image coordinates: x grows to the right, y grows downward.
"""

import numpy as np
from typing import Optional

from .keypoints import Keypoint, Side

# Shoulders at or below this score are not trusted
MIN_SHOULDER_SCORE = 0.3

DEFAULT_LINE_TOLERANCE = 20.0
DEFAULT_ANGLE_TOLERANCE = 15.0

TARGET_ANGLES = {
    Side.RIGHT: 45.0,
    Side.LEFT: 135.0,  # mirror of the right-side target
}


def shoulder_on_line(
    shoulder: Optional[Keypoint],
    line_y: float,
    tolerance: float = DEFAULT_LINE_TOLERANCE,
    min_score: float = MIN_SHOULDER_SCORE
) -> bool:
    """
    Check whether a shoulder sits on the horizontal reference line.

    Args:
        shoulder: Shoulder keypoint (None if not detected)
        line_y: Vertical pixel position of the line
        tolerance: Maximum distance from the line, exclusive
        min_score: Confidence the shoulder must exceed

    Returns:
        True iff the shoulder is trusted and strictly within tolerance
    """
    if shoulder is None or shoulder.score <= min_score:
        return False
    return abs(shoulder.y - line_y) < tolerance


def compute_angle(shoulder: Keypoint, wrist: Keypoint) -> float:
    """
    Angle of the shoulder-to-wrist vector in degrees, within [0, 360).

    0 degrees points horizontally to the right of the image, 90 degrees
    straight up. The y difference is inverted because image y grows downward.
    """
    dx = wrist.x - shoulder.x
    dy = shoulder.y - wrist.y
    angle = float(np.degrees(np.arctan2(dy, dx)))
    return angle + 360.0 if angle < 0 else angle


def angle_matches(
    angle: float,
    side: Side,
    tolerance: float = DEFAULT_ANGLE_TOLERANCE,
    target: Optional[float] = None
) -> bool:
    """
    Check an arm angle against the side's target.

    The difference is taken literally, without wrapping around 0/360.
    """
    if target is None:
        target = TARGET_ANGLES[side]
    return abs(angle - target) <= tolerance
