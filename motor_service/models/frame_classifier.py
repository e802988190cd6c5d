"""
MOTORCHECK+ Motor Service - Frame Classifier

Turns one frame of pose + hand detections into a SideStatus per arm.
Statuses are rebuilt from scratch on every call; nothing from a previous
frame is carried over.
"""

import logging
from typing import Dict, Optional, Sequence

from .config import AssessmentConfig
from .geometry import angle_matches, compute_angle, shoulder_on_line
from .keypoints import HandDetection, PoseDetection, Side, SideStatus, empty_statuses

logger = logging.getLogger(__name__)


def select_hands(hands: Sequence[HandDetection]) -> Dict[Side, HandDetection]:
    """
    Keep at most one hand per side.

    When several detections share a handedness the first one wins.
    Unrecognised handedness labels are ignored.
    """
    selected: Dict[Side, HandDetection] = {}
    for hand in hands:
        side = hand.side
        if side is None:
            logger.debug(f"Ignoring hand with handedness {hand.handedness!r}")
            continue
        selected.setdefault(side, hand)
    return selected


def classify_side(
    side: Side,
    hand: HandDetection,
    pose: Optional[PoseDetection],
    frame_height: float,
    config: AssessmentConfig
) -> SideStatus:
    """Evaluate one side that has a hand in view."""
    status = SideStatus(detected=True)

    shoulder = pose.shoulder(side) if pose is not None else None
    wrist = hand.wrist
    if shoulder is None or shoulder.score <= config.min_shoulder_score:
        return status

    status.shoulder_on_line = shoulder_on_line(
        shoulder,
        config.line_y(frame_height),
        config.line_tolerance,
        config.min_shoulder_score,
    )

    if wrist is not None:
        status.angle = compute_angle(shoulder, wrist)
        status.correct_angle = angle_matches(
            status.angle,
            side,
            config.angle_tolerance,
            config.target_angle(side),
        )

    return status


def classify_frame(
    pose: Optional[PoseDetection],
    hands: Sequence[HandDetection],
    frame_height: float,
    config: Optional[AssessmentConfig] = None
) -> Dict[Side, SideStatus]:
    """
    Classify both arms for one frame.

    Args:
        pose: First pose detected this frame, if any
        hands: All hand detections this frame
        frame_height: Frame height in pixels (positions the reference line)
        config: Assessment configuration

    Returns:
        Dict with a SideStatus for Side.LEFT and Side.RIGHT
    """
    config = config or AssessmentConfig()
    statuses = empty_statuses()

    for side, hand in select_hands(hands).items():
        statuses[side] = classify_side(side, hand, pose, frame_height, config)

    return statuses
