"""
MOTORCHECK+ Motor Service Models

Keypoint geometry, hold/side state machine and session control for the
arm-hold motor weakness assessment.
"""

from .keypoints import (
    Side,
    SIDE_ORDER,
    Keypoint,
    HandDetection,
    PoseDetection,
    FrameKeypoints,
    SideStatus,
    frame_from_dict,
)

from .config import AssessmentConfig

from .geometry import (
    shoulder_on_line,
    compute_angle,
    angle_matches,
)

from .frame_classifier import classify_frame

from .hold_machine import (
    HoldPhase,
    HoldOutcome,
    HoldStateMachine,
)

from .assessment_session import (
    AssessmentSession,
    AssessmentStatus,
    SessionState,
    SessionTimer,
)

from .keypoint_source import (
    KeypointSource,
    PushedKeypointSource,
    MediaPipeKeypointSource,
    FrameBuffer,
    EstimatorLoadError,
    NoFrameAvailable,
    decode_jpeg_frame,
)

from .detection_loop import DetectionLoop

from .session_handler import (
    AssessmentSessionHandler,
    SourceKind,
    session_room,
    get_session_handler,
)

__all__ = [
    # Keypoints
    "Side",
    "SIDE_ORDER",
    "Keypoint",
    "HandDetection",
    "PoseDetection",
    "FrameKeypoints",
    "SideStatus",
    "frame_from_dict",
    # Geometry
    "AssessmentConfig",
    "shoulder_on_line",
    "compute_angle",
    "angle_matches",
    "classify_frame",
    # Hold / session
    "HoldPhase",
    "HoldOutcome",
    "HoldStateMachine",
    "AssessmentSession",
    "AssessmentStatus",
    "SessionState",
    "SessionTimer",
    # Sources
    "KeypointSource",
    "PushedKeypointSource",
    "MediaPipeKeypointSource",
    "FrameBuffer",
    "EstimatorLoadError",
    "NoFrameAvailable",
    "decode_jpeg_frame",
    "DetectionLoop",
    # Handler
    "AssessmentSessionHandler",
    "SourceKind",
    "session_room",
    "get_session_handler",
]
