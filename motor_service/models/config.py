"""
MOTORCHECK+ Motor Service - Assessment Configuration
"""

from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, Optional

from core.config import Settings, settings as default_settings

from .keypoints import Side


@dataclass(frozen=True)
class AssessmentConfig:
    """Tunable parameters for one assessment session."""
    session_budget: int = 60  # seconds
    hold_duration: int = 10  # seconds
    detection_interval: float = 0.1  # seconds
    line_position: float = 0.7  # fraction of frame height
    line_tolerance: float = 20.0  # pixels
    angle_tolerance: float = 15.0  # degrees
    right_target_angle: float = 45.0
    left_target_angle: float = 135.0
    min_shoulder_score: float = 0.3

    def __post_init__(self):
        if self.session_budget <= 0:
            raise ValueError("session_budget must be positive")
        if self.hold_duration <= 0:
            raise ValueError("hold_duration must be positive")
        if self.detection_interval <= 0:
            raise ValueError("detection_interval must be positive")
        if not 0.0 <= self.line_position <= 1.0:
            raise ValueError("line_position must be within [0, 1]")

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "AssessmentConfig":
        """Build the default config from environment-backed settings."""
        s = source or default_settings
        return cls(
            session_budget=s.ASSESSMENT_SESSION_BUDGET,
            hold_duration=s.ASSESSMENT_HOLD_DURATION,
            detection_interval=s.ASSESSMENT_DETECTION_INTERVAL,
            line_position=s.ASSESSMENT_LINE_POSITION,
            line_tolerance=s.ASSESSMENT_LINE_TOLERANCE,
            angle_tolerance=s.ASSESSMENT_ANGLE_TOLERANCE,
            right_target_angle=s.ASSESSMENT_RIGHT_TARGET_ANGLE,
            left_target_angle=s.ASSESSMENT_LEFT_TARGET_ANGLE,
            min_shoulder_score=s.ASSESSMENT_MIN_SHOULDER_SCORE,
        )

    def with_overrides(self, **overrides: Any) -> "AssessmentConfig":
        """Copy with the given non-None fields replaced."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    def target_angle(self, side: Side) -> float:
        return self.right_target_angle if side is Side.RIGHT else self.left_target_angle

    def line_y(self, frame_height: float) -> float:
        """Reference line position in pixels."""
        return frame_height * self.line_position

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
