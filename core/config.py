"""
MOTORCHECK+ Configuration

Environment variables and application settings.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "MOTORCHECK+"
    DEBUG: bool = True

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080"]

    # WebSocket
    WS_MAX_CONNECTIONS: int = 100
    WS_HEARTBEAT_INTERVAL: int = 30

    # Thread Pool
    THREAD_POOL_SIZE: int = 4
    ML_POOL_SIZE: int = 2

    # Assessment timing
    ASSESSMENT_SESSION_BUDGET: int = 60  # seconds for both sides
    ASSESSMENT_HOLD_DURATION: int = 10  # seconds each arm must be held
    ASSESSMENT_DETECTION_INTERVAL: float = 0.1  # seconds between detection ticks

    # Assessment geometry
    ASSESSMENT_LINE_POSITION: float = 0.7  # shoulder line, fraction of frame height
    ASSESSMENT_LINE_TOLERANCE: float = 20.0  # pixels
    ASSESSMENT_ANGLE_TOLERANCE: float = 15.0  # degrees
    ASSESSMENT_RIGHT_TARGET_ANGLE: float = 45.0
    ASSESSMENT_LEFT_TARGET_ANGLE: float = 135.0
    ASSESSMENT_MIN_SHOULDER_SCORE: float = 0.3

    # Server-side estimators
    ESTIMATOR_MAX_HANDS: int = 2
    ESTIMATOR_MIN_DETECTION_CONFIDENCE: float = 0.5
    ESTIMATOR_MIN_TRACKING_CONFIDENCE: float = 0.5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
