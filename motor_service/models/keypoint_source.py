"""
MOTORCHECK+ Motor Service - Keypoint Sources

Where detection ticks get their keypoints from:

- PushedKeypointSource: browser-side estimators push ready keypoints over
  the websocket; each tick consumes the newest set.
- MediaPipeKeypointSource: the client pushes JPEG frames; MediaPipe Pose and
  Hands run on the server in the ML worker pool.

A source that cannot load its models raises EstimatorLoadError; a source
with nothing new for a tick raises NoFrameAvailable.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

import cv2
import numpy as np

from core.threading import run_ml_inference
from shared.utils import log_execution_time

from .keypoints import FrameKeypoints, HandDetection, Keypoint, PoseDetection

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════════════

class EstimatorLoadError(RuntimeError):
    """The pose/hand estimators could not be initialised."""


class NoFrameAvailable(LookupError):
    """Nothing new to estimate on this tick."""


# ═══════════════════════════════════════════════════════════════════════════════
# SOURCE INTERFACE
# ═══════════════════════════════════════════════════════════════════════════════

class KeypointSource(ABC):
    """Supplies one frame of keypoints per detection tick."""

    name = "source"

    async def load(self):
        """Prepare the estimators. Raises EstimatorLoadError on failure."""

    @abstractmethod
    async def estimate(self) -> FrameKeypoints:
        """Keypoints for the newest frame."""

    def close(self):
        """Release estimator resources."""


class PushedKeypointSource(KeypointSource):
    """Latest keypoints pushed by a client running its own estimators."""

    name = "client"

    def __init__(self):
        self._latest: Optional[FrameKeypoints] = None
        self.pushed_count = 0

    def push(self, frame: FrameKeypoints):
        """Replace any keypoints not yet consumed."""
        self._latest = frame
        self.pushed_count += 1

    async def estimate(self) -> FrameKeypoints:
        frame, self._latest = self._latest, None
        if frame is None:
            raise NoFrameAvailable("No keypoints pushed since the last tick")
        return frame


# ═══════════════════════════════════════════════════════════════════════════════
# SERVER-SIDE ESTIMATION
# ═══════════════════════════════════════════════════════════════════════════════

class FrameBuffer:
    """Holds only the newest video frame; older unconsumed frames are dropped."""

    def __init__(self):
        self._frame: Optional[np.ndarray] = None
        self._timestamp = 0.0
        self._lock = threading.Lock()
        self.dropped_count = 0

    def put(self, frame: np.ndarray, timestamp: Optional[float] = None):
        with self._lock:
            if self._frame is not None:
                self.dropped_count += 1
            self._frame = frame
            self._timestamp = timestamp if timestamp is not None else time.time()

    def take(self) -> Tuple[np.ndarray, float]:
        with self._lock:
            frame, self._frame = self._frame, None
            timestamp = self._timestamp
        if frame is None:
            raise NoFrameAvailable("No video frame received since the last tick")
        return frame, timestamp


def decode_jpeg_frame(data: bytes) -> np.ndarray:
    """Decode JPEG/PNG bytes into a BGR frame."""
    nparr = np.frombuffer(data, np.uint8)
    frame = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if frame is None:
        raise ValueError("Invalid frame data")
    return frame


# MediaPipe Pose (33 landmarks) -> COCO-17 order
MEDIAPIPE_TO_COCO = [
    0,   # nose
    2,   # left eye
    5,   # right eye
    7,   # left ear
    8,   # right ear
    11,  # left shoulder
    12,  # right shoulder
    13,  # left elbow
    14,  # right elbow
    15,  # left wrist
    16,  # right wrist
    23,  # left hip
    24,  # right hip
    25,  # left knee
    26,  # right knee
    27,  # left ankle
    28,  # right ankle
]


class MediaPipeKeypointSource(KeypointSource):
    """
    Runs MediaPipe Pose and Hands on the newest buffered frame.

    Inference is blocking, so it runs in the ML worker pool.
    """

    name = "server"

    def __init__(
        self,
        frame_buffer: Optional[FrameBuffer] = None,
        max_hands: int = 2,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5
    ):
        self.frame_buffer = frame_buffer or FrameBuffer()
        self.max_hands = max_hands
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence

        self.pose_detector = None
        self.hand_detector = None
        self._inference_lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self.pose_detector is not None and self.hand_detector is not None

    async def load(self):
        if self.loaded:
            return
        await run_ml_inference(self._create_detectors, None)

    def _create_detectors(self, _unused: Any = None):
        try:
            import mediapipe as mp

            self.pose_detector = mp.solutions.pose.Pose(
                static_image_mode=False,
                model_complexity=1,
                enable_segmentation=False,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
            )
            self.hand_detector = mp.solutions.hands.Hands(
                max_num_hands=self.max_hands,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
            )
        except Exception as e:
            self.close()
            raise EstimatorLoadError(f"Failed to initialize MediaPipe estimators: {e}") from e

        logger.info("✅ MediaPipe pose and hand estimators initialized")

    async def estimate(self) -> FrameKeypoints:
        if not self.loaded:
            raise EstimatorLoadError("Estimators not loaded")
        frame, timestamp = self.frame_buffer.take()
        keypoints = await run_ml_inference(self.estimate_frame, frame)
        keypoints.timestamp = timestamp
        return keypoints

    @log_execution_time
    def estimate_frame(self, frame: np.ndarray) -> FrameKeypoints:
        """
        Run both estimators on one BGR frame.

        Args:
            frame: BGR image (H, W, 3)

        Returns:
            FrameKeypoints in pixel coordinates
        """
        height, width = frame.shape[:2]
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

        # MediaPipe graphs are not safe to run concurrently
        with self._inference_lock:
            pose_results = self.pose_detector.process(rgb_frame)
            hand_results = self.hand_detector.process(rgb_frame)

        return FrameKeypoints(
            poses=self._convert_pose(pose_results, width, height),
            hands=self._convert_hands(hand_results, width, height),
            frame_width=float(width),
            frame_height=float(height),
        )

    @staticmethod
    def _convert_pose(results: Any, width: int, height: int) -> List[PoseDetection]:
        if not results.pose_landmarks:
            return []

        landmarks = results.pose_landmarks.landmark
        keypoints = [
            Keypoint(
                x=landmarks[idx].x * width,
                y=landmarks[idx].y * height,
                score=float(landmarks[idx].visibility),
            )
            for idx in MEDIAPIPE_TO_COCO
        ]
        return [PoseDetection(keypoints=keypoints)]

    @staticmethod
    def _convert_hands(results: Any, width: int, height: int) -> List[HandDetection]:
        if not results.multi_hand_landmarks:
            return []

        hands = []
        for hand_landmarks, handedness in zip(results.multi_hand_landmarks, results.multi_handedness):
            classification = handedness.classification[0]
            hands.append(HandDetection(
                handedness=classification.label,
                keypoints=[
                    Keypoint(x=lm.x * width, y=lm.y * height, score=float(classification.score))
                    for lm in hand_landmarks.landmark
                ],
            ))
        return hands

    def close(self):
        if self.pose_detector is not None:
            self.pose_detector.close()
            self.pose_detector = None
        if self.hand_detector is not None:
            self.hand_detector.close()
            self.hand_detector = None
