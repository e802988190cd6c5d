#!/usr/bin/env python3
"""
Local Camera Assessment Runner
==============================
Runs one arm-hold motor assessment against a local webcam, with MediaPipe
pose and hand estimation, and logs the status as it changes.

Usage Examples:
---------------
# Default camera, default timings
python scripts/run_camera_assessment.py

# Second camera, shorter hold, preview window with the reference line
python scripts/run_camera_assessment.py --camera 1 --hold-duration 5 --preview
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import cv2

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import settings
from core.threading import process_video_frame, video_worker_pool, ml_worker_pool
from motor_service.models import (
    AssessmentConfig,
    AssessmentSession,
    AssessmentStatus,
    DetectionLoop,
    EstimatorLoadError,
    MediaPipeKeypointSource,
    SessionState,
)
from shared.utils import setup_logger

logger = setup_logger("motorcheck.camera")
# Output goes through its own handler only
logger.propagate = False


def read_frame(capture: cv2.VideoCapture):
    ok, frame = capture.read()
    return frame if ok else None


def draw_overlay(frame, config: AssessmentConfig, status: AssessmentStatus):
    """Reference line and guidance message on a preview frame."""
    height, width = frame.shape[:2]
    line_y = int(config.line_y(height))
    cv2.line(frame, (0, line_y), (width, line_y), (0, 255, 255), 2)
    cv2.putText(frame, status.message, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 255, 0), 2)
    cv2.putText(frame, f"{status.time_remaining}s", (10, 60), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (255, 255, 255), 2)
    return frame


async def run_assessment(args: argparse.Namespace) -> SessionState:
    config = AssessmentConfig.from_settings().with_overrides(
        session_budget=args.session_budget,
        hold_duration=args.hold_duration,
    )

    source = MediaPipeKeypointSource(
        max_hands=settings.ESTIMATOR_MAX_HANDS,
        min_detection_confidence=settings.ESTIMATOR_MIN_DETECTION_CONFIDENCE,
        min_tracking_confidence=settings.ESTIMATOR_MIN_TRACKING_CONFIDENCE,
    )
    await source.load()

    capture = cv2.VideoCapture(args.camera)
    if not capture.isOpened():
        source.close()
        raise RuntimeError(f"Could not open camera {args.camera}")

    last_message = None

    async def on_status(status: AssessmentStatus):
        nonlocal last_message
        if status.message != last_message:
            last_message = status.message
            logger.info(f"[{status.time_remaining:>2}s] {status.current_side.value}: {status.message}")

    session = AssessmentSession("camera", config=config)
    loop = DetectionLoop(session, source, on_status=on_status)

    try:
        session.start()
        loop.start()

        while session.is_running:
            frame = await process_video_frame(read_frame, capture)
            if frame is None:
                logger.warning("⚠️ Camera returned no frame")
                await asyncio.sleep(config.detection_interval)
                continue

            source.frame_buffer.put(frame)

            if args.preview:
                cv2.imshow("MOTORCHECK+", draw_overlay(frame, config, session.status()))
                if cv2.waitKey(1) & 0xFF == ord("q"):
                    session.reset()
                    break
            else:
                await asyncio.sleep(0)
    finally:
        await loop.stop()
        capture.release()
        source.close()
        if args.preview:
            cv2.destroyAllWindows()

    summary = session.summary()
    logger.info(f"Result: {summary['state']} ({summary['seconds_used']}s used)")
    for side, info in summary["sides"].items():
        logger.info(f"  {side}: completed={info['completed']} at {info['completed_at_seconds']}s")
    return session.state


def parse_arguments() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Run an arm-hold motor assessment against a local webcam',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        '-c', '--camera',
        type=int,
        default=0,
        help='Camera index for OpenCV (default: 0)'
    )
    parser.add_argument(
        '--session-budget',
        type=int,
        default=None,
        help=f'Session time budget in seconds (default: {settings.ASSESSMENT_SESSION_BUDGET})'
    )
    parser.add_argument(
        '--hold-duration',
        type=int,
        default=None,
        help=f'Seconds to hold each arm (default: {settings.ASSESSMENT_HOLD_DURATION})'
    )
    parser.add_argument(
        '--preview',
        action='store_true',
        help='Show a preview window with the reference line (q to quit)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose/debug logging'
    )
    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_arguments()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        state = asyncio.run(run_assessment(args))
    except EstimatorLoadError as e:
        logger.error(f"Estimators unavailable: {e}")
        sys.exit(2)
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)
    finally:
        video_worker_pool.shutdown(wait=True)
        ml_worker_pool.shutdown(wait=True)

    sys.exit(0 if state is SessionState.COMPLETED else 1)


if __name__ == '__main__':
    main()
