"""
MOTORCHECK+ Motor Service - Session Handler

Registry of live assessment sessions. Each session is paired with its
keypoint source and, while running, a detection loop. Status, completion
and timeout updates are published as websocket messages to the session's
room.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.config import settings
from core.threading import process_video_frame
from core.websocket import MessageType, WebSocketMessage, connection_manager

from .assessment_session import AssessmentSession, AssessmentStatus, SessionState
from .config import AssessmentConfig
from .detection_loop import DetectionLoop
from .keypoint_source import (
    KeypointSource,
    MediaPipeKeypointSource,
    PushedKeypointSource,
    decode_jpeg_frame,
)
from .keypoints import FrameKeypoints

logger = logging.getLogger(__name__)

Publisher = Callable[[str, WebSocketMessage], Awaitable[Any]]


class SourceKind(str, Enum):
    """Where keypoints are estimated."""
    CLIENT = "client"  # browser-side estimators push keypoints
    SERVER = "server"  # client pushes frames, MediaPipe runs here


def session_room(session_id: str) -> str:
    return f"motor:session:{session_id}"


async def broadcast_to_session(session_id: str, message: WebSocketMessage) -> int:
    """Default publisher: every websocket client watching the session."""
    return await connection_manager.broadcast_to_room(session_room(session_id), message)


@dataclass
class ManagedSession:
    """A session plus the machinery that feeds it."""
    session: AssessmentSession
    source: KeypointSource
    source_kind: SourceKind
    loop: Optional[DetectionLoop] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AssessmentSessionHandler:
    """
    Manages motor assessment sessions.

    Features:
    - Client-side or server-side keypoint estimation per session
    - Detection loop lifecycle tied to the session state
    - Status/completion/timeout broadcasting
    """

    def __init__(self, publisher: Optional[Publisher] = None):
        """
        Args:
            publisher: Async callable (session_id, message); defaults to the
                websocket room broadcast
        """
        self.publisher = publisher or broadcast_to_session
        self.active_sessions: Dict[str, ManagedSession] = {}
        self._background: set = set()

    # ═══════════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_session(
        self,
        config: Optional[AssessmentConfig] = None,
        source_kind: SourceKind = SourceKind.CLIENT
    ) -> AssessmentSession:
        """
        Create a session and load its keypoint source.

        Raises:
            EstimatorLoadError: the source could not load; nothing is registered
        """
        session_id = str(uuid.uuid4())[:8]
        source = self._build_source(source_kind)
        await source.load()

        session = AssessmentSession(
            session_id=session_id,
            config=config,
            on_complete=self._on_session_complete,
            on_finished=self._on_session_finished,
        )
        self.active_sessions[session_id] = ManagedSession(
            session=session,
            source=source,
            source_kind=source_kind,
        )

        logger.info(f"🆕 Session {session_id} created (source: {source_kind.value})")
        return session

    @staticmethod
    def _build_source(source_kind: SourceKind) -> KeypointSource:
        if source_kind is SourceKind.SERVER:
            return MediaPipeKeypointSource(
                max_hands=settings.ESTIMATOR_MAX_HANDS,
                min_detection_confidence=settings.ESTIMATOR_MIN_DETECTION_CONFIDENCE,
                min_tracking_confidence=settings.ESTIMATOR_MIN_TRACKING_CONFIDENCE,
            )
        return PushedKeypointSource()

    async def start_session(self, session_id: str) -> Optional[AssessmentStatus]:
        """Start (or keep running) a session and its detection loop."""
        managed = self.active_sessions.get(session_id)
        if not managed:
            return None

        status = managed.session.start()
        if managed.loop is None or not managed.loop.running:
            managed.loop = DetectionLoop(
                managed.session,
                managed.source,
                on_status=self._publish_status,
            )
            managed.loop.start()

        await self._publish_status(status)
        return status

    async def reset_session(self, session_id: str) -> Optional[AssessmentStatus]:
        """Stop the detection loop and return the session to not started."""
        managed = self.active_sessions.get(session_id)
        if not managed:
            return None

        status = managed.session.reset()
        if managed.loop is not None:
            await managed.loop.stop()
            managed.loop = None

        await self._publish_status(status)
        return status

    async def cleanup_session(self, session_id: str) -> bool:
        """Tear a session down completely and forget it."""
        managed = self.active_sessions.pop(session_id, None)
        if not managed:
            return False

        if managed.loop is not None:
            await managed.loop.stop()
        managed.session.reset()
        managed.source.close()

        logger.info(f"🗑️ Session {session_id} removed")
        return True

    async def shutdown(self):
        for session_id in list(self.active_sessions.keys()):
            await self.cleanup_session(session_id)

    # ═══════════════════════════════════════════════════════════════════════════
    # INPUT
    # ═══════════════════════════════════════════════════════════════════════════

    def push_keypoints(self, session_id: str, frame: FrameKeypoints) -> bool:
        """
        Hand client-estimated keypoints to the session's source.

        Raises:
            ValueError: the session estimates keypoints on the server
        """
        managed = self.active_sessions.get(session_id)
        if not managed:
            return False
        if not isinstance(managed.source, PushedKeypointSource):
            raise ValueError("This session expects video frames, not keypoints")
        managed.source.push(frame)
        return True

    async def push_frame(self, session_id: str, data: bytes) -> bool:
        """
        Decode a JPEG frame and buffer it for server-side estimation.

        Raises:
            ValueError: undecodable frame, or the session expects keypoints
        """
        managed = self.active_sessions.get(session_id)
        if not managed:
            return False
        if not isinstance(managed.source, MediaPipeKeypointSource):
            raise ValueError("This session expects keypoints, not video frames")

        frame = await process_video_frame(decode_jpeg_frame, data)
        managed.source.frame_buffer.put(frame)
        return True

    # ═══════════════════════════════════════════════════════════════════════════
    # QUERIES
    # ═══════════════════════════════════════════════════════════════════════════

    def get_session(self, session_id: str) -> Optional[AssessmentSession]:
        managed = self.active_sessions.get(session_id)
        return managed.session if managed else None

    def get_session_status(self, session_id: str) -> Optional[AssessmentStatus]:
        session = self.get_session(session_id)
        return session.status() if session else None

    def get_summary(self, session_id: str) -> Optional[Dict[str, Any]]:
        managed = self.active_sessions.get(session_id)
        if not managed:
            return None
        summary = managed.session.summary()
        summary["source"] = managed.source_kind.value
        if managed.loop is not None:
            summary["detection"] = managed.loop.get_stats()
        return summary

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [
            {
                "session_id": session_id,
                "state": managed.session.state.value,
                "source": managed.source_kind.value,
                "created_at": managed.created_at.isoformat(),
            }
            for session_id, managed in self.active_sessions.items()
        ]

    def get_stats(self) -> dict:
        sessions = [m.session for m in self.active_sessions.values()]
        return {
            "total_sessions": len(sessions),
            "running": len([s for s in sessions if s.is_running]),
            "finished": len([s for s in sessions if s.is_finished]),
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # PUBLISHING
    # ═══════════════════════════════════════════════════════════════════════════

    async def _publish_status(self, status: AssessmentStatus):
        await self.publisher(status.session_id, WebSocketMessage(
            type=MessageType.ASSESSMENT_STATUS,
            payload=status.to_dict()
        ))

    def _on_session_complete(self, status: AssessmentStatus):
        session = self.get_session(status.session_id)
        summary = session.summary() if session else None
        self._publish_later(status.session_id, WebSocketMessage(
            type=MessageType.ASSESSMENT_COMPLETED,
            payload={"status": status.to_dict(), "summary": summary}
        ))

    def _on_session_finished(self, status: AssessmentStatus):
        if status.state is SessionState.TIMED_OUT:
            self._publish_later(status.session_id, WebSocketMessage(
                type=MessageType.ASSESSMENT_TIMED_OUT,
                payload={"status": status.to_dict()}
            ))

    def _publish_later(self, session_id: str, message: WebSocketMessage):
        """Publish from a synchronous timer callback on the running loop."""
        task = asyncio.get_running_loop().create_task(self.publisher(session_id, message))
        self._background.add(task)
        task.add_done_callback(self._background.discard)


# ═══════════════════════════════════════════════════════════════════════════════
# MODULE-LEVEL SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_handler_instance: Optional[AssessmentSessionHandler] = None


def get_session_handler() -> AssessmentSessionHandler:
    """Get or create the global session handler instance."""
    global _handler_instance
    if _handler_instance is None:
        _handler_instance = AssessmentSessionHandler()
    return _handler_instance
