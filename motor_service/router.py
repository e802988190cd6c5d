"""
MOTORCHECK+ Motor Service Router

Endpoints for the arm-hold motor weakness assessment: session lifecycle,
status and summary over REST, live keypoints/frames and status updates
over WebSocket.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, WebSocket
from pydantic import BaseModel, Field

from core.websocket import ConnectedClient, MessageType, WebSocketMessage, connection_manager, websocket_endpoint
from shared.utils import handle_exceptions

from .models import (
    AssessmentConfig,
    AssessmentSessionHandler,
    EstimatorLoadError,
    SourceKind,
    frame_from_dict,
    get_session_handler,
    session_room,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_services() -> AssessmentSessionHandler:
    """Get the session handler instance."""
    return get_session_handler()


def require_session(handler: AssessmentSessionHandler, session_id: str):
    session = handler.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


# ============= Pydantic Models =============

class CreateSessionRequest(BaseModel):
    source: SourceKind = SourceKind.CLIENT

    # Per-session overrides; unset fields use the configured defaults
    session_budget: Optional[int] = Field(None, gt=0, le=600)
    hold_duration: Optional[int] = Field(None, gt=0, le=120)
    detection_interval: Optional[float] = Field(None, gt=0, le=2.0)
    line_position: Optional[float] = Field(None, ge=0, le=1)
    line_tolerance: Optional[float] = Field(None, gt=0)
    angle_tolerance: Optional[float] = Field(None, gt=0, le=180)
    right_target_angle: Optional[float] = Field(None, ge=0, lt=360)
    left_target_angle: Optional[float] = Field(None, ge=0, lt=360)
    min_shoulder_score: Optional[float] = Field(None, ge=0, le=1)

    def to_config(self) -> AssessmentConfig:
        overrides = self.model_dump(exclude={"source"})
        return AssessmentConfig.from_settings().with_overrides(**overrides)


# ============= REST Endpoints =============

@router.get("/config")
async def get_default_config():
    """Effective default assessment configuration."""
    return {"config": AssessmentConfig.from_settings().to_dict()}


@router.post("/session")
@handle_exceptions
async def create_session(request: Optional[CreateSessionRequest] = None):
    """
    Create a new assessment session.

    Returns a session ID for use with the WebSocket stream.
    """
    handler = get_services()
    request = request or CreateSessionRequest()

    try:
        session = await handler.create_session(
            config=request.to_config(),
            source_kind=request.source
        )
    except EstimatorLoadError as e:
        logger.error(f"❌ Could not create session: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    return {
        "status": "created",
        "session_id": session.session_id,
        "source": request.source.value,
        "config": session.config.to_dict(),
        "websocket_url": f"/api/motor/ws/session/{session.session_id}"
    }


@router.post("/session/{session_id}/start")
async def start_session(session_id: str):
    """Start the assessment. Starting a running session changes nothing."""
    handler = get_services()
    require_session(handler, session_id)

    status = await handler.start_session(session_id)
    return {"status": "started", "assessment": status.to_dict()}


@router.post("/session/{session_id}/reset")
async def reset_session(session_id: str):
    """Return the session to not started, from any state."""
    handler = get_services()
    require_session(handler, session_id)

    status = await handler.reset_session(session_id)
    return {"status": "reset", "assessment": status.to_dict()}


@router.get("/session/{session_id}/status")
async def get_session_status(session_id: str):
    """Current observable state of the assessment."""
    handler = get_services()
    require_session(handler, session_id)
    return handler.get_session_status(session_id).to_dict()


@router.get("/session/{session_id}/summary")
async def get_session_summary(session_id: str):
    """Outcome of the latest run (kept in memory only)."""
    handler = get_services()
    require_session(handler, session_id)
    return handler.get_summary(session_id)


@router.delete("/session/{session_id}")
async def delete_session(session_id: str):
    """Stop everything for the session and forget it."""
    handler = get_services()
    if not await handler.cleanup_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "deleted", "session_id": session_id}


@router.get("/sessions")
async def list_sessions():
    handler = get_services()
    return {"sessions": handler.list_sessions()}


# ============= WebSocket Endpoints =============

@router.websocket("/ws/session/{session_id}")
async def assessment_stream(websocket: WebSocket, session_id: str):
    """
    Live assessment stream.

    Inbound:
    - {"type": "keypoints", "payload": {...}} for client-side estimation
    - binary JPEG frames for server-side estimation
    - {"type": "start"} / {"type": "reset"} / {"type": "ping"}

    Outbound: assessment_status after every processed tick,
    assessment_completed, assessment_timed_out, error, pong.
    """
    handler = get_services()

    if not handler.get_session(session_id):
        await websocket.accept()
        await websocket.send_text(WebSocketMessage(
            type=MessageType.ERROR,
            payload={"error": f"Session {session_id} not found"}
        ).to_json())
        await websocket.close(code=4404)
        return

    async def on_connect(client: ConnectedClient):
        status = handler.get_session_status(session_id)
        if status:
            await connection_manager.send_to_client(client.client_id, WebSocketMessage(
                type=MessageType.ASSESSMENT_STATUS,
                payload=status.to_dict()
            ))

    async def on_message(client_id: str, message: WebSocketMessage):
        if message.type == MessageType.KEYPOINTS.value:
            handler.push_keypoints(session_id, frame_from_dict(message.payload))
        elif message.type == MessageType.START.value:
            await handler.start_session(session_id)
        elif message.type == MessageType.RESET.value:
            await handler.reset_session(session_id)
        else:
            raise ValueError(f"Unknown message type: {message.type}")

    async def on_frame(client_id: str, data: bytes):
        await handler.push_frame(session_id, data)

    await websocket_endpoint(
        websocket,
        session_room(session_id),
        handler=on_message,
        binary_handler=on_frame,
        on_connect=on_connect
    )
