import asyncio

import pytest

from core.websocket import MessageType
from motor_service.models import (
    AssessmentConfig,
    AssessmentSessionHandler,
    EstimatorLoadError,
    KeypointSource,
    SessionState,
    SourceKind,
)

from builders import ok_frame


class Recorder:
    def __init__(self):
        self.messages = []

    async def __call__(self, session_id, message):
        self.messages.append((session_id, message))

    def types(self):
        return [message.type for _, message in self.messages]


class BrokenSource(KeypointSource):
    async def load(self):
        raise EstimatorLoadError("model files missing")

    async def estimate(self):
        raise AssertionError("never loaded")


def test_create_start_reset_cleanup():
    async def scenario():
        recorder = Recorder()
        handler = AssessmentSessionHandler(publisher=recorder)
        session = await handler.create_session(AssessmentConfig(detection_interval=0.01))

        started = await handler.start_session(session.session_id)
        managed = handler.active_sessions[session.session_id]
        loop_running = managed.loop.running

        reset = await handler.reset_session(session.session_id)
        stats = handler.get_stats()
        removed = await handler.cleanup_session(session.session_id)
        removed_again = await handler.cleanup_session(session.session_id)
        return recorder, started, loop_running, reset, stats, removed, removed_again, handler

    recorder, started, loop_running, reset, stats, removed, removed_again, handler = asyncio.run(scenario())
    assert started.state is SessionState.RUNNING
    assert loop_running
    assert reset.state is SessionState.NOT_STARTED
    assert stats["total_sessions"] == 1
    assert removed and not removed_again
    assert handler.active_sessions == {}
    assert recorder.types() == [MessageType.ASSESSMENT_STATUS, MessageType.ASSESSMENT_STATUS]


def test_unknown_session_returns_none():
    async def scenario():
        handler = AssessmentSessionHandler(publisher=Recorder())
        return (
            await handler.start_session("missing"),
            await handler.reset_session("missing"),
            handler.get_session_status("missing"),
            handler.get_summary("missing"),
            handler.push_keypoints("missing", ok_frame()),
        )

    assert asyncio.run(scenario()) == (None, None, None, None, False)


def test_pushed_keypoints_reach_the_session():
    async def scenario():
        recorder = Recorder()
        handler = AssessmentSessionHandler(publisher=recorder)
        session = await handler.create_session(AssessmentConfig(detection_interval=0.01))
        await handler.start_session(session.session_id)

        handler.push_keypoints(session.session_id, ok_frame())
        await asyncio.sleep(0.1)
        status = handler.get_session_status(session.session_id)
        summary = handler.get_summary(session.session_id)
        await handler.shutdown()
        return recorder, status, summary

    recorder, status, summary = asyncio.run(scenario())
    assert status.sides[status.current_side].ok
    assert summary["frames_processed"] == 1
    assert summary["source"] == "client"
    assert summary["detection"]["processed"] == 1
    assert recorder.types().count(MessageType.ASSESSMENT_STATUS) == 2


def test_client_session_rejects_video_frames():
    async def scenario():
        handler = AssessmentSessionHandler(publisher=Recorder())
        session = await handler.create_session()
        with pytest.raises(ValueError):
            await handler.push_frame(session.session_id, b"\xff\xd8not-a-jpeg")

    asyncio.run(scenario())


def test_source_load_failure_registers_nothing(monkeypatch):
    async def scenario():
        handler = AssessmentSessionHandler(publisher=Recorder())
        monkeypatch.setattr(handler, "_build_source", lambda kind: BrokenSource())
        with pytest.raises(EstimatorLoadError):
            await handler.create_session(source_kind=SourceKind.SERVER)
        return handler

    handler = asyncio.run(scenario())
    assert handler.active_sessions == {}


def test_timeout_is_published():
    async def scenario():
        recorder = Recorder()
        handler = AssessmentSessionHandler(publisher=recorder)
        session = await handler.create_session(AssessmentConfig(session_budget=1, detection_interval=0.05))
        await handler.start_session(session.session_id)
        await asyncio.sleep(1.3)
        state = session.state
        await handler.shutdown()
        return recorder, state

    recorder, state = asyncio.run(scenario())
    assert state is SessionState.TIMED_OUT
    assert MessageType.ASSESSMENT_TIMED_OUT in recorder.types()
    assert MessageType.ASSESSMENT_COMPLETED not in recorder.types()


def test_completion_is_published_with_summary():
    async def scenario():
        recorder = Recorder()
        handler = AssessmentSessionHandler(publisher=recorder)
        session = await handler.create_session(
            AssessmentConfig(session_budget=10, hold_duration=1, detection_interval=0.02)
        )
        await handler.start_session(session.session_id)

        while session.is_running:
            handler.push_keypoints(session.session_id, ok_frame())
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        state = session.state
        await handler.shutdown()
        return recorder, state

    recorder, state = asyncio.run(scenario())
    assert state is SessionState.COMPLETED
    completed = [m for _, m in recorder.messages if m.type is MessageType.ASSESSMENT_COMPLETED]
    assert len(completed) == 1
    assert completed[0].payload["summary"]["passed"] is True
