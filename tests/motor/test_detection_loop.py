import asyncio

from motor_service.models import (
    AssessmentConfig,
    AssessmentSession,
    DetectionLoop,
    KeypointSource,
    NoFrameAvailable,
    SessionState,
    Side,
)

from builders import FakeScheduler, ok_frame


class ScriptedSource(KeypointSource):
    """Returns (or raises) the scripted items in order, then has nothing new."""

    def __init__(self, items=(), delay=0.0, on_estimate=None):
        self.items = list(items)
        self.delay = delay
        self.on_estimate = on_estimate
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def estimate(self):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.on_estimate:
                self.on_estimate()
            if not self.items:
                raise NoFrameAvailable("script exhausted")
            item = self.items.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        finally:
            self.in_flight -= 1


class RepeatingSource(KeypointSource):
    async def estimate(self):
        return ok_frame()


def make_session(**overrides):
    return AssessmentSession("loop", config=AssessmentConfig(**overrides), scheduler=FakeScheduler())


def test_tick_processes_a_frame():
    async def scenario():
        session = make_session()
        session.start()
        published = []

        async def on_status(status):
            published.append(status)

        loop = DetectionLoop(session, ScriptedSource([ok_frame()]), on_status=on_status)
        status = await loop.tick()
        return session, loop, status, published

    session, loop, status, published = asyncio.run(scenario())
    assert status.sides[Side.RIGHT].ok
    assert published == [status]
    assert loop.processed_ticks == 1
    assert session.frames_processed == 1


def test_tick_without_new_keypoints_is_skipped():
    async def scenario():
        session = make_session()
        session.start()
        loop = DetectionLoop(session, ScriptedSource([ok_frame()]))
        await loop.tick()
        result = await loop.tick()
        return session, loop, result

    session, loop, result = asyncio.run(scenario())
    assert result is None
    assert loop.skipped_ticks == 1
    assert session.frames_processed == 1


def test_source_failure_skips_tick_and_loop_survives():
    async def scenario():
        session = make_session()
        session.start()
        loop = DetectionLoop(session, ScriptedSource([RuntimeError("camera unplugged"), ok_frame()]))
        first = await loop.tick()
        second = await loop.tick()
        return loop, first, second

    loop, first, second = asyncio.run(scenario())
    assert first is None
    assert loop.failed_ticks == 1
    assert second is not None


def test_source_failure_clears_previous_side_statuses():
    async def scenario():
        session = make_session()
        session.start()
        loop = DetectionLoop(session, ScriptedSource([ok_frame(), RuntimeError("estimator crashed")]))
        before = await loop.tick()
        await loop.tick()
        return before, session.status()

    before, after = asyncio.run(scenario())
    assert before.sides[Side.RIGHT].detected
    for side in Side:
        assert not after.sides[side].detected
        assert not after.sides[side].ok
    assert after.state is SessionState.RUNNING


def test_nothing_new_keeps_the_last_verdict():
    async def scenario():
        session = make_session()
        session.start()
        loop = DetectionLoop(session, ScriptedSource([ok_frame()]))
        await loop.tick()
        await loop.tick()
        return session.status()

    status = asyncio.run(scenario())
    assert status.sides[Side.RIGHT].ok


def test_result_for_a_restarted_session_is_discarded():
    async def scenario():
        session = make_session()
        session.start()

        def restart():
            session.reset()
            session.start()

        loop = DetectionLoop(session, ScriptedSource([ok_frame()], on_estimate=restart))
        result = await loop.tick()
        return session, loop, result

    session, loop, result = asyncio.run(scenario())
    assert result is None
    assert loop.stale_results == 1
    assert session.frames_processed == 0
    assert not session.status().sides[Side.RIGHT].detected


def test_tick_is_a_noop_when_not_running():
    async def scenario():
        session = make_session()
        source = ScriptedSource([ok_frame()])
        loop = DetectionLoop(session, source)
        return await loop.tick(), source

    result, source = asyncio.run(scenario())
    assert result is None
    assert source.calls == 0


def test_overlapping_ticks_are_dropped():
    async def scenario():
        session = make_session(detection_interval=0.01)
        session.start()
        source = ScriptedSource([ok_frame()] * 100, delay=0.05)
        loop = DetectionLoop(session, source)
        loop.start()
        await asyncio.sleep(0.3)
        await loop.stop()
        return loop, source

    loop, source = asyncio.run(scenario())
    assert source.max_in_flight == 1
    assert loop.dropped_ticks > 0
    assert not loop.running


def test_loop_ends_when_session_stops():
    async def scenario():
        session = make_session(detection_interval=0.01)
        session.start()
        loop = DetectionLoop(session, ScriptedSource())
        loop.start()
        await asyncio.sleep(0.05)
        session.reset()
        await asyncio.wait_for(loop.wait(), timeout=1.0)
        return loop

    loop = asyncio.run(scenario())
    assert not loop.running
    assert loop.skipped_ticks > 0


def test_real_clock_assessment_completes():
    async def scenario():
        session = AssessmentSession(
            "realtime",
            config=AssessmentConfig(session_budget=5, hold_duration=1, detection_interval=0.02),
        )
        session.start()
        loop = DetectionLoop(session, RepeatingSource())
        loop.start()
        await asyncio.wait_for(loop.wait(), timeout=5.0)
        return session

    session = asyncio.run(scenario())
    assert session.state is SessionState.COMPLETED
    assert session.status().completed_sides == [Side.RIGHT, Side.LEFT]
