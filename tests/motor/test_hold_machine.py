from motor_service.models import HoldOutcome, HoldPhase, HoldStateMachine, Side, SideStatus

OK = SideStatus(detected=True, correct_angle=True, shoulder_on_line=True)
BAD_ANGLE = SideStatus(detected=True, correct_angle=False, shoulder_on_line=True)
NOT_DETECTED = SideStatus()


def hold_for(machine, scheduler, start_tenth, end_tenth, status=OK):
    outcome = None
    for k in range(start_tenth, end_tenth + 1):
        scheduler.advance_to(k / 10)
        outcome = machine.step(status)
    return outcome


def test_starts_on_right_side_idle(scheduler):
    machine = HoldStateMachine(scheduler, hold_duration=10)
    assert machine.side is Side.RIGHT
    assert machine.phase is HoldPhase.IDLE
    assert machine.remaining is None
    assert not machine.has_pending_decrement


def test_ok_frame_starts_hold_with_full_duration(scheduler):
    machine = HoldStateMachine(scheduler, hold_duration=10)
    assert machine.step(OK) is HoldOutcome.STARTED
    assert machine.phase is HoldPhase.HOLDING
    assert machine.remaining == 10
    assert machine.has_pending_decrement


def test_bad_frame_without_hold_is_idle(scheduler):
    machine = HoldStateMachine(scheduler)
    assert machine.step(NOT_DETECTED) is HoldOutcome.IDLE
    assert machine.phase is HoldPhase.IDLE


def test_countdown_decrements_once_per_second(scheduler):
    machine = HoldStateMachine(scheduler, hold_duration=10)
    hold_for(machine, scheduler, 0, 35)
    assert machine.remaining == 7
    assert machine.elapsed == 3


def test_disqualifying_frame_resets_and_cancels_decrement(scheduler):
    machine = HoldStateMachine(scheduler, hold_duration=10)
    hold_for(machine, scheduler, 0, 25)
    assert machine.remaining == 8

    scheduler.advance_to(2.6)
    assert machine.step(BAD_ANGLE) is HoldOutcome.RESET
    assert machine.phase is HoldPhase.IDLE
    assert machine.remaining is None
    assert not machine.has_pending_decrement
    assert scheduler.pending == []

    scheduler.advance_to(10.0)
    assert machine.remaining is None


def test_new_episode_restarts_from_full_duration(scheduler):
    machine = HoldStateMachine(scheduler, hold_duration=10)
    hold_for(machine, scheduler, 0, 50)
    scheduler.advance_to(5.1)
    machine.step(NOT_DETECTED)

    scheduler.advance_to(6.0)
    assert machine.step(OK) is HoldOutcome.STARTED
    assert machine.remaining == 10


def test_gap_in_frames_does_not_speed_up_countdown(scheduler):
    machine = HoldStateMachine(scheduler, hold_duration=10)
    scheduler.advance_to(0.0)
    machine.step(OK)

    # no frames for 3.5 s: only the decrement already pending fires
    scheduler.advance_to(3.5)
    assert machine.remaining == 9
    assert machine.step(OK) is HoldOutcome.HOLDING

    scheduler.advance_to(3.5)
    assert machine.remaining == 8
    scheduler.advance_to(4.4)
    assert machine.remaining == 8


def test_right_side_completes_then_switches_left(scheduler):
    machine = HoldStateMachine(scheduler, hold_duration=10)
    outcome = hold_for(machine, scheduler, 0, 99)
    assert outcome is HoldOutcome.HOLDING

    scheduler.advance_to(10.0)
    assert machine.remaining == 0
    assert machine.step(OK) is HoldOutcome.SIDE_COMPLETE
    assert machine.side is Side.LEFT
    assert machine.phase is HoldPhase.IDLE
    assert machine.completed_sides == [Side.RIGHT]
    assert not machine.has_pending_decrement


def test_left_side_completion_is_terminal(scheduler):
    machine = HoldStateMachine(scheduler, hold_duration=2)
    hold_for(machine, scheduler, 0, 20)
    assert machine.side is Side.LEFT

    outcome = hold_for(machine, scheduler, 21, 41)
    assert outcome is HoldOutcome.ALL_COMPLETE
    assert machine.is_complete
    assert machine.completed_sides == [Side.RIGHT, Side.LEFT]

    # further frames change nothing
    assert machine.step(NOT_DETECTED) is HoldOutcome.ALL_COMPLETE
    assert machine.step(OK) is HoldOutcome.ALL_COMPLETE
    assert machine.is_complete


def test_reset_returns_to_right_side(scheduler):
    machine = HoldStateMachine(scheduler, hold_duration=1)
    hold_for(machine, scheduler, 0, 30)
    assert machine.is_complete

    machine.reset()
    assert machine.side is Side.RIGHT
    assert machine.phase is HoldPhase.IDLE
    assert machine.completed_sides == []
    assert machine.remaining is None


def test_cancel_pending_freezes_countdown(scheduler):
    machine = HoldStateMachine(scheduler, hold_duration=10)
    hold_for(machine, scheduler, 0, 15)
    machine.cancel_pending()

    scheduler.advance_to(20.0)
    assert machine.remaining == 9
    assert not machine.has_pending_decrement
