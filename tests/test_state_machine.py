import pytest

from capture_engine.common.enums import CameraErrorKind, CaptureStage, TimerKind
from capture_engine.common.errors import CameraSessionError
from capture_engine.processing import pose_validator as pv
from capture_engine.session.state_machine import HOLD_STILL, CaptureStateMachine

from conftest import LeakyScheduler, MemoryHeightStore, make_pose


@pytest.fixture
def stages():
    return []


@pytest.fixture
def machine(capture_config, scheduler, synthesizer, navigator, stages):
    return CaptureStateMachine(capture_config, scheduler, synthesizer, MemoryHeightStore(162),
                               navigator, on_stage_change=stages.append)


def detecting_front(machine, scheduler):
    machine.stream_ready()
    scheduler.advance(1.5)
    assert machine.stage == CaptureStage.DETECTING_FRONT


def test_prompt_dwells_before_detecting(machine, scheduler):
    machine.stream_ready()
    assert machine.stage == CaptureStage.FRONT_PROMPT
    assert not machine.accepts_frames
    scheduler.advance(1.4)
    assert machine.stage == CaptureStage.FRONT_PROMPT
    scheduler.advance(0.1)
    assert machine.stage == CaptureStage.DETECTING_FRONT
    assert machine.accepts_frames


def test_frames_ignored_outside_detecting(machine, front_pose):
    machine.on_pose(front_pose)
    assert not machine.is_pose_valid
    assert not machine.confirmation_pending


def test_invalid_frame_publishes_reason(machine, scheduler):
    detecting_front(machine, scheduler)
    machine.on_pose(None)
    assert machine.feedback == pv.NO_PERSON
    assert not machine.is_pose_valid


def test_valid_frame_starts_confirmation(machine, scheduler, front_pose):
    detecting_front(machine, scheduler)
    machine.on_pose(front_pose)
    assert machine.is_pose_valid
    assert machine.feedback == HOLD_STILL
    assert machine.confirmation_pending
    assert not machine.countdown_pending


def test_confirmation_then_countdown(machine, scheduler, front_pose):
    detecting_front(machine, scheduler)
    machine.on_pose(front_pose)
    scheduler.advance(1.5)
    assert not machine.confirmation_pending
    assert machine.countdown_pending
    assert machine.countdown == 5
    assert machine.feedback == "Hold Pose: 5"
    assert not machine.accepts_frames

    for expected in (4, 3, 2, 1):
        scheduler.advance(1.0)
        assert machine.countdown == expected
        assert machine.feedback == f"Hold Pose: {expected}"

    scheduler.advance(1.0)
    assert machine.stage == CaptureStage.SIDE_PROMPT
    assert machine.countdown is None
    assert not machine.is_pose_valid
    assert machine.feedback == "Front pose captured! Prepare for SIDE pose."


def test_frames_during_hold_are_not_validated(machine, scheduler, front_pose):
    detecting_front(machine, scheduler)
    machine.on_pose(front_pose)
    assert not machine.accepts_frames
    scheduler.advance(0.5)
    machine.on_pose(None)
    machine.on_pose(make_pose(40, 100))
    assert machine.confirmation_pending
    assert machine.is_pose_valid
    assert machine.feedback == HOLD_STILL

    scheduler.advance(1.0)
    assert machine.countdown_pending
    assert machine.countdown == 5


def test_invalid_frame_cancels_confirmation_when_validating_hold(capture_config, scheduler, synthesizer,
                                                                navigator, front_pose):
    capture_config['validate_during_confirmation'] = True
    machine = CaptureStateMachine(capture_config, scheduler, synthesizer, MemoryHeightStore(162), navigator)
    detecting_front(machine, scheduler)
    assert machine.accepts_frames
    machine.on_pose(front_pose)
    scheduler.advance(1.0)
    machine.on_pose(make_pose(40, 100))
    assert not machine.confirmation_pending
    assert machine.feedback == pv.FACE_CAMERA

    scheduler.advance(10)
    assert not machine.countdown_pending
    assert machine.countdown is None
    assert machine.stage == CaptureStage.DETECTING_FRONT


def test_stale_confirmation_never_starts_countdown(capture_config, synthesizer, navigator, front_pose):
    capture_config['validate_during_confirmation'] = True
    leaky = LeakyScheduler()
    machine = CaptureStateMachine(capture_config, leaky, synthesizer, MemoryHeightStore(162), navigator)
    machine.stream_ready()
    leaky.advance(1.5)
    machine.on_pose(front_pose)
    machine.on_pose(None)
    leaky.advance(2.0)
    assert not machine.countdown_pending
    assert machine.countdown is None


def test_cancelled_countdown_never_transitions(machine, scheduler, front_pose, stages):
    detecting_front(machine, scheduler)
    machine.on_pose(front_pose)
    scheduler.advance(1.5 + 2.0)
    assert machine.countdown == 3
    machine.reset()
    scheduler.advance(10)
    assert machine.stage == CaptureStage.INITIALIZING
    assert CaptureStage.SIDE_PROMPT not in stages


def test_nine_valid_frames_give_one_transition(machine, scheduler, front_pose, stages):
    detecting_front(machine, scheduler)
    for _ in range(9):
        machine.on_pose(front_pose)
        scheduler.advance(0.05)
    scheduler.advance(1.5 + 5.0)
    assert stages.count(CaptureStage.SIDE_PROMPT) == 1
    assert machine.stage == CaptureStage.SIDE_PROMPT


def test_full_capture_hands_off_record(machine, scheduler, front_pose, side_pose, navigator, stages):
    detecting_front(machine, scheduler)
    machine.on_pose(front_pose)
    scheduler.advance(1.5 + 5.0)
    scheduler.advance(1.5)
    assert machine.stage == CaptureStage.DETECTING_SIDE

    machine.on_pose(front_pose)
    assert machine.feedback == pv.TURN_SIDEWAYS
    machine.on_pose(side_pose)
    scheduler.advance(1.5 + 5.0)
    assert machine.stage == CaptureStage.DONE
    assert machine.feedback == "Poses captured successfully!"
    assert navigator.completed == []

    scheduler.advance(1.5)
    assert len(navigator.completed) == 1
    record = navigator.completed[0]
    assert record.height == 162
    assert record.matched_height == 160
    assert stages == [
        CaptureStage.FRONT_PROMPT, CaptureStage.DETECTING_FRONT, CaptureStage.SIDE_PROMPT,
        CaptureStage.DETECTING_SIDE, CaptureStage.DONE,
    ]


def test_missing_height_redirects(capture_config, scheduler, synthesizer, navigator, front_pose, side_pose):
    machine = CaptureStateMachine(capture_config, scheduler, synthesizer, MemoryHeightStore(None), navigator)
    detecting_front(machine, scheduler)
    machine.on_pose(front_pose)
    scheduler.advance(1.5 + 5.0 + 1.5)
    machine.on_pose(side_pose)
    scheduler.advance(1.5 + 5.0 + 5.0)
    assert machine.stage == CaptureStage.DONE
    assert navigator.need_height == 1
    assert navigator.completed == []
    assert machine.error is None


def test_fail_cancels_timers_and_is_terminal(machine, scheduler, front_pose):
    detecting_front(machine, scheduler)
    machine.on_pose(front_pose)
    machine.fail(CameraSessionError(CameraErrorKind.DISPLAY_ERROR))
    assert machine.stage == CaptureStage.ERROR
    assert machine.feedback == "Video display error."
    assert not machine.confirmation_pending
    assert not machine.accepts_frames

    machine.stream_ready()
    scheduler.advance(10)
    assert machine.stage == CaptureStage.ERROR
    assert machine.snapshot().error == "Video display error."


def test_fail_ignored_after_done(machine, scheduler, front_pose, side_pose):
    detecting_front(machine, scheduler)
    machine.on_pose(front_pose)
    scheduler.advance(8.0)
    machine.on_pose(side_pose)
    scheduler.advance(6.5)
    assert machine.stage == CaptureStage.DONE
    machine.fail(CameraSessionError(CameraErrorKind.UNKNOWN))
    assert machine.stage == CaptureStage.DONE


def test_reset_after_done_clears_everything(machine, scheduler, front_pose, side_pose, navigator):
    detecting_front(machine, scheduler)
    machine.on_pose(front_pose)
    scheduler.advance(8.0)
    machine.on_pose(side_pose)
    scheduler.advance(6.5)
    assert machine.timer_pending(TimerKind.HANDOFF)

    generation = machine.generation
    assert machine.reset() == generation + 1
    assert machine.stage == CaptureStage.INITIALIZING
    assert not machine.confirmation_pending
    assert not machine.countdown_pending
    assert not machine.timer_pending(TimerKind.HANDOFF)
    scheduler.advance(5)
    assert navigator.completed == []


def test_snapshot_reflects_state(machine, scheduler, front_pose):
    detecting_front(machine, scheduler)
    machine.on_pose(front_pose)
    snapshot = machine.snapshot()
    assert snapshot.stage == CaptureStage.DETECTING_FRONT
    assert snapshot.is_pose_valid
    assert snapshot.confirmation_pending
    assert snapshot.error is None
