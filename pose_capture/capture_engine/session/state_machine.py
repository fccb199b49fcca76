# pose_capture/capture_engine/session/state_machine.py
import logging
from functools import partial
from typing import Callable, Optional, Protocol
from ..common.enums import CaptureStage, TimerKind
from ..common.errors import CameraSessionError, MissingHeightError
from ..common.models import CaptureSnapshot, MeasurementRecord, PoseEstimate
from ..processing.pose_validator import MIN_KEYPOINT_SCORE, validate_pose
from .timers import TimerSlots

logger = logging.getLogger(__name__)

DETECTING_STAGES = (CaptureStage.DETECTING_FRONT, CaptureStage.DETECTING_SIDE)
TERMINAL_STAGES = (CaptureStage.DONE, CaptureStage.ERROR)

HOLD_STILL = "Good Pose! Hold Still..."

class Navigator(Protocol):
    """Navigation shell that receives the outcome of a capture."""

    def on_capture_complete(self, record: MeasurementRecord) -> None: ...

    def on_need_height(self) -> None: ...

class CaptureStateMachine:
    """Authoritative front/side capture sequence.

    Frames are fed through `on_pose`; everything else happens in timer callbacks
    scheduled through `TimerSlots`, so every transition runs on the scheduler's
    single thread.
    """

    def __init__(
        self,
        config: dict,
        scheduler,
        synthesizer,
        height_store,
        navigator: Navigator,
        on_stage_change: Optional[Callable[[CaptureStage], None]] = None,
    ):
        self.config = config
        self.prompt_dwell = config.get('prompt_dwell_s', 1.5)
        self.confirmation_delay = config.get('confirmation_delay_ms', 1500) / 1000.0
        self.countdown_seconds = int(config.get('countdown_seconds', 5))
        self.countdown_interval = config.get('countdown_interval_s', 1.0)
        self.handoff_delay = config.get('handoff_delay_s', 1.5)
        self.min_keypoint_score = config.get('min_keypoint_score', MIN_KEYPOINT_SCORE)
        self.validate_during_confirmation = config.get('validate_during_confirmation', False)

        self._timers = TimerSlots(scheduler)
        self._synthesizer = synthesizer
        self._height_store = height_store
        self._navigator = navigator
        self._on_stage_change = on_stage_change

        self.stage = CaptureStage.INITIALIZING
        self.feedback = "Initializing camera..."
        self.is_pose_valid = False
        self.countdown: Optional[int] = None
        self.error: Optional[CameraSessionError] = None

    @property
    def generation(self) -> int:
        return self._timers.generation

    @property
    def confirmation_pending(self) -> bool:
        return self._timers.pending(TimerKind.CONFIRMATION)

    @property
    def countdown_pending(self) -> bool:
        return self._timers.pending(TimerKind.COUNTDOWN)

    def timer_pending(self, kind: TimerKind) -> bool:
        return self._timers.pending(kind)

    @property
    def accepts_frames(self) -> bool:
        if self.stage not in DETECTING_STAGES or self.countdown_pending:
            return False
        return self.validate_during_confirmation or not self.confirmation_pending

    def snapshot(self) -> CaptureSnapshot:
        return CaptureSnapshot(
            stage=self.stage,
            feedback=self.feedback,
            countdown=self.countdown,
            is_pose_valid=self.is_pose_valid,
            confirmation_pending=self.confirmation_pending,
            countdown_pending=self.countdown_pending,
            error=self.error.user_message if self.error else None,
            generation=self.generation,
        )

    def _set_stage(self, stage: CaptureStage):
        if stage == self.stage:
            return
        logger.info("Capture stage %s -> %s", self.stage.value, stage.value)
        self.stage = stage
        if self._on_stage_change is not None:
            self._on_stage_change(stage)

    def reset(self) -> int:
        """Cancels every timer and returns to INITIALIZING. Returns the new generation."""
        generation = self._timers.next_generation()
        self.is_pose_valid = False
        self.countdown = None
        self.error = None
        self.feedback = "Requesting camera access..."
        self._set_stage(CaptureStage.INITIALIZING)
        return generation

    def stream_ready(self):
        """The camera delivers frames: show the front prompt, then start detecting."""
        if self.stage != CaptureStage.INITIALIZING:
            logger.debug("Ignoring stream-ready in stage %s.", self.stage.value)
            return
        self.feedback = "Camera ready. Prepare for FRONT pose."
        self._set_stage(CaptureStage.FRONT_PROMPT)
        self._timers.schedule(TimerKind.PROMPT, self.prompt_dwell,
                              partial(self._end_prompt, CaptureStage.DETECTING_FRONT))

    def _end_prompt(self, stage: CaptureStage):
        self.feedback = ("Position for FRONT pose." if stage == CaptureStage.DETECTING_FRONT
                         else "Turn 90 degrees for the SIDE pose.")
        self._set_stage(stage)

    def fail(self, error: CameraSessionError):
        """Forces ERROR and stops every timer. Ignored once the capture is terminal."""
        if self.stage in TERMINAL_STAGES:
            logger.debug("Ignoring %s in terminal stage %s.", error.kind.value, self.stage.value)
            return
        self._timers.cancel_all()
        self.error = error
        self.is_pose_valid = False
        self.countdown = None
        self.feedback = error.user_message
        self._set_stage(CaptureStage.ERROR)

    def on_pose(self, estimate: Optional[PoseEstimate]):
        """Routes one frame's pose estimate through the validator."""
        if not self.accepts_frames:
            return
        outcome = validate_pose(estimate, self.stage, self.min_keypoint_score)
        if not outcome.valid:
            self._timers.cancel(TimerKind.CONFIRMATION)
            self.is_pose_valid = False
            self.feedback = outcome.reason
            return
        if self.is_pose_valid:
            return
        self.is_pose_valid = True
        self.feedback = HOLD_STILL
        self._timers.schedule(TimerKind.CONFIRMATION, self.confirmation_delay,
                              partial(self._confirm, self.stage))

    def _confirm(self, stage: CaptureStage):
        next_stage = CaptureStage.SIDE_PROMPT if stage == CaptureStage.DETECTING_FRONT else CaptureStage.DONE
        self.countdown = self.countdown_seconds
        self.feedback = f"Hold Pose: {self.countdown}"
        self._timers.schedule(TimerKind.COUNTDOWN, self.countdown_interval,
                              partial(self._countdown_tick, next_stage))

    def _countdown_tick(self, next_stage: CaptureStage):
        remaining = self.countdown - 1
        if remaining > 0:
            self.countdown = remaining
            self.feedback = f"Hold Pose: {remaining}"
            self._timers.schedule(TimerKind.COUNTDOWN, self.countdown_interval,
                                  partial(self._countdown_tick, next_stage))
            return

        self.countdown = None
        self.is_pose_valid = False
        if next_stage == CaptureStage.SIDE_PROMPT:
            self.feedback = "Front pose captured! Prepare for SIDE pose."
            self._set_stage(CaptureStage.SIDE_PROMPT)
            self._timers.schedule(TimerKind.PROMPT, self.prompt_dwell,
                                  partial(self._end_prompt, CaptureStage.DETECTING_SIDE))
        else:
            self.feedback = "Side pose captured! Processing..."
            self._set_stage(CaptureStage.DONE)
            self._finish()

    def _finish(self):
        try:
            record = self._synthesizer.synthesize(self._height_store.load())
        except MissingHeightError as e:
            logger.warning("Cannot build measurements: %s", e)
            self.feedback = "Could not retrieve height."
            self._navigator.on_need_height()
            return
        logger.info("Measurements ready for height %s (table row %s).", record.height, record.matched_height)
        self.feedback = "Poses captured successfully!"
        self._timers.schedule(TimerKind.HANDOFF, self.handoff_delay,
                              partial(self._navigator.on_capture_complete, record))
