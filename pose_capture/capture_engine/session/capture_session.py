# pose_capture/capture_engine/session/capture_session.py
import asyncio
import logging
import numpy as np
from typing import Optional, Tuple
from ..camera.camera_manager import CaptureDeviceManager, LiveStream
from ..common.enums import CameraErrorKind, CaptureStage
from ..common.errors import CameraSessionError
from ..common.models import CaptureSnapshot, FrameMetadata, PoseEstimate
from ..processing.detection_loop import DetectionLoop
from ..processing.pose_session import PoseModelSession
from .state_machine import CaptureStateMachine, Navigator
from .timers import AsyncioScheduler

logger = logging.getLogger(__name__)

class CaptureSession:
    """Runs one capture flow: camera, pose model, detection loop and state machine.

    Every exit path (ERROR, retake, close) cancels the loop, disposes the model
    and releases the camera.
    """

    def __init__(
        self,
        config: dict,
        navigator: Navigator,
        height_store,
        synthesizer,
        device_manager: Optional[CaptureDeviceManager] = None,
        model_session: Optional[PoseModelSession] = None,
        scheduler=None,
    ):
        self.config = config
        camera_config = config.get('camera', {})
        self.device = device_manager or CaptureDeviceManager(camera_config)
        self.model = model_session or PoseModelSession(config.get('pose', {}))
        self.machine = CaptureStateMachine(
            config.get('capture', {}),
            scheduler or AsyncioScheduler(),
            synthesizer,
            height_store,
            navigator,
            on_stage_change=self._on_stage_change,
        )
        self.detection_loop = DetectionLoop(
            self._detect_once,
            self._detection_active,
            interval=1.0 / camera_config.get('target_fps', 30),
        )
        self.ready_timeout = camera_config.get('ready_timeout_s', 5.0)
        self.last_estimate: Optional[PoseEstimate] = None
        self._stream: Optional[LiveStream] = None

    @property
    def stage(self) -> CaptureStage:
        return self.machine.stage

    @property
    def can_retake(self) -> bool:
        return self.machine.stage != CaptureStage.INITIALIZING

    def snapshot(self) -> CaptureSnapshot:
        return self.machine.snapshot()

    def latest_frame(self) -> Tuple[Optional[np.ndarray], Optional[FrameMetadata]]:
        if self._stream is None:
            return None, None
        return self._stream.get_frame()

    async def enter(self):
        """Starts the capture flow from INITIALIZING."""
        self.reset()
        generation = self.machine.generation
        try:
            self._stream = self.device.acquire()
        except CameraSessionError as e:
            self.fail(e)
            return

        stream = self._stream
        ready = await asyncio.get_running_loop().run_in_executor(None, stream.wait_ready, self.ready_timeout)
        if generation != self.machine.generation:
            return
        if not ready:
            self.fail(CameraSessionError(CameraErrorKind.DISPLAY_ERROR,
                                         f"No frame decoded within {self.ready_timeout:g}s"))
            return

        self.machine.stream_ready()
        try:
            backend = await self.model.load()
        except CameraSessionError as e:
            if generation == self.machine.generation:
                self.fail(e)
            return
        if backend is None or generation != self.machine.generation:
            return
        self.detection_loop.start()

    async def retake(self):
        logger.info("Retake requested in stage %s.", self.machine.stage.value)
        await self.enter()

    def reset(self):
        """Stops all activity, releases resources and returns the machine to INITIALIZING."""
        self.detection_loop.cancel()
        self.machine.reset()
        self._release_resources()

    def close(self):
        self.reset()
        logger.info("Capture session closed.")

    def fail(self, error: CameraSessionError):
        logger.error("Capture session failed: %s", error)
        self.machine.fail(error)

    def _release_resources(self):
        self.model.dispose()
        self.device.release()
        self._stream = None
        self.last_estimate = None

    def _on_stage_change(self, stage: CaptureStage):
        if stage == CaptureStage.ERROR:
            self.detection_loop.cancel()
            self._release_resources()
        elif stage == CaptureStage.DONE:
            self.detection_loop.cancel()

    def _detection_active(self) -> bool:
        return (self.machine.accepts_frames
                and self.model.is_loaded
                and self._stream is not None
                and self._stream.is_ready())

    def _detect_once(self):
        frame, metadata = self._stream.get_frame()
        if frame is None:
            return
        self.last_estimate = self.model.estimate(frame, metadata)
        self.machine.on_pose(self.last_estimate)
