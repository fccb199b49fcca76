# pose_capture/capture_engine/processing/pose_session.py
import asyncio
import cv2
import logging
import time
import numpy as np
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional
from ..common.enums import CameraErrorKind
from ..common.errors import CameraSessionError, InferenceError
from ..common.models import FrameMetadata, Keypoint, PoseEstimate
from .one_euro_filter import OneEuroFilter

logger = logging.getLogger(__name__)

COCO17_NAMES = (
    "nose",
    "left_eye", "right_eye",
    "left_ear", "right_ear",
    "left_shoulder", "right_shoulder",
    "left_elbow", "right_elbow",
    "left_wrist", "right_wrist",
    "left_hip", "right_hip",
    "left_knee", "right_knee",
    "left_ankle", "right_ankle",
)

class PoseBackend(ABC):
    """Inference engine adapter: RGB image in, keypoints of the first person out."""

    @abstractmethod
    def infer(self, frame_rgb: np.ndarray) -> Optional[PoseEstimate]: ...

    @abstractmethod
    def close(self) -> None: ...

class MediaPipePoseBackend(PoseBackend):
    """MediaPipe Pose, reporting COCO-17 landmark names in pixel space with visibility as score."""

    def __init__(self, config: dict):
        try:
            import mediapipe as mp
        except ImportError as e:
            raise RuntimeError("MediaPipe is not installed. Install the pose extra: pip install .[pose]") from e

        self._landmarks = mp.solutions.pose.PoseLandmark
        self._pose = mp.solutions.pose.Pose(
            static_image_mode=False,
            model_complexity=config.get('model_complexity', 1),
            smooth_landmarks=False, # Smoothing happens in PoseModelSession
            enable_segmentation=False,
            min_detection_confidence=config.get('min_detection_confidence', 0.5),
            min_tracking_confidence=config.get('min_tracking_confidence', 0.5),
        )

    def infer(self, frame_rgb: np.ndarray) -> Optional[PoseEstimate]:
        h, w = frame_rgb.shape[0], frame_rgb.shape[1]
        try:
            results = self._pose.process(frame_rgb)
        except Exception as e:
            raise InferenceError(f"MediaPipe pose processing failed: {e}") from e
        if not results or not results.pose_landmarks:
            return None

        landmarks = results.pose_landmarks.landmark
        keypoints = {}
        for name in COCO17_NAMES:
            lm = landmarks[int(self._landmarks[name.upper()])]
            keypoints[name] = Keypoint(
                name=name,
                x=float(lm.x) * w,
                y=float(lm.y) * h,
                score=min(max(float(lm.visibility or 0.0), 0.0), 1.0),
            )
        return PoseEstimate(keypoints=keypoints, width=w, height=h)

    def close(self) -> None:
        self._pose.close()

class PoseModelSession:
    """Owns the pose backend: lazy load, one estimate per detection tick, idempotent disposal."""

    def __init__(self, config: dict, backend_factory: Optional[Callable[[dict], PoseBackend]] = None):
        self.config = config
        self._backend_factory = backend_factory or MediaPipePoseBackend
        self._backend: Optional[PoseBackend] = None
        self._pending: Optional[asyncio.Future] = None
        self._epoch = 0
        filter_config = config.get('filter')
        self.filter = OneEuroFilter(**filter_config) if filter_config else None
        self.failed_inferences = 0

    @property
    def is_loaded(self) -> bool:
        return self._backend is not None

    @property
    def is_loading(self) -> bool:
        return self._pending is not None

    async def load(self) -> Optional[PoseBackend]:
        """Loads the backend off the event loop.

        Concurrent callers share the in-flight load. Returns None when the session
        was disposed before the load finished. Raises CameraSessionError(MODEL_LOAD_FAILED).
        """
        if self._backend is not None:
            return self._backend
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._load(self._epoch))
        return await asyncio.shield(self._pending)

    async def _load(self, epoch: int) -> Optional[PoseBackend]:
        loop = asyncio.get_running_loop()
        start_time = time.perf_counter()
        try:
            backend = await loop.run_in_executor(None, self._backend_factory, self.config)
        except Exception as e:
            logger.exception("Pose model failed to load.")
            raise CameraSessionError(CameraErrorKind.MODEL_LOAD_FAILED, str(e)) from e
        finally:
            if epoch == self._epoch:
                self._pending = None

        if epoch != self._epoch:
            logger.info("Discarding pose model loaded for a disposed session.")
            backend.close()
            return None

        self._backend = backend
        logger.info("Pose model loaded in %.0f ms.", (time.perf_counter() - start_time) * 1000)
        return backend

    def estimate(self, frame: np.ndarray, metadata: Optional[FrameMetadata] = None) -> Optional[PoseEstimate]:
        """Runs one inference. Failures are logged and reported as no pose."""
        if self._backend is None:
            return None
        try:
            frame_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
            frame_rgb.flags.writeable = False # Performance optimization
            estimate = self._backend.infer(frame_rgb)
        except Exception as e:
            self.failed_inferences += 1
            logger.warning("Pose inference failed, treating frame as empty: %s", e)
            return None

        if estimate is None:
            return None
        timestamp = metadata.timestamp if metadata else time.perf_counter()
        keypoints = estimate.keypoints
        if self.filter is not None and keypoints:
            keypoints = self._smooth(keypoints, timestamp)
        return PoseEstimate(
            keypoints=keypoints,
            width=estimate.width,
            height=estimate.height,
            timestamp=timestamp,
            frame_id=metadata.frame_id if metadata else None,
        )

    def _smooth(self, keypoints: Dict[str, Keypoint], timestamp: float) -> Dict[str, Keypoint]:
        names = list(keypoints)
        positions = np.array([[keypoints[n].x, keypoints[n].y] for n in names])
        smoothed = self.filter(positions, timestamp)
        return {
            name: Keypoint(name=name, x=float(x), y=float(y), score=keypoints[name].score)
            for name, (x, y) in zip(names, smoothed)
        }

    def dispose(self):
        """Releases the backend and abandons any in-flight load. Safe to call repeatedly."""
        self._epoch += 1
        self._pending = None
        if self.filter is not None:
            self.filter.reset()
        backend, self._backend = self._backend, None
        if backend is not None:
            backend.close()
            logger.info("Pose model disposed.")
