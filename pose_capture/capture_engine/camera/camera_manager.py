# pose_capture/capture_engine/camera/camera_manager.py
import cv2
import errno
import logging
import os
import time
import threading
import numpy as np
from collections import deque
from typing import Any, Callable, Optional, Tuple
from urllib.parse import urlparse
from pydantic import BaseModel
from ..common.enums import CameraErrorKind
from ..common.errors import CameraSessionError
from ..common.models import FrameMetadata

logger = logging.getLogger(__name__)

INSECURE_SCHEMES = {'http', 'rtsp', 'rtmp', 'udp', 'tcp'}

class StreamConstraints(BaseModel):
    """What the capture flow asks of the camera: a rear-facing video-only stream."""
    facing_mode: str = 'environment'
    audio: bool = False
    resolution: Tuple[int, int] = (1280, 720)
    target_fps: int = 30

def classify_camera_error(exc: BaseException) -> CameraSessionError:
    """Maps a platform exception raised while opening a camera onto a CameraSessionError."""
    if isinstance(exc, CameraSessionError):
        return exc
    if isinstance(exc, PermissionError):
        return CameraSessionError(CameraErrorKind.PERMISSION_DENIED, str(exc))
    if isinstance(exc, FileNotFoundError):
        return CameraSessionError(CameraErrorKind.DEVICE_NOT_FOUND, str(exc))
    if isinstance(exc, OSError) and exc.errno == errno.EBUSY:
        return CameraSessionError(CameraErrorKind.DEVICE_BUSY, str(exc))
    return CameraSessionError(CameraErrorKind.UNKNOWN, str(exc) or type(exc).__name__)

class LiveStream:
    """Owns one opened capture device and its frame-grabbing thread."""

    def __init__(self, capture: Any, source: Any, buffer_size: int = 5):
        self.source = source
        self._cap = capture
        self._buffer = deque(maxlen=buffer_size)
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._update, daemon=True)
        self._running = False
        self._stopped = False
        self._frame_id = 0
        self._dropped_frames = 0

    def start(self):
        self._running = True
        self._thread.start()
        logger.info("Camera stream started on source %r.", self.source)

    def _update(self):
        """Frame-grabbing loop running in a dedicated thread."""
        while self._running:
            grabbed = self._cap.grab()
            if not grabbed:
                self._dropped_frames += 1
                time.sleep(0.01)
                continue
            ret, frame = self._cap.retrieve()
            if ret:
                timestamp = time.perf_counter()
                self._frame_id += 1
                with self._lock:
                    self._buffer.append((frame, self._frame_id, timestamp))
                self._ready.set()
            else:
                self._dropped_frames += 1

    def get_frame(self) -> Tuple[Optional[np.ndarray], Optional[FrameMetadata]]:
        """Returns the latest frame and its metadata from the buffer."""
        with self._lock:
            if not self._buffer:
                return None, None
            frame, frame_id, timestamp = self._buffer[-1]

        metadata = FrameMetadata(
            frame_id=frame_id,
            timestamp=timestamp,
            source_resolution=(frame.shape[1], frame.shape[0])
        )
        return frame.copy(), metadata

    def get_stats(self) -> dict:
        return {
            "is_running": self.is_running(),
            "is_ready": self.is_ready(),
            "buffer_size": len(self._buffer),
            "frames_decoded": self._frame_id,
            "dropped_frames": self._dropped_frames,
        }

    def is_running(self) -> bool:
        return self._running

    def is_ready(self) -> bool:
        """True once the stream has decoded a frame and has not been stopped."""
        return self._running and self._ready.is_set()

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the first frame is decoded. Returns False on timeout or stop."""
        return self._ready.wait(timeout) and self._running

    def stop(self):
        """Stops the grab thread and releases the device. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True
        self._running = False
        self._ready.set() # Wakes wait_ready() callers; they see the stream is no longer running.
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join()
        self._cap.release()
        logger.info("Camera stream stopped and resources released.")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

class CaptureDeviceManager:
    """Acquires and releases the single live camera stream of a capture session."""

    def __init__(self, config: dict, capture_factory: Optional[Callable[[Any], Any]] = None):
        self.config = config
        self.constraints = StreamConstraints(
            facing_mode=config.get('facing_mode', 'environment'),
            resolution=tuple(config.get('resolution', (1280, 720))),
            target_fps=config.get('target_fps', 30),
        )
        self._capture_factory = capture_factory or cv2.VideoCapture
        self._stream: Optional[LiveStream] = None

    @property
    def stream(self) -> Optional[LiveStream]:
        return self._stream

    def resolve_source(self) -> Any:
        facing_sources = self.config.get('facing_sources') or {}
        return facing_sources.get(self.constraints.facing_mode, self.config.get('source', 0))

    def _check_source(self, source: Any):
        if not isinstance(source, str):
            return
        scheme = urlparse(source).scheme.lower()
        if '://' in source:
            if scheme in INSECURE_SCHEMES and self.config.get('require_secure_transport', True):
                raise CameraSessionError(
                    CameraErrorKind.INSECURE_CONTEXT, f"Refusing unencrypted source: {source}")
            return
        if source.startswith('/dev/'):
            if not os.path.exists(source):
                raise CameraSessionError(CameraErrorKind.DEVICE_NOT_FOUND, f"No such device: {source}")
            if not os.access(source, os.R_OK):
                raise CameraSessionError(CameraErrorKind.PERMISSION_DENIED, f"Cannot read {source}")

    def _configure(self, cap: Any, source: Any):
        if not cap.isOpened():
            raise CameraSessionError(CameraErrorKind.DEVICE_NOT_FOUND, f"Cannot open camera source: {source}")

        width, height = self.constraints.resolution
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        cap.set(cv2.CAP_PROP_FPS, self.constraints.target_fps)

        # An opened device that cannot deliver a frame is held by another process.
        if not cap.grab():
            raise CameraSessionError(CameraErrorKind.DEVICE_BUSY, f"Camera source {source} is not readable")

    def acquire(self) -> LiveStream:
        """Opens a new stream, releasing any stream this manager already holds.

        Raises CameraSessionError with the classified failure kind.
        """
        self.release()
        source = self.resolve_source()
        logger.info("Requesting %s-facing video stream (audio=%s) from source %r.",
                    self.constraints.facing_mode, self.constraints.audio, source)
        self._check_source(source)

        try:
            cap = self._capture_factory(source)
        except Exception as e:
            raise classify_camera_error(e) from e

        try:
            self._configure(cap, source)
        except Exception as e:
            cap.release()
            raise classify_camera_error(e) from e

        stream = LiveStream(cap, source, buffer_size=self.config.get('buffer_size', 5))
        stream.start()
        self._stream = stream
        return stream

    def release(self):
        """Stops the held stream, if any. Safe to call repeatedly."""
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
