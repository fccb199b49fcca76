# pose_capture/capture_engine/common/errors.py
from typing import Optional
from .enums import CameraErrorKind

USER_MESSAGES = {
    CameraErrorKind.PERMISSION_DENIED: "Camera permission denied.",
    CameraErrorKind.DEVICE_NOT_FOUND: "No suitable camera found.",
    CameraErrorKind.DEVICE_BUSY: "Camera already in use.",
    CameraErrorKind.INSECURE_CONTEXT: "Secure connection required (HTTPS).",
    CameraErrorKind.MODEL_LOAD_FAILED: "Failed to load pose detection model.",
    CameraErrorKind.DISPLAY_ERROR: "Video display error.",
    CameraErrorKind.UNKNOWN: "Could not access camera.",
}

class CameraSessionError(IOError):
    """Fatal capture-session failure. Drives the state machine into ERROR until a retake."""

    def __init__(self, kind: CameraErrorKind, detail: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        self.user_message = USER_MESSAGES[kind]
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)

class InferenceError(RuntimeError):
    """A single pose-estimation call failed. Never fatal to the session."""

class MissingHeightError(LookupError):
    """No stored height is available to synthesize measurements from."""

class ConfigError(ValueError):
    """The configuration file is missing, malformed or holds invalid values."""
