# pose_capture/capture_engine/common/enums.py
from enum import Enum

class CaptureStage(str, Enum):
    """Defines the step of the front/side capture sequence."""
    INITIALIZING = "INITIALIZING"
    FRONT_PROMPT = "FRONT_PROMPT"
    DETECTING_FRONT = "DETECTING_FRONT"
    SIDE_PROMPT = "SIDE_PROMPT"
    DETECTING_SIDE = "DETECTING_SIDE"
    DONE = "DONE"
    ERROR = "ERROR"

class CameraErrorKind(str, Enum):
    """Classified reasons a capture session can fail."""
    PERMISSION_DENIED = "PERMISSION_DENIED"
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
    DEVICE_BUSY = "DEVICE_BUSY"
    INSECURE_CONTEXT = "INSECURE_CONTEXT"
    MODEL_LOAD_FAILED = "MODEL_LOAD_FAILED"
    DISPLAY_ERROR = "DISPLAY_ERROR"
    UNKNOWN = "UNKNOWN"

class TimerKind(str, Enum):
    """Timer slots owned by the capture state machine."""
    PROMPT = "PROMPT"
    CONFIRMATION = "CONFIRMATION"
    COUNTDOWN = "COUNTDOWN"
    HANDOFF = "HANDOFF"

class LogLevel(str, Enum):
    """Defines logging levels for structured logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
