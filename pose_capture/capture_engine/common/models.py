# pose_capture/capture_engine/common/models.py
from types import MappingProxyType
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Tuple, Dict, Mapping, Union
from .enums import CaptureStage

UNAVAILABLE = "N/A"

MeasurementValue = Union[float, str]

class FrameMetadata(BaseModel):
    """Metadata associated with a single camera frame."""
    frame_id: int
    timestamp: float
    source_resolution: Tuple[int, int]

class Keypoint(BaseModel):
    """A named body landmark in pixel coordinates."""
    name: str
    x: float
    y: float
    score: float = Field(0.0, ge=0.0, le=1.0)

class PoseEstimate(BaseModel):
    """Keypoints of the first tracked person in one frame, keyed by landmark name."""
    keypoints: Dict[str, Keypoint] = Field(default_factory=dict)
    width: int = 0
    height: int = 0
    timestamp: Optional[float] = None
    frame_id: Optional[int] = None

    def get(self, name: str) -> Optional[Keypoint]:
        return self.keypoints.get(name)

class Orientation(BaseModel):
    shoulder_width: float
    hip_width: float
    is_front: bool
    is_side: bool

class ValidationOutcome(BaseModel):
    """Per-frame verdict of the pose validator."""
    valid: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationOutcome":
        return cls(valid=True)

    @classmethod
    def invalid(cls, reason: str) -> "ValidationOutcome":
        return cls(valid=False, reason=reason)

class MeasurementRecord(BaseModel):
    """Final capture result: the user's height plus one sampled value per measurement type."""
    model_config = ConfigDict(frozen=True)

    height: float
    matched_height: int
    values: Mapping[str, MeasurementValue] = Field(default_factory=dict, validate_default=True)

    @field_validator('values')
    @classmethod
    def _freeze_values(cls, values: Mapping[str, MeasurementValue]) -> Mapping[str, MeasurementValue]:
        return MappingProxyType(dict(values))

    def as_dict(self) -> Dict[str, MeasurementValue]:
        """Flat result shape handed to the results screen."""
        result: Dict[str, MeasurementValue] = {"height": self.height}
        result.update(self.values)
        return result

    def display_value(self, name: str) -> str:
        value = self.values.get(name, UNAVAILABLE)
        if isinstance(value, str):
            return UNAVAILABLE
        return f"{value:.1f} in"

class CaptureSnapshot(BaseModel):
    """Read-only view of the capture state machine for rendering."""
    stage: CaptureStage
    feedback: str
    countdown: Optional[int] = None
    is_pose_valid: bool = False
    confirmation_pending: bool = False
    countdown_pending: bool = False
    error: Optional[str] = None
    generation: int = 0
