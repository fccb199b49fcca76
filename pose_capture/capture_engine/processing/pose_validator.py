# pose_capture/capture_engine/processing/pose_validator.py
"""Per-frame pose checks: full-body visibility and front/side orientation."""
from typing import Optional
from ..common.enums import CaptureStage
from ..common.models import Orientation, PoseEstimate, ValidationOutcome

MIN_KEYPOINT_SCORE = 0.3
FRONT_SHOULDER_RATIO = 0.8
SIDE_SHOULDER_RATIO = 0.7
MIN_SHOULDER_WIDTH_PX = 50

REQUIRED_KEYPOINTS = (
    "nose",
    "left_shoulder", "right_shoulder",
    "left_hip", "right_hip",
    "left_knee", "right_knee",
    "left_ankle", "right_ankle",
)

NO_PERSON = "No person detected. Ensure you are fully visible."
LOW_CONFIDENCE = "Full body not visible or low confidence. Adjust position."
NO_ORIENTATION = "Cannot determine orientation. Adjust position."
FACE_CAMERA = "Please face the camera directly."
TURN_SIDEWAYS = "Please turn 90 degrees (side view)."
DETECTING = "Detecting pose..."

def classify_orientation(estimate: PoseEstimate) -> Optional[Orientation]:
    """Front/side reading from shoulder and hip widths, or None if either pair is missing.

    The two predicates are not complements: a shoulder width between 0.7x and 0.8x
    the hip width that is also at most 50 px is neither front nor side.
    """
    ls, rs = estimate.get("left_shoulder"), estimate.get("right_shoulder")
    lh, rh = estimate.get("left_hip"), estimate.get("right_hip")
    if ls is None or rs is None or lh is None or rh is None:
        return None

    shoulder_width = abs(ls.x - rs.x)
    hip_width = abs(lh.x - rh.x)
    return Orientation(
        shoulder_width=shoulder_width,
        hip_width=hip_width,
        is_front=shoulder_width > hip_width * FRONT_SHOULDER_RATIO and shoulder_width > MIN_SHOULDER_WIDTH_PX,
        is_side=shoulder_width < hip_width * SIDE_SHOULDER_RATIO or shoulder_width < MIN_SHOULDER_WIDTH_PX,
    )

def count_visible(estimate: PoseEstimate, min_score: float = MIN_KEYPOINT_SCORE) -> int:
    visible = 0
    for name in REQUIRED_KEYPOINTS:
        kp = estimate.get(name)
        if kp is not None and kp.score > min_score:
            visible += 1
    return visible

def validate_pose(
    estimate: Optional[PoseEstimate],
    stage: CaptureStage,
    min_score: float = MIN_KEYPOINT_SCORE,
) -> ValidationOutcome:
    """Judges one frame's pose against the orientation `stage` requires."""
    if estimate is None or not estimate.keypoints:
        return ValidationOutcome.invalid(NO_PERSON)

    if count_visible(estimate, min_score) < len(REQUIRED_KEYPOINTS):
        return ValidationOutcome.invalid(LOW_CONFIDENCE)

    orientation = classify_orientation(estimate)
    if orientation is None:
        return ValidationOutcome.invalid(NO_ORIENTATION)

    if stage == CaptureStage.DETECTING_FRONT:
        match, message = orientation.is_front, FACE_CAMERA
    elif stage == CaptureStage.DETECTING_SIDE:
        match, message = orientation.is_side, TURN_SIDEWAYS
    else:
        match, message = False, DETECTING

    return ValidationOutcome.ok() if match else ValidationOutcome.invalid(message)
