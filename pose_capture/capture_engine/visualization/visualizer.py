# pose_capture/capture_engine/visualization/visualizer.py
import cv2
import numpy as np
from typing import Optional
from ..common.models import CaptureSnapshot, PoseEstimate

SKELETON = (
    ("left_shoulder", "right_shoulder"),
    ("left_shoulder", "left_elbow"), ("left_elbow", "left_wrist"),
    ("right_shoulder", "right_elbow"), ("right_elbow", "right_wrist"),
    ("left_shoulder", "left_hip"), ("right_shoulder", "right_hip"),
    ("left_hip", "right_hip"),
    ("left_hip", "left_knee"), ("left_knee", "left_ankle"),
    ("right_hip", "right_knee"), ("right_knee", "right_ankle"),
)

GREEN = (113, 204, 46)
DARK = (30, 30, 30)
RED = (60, 60, 220)
WHITE = (240, 240, 240)

class Visualizer:
    """Draws the skeleton, guidance text and countdown over the live frame."""

    def __init__(self, config: dict):
        self.config = config
        self.font = cv2.FONT_HERSHEY_SIMPLEX
        self.min_score = config.get('min_keypoint_score', 0.3)

    def render(self, frame: np.ndarray, estimate: Optional[PoseEstimate], snapshot: CaptureSnapshot,
               current_fps: float) -> np.ndarray:
        """Renders the pose and capture state onto a copy of the frame."""
        output_frame = frame.copy()

        if estimate is not None and self.config.get('draw_landmarks', True):
            self._draw_skeleton(output_frame, estimate)

        if snapshot.error:
            self._draw_error(output_frame, snapshot.error)
        else:
            self._draw_feedback(output_frame, snapshot)
            if snapshot.countdown is not None:
                self._draw_countdown(output_frame, snapshot.countdown)

        if self.config.get('draw_hud', True):
            self._draw_hud(output_frame, snapshot, current_fps)

        return output_frame

    def _draw_skeleton(self, frame: np.ndarray, estimate: PoseEstimate):
        visible = {name: (int(kp.x), int(kp.y)) for name, kp in estimate.keypoints.items()
                   if kp.score > self.min_score}
        for a, b in SKELETON:
            if a in visible and b in visible:
                cv2.line(frame, visible[a], visible[b], (200, 200, 200), 2, cv2.LINE_AA)
        for point in visible.values():
            cv2.circle(frame, point, 4, (0, 255, 0), -1, cv2.LINE_AA)

    def _draw_feedback(self, frame: np.ndarray, snapshot: CaptureSnapshot):
        """Bottom guidance bar, green while a valid pose waits for no timer."""
        h, w = frame.shape[:2]
        settled = snapshot.is_pose_valid and not snapshot.confirmation_pending and not snapshot.countdown_pending
        cv2.rectangle(frame, (10, h - 60), (w - 10, h - 10), GREEN if settled else DARK, -1)
        cv2.putText(frame, snapshot.feedback, (20, h - 25), self.font, 0.8, WHITE, 2, cv2.LINE_AA)

    def _draw_countdown(self, frame: np.ndarray, countdown: int):
        h, w = frame.shape[:2]
        center = (w // 2, h // 2)
        cv2.circle(frame, center, 50, GREEN, -1, cv2.LINE_AA)
        text = str(countdown)
        (tw, th), _ = cv2.getTextSize(text, self.font, 2.0, 4)
        cv2.putText(frame, text, (center[0] - tw // 2, center[1] + th // 2), self.font, 2.0, WHITE, 4, cv2.LINE_AA)

    def _draw_error(self, frame: np.ndarray, message: str):
        h, w = frame.shape[:2]
        cv2.rectangle(frame, (10, h // 2 - 50), (w - 10, h // 2 + 50), RED, -1)
        cv2.putText(frame, message, (30, h // 2 - 5), self.font, 0.9, WHITE, 2, cv2.LINE_AA)
        cv2.putText(frame, "Press R to retake", (30, h // 2 + 30), self.font, 0.7, WHITE, 2, cv2.LINE_AA)

    def _draw_hud(self, frame: np.ndarray, snapshot: CaptureSnapshot, fps: float):
        hud_elements = [
            f"FPS: {fps:.1f}",
            f"Stage: {snapshot.stage.value}",
        ]
        for i, text in enumerate(hud_elements):
            cv2.putText(frame, text, (10, 30 + i * 30), self.font, 0.7, WHITE, 2, cv2.LINE_AA)
