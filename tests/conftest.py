import heapq
import itertools
import time

import numpy as np
import pytest

from capture_engine.common.models import Keypoint, PoseEstimate
from capture_engine.measurement.synthesizer import MeasurementTable, ResultSynthesizer
from capture_engine.processing.pose_session import PoseBackend


class ManualHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Virtual clock scheduler: callbacks run only when the test advances time."""

    def __init__(self):
        self.now = 0.0
        self._queue = []
        self._seq = itertools.count()

    def call_later(self, delay, callback):
        handle = ManualHandle()
        heapq.heappush(self._queue, (self.now + delay, next(self._seq), handle, callback))
        return handle

    @property
    def pending(self):
        return sum(1 for _, _, h, _ in self._queue if not h.cancelled)

    def advance(self, seconds):
        deadline = self.now + seconds
        while self._queue and self._queue[0][0] <= deadline + 1e-9:
            due, _, handle, callback = heapq.heappop(self._queue)
            self.now = due
            if not handle.cancelled:
                callback()
        self.now = deadline


class LeakyScheduler(ManualScheduler):
    """Scheduler whose handles ignore cancel(), so every callback still runs."""

    def call_later(self, delay, callback):
        handle = super().call_later(delay, callback)
        handle.cancel = lambda: None
        return handle


class RecordingNavigator:
    def __init__(self):
        self.completed = []
        self.need_height = 0

    def on_capture_complete(self, record):
        self.completed.append(record)

    def on_need_height(self):
        self.need_height += 1


class MemoryHeightStore:
    def __init__(self, height=None):
        self.height = height

    def load(self):
        return self.height


class FakeCapture:
    """Stands in for cv2.VideoCapture."""

    def __init__(self, opened=True, readable=True, shape=(480, 640, 3)):
        self.opened = opened
        self.readable = readable
        self.shape = shape
        self.release_calls = 0
        self.settings = {}

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.settings[prop] = value
        return True

    def get(self, prop):
        return self.settings.get(prop, 0)

    def grab(self):
        time.sleep(0.002)
        return self.readable

    def retrieve(self):
        return True, np.zeros(self.shape, dtype=np.uint8)

    def release(self):
        self.release_calls += 1


class FakeBackend(PoseBackend):
    def __init__(self, estimate=None, error=None):
        self.estimate = estimate
        self.error = error
        self.calls = 0
        self.close_calls = 0

    def infer(self, frame_rgb):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.estimate

    def close(self):
        self.close_calls += 1


def make_pose(shoulder_width, hip_width, score=0.9, center=320.0, drop=()):
    """Upright figure with the given shoulder and hip widths in pixels."""
    points = {
        "nose": (center, 80.0),
        "left_shoulder": (center + shoulder_width / 2, 150.0),
        "right_shoulder": (center - shoulder_width / 2, 150.0),
        "left_hip": (center + hip_width / 2, 300.0),
        "right_hip": (center - hip_width / 2, 300.0),
        "left_knee": (center + hip_width / 2, 400.0),
        "right_knee": (center - hip_width / 2, 400.0),
        "left_ankle": (center + hip_width / 2, 470.0),
        "right_ankle": (center - hip_width / 2, 470.0),
    }
    keypoints = {
        name: Keypoint(name=name, x=x, y=y, score=score)
        for name, (x, y) in points.items() if name not in drop
    }
    return PoseEstimate(keypoints=keypoints, width=640, height=480)


@pytest.fixture
def front_pose():
    return make_pose(200, 100)


@pytest.fixture
def side_pose():
    return make_pose(40, 100)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def navigator():
    return RecordingNavigator()


@pytest.fixture
def table():
    return MeasurementTable({
        "150": {"chest": [31.2, 32.0], "waist": [None, None]},
        "160": {"chest": [33.123, 33.987], "waist": [27.4, None], "inseam": []},
        "170": {"chest": [35.0], "waist": [29.0]},
    })


@pytest.fixture
def synthesizer(table):
    return ResultSynthesizer(table, np.random.default_rng(7))


@pytest.fixture
def capture_config():
    return {
        'prompt_dwell_s': 1.5,
        'confirmation_delay_ms': 1500,
        'countdown_seconds': 5,
        'countdown_interval_s': 1.0,
        'handoff_delay_s': 1.5,
        'min_keypoint_score': 0.3,
        'validate_during_confirmation': False,
    }
