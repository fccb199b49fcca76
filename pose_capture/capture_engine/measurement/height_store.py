# pose_capture/capture_engine/measurement/height_store.py
import json
import logging
import math
import os
from typing import Optional

logger = logging.getLogger(__name__)

class HeightStore:
    """Persists the user's height (cm) between the height-entry step and the capture."""

    def __init__(self, path: str, min_height_cm: float = 140, max_height_cm: float = 180):
        self.path = path
        self.min_height_cm = min_height_cm
        self.max_height_cm = max_height_cm

    def load(self) -> Optional[float]:
        """Stored height, or None if nothing usable is stored."""
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, 'r') as f:
                height = float(json.load(f)['height_cm'])
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable height file %s: %s", self.path, e)
            return None
        if math.isnan(height):
            return None
        return height

    def save(self, height) -> float:
        """Validates and stores `height`. Raises ValueError with a user-facing message."""
        try:
            value = float(height)
        except (TypeError, ValueError):
            raise ValueError("Please enter your height.") from None
        if math.isnan(value):
            raise ValueError("Please enter your height.")
        if not self.min_height_cm <= value <= self.max_height_cm:
            raise ValueError(
                f"Height must be between {self.min_height_cm:g} cm and {self.max_height_cm:g} cm.")

        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump({'height_cm': value}, f)
        logger.info("Height saved: %g cm", value)
        return value

    def clear(self):
        if os.path.exists(self.path):
            os.remove(self.path)
