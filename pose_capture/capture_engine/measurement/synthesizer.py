# pose_capture/capture_engine/measurement/synthesizer.py
import json
import logging
import numbers
import numpy as np
from typing import Dict, List, Optional
from ..common.errors import ConfigError, MissingHeightError
from ..common.models import UNAVAILABLE, MeasurementRecord

logger = logging.getLogger(__name__)

class MeasurementTable:
    """Static height -> {measurement type: candidate values} table, read once."""

    def __init__(self, data: Dict[str, Dict[str, list]]):
        if not isinstance(data, dict):
            raise ConfigError("Measurement table must be a mapping of height to measurements.")
        self._rows: Dict[int, Dict[str, list]] = {}
        for key, row in data.items():
            try:
                height = int(float(key))
            except (TypeError, ValueError):
                logger.debug("Skipping non-numeric table key %r.", key)
                continue
            self._rows[height] = row if isinstance(row, dict) else {}
        self.heights: List[int] = sorted(self._rows)
        if not self.heights:
            raise ConfigError("Measurement table has no numeric height rows.")

    @classmethod
    def from_json(cls, path: str) -> "MeasurementTable":
        with open(path, 'r') as f:
            data = json.load(f)
        table = cls(data)
        logger.info("Loaded measurement table with %d height rows from %s.", len(table.heights), path)
        return table

    def nearest_height(self, height: float) -> int:
        """Table key closest to `height`; ties go to the lower key."""
        return min(self.heights, key=lambda key: abs(key - height))

    def row(self, height_key: int) -> Dict[str, list]:
        return self._rows.get(height_key, {})

class ResultSynthesizer:
    """Turns a stored height into a MeasurementRecord by sampling the nearest table row."""

    def __init__(self, table: MeasurementTable, rng: Optional[np.random.Generator] = None):
        self.table = table
        self._rng = rng if rng is not None else np.random.default_rng()

    def synthesize(self, height: Optional[float]) -> MeasurementRecord:
        if height is None:
            raise MissingHeightError("Could not retrieve height.")

        matched = self.table.nearest_height(height)
        values = {}
        for name, candidates in self.table.row(matched).items():
            choices = []
            if isinstance(candidates, (list, tuple)):
                choices = [v for v in candidates
                           if isinstance(v, numbers.Real) and not isinstance(v, bool)]
            if choices:
                pick = choices[int(self._rng.integers(len(choices)))]
                values[name] = round(float(pick), 2)
            else:
                values[name] = UNAVAILABLE
        return MeasurementRecord(height=height, matched_height=matched, values=values)
