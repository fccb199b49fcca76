# pose_capture/capture_engine/common/config.py
import copy
import logging
import os
import yaml
from typing import Optional
from .enums import LogLevel
from .errors import ConfigError

DEFAULT_CONFIG = {
    'camera': {
        'source': 0,
        'facing_mode': 'environment',
        'facing_sources': {},
        'resolution': [1280, 720],
        'target_fps': 30,
        'buffer_size': 5,
        'ready_timeout_s': 5.0,
        'require_secure_transport': True,
    },
    'pose': {
        'model_complexity': 1,
        'min_detection_confidence': 0.5,
        'min_tracking_confidence': 0.5,
        'filter': {'min_cutoff': 1.0, 'beta': 0.05, 'd_cutoff': 1.0},
    },
    'capture': {
        'prompt_dwell_s': 1.5,
        'confirmation_delay_ms': 1500,
        'countdown_seconds': 5,
        'countdown_interval_s': 1.0,
        'handoff_delay_s': 1.5,
        'min_keypoint_score': 0.3,
        'validate_during_confirmation': False,
    },
    'measurements': {
        'table_path': 'data/measurements.json',
        'seed': None,
    },
    'storage': {
        'height_file': 'data/user_height.json',
        'min_height_cm': 140,
        'max_height_cm': 180,
    },
    'visualization': {
        'draw_landmarks': True,
        'draw_hud': True,
        'window_name': 'Pose Capture',
    },
    'logging': {
        'level': 'INFO',
    },
}

# Keys holding file paths, resolved against the config file's directory.
_PATH_KEYS = (('measurements', 'table_path'), ('storage', 'height_file'))

def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged

def load_config(path: Optional[str] = None) -> dict:
    """Loads the YAML config at `path` over the defaults. With no path, returns the defaults."""
    if path is None:
        return copy.deepcopy(DEFAULT_CONFIG)
    try:
        with open(path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file '{path}' not found.") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration file '{path}'. {e}") from e
    if not isinstance(loaded, dict):
        raise ConfigError(f"Configuration file '{path}' must contain a mapping.")

    config = _merge(DEFAULT_CONFIG, loaded)
    base_dir = os.path.dirname(os.path.abspath(path))
    for section, key in _PATH_KEYS:
        value = config[section].get(key)
        if value and not os.path.isabs(value):
            config[section][key] = os.path.join(base_dir, value)
    return config

def configure_logging(config: dict) -> LogLevel:
    """Applies the `logging` section through logging.basicConfig."""
    raw = str(config.get('level', LogLevel.INFO.value)).upper()
    try:
        level = LogLevel(raw)
    except ValueError as e:
        raise ConfigError(f"Unknown log level: {raw}") from e
    logging.basicConfig(
        level=getattr(logging, level.value),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    return level
