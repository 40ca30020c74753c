"""
Centralized configuration manager.
Loads the YAML config over built-in defaults and provides typed access.

    - Every key has a default, so a missing config file is not fatal
    - Schema validation warns on wrongly-typed critical fields
    - Reset support for testing
"""

import os
import copy
import yaml
import logging

logger = logging.getLogger(__name__)

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
_CONFIG_DIR = os.path.join(_BASE_DIR, "config")

_DEFAULTS = {
    "model": {
        "input_size": 63,
        "debug": False,
        "hidden_units": [16],
    },
    "training": {
        "epochs": 50,
        "batch_size": 32,
        "learning_rate": 0.2,
        "shuffle": True,
        "seed": None,
    },
    "inference": {
        "interval_ms": 125,
    },
    "artifacts": {
        "name": "gesture-model",
        "directory": "models/weights",
    },
    "camera": {
        "device_id": 0,
        "width": 640,
        "height": 480,
        "flip_horizontal": True,
    },
    "mediapipe": {
        "max_num_hands": 2,
        "model_complexity": 0,
        "min_detection_confidence": 0.5,
        "min_tracking_confidence": 0.5,
    },
    "collection": {
        "output": "data/gestures.json",
        "capture_interval_ms": 200,
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "max_size_mb": 10,
        "backup_count": 3,
    },
}

# Schema: sections and the expected types of their critical fields
_CONFIG_SCHEMA = {
    "model": {
        "input_size": int,
        "debug": bool,
        "hidden_units": list,
    },
    "training": {
        "epochs": int,
        "batch_size": int,
        "learning_rate": float,
    },
    "inference": {
        "interval_ms": int,
    },
    "artifacts": {
        "name": str,
        "directory": str,
    },
    "camera": {
        "device_id": int,
        "width": int,
        "height": int,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base dict."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Singleton configuration manager."""

    _instance = None
    _data = copy.deepcopy(_DEFAULTS)

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def load(self, config_path=None, overrides: dict = None):
        """Load configuration from YAML, merged over the defaults."""
        config_path = config_path or os.path.join(_CONFIG_DIR, "config.yaml")

        try:
            with open(config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}
            logger.info("Loaded config from %s", config_path)
        except FileNotFoundError:
            logger.warning("Config file not found: %s, using defaults", config_path)
            loaded = {}

        if not isinstance(loaded, dict):
            logger.warning("Config file %s is not a mapping, using defaults", config_path)
            loaded = {}

        self._data = _deep_merge(copy.deepcopy(_DEFAULTS), loaded)
        if overrides:
            self._data = _deep_merge(self._data, overrides)

        self._validate()
        return self

    def _validate(self):
        """Validate critical config fields against schema."""
        warnings = []
        for section_name, fields in _CONFIG_SCHEMA.items():
            section = self._data.get(section_name)
            if not isinstance(section, dict):
                warnings.append(f"Section '{section_name}' should be a dict, got {type(section).__name__}")
                continue
            for field_name, expected_type in fields.items():
                if field_name in section:
                    value = section[field_name]
                    # Allow int where float is expected
                    if expected_type is float and isinstance(value, (int, float)) \
                            and not isinstance(value, bool):
                        continue
                    if expected_type is int and isinstance(value, bool):
                        warnings.append(f"{section_name}.{field_name}: expected int, got bool")
                        continue
                    if not isinstance(value, expected_type):
                        warnings.append(
                            f"{section_name}.{field_name}: expected {expected_type.__name__}, "
                            f"got {type(value).__name__} ({value!r})"
                        )

        if warnings:
            for w in warnings:
                logger.warning("Config validation: %s", w)
        else:
            logger.debug("Config validation passed")
        return warnings

    def get(self, key_path: str, default=None):
        """Get nested config value using dot notation: 'training.epochs'."""
        keys = key_path.split(".")
        value = self._data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_section(self, section: str) -> dict:
        """Get an entire config section."""
        return self._data.get(section, {})

    def as_dict(self) -> dict:
        """Deep copy of the full configuration."""
        return copy.deepcopy(self._data)

    @property
    def model(self) -> dict:
        return self._data.get("model", {})

    @property
    def training(self) -> dict:
        return self._data.get("training", {})

    @property
    def inference(self) -> dict:
        return self._data.get("inference", {})

    @property
    def artifacts(self) -> dict:
        return self._data.get("artifacts", {})

    @property
    def camera(self) -> dict:
        return self._data.get("camera", {})

    @property
    def mediapipe(self) -> dict:
        return self._data.get("mediapipe", {})

    @property
    def collection(self) -> dict:
        return self._data.get("collection", {})

    @property
    def base_dir(self) -> str:
        return _BASE_DIR

    @classmethod
    def reset(cls):
        """Reset singleton instance (for testing)."""
        cls._instance = None
        cls._data = copy.deepcopy(_DEFAULTS)
