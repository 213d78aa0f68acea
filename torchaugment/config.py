"""
Configuration for the augmentation engine.

All thresholds and capacities are gathered in a single parameter struct that
is handed to the session at construction. Values can be given as keyword
arguments, as a (flat or sectioned) dictionary, or loaded from a YAML/JSON
file.
"""
import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from .errors import ConfigError

# Sections accepted by AugmentConfig.from_dict and the keys they may hold
CONFIG_SECTIONS = {
    "matching": ("uniqueness_threshold", "max_keypoint_difference", "descriptor_size"),
    "tracking": (
        "max_correspondences",
        "min_correspondences",
        "refresh_on_fallback",
    ),
    "estimation": ("max_skew", "max_scale_ratio", "inverse_method"),
    "model": ("model_capacity", "min_seed_keypoints"),
    "session": ("max_surfaces", "frame_timeout", "device"),
}

INVERSE_METHODS = ("pinv", "closed_form")


@dataclass
class AugmentConfig:
    """Tracking thresholds and capacities."""

    # Descriptor matching
    uniqueness_threshold: float = 3.5
    max_keypoint_difference: float = 2.0
    descriptor_size: int = 128

    # Correspondence building
    max_correspondences: int = 256
    min_correspondences: int = 5
    refresh_on_fallback: bool = False

    # Transform estimation
    max_skew: float = 1000.0
    max_scale_ratio: float = 1000.0
    inverse_method: str = "pinv"

    # Surface model
    model_capacity: int = 512
    min_seed_keypoints: int = 10

    # Session
    max_surfaces: int = 32
    frame_timeout: float = 1.0
    device: str = "cpu"

    def __post_init__(self):
        self.validate()

    def validate(self):
        """
        Check that every value is in range.

        Raises:
            ConfigError: If a value is out of range
        """
        if self.uniqueness_threshold < 1.0:
            raise ConfigError(
                f"uniqueness_threshold must be >= 1, got {self.uniqueness_threshold}"
            )
        if self.max_keypoint_difference <= 0:
            raise ConfigError("max_keypoint_difference must be positive")

        for name in (
            "descriptor_size",
            "max_correspondences",
            "min_correspondences",
            "model_capacity",
            "min_seed_keypoints",
            "max_surfaces",
        ):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")

        if self.min_correspondences > self.max_correspondences:
            raise ConfigError(
                "min_correspondences cannot exceed max_correspondences "
                f"({self.min_correspondences} > {self.max_correspondences})"
            )
        # The least-squares system has 6 unknowns and 2 equations per point
        if self.min_correspondences < 3:
            raise ConfigError("min_correspondences must be at least 3")
        if self.max_skew <= 0 or self.max_scale_ratio <= 0:
            raise ConfigError("max_skew and max_scale_ratio must be positive")
        if self.inverse_method not in INVERSE_METHODS:
            raise ConfigError(
                f"inverse_method must be one of {INVERSE_METHODS}, "
                f"got {self.inverse_method!r}"
            )
        if self.frame_timeout <= 0:
            raise ConfigError("frame_timeout must be positive")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a flat dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AugmentConfig":
        """
        Create a config from a dictionary.

        Keys may be given flat (``{"max_skew": 10}``) or grouped by section
        (``{"estimation": {"max_skew": 10}}``).

        Args:
            data: Configuration dictionary

        Returns:
            AugmentConfig instance

        Raises:
            ConfigError: On unknown keys or out-of-range values
        """
        known = {f.name for f in fields(cls)}
        values = {}

        for key, value in (data or {}).items():
            if key in CONFIG_SECTIONS:
                if not isinstance(value, dict):
                    raise ConfigError(f"Section '{key}' must be a mapping")
                for sub_key, sub_value in value.items():
                    if sub_key not in CONFIG_SECTIONS[key]:
                        raise ConfigError(f"Unknown key '{key}.{sub_key}'")
                    values[sub_key] = sub_value
            elif key in known:
                values[key] = value
            else:
                raise ConfigError(f"Unknown configuration key '{key}'")

        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigError(str(e)) from e


def load_config(path: Union[str, Path]) -> AugmentConfig:
    """
    Load a configuration file.

    YAML (``.yaml``/``.yml``) and JSON files are supported.

    Args:
        path: Path to the configuration file

    Returns:
        AugmentConfig instance
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, "r") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                raise ConfigError(f"Unsupported configuration format: {path.suffix}")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Error reading configuration {path}: {e}") from e

    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping in {path}")

    logging.getLogger(__name__).info(f"Loaded augmentation config from {path}")
    return AugmentConfig.from_dict(data or {})
