"""Configuration for the DTW classifier and the mouse-gesture application.

Settings live in dataclasses with YAML round-tripping:

    config = AppConfig.from_yaml("gesture_dtw.yml")
    config.classifier.null_rejection_coeff = 2.5
    config.to_yaml("gesture_dtw.yml")
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("gesture_dtw.config")

REJECTION_MODES = ("thresholds", "likelihoods", "both")


@dataclass
class DTWConfig:
    """Tuning knobs for the DTW classifier."""
    enable_null_rejection: bool = False
    null_rejection_coeff: float = 3.0
    rejection_mode: str = "thresholds"
    null_likelihood_threshold: float = 0.0
    trim_training_data: bool = False
    trim_threshold: float = 0.1
    max_trim_percentage: float = 90.0
    offset_using_first_sample: bool = False
    constrain_warping_path: bool = True
    warping_radius: float = 0.2
    z_normalize: bool = False
    constrain_z_norm: bool = True
    smoothing_factor: int = 1
    min_examples_per_class: int = 1
    keep_distance_matrices: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.rejection_mode not in REJECTION_MODES:
            raise ValueError(
                f"rejection_mode must be one of {REJECTION_MODES}, got {self.rejection_mode!r}"
            )
        if self.null_rejection_coeff < 0:
            raise ValueError("null_rejection_coeff must be >= 0")
        if not 0.0 <= self.trim_threshold <= 1.0:
            raise ValueError("trim_threshold must be within [0, 1]")
        if not 0.0 <= self.max_trim_percentage <= 100.0:
            raise ValueError("max_trim_percentage must be within [0, 100]")
        if not 0.0 < self.warping_radius <= 1.0:
            raise ValueError("warping_radius must be within (0, 1]")
        if self.smoothing_factor < 1:
            raise ValueError("smoothing_factor must be >= 1")
        if self.min_examples_per_class < 1:
            raise ValueError("min_examples_per_class must be >= 1")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> DTWConfig:
        return cls(**_known_fields(cls, data))


def _example_classifier_config() -> DTWConfig:
    # Mouse demo settings
    return DTWConfig(
        enable_null_rejection=True,
        null_rejection_coeff=3.0,
        trim_training_data=True,
        trim_threshold=0.1,
        max_trim_percentage=90.0,
        offset_using_first_sample=True,
        constrain_warping_path=True,
    )


@dataclass
class AppConfig:
    """Application-level settings: input loop, files, server, classifier."""
    classifier_name: str = "dtw"
    classifier: DTWConfig = field(default_factory=_example_classifier_config)
    num_dimensions: int = 2
    frame_rate: int = 60
    window_width: int = 1024
    window_height: int = 768
    plot_seconds: float = 5.0
    dataset_path: str = "TrainingData.txt"
    model_path: str = "dtw_model.json"
    host: str = "0.0.0.0"
    port: int = 8765
    log_level: str = "info"

    def __post_init__(self):
        if isinstance(self.classifier, dict):
            # Partial sections override the demo defaults key by key
            merged = {**_example_classifier_config().to_dict(), **self.classifier}
            self.classifier = DTWConfig.from_dict(merged)
        if self.frame_rate <= 0:
            raise ValueError("frame_rate must be > 0")
        if self.num_dimensions <= 0:
            raise ValueError("num_dimensions must be > 0")

    @property
    def plot_length(self) -> int:
        """Number of ticks shown by the rolling plots."""
        return max(1, int(self.frame_rate * self.plot_seconds))

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> AppConfig:
        return cls(**_known_fields(cls, data))

    @classmethod
    def from_yaml(cls, path: str | Path) -> AppConfig:
        """Load configuration from a YAML file. Missing keys keep their defaults."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping at the top level")
        logger.info("Loaded config from %s", path)
        return cls.from_dict(data)

    def to_yaml(self, path: str | Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)


def _known_fields(cls, data: dict) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - names)
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, ", ".join(unknown))
    return {k: v for k, v in data.items() if k in names}
