"""Classifier capabilities shared by the pipeline, server and viewer.

The pipeline holds any object satisfying :class:`TimeseriesClassifier`.
Diagnostic state (input buffer, distance matrices) is a separate
capability, :class:`DiagnosticsSource`, so nothing in the train/predict
contract depends on visualisation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, runtime_checkable

import numpy as np

from gesture_dtw.config import DTWConfig
from gesture_dtw.dataset import NULL_CLASS_LABEL, TimeseriesDataset


@dataclass
class Prediction:
    """Result of classifying one input window."""
    class_label: int  # NULL_CLASS_LABEL when rejected
    best_class_label: int  # nearest class, before null rejection
    class_labels: list[int]
    likelihoods: np.ndarray  # aligned with class_labels, sums to 1
    distances: np.ndarray  # aligned with class_labels
    max_likelihood: float
    null_rejected: bool = False

    @property
    def is_null(self) -> bool:
        return self.class_label == NULL_CLASS_LABEL

    def likelihood_map(self) -> dict[int, float]:
        return {label: float(p) for label, p in zip(self.class_labels, self.likelihoods)}

    def to_dict(self) -> dict:
        return {
            "class_label": self.class_label,
            "best_class_label": self.best_class_label,
            "max_likelihood": round(float(self.max_likelihood), 6),
            "null_rejected": self.null_rejected,
            "likelihoods": {str(k): round(v, 6) for k, v in self.likelihood_map().items()},
            "distances": {
                str(label): (float(d) if np.isfinite(d) else None)
                for label, d in zip(self.class_labels, self.distances)
            },
        }


@runtime_checkable
class TimeseriesClassifier(Protocol):
    """Anything that can be trained on a dataset and classify samples."""

    @property
    def trained(self) -> bool: ...

    @property
    def class_labels(self) -> list[int]: ...

    @property
    def num_classes(self) -> int: ...

    def train(self, dataset: TimeseriesDataset) -> None: ...

    def predict(self, sample) -> Optional[Prediction]: ...

    def predict_timeseries(self, data) -> Prediction: ...

    def reset(self) -> None: ...


@runtime_checkable
class DiagnosticsSource(Protocol):
    """Exposes the state retained by the last prediction."""

    @property
    def input_buffer(self) -> np.ndarray: ...

    @property
    def distance_matrices(self) -> list[np.ndarray]: ...


@dataclass
class Diagnostics:
    """Snapshot of diagnostic state for plotting."""
    input_buffer: np.ndarray
    distance_matrices: list[np.ndarray] = field(default_factory=list)
    class_labels: list[int] = field(default_factory=list)


def _make_dtw(config: Optional[DTWConfig]) -> TimeseriesClassifier:
    from gesture_dtw.dtw import DTW
    return DTW(config)


CLASSIFIERS: dict[str, Callable[[Optional[DTWConfig]], TimeseriesClassifier]] = {
    "dtw": _make_dtw,
}


def make_classifier(name: str = "dtw", config: Optional[DTWConfig] = None) -> TimeseriesClassifier:
    """Build a registered classifier by name."""
    try:
        factory = CLASSIFIERS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown classifier {name!r}. Available: {', '.join(sorted(CLASSIFIERS))}"
        ) from None
    return factory(config)
