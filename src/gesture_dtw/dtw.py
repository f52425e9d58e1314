"""Dynamic Time Warping classification of multivariate timeseries.

Training picks one template per class (the medoid of the class under DTW
distance) and fits a null-rejection threshold from the spread of the
training distances. Prediction aligns the input against every template and
reports the nearest class, or the null label 0 when the match is not close
enough.

Usage:
    dtw = DTW(DTWConfig(enable_null_rejection=True, null_rejection_coeff=3))
    dtw.train(dataset)
    # Streaming, one sample per frame:
    prediction = dtw.predict([mouse_x, mouse_y])
    if prediction is not None:
        print(prediction.class_label, prediction.max_likelihood)
"""

from __future__ import annotations

import json
import logging
import math
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

from gesture_dtw.classifier import Prediction
from gesture_dtw.config import DTWConfig
from gesture_dtw.dataset import NULL_CLASS_LABEL, TimeseriesDataset

logger = logging.getLogger("gesture_dtw.dtw")

MODEL_FORMAT_VERSION = 1


class TrainingError(ValueError):
    """Raised when a model cannot be trained or loaded."""


# --- Distance computation ---

def local_cost_matrix(s: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Euclidean distance between every sample of ``s`` and every sample of ``t``."""
    s = np.asarray(s, dtype=np.float64)
    t = np.asarray(t, dtype=np.float64)
    diff = s[:, None, :] - t[None, :, :]
    return np.sqrt((diff * diff).sum(axis=2))


def warping_window(n: int, m: int, radius: float) -> int:
    """Half-width of the warping band for sequences of length n and m.

    Never narrower than the slope of the scaled diagonal, so the end cell
    stays reachable.
    """
    longest, shortest = max(n, m), max(1, min(n, m))
    width = int(math.ceil(radius * longest))
    return max(width, int(math.ceil(longest / shortest)), 1)


def accumulated_cost_matrix(local: np.ndarray, radius: Optional[float] = None) -> np.ndarray:
    """Cumulative alignment cost, shape (N + 1, M + 1).

    Row and column 0 are infinite except the origin. With a ``radius``, only
    cells within the band around the length-scaled diagonal are filled; the
    rest stay infinite.
    """
    n, m = local.shape
    cost = np.full((n + 1, m + 1), np.inf)
    cost[0, 0] = 0.0
    if n == 0 or m == 0:
        return cost

    window = warping_window(n, m, radius) if radius is not None else None
    inf = math.inf
    prev = [0.0] + [inf] * m
    rows = [prev]
    local_rows = local.tolist()

    for i in range(1, n + 1):
        if window is None:
            j_start, j_end = 1, m
        else:
            center = (i * m) / n
            j_start = max(1, int(math.ceil(center - window)))
            j_end = min(m, int(math.floor(center + window)))

        row = [inf] * (m + 1)
        d_row = local_rows[i - 1]
        for j in range(j_start, j_end + 1):
            row[j] = d_row[j - 1] + min(prev[j], row[j - 1], prev[j - 1])
        rows.append(row)
        prev = row

    cost[:, :] = rows
    return cost


def dtw_distance(s: np.ndarray, t: np.ndarray, radius: Optional[float] = None) -> float:
    """DTW alignment cost of two (N, D) sequences, normalized by N + M.

    Returns inf when either sequence is empty.
    """
    n, m = len(s), len(t)
    if n == 0 or m == 0:
        return float("inf")
    cost = accumulated_cost_matrix(local_cost_matrix(s, t), radius)
    return float(cost[n, m] / (n + m))


# --- Preprocessing ---

def trim_timeseries(
    data: np.ndarray,
    threshold: float = 0.1,
    max_trim_percent: float = 90.0,
    smoothing: int = 5,
) -> Optional[np.ndarray]:
    """Cut near-static samples from both ends of a recording.

    Motion energy per sample is the summed absolute change from the previous
    sample, smoothed with a moving average and scaled to [0, 1]. Leading and
    trailing samples whose energy does not exceed ``threshold`` are removed.

    Returns None when the series has no motion at all or when more than
    ``max_trim_percent`` of it would be cut.
    """
    data = np.asarray(data, dtype=np.float64)
    n = len(data)
    if n < 3:
        return data.copy()

    energy = np.zeros(n)
    energy[1:] = np.abs(np.diff(data, axis=0)).sum(axis=1)
    energy[0] = energy[1]
    if smoothing > 1:
        kernel = np.ones(smoothing) / smoothing
        energy = np.convolve(energy, kernel, mode="same")

    peak = energy.max()
    if peak <= 0:
        return None
    energy /= peak

    active = np.flatnonzero(energy > threshold)
    if active.size == 0:
        return None

    start, end = int(active[0]), int(active[-1]) + 1
    trimmed_percent = 100.0 * (n - (end - start)) / n
    if trimmed_percent > max_trim_percent:
        return None
    return data[start:end].copy()


def offset_by_first_sample(data: np.ndarray) -> np.ndarray:
    """Translate a series so that it starts at the origin."""
    data = np.asarray(data, dtype=np.float64)
    if len(data) == 0:
        return data.copy()
    return data - data[0]


def z_normalize(data: np.ndarray, constrain: bool = True, min_std: float = 0.01) -> np.ndarray:
    """Per-dimension zero mean, unit variance.

    With ``constrain``, dimensions whose std is below ``min_std`` are left
    untouched instead of blowing up their noise.
    """
    data = np.asarray(data, dtype=np.float64)
    mean = data.mean(axis=0)
    std = data.std(axis=0)
    out = data.copy()
    for d in range(data.shape[1]):
        if std[d] < min_std:
            if constrain:
                continue
            out[:, d] = data[:, d] - mean[d]
        else:
            out[:, d] = (data[:, d] - mean[d]) / std[d]
    return out


def downsample(data: np.ndarray, factor: int) -> np.ndarray:
    """Average each block of ``factor`` consecutive samples."""
    data = np.asarray(data, dtype=np.float64)
    if factor <= 1 or len(data) == 0:
        return data.copy()
    blocks = [data[i:i + factor].mean(axis=0) for i in range(0, len(data), factor)]
    return np.array(blocks)


# --- Model ---

@dataclass
class DTWTemplate:
    """The prototype timeseries of one class plus its rejection statistics."""
    class_label: int
    data: np.ndarray
    num_examples: int
    average_length: float
    training_mu: float
    training_sigma: float
    threshold: float

    def to_dict(self) -> dict:
        return {
            "class_label": self.class_label,
            "data": self.data.tolist(),
            "num_examples": self.num_examples,
            "average_length": self.average_length,
            "training_mu": self.training_mu,
            "training_sigma": self.training_sigma,
            "threshold": self.threshold if math.isfinite(self.threshold) else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> DTWTemplate:
        threshold = data.get("threshold")
        return cls(
            class_label=int(data["class_label"]),
            data=np.array(data["data"], dtype=np.float64),
            num_examples=int(data["num_examples"]),
            average_length=float(data["average_length"]),
            training_mu=float(data["training_mu"]),
            training_sigma=float(data["training_sigma"]),
            threshold=math.inf if threshold is None else float(threshold),
        )


def _likelihoods(distances: np.ndarray) -> np.ndarray:
    """Normalized inverse distances. Exact matches share all of the mass."""
    d = np.asarray(distances, dtype=np.float64)
    if d.size == 0:
        return d.copy()
    exact = d <= 0.0
    if exact.any():
        return exact / exact.sum()
    inv = 1.0 / d
    total = inv.sum()
    if total <= 0:
        return np.zeros_like(d)
    return inv / total


class DTW:
    """Template-matching DTW classifier with automatic null rejection.

    Supports streaming prediction over a rolling input buffer (``predict``)
    and batch prediction of whole recordings (``predict_timeseries``). The
    last input and the per-class local cost matrices are kept for plotting.
    """

    def __init__(self, config: Optional[DTWConfig] = None):
        self.config = config or DTWConfig()
        self._templates: list[DTWTemplate] = []
        self._num_dimensions = 0
        self._buffer_length = 0
        self._input: deque = deque()
        self._last_input = np.zeros((0, 0))
        self._distance_matrices: list[np.ndarray] = []
        self._last_prediction: Optional[Prediction] = None

    # --- State ---

    @property
    def trained(self) -> bool:
        return bool(self._templates)

    @property
    def templates(self) -> list[DTWTemplate]:
        return list(self._templates)

    @property
    def class_labels(self) -> list[int]:
        return [t.class_label for t in self._templates]

    @property
    def num_classes(self) -> int:
        return len(self._templates)

    @property
    def num_dimensions(self) -> int:
        return self._num_dimensions

    @property
    def buffer_length(self) -> int:
        """Number of samples the streaming buffer holds before it classifies."""
        return self._buffer_length

    @property
    def null_rejection_thresholds(self) -> dict[int, float]:
        return {t.class_label: t.threshold for t in self._templates}

    @property
    def last_prediction(self) -> Optional[Prediction]:
        return self._last_prediction

    @property
    def input_buffer(self) -> np.ndarray:
        """Samples in the rolling buffer, or the last batch input when it is empty."""
        if self._input:
            return np.array(self._input)
        return self._last_input.copy()

    @property
    def distance_matrices(self) -> list[np.ndarray]:
        return [m.copy() for m in self._distance_matrices]

    @property
    def _radius(self) -> Optional[float]:
        return self.config.warping_radius if self.config.constrain_warping_path else None

    # --- Null rejection control ---

    def enable_null_rejection(self, enabled: bool = True):
        self.config.enable_null_rejection = enabled

    def set_null_rejection_coeff(self, coeff: float):
        """Change the rejection coefficient and refit thresholds of a trained model."""
        if coeff < 0:
            raise ValueError("null_rejection_coeff must be >= 0")
        self.config.null_rejection_coeff = coeff
        for template in self._templates:
            template.threshold = self._threshold(
                template.num_examples, template.training_mu, template.training_sigma
            )

    def _threshold(self, num_examples: int, mu: float, sigma: float) -> float:
        if num_examples < 2:
            return math.inf
        return mu + self.config.null_rejection_coeff * sigma

    # --- Training ---

    def preprocess(self, data: np.ndarray) -> np.ndarray:
        """Apply the configured normalization, smoothing and offset to a series."""
        cfg = self.config
        out = np.asarray(data, dtype=np.float64)
        if cfg.z_normalize:
            out = z_normalize(out, constrain=cfg.constrain_z_norm)
        if cfg.smoothing_factor > 1:
            out = downsample(out, cfg.smoothing_factor)
        if cfg.offset_using_first_sample:
            out = offset_by_first_sample(out)
        return out

    def train(self, dataset: TimeseriesDataset):
        """Fit one template per class. Raises TrainingError on bad input.

        The current model is only replaced once training has succeeded.
        """
        cfg = self.config
        if dataset is None or len(dataset) == 0:
            raise TrainingError("training dataset is empty")
        if not dataset.num_dimensions:
            raise TrainingError("training dataset has no dimensions")

        counts = dataset.class_counts
        too_few = {label: n for label, n in counts.items() if n < cfg.min_examples_per_class}
        if too_few:
            raise TrainingError(
                f"classes with fewer than {cfg.min_examples_per_class} examples: {too_few}"
            )

        templates = []
        for label in dataset.class_labels:
            series = []
            for index, example in enumerate(dataset.get_class_data(label)):
                data = example.data
                if cfg.trim_training_data:
                    trimmed = trim_timeseries(data, cfg.trim_threshold, cfg.max_trim_percentage)
                    if trimmed is None:
                        logger.warning(
                            "Could not trim example %d of class %d (length %d); keeping it whole",
                            index, label, len(data),
                        )
                    else:
                        data = trimmed
                series.append(self.preprocess(data))
            templates.append(self._fit_template(label, series))

        # Raw input fills the buffer, so it spans the pre-smoothing length
        mean_length = np.mean([t.average_length for t in templates])
        buffer_length = max(1, int(round(mean_length * cfg.smoothing_factor)))

        self._templates = templates
        self._num_dimensions = int(dataset.num_dimensions)
        self._buffer_length = buffer_length
        self.reset()

        logger.info(
            "Trained DTW on %d examples, %d classes, buffer length %d",
            len(dataset), len(templates), buffer_length,
        )
        for t in templates:
            logger.debug(
                "Class %d: template length %d, mu=%.4f sigma=%.4f threshold=%.4f",
                t.class_label, len(t.data), t.training_mu, t.training_sigma, t.threshold,
            )

    def _fit_template(self, label: int, series: list[np.ndarray]) -> DTWTemplate:
        n = len(series)
        average_length = float(np.mean([len(s) for s in series]))

        if n == 1:
            logger.warning(
                "Class %d has a single training example; its null rejection threshold is unbounded",
                label,
            )
            return DTWTemplate(
                class_label=label,
                data=series[0].copy(),
                num_examples=1,
                average_length=average_length,
                training_mu=0.0,
                training_sigma=0.0,
                threshold=math.inf,
            )

        radius = self._radius
        dist = np.zeros((n, n))
        for i in range(n):
            for j in range(i + 1, n):
                dist[i, j] = dist[j, i] = dtw_distance(series[i], series[j], radius)

        # argmin keeps the first index on ties
        best = int(np.argmin(dist.sum(axis=1)))
        others = np.delete(dist[best], best)
        mu = float(others.mean())
        sigma = float(others.std())

        return DTWTemplate(
            class_label=label,
            data=series[best].copy(),
            num_examples=n,
            average_length=average_length,
            training_mu=mu,
            training_sigma=sigma,
            threshold=self._threshold(n, mu, sigma),
        )

    # --- Prediction ---

    def predict(self, sample) -> Optional[Prediction]:
        """Push one sample into the rolling buffer.

        Returns None until the buffer holds ``buffer_length`` samples, then a
        prediction for the buffered window on every call.
        """
        self._require_trained()
        x = np.asarray(sample, dtype=np.float64).ravel()
        if x.size != self._num_dimensions:
            raise ValueError(f"expected a {self._num_dimensions}-D sample, got {x.size} values")

        self._input.append(x)
        if len(self._input) < self._buffer_length:
            return None
        return self._classify(np.array(self._input))

    def predict_timeseries(self, data) -> Prediction:
        """Classify a complete (N, D) recording."""
        self._require_trained()
        arr = np.asarray(data, dtype=np.float64)
        if arr.ndim != 2 or arr.shape[1] != self._num_dimensions or len(arr) == 0:
            raise ValueError(
                f"expected a non-empty (N, {self._num_dimensions}) timeseries, got shape {arr.shape}"
            )
        self._last_input = arr.copy()
        return self._classify(arr)

    def _classify(self, raw: np.ndarray) -> Prediction:
        data = self.preprocess(raw)
        radius = self._radius
        keep = self.config.keep_distance_matrices

        distances = np.empty(len(self._templates))
        matrices = []
        for k, template in enumerate(self._templates):
            local = local_cost_matrix(data, template.data)
            cost = accumulated_cost_matrix(local, radius)
            distances[k] = cost[-1, -1] / (len(data) + len(template.data))
            if keep:
                matrices.append(local)

        likelihoods = _likelihoods(distances)
        best = int(np.argmin(distances))
        best_label = self._templates[best].class_label
        max_likelihood = float(likelihoods[best])
        rejected = self._reject(best, float(distances[best]), max_likelihood)

        if keep:
            self._distance_matrices = matrices

        prediction = Prediction(
            class_label=NULL_CLASS_LABEL if rejected else best_label,
            best_class_label=best_label,
            class_labels=self.class_labels,
            likelihoods=likelihoods,
            distances=distances,
            max_likelihood=max_likelihood,
            null_rejected=rejected,
        )
        self._last_prediction = prediction
        return prediction

    def _reject(self, best: int, distance: float, max_likelihood: float) -> bool:
        cfg = self.config
        if not cfg.enable_null_rejection:
            return False
        over_threshold = distance > self._templates[best].threshold
        unlikely = max_likelihood < cfg.null_likelihood_threshold
        if cfg.rejection_mode == "thresholds":
            return over_threshold
        if cfg.rejection_mode == "likelihoods":
            return unlikely
        return over_threshold or unlikely

    def _require_trained(self):
        if not self.trained:
            raise RuntimeError("DTW model is not trained")

    def reset(self):
        """Clear the rolling buffer and diagnostics. The model is kept."""
        self._input = deque(maxlen=max(1, self._buffer_length))
        self._last_input = np.zeros((0, self._num_dimensions))
        self._distance_matrices = []
        self._last_prediction = None

    # --- Persistence ---

    def save_model(self, path: str | Path):
        """Save the trained model and its config as JSON."""
        self._require_trained()
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": MODEL_FORMAT_VERSION,
            "classifier": "dtw",
            "config": self.config.to_dict(),
            "num_dimensions": self._num_dimensions,
            "buffer_length": self._buffer_length,
            "templates": [t.to_dict() for t in self._templates],
        }
        with open(path, "w") as f:
            json.dump(data, f)
        logger.info("Saved DTW model (%d classes) to %s", self.num_classes, path)

    def load_model(self, path: str | Path):
        """Load a model saved by :meth:`save_model`.

        Raises TrainingError on unreadable or malformed files, leaving the
        current model untouched.
        """
        try:
            with open(path) as f:
                data = json.load(f)
            if data.get("classifier") != "dtw":
                raise TrainingError(f"{path}: not a DTW model file")
            config = DTWConfig.from_dict(data["config"])
            templates = [DTWTemplate.from_dict(t) for t in data["templates"]]
            num_dimensions = int(data["num_dimensions"])
            buffer_length = int(data["buffer_length"])
        except TrainingError:
            raise
        except (OSError, KeyError, TypeError, ValueError) as e:
            raise TrainingError(f"failed to load DTW model from {path}: {e}") from e

        if not templates:
            raise TrainingError(f"{path}: model has no templates")

        self.config = config
        self._templates = templates
        self._num_dimensions = num_dimensions
        self._buffer_length = max(1, buffer_length)
        self.reset()
        logger.info("Loaded DTW model (%d classes) from %s", self.num_classes, path)
