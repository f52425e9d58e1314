"""Real-time gesture pipeline: sample stream in, prediction events out."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from gesture_dtw.classifier import (
    Diagnostics,
    DiagnosticsSource,
    Prediction,
    TimeseriesClassifier,
    make_classifier,
)
from gesture_dtw.dataset import NULL_CLASS_LABEL, DatasetError, TimeseriesDataset
from gesture_dtw.dtw import TrainingError

logger = logging.getLogger("gesture_dtw.pipeline")


@dataclass
class PredictionEvent:
    """A prediction produced for one input tick."""
    class_label: int
    max_likelihood: float
    class_likelihoods: dict[int, float]
    null_rejected: bool
    prediction: Prediction
    timestamp: float

    def to_dict(self) -> dict:
        data = self.prediction.to_dict()
        data["timestamp"] = self.timestamp
        return data


@dataclass
class PipelineStats:
    """Runtime statistics."""
    trained: bool
    num_classes: int
    total_samples: int
    total_predictions: int
    null_predictions: int
    avg_latency_ms: float
    training_runs: int = 0
    failed_training_runs: int = 0
    label_counts: dict = field(default_factory=dict)


class GesturePipeline:
    """Wraps a classifier with trained-state gating, callbacks and stats.

    Training failures are reported (False) rather than raised, and never
    disturb the model that was trained before.
    """

    def __init__(self, classifier: Optional[TimeseriesClassifier] = None):
        self.classifier = classifier if classifier is not None else make_classifier("dtw")
        self._lock = threading.RLock()
        self._callbacks: list[Callable[[PredictionEvent], None]] = []
        self._latencies: deque = deque(maxlen=120)
        self._label_counts: dict[int, int] = {}
        self._total_samples = 0
        self._total_predictions = 0
        self._null_predictions = 0
        self._training_runs = 0
        self._failed_training_runs = 0

        self.predicted_class_label = NULL_CLASS_LABEL
        self.class_likelihoods: list[float] = []
        self.maximum_likelihood = 0.0
        self.last_event: Optional[PredictionEvent] = None

    def on_prediction(self, callback: Callable[[PredictionEvent], None]):
        """Register a callback fired for every prediction event."""
        self._callbacks.append(callback)

    @property
    def trained(self) -> bool:
        return self.classifier.trained

    @property
    def num_classes(self) -> int:
        return self.classifier.num_classes

    @property
    def class_labels(self) -> list[int]:
        return self.classifier.class_labels

    def train(self, dataset: TimeseriesDataset) -> bool:
        """Train the classifier. Returns False (and keeps the old model) on failure."""
        with self._lock:
            self._training_runs += 1
            try:
                self.classifier.train(dataset)
            except (TrainingError, DatasetError) as e:
                self._failed_training_runs += 1
                logger.warning("Failed to train pipeline: %s", e)
                return False
            self._reset_prediction_state()
            logger.info("Pipeline trained with %d classes", self.num_classes)
            return True

    def predict(self, sample) -> Optional[PredictionEvent]:
        """Feed one sample. Returns an event, or None if untrained or still buffering."""
        with self._lock:
            self._total_samples += 1
            if not self.classifier.trained:
                return None

            t0 = time.perf_counter()
            try:
                prediction = self.classifier.predict(sample)
            except ValueError as e:
                logger.warning("Failed to predict sample: %s", e)
                return None
            self._latencies.append(time.perf_counter() - t0)
            if prediction is None:
                return None
            event = self._record(prediction)

        for cb in self._callbacks:
            cb(event)
        return event

    def predict_timeseries(self, data) -> Optional[PredictionEvent]:
        """Classify a whole recording. Returns None if untrained."""
        with self._lock:
            if not self.classifier.trained:
                return None
            event = self._record(self.classifier.predict_timeseries(data))

        for cb in self._callbacks:
            cb(event)
        return event

    def _record(self, prediction: Prediction) -> PredictionEvent:
        self.predicted_class_label = prediction.class_label
        self.class_likelihoods = [float(p) for p in prediction.likelihoods]
        self.maximum_likelihood = prediction.max_likelihood

        self._total_predictions += 1
        if prediction.is_null:
            self._null_predictions += 1
        self._label_counts[prediction.class_label] = (
            self._label_counts.get(prediction.class_label, 0) + 1
        )

        event = PredictionEvent(
            class_label=prediction.class_label,
            max_likelihood=prediction.max_likelihood,
            class_likelihoods=prediction.likelihood_map(),
            null_rejected=prediction.null_rejected,
            prediction=prediction,
            timestamp=time.time(),
        )
        self.last_event = event
        return event

    def diagnostics(self) -> Optional[Diagnostics]:
        """Diagnostic snapshot, or None when the classifier keeps none."""
        if not isinstance(self.classifier, DiagnosticsSource):
            return None
        with self._lock:
            return Diagnostics(
                input_buffer=np.asarray(self.classifier.input_buffer),
                distance_matrices=self.classifier.distance_matrices,
                class_labels=self.classifier.class_labels,
            )

    @property
    def stats(self) -> PipelineStats:
        avg = sum(self._latencies) / len(self._latencies) if self._latencies else 0.0
        return PipelineStats(
            trained=self.trained,
            num_classes=self.num_classes,
            total_samples=self._total_samples,
            total_predictions=self._total_predictions,
            null_predictions=self._null_predictions,
            avg_latency_ms=avg * 1000,
            training_runs=self._training_runs,
            failed_training_runs=self._failed_training_runs,
            label_counts=dict(self._label_counts),
        )

    def _reset_prediction_state(self):
        self.predicted_class_label = NULL_CLASS_LABEL
        self.class_likelihoods = [0.0] * self.num_classes
        self.maximum_likelihood = 0.0
        self.last_event = None

    def reset(self):
        """Clear buffers, counters and the last prediction. The model is kept."""
        with self._lock:
            self.classifier.reset()
            self._latencies.clear()
            self._label_counts.clear()
            self._total_samples = 0
            self._total_predictions = 0
            self._null_predictions = 0
            self._reset_prediction_state()
