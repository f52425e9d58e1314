"""Prometheus-compatible metrics for the gesture server.

Renders the Prometheus text exposition format directly, no client library.

Tracked metrics:
- gesture_dtw_predictions_total (counter, by class label)
- gesture_dtw_null_rejections_total (counter)
- gesture_dtw_samples_total (counter)
- gesture_dtw_training_runs_total (counter, by result)
- gesture_dtw_training_examples (gauge)
- gesture_dtw_tick_latency_seconds (histogram)
- gesture_dtw_active_connections (gauge)
"""

from __future__ import annotations

import threading
import time
from collections import Counter


class _Histogram:
    """Cumulative-bucket histogram."""

    def __init__(self, buckets: list[float]):
        self.buckets = sorted(buckets)
        self.bucket_counts = [0] * len(self.buckets)
        self.count = 0
        self.sum = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float):
        with self._lock:
            self.count += 1
            self.sum += value
            for i, b in enumerate(self.buckets):
                if value <= b:
                    self.bucket_counts[i] += 1
                    break

    def render(self, name: str, help_text: str) -> list[str]:
        lines = [
            f"# HELP {name} {help_text}",
            f"# TYPE {name} histogram",
        ]
        with self._lock:
            cumulative = 0
            for b, n in zip(self.buckets, self.bucket_counts):
                cumulative += n
                lines.append(f'{name}_bucket{{le="{b}"}} {cumulative}')
            lines.append(f'{name}_bucket{{le="+Inf"}} {self.count}')
            lines.append(f"{name}_sum {self.sum:.6f}")
            lines.append(f"{name}_count {self.count}")
        return lines


class MetricsCollector:
    """Counts predictions, training runs and tick latency."""

    PREFIX = "gesture_dtw"

    def __init__(self):
        self._predictions: Counter = Counter()
        self._training_runs: Counter = Counter()
        self._null_rejections = 0
        self._samples_total = 0
        self._training_examples = 0
        self._active_connections = 0
        self._lock = threading.Lock()
        # 100us .. 100ms
        self._latency = _Histogram([0.0001, 0.0005, 0.001, 0.002, 0.005, 0.010, 0.020, 0.050, 0.100])
        self._start_time = time.time()

    def record_sample(self, latency_seconds: float):
        with self._lock:
            self._samples_total += 1
        self._latency.observe(latency_seconds)

    def record_prediction(self, class_label: int, null_rejected: bool = False):
        with self._lock:
            self._predictions[class_label] += 1
            if null_rejected:
                self._null_rejections += 1

    def record_training(self, success: bool):
        with self._lock:
            self._training_runs["success" if success else "failure"] += 1

    def set_training_examples(self, count: int):
        self._training_examples = count

    def set_connections(self, count: int):
        self._active_connections = count

    @property
    def prediction_counts(self) -> dict[int, int]:
        with self._lock:
            return dict(self._predictions)

    @property
    def samples_total(self) -> int:
        return self._samples_total

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        p = self.PREFIX
        lines: list[str] = []

        def metric(name: str, kind: str, help_text: str, samples: list[str]):
            lines.append(f"# HELP {p}_{name} {help_text}")
            lines.append(f"# TYPE {p}_{name} {kind}")
            lines.extend(samples)
            lines.append("")

        metric("uptime_seconds", "gauge", "Time since server start",
               [f"{p}_uptime_seconds {time.time() - self._start_time:.1f}"])

        with self._lock:
            predictions = sorted(self._predictions.items())
            training = sorted(self._training_runs.items())
            nulls = self._null_rejections
            samples = self._samples_total

        metric("predictions_total", "counter", "Predictions by class label (0 = null gesture)",
               [f'{p}_predictions_total{{label="{label}"}} {n}' for label, n in predictions])
        metric("null_rejections_total", "counter", "Predictions rejected as the null gesture",
               [f"{p}_null_rejections_total {nulls}"])
        metric("samples_total", "counter", "Input samples processed",
               [f"{p}_samples_total {samples}"])
        metric("training_runs_total", "counter", "Training runs by result",
               [f'{p}_training_runs_total{{result="{r}"}} {n}' for r, n in training])
        metric("training_examples", "gauge", "Examples in the active training dataset",
               [f"{p}_training_examples {self._training_examples}"])

        lines.extend(self._latency.render(f"{p}_tick_latency_seconds", "Per-sample processing latency in seconds"))
        lines.append("")

        metric("active_connections", "gauge", "Current WebSocket connections",
               [f"{p}_active_connections {self._active_connections}"])

        return "\n".join(lines) + "\n"
