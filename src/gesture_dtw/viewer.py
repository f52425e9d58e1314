"""OpenCV window that turns the mouse into a gesture input device.

The mouse position is sampled once per frame and fed to the session; key
presses go to the session's key bindings (``q`` or Esc quits). While
untrained the window shows the recording trail and the recorded examples;
once trained it shows the DTW input buffer, the per-class distance
matrices and rolling plots of the predicted label and class likelihoods.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Optional

import cv2
import numpy as np

from gesture_dtw.config import AppConfig
from gesture_dtw.recorder import StreamRecorder
from gesture_dtw.session import Session, handle_key, tick

logger = logging.getLogger("gesture_dtw.viewer")

WHITE = (255, 255, 255)
RED = (0, 0, 255)
GREY = (90, 90, 90)
FONT = cv2.FONT_HERSHEY_PLAIN
MARGIN = 20
LINE_HEIGHT = 15
GRAPH_SPACER = 15
QUIT_KEYS = (ord("q"), 27)

# BGR colours for plot channels
PALETTE = [
    (255, 128, 0), (0, 200, 0), (0, 0, 255), (0, 215, 255),
    (255, 0, 255), (255, 255, 0), (128, 128, 255), (200, 200, 200),
]


def gradient_color(i: int, n: int) -> tuple[int, int, int]:
    """Blue-to-red colour for the i-th of n points (oldest blue, newest red)."""
    r = int(255 * i / max(1, n))
    return (255 - r, 0, r)


def put_text(canvas: np.ndarray, text: str, x: int, y: int, color=WHITE):
    cv2.putText(canvas, text, (int(x), int(y)), FONT, 1.0, color, 1, cv2.LINE_AA)


def draw_trail(canvas: np.ndarray, points: np.ndarray, radius: int = 3):
    n = len(points)
    for i, (x, y) in enumerate(points[:, :2]):
        cv2.circle(canvas, (int(x), int(y)), radius, gradient_color(i, n), -1)


def paste(canvas: np.ndarray, image: np.ndarray, x: int, y: int):
    """Copy ``image`` onto ``canvas`` at (x, y), clipped to the canvas."""
    h, w = image.shape[:2]
    ch, cw = canvas.shape[:2]
    x0, y0 = max(0, x), max(0, y)
    x1, y1 = min(cw, x + w), min(ch, y + h)
    if x1 <= x0 or y1 <= y0:
        return
    canvas[y0:y1, x0:x1] = image[y0 - y:y1 - y, x0 - x:x1 - x]


def matrix_heatmap(matrix: np.ndarray, width: int, height: int) -> np.ndarray:
    """Colour-mapped image of a cost matrix, scaled between its min and max."""
    finite = np.where(np.isfinite(matrix), matrix, np.nan)
    lo, hi = np.nanmin(finite), np.nanmax(finite)
    span = hi - lo if hi > lo else 1.0
    scaled = np.nan_to_num((finite - lo) / span, nan=1.0)
    gray = (scaled * 255).astype(np.uint8)
    gray = cv2.resize(gray, (width, height), interpolation=cv2.INTER_NEAREST)
    return cv2.applyColorMap(gray, cv2.COLORMAP_JET)


class TimeseriesPlot:
    """Rolling line plot of a fixed number of channels."""

    def __init__(self, length: int, channels: int, title: str = ""):
        self.channels = channels
        self.title = title
        self._data: deque = deque(maxlen=max(2, length))
        self.ranges: Optional[tuple[float, float]] = None

    def update(self, values):
        row = np.zeros(self.channels)
        v = np.asarray(values, dtype=np.float64).ravel()[:self.channels]
        row[:len(v)] = v
        self._data.append(row)

    def set_data(self, data: np.ndarray):
        self._data = deque((np.asarray(r, dtype=np.float64) for r in data), maxlen=max(2, len(data)))

    def __len__(self) -> int:
        return len(self._data)

    def draw(self, canvas: np.ndarray, x: int, y: int, w: int, h: int):
        cv2.rectangle(canvas, (x, y), (x + w, y + h), GREY, 1)
        if self.title:
            put_text(canvas, self.title, x + 5, y + 13)
        if len(self._data) < 2:
            return

        data = np.array(self._data)
        if self.ranges is not None:
            lo, hi = self.ranges
        else:
            lo, hi = float(data.min()), float(data.max())
        span = hi - lo if hi > lo else 1.0

        n = data.shape[0]
        xs = x + np.arange(n) * (w / max(1, self._data.maxlen - 1))
        for c in range(data.shape[1]):
            ys = y + h - (data[:, c] - lo) / span * h
            pts = np.column_stack([xs, np.clip(ys, y, y + h)]).astype(np.int32)
            cv2.polylines(canvas, [pts], False, PALETTE[c % len(PALETTE)], 1, cv2.LINE_AA)


class Viewer:
    """Mouse-driven gesture recorder and live classifier."""

    def __init__(
        self,
        session: Session,
        config: Optional[AppConfig] = None,
        stream_recorder: Optional[StreamRecorder] = None,
        title: str = "gesture-dtw",
    ):
        self.session = session
        self.config = config or AppConfig()
        self.stream_recorder = stream_recorder
        self.title = title
        self.mouse = np.zeros(2)
        self.sample_rate = 0.0
        self.predicted_plot: Optional[TimeseriesPlot] = None
        self.likelihood_plot: Optional[TimeseriesPlot] = None
        self._plot_classes = -1
        self._last_tick: Optional[float] = None

    def on_mouse(self, event, x, y, flags, param):
        self.mouse = np.array([float(x), float(y)])

    def _ensure_plots(self):
        n = self.session.pipeline.num_classes
        if n == self._plot_classes:
            return
        length = self.config.plot_length
        self.predicted_plot = TimeseriesPlot(length, 1, "predicted label")
        self.predicted_plot.ranges = (0, max(1, max(self.session.pipeline.class_labels, default=1)))
        self.likelihood_plot = TimeseriesPlot(length, max(1, n), "class likelihoods")
        self.likelihood_plot.ranges = (0, 1)
        self._plot_classes = n

    def update(self, key: Optional[str] = None):
        """One frame: sample the mouse, feed the session, update plots."""
        now = time.perf_counter()
        if self._last_tick is not None and now > self._last_tick:
            rate = 1.0 / (now - self._last_tick)
            self.sample_rate = rate if self.sample_rate == 0 else 0.9 * self.sample_rate + 0.1 * rate
        self._last_tick = now

        sample = self.mouse.copy()
        if self.stream_recorder is not None:
            self.stream_recorder.add_frame(sample, key)

        event = tick(self.session, sample)
        if self.session.pipeline.trained:
            self._ensure_plots()
            if event is not None:
                self.predicted_plot.update([event.class_label])
                self.likelihood_plot.update(event.prediction.likelihoods)

    def render(self) -> np.ndarray:
        width, height = self.config.window_width, self.config.window_height
        canvas = np.zeros((height, width, 3), dtype=np.uint8)
        session = self.session
        pipeline = session.pipeline

        y = MARGIN
        put_text(canvas, "------------------- TrainingInfo -------------------", MARGIN, y)
        y += LINE_HEIGHT
        put_text(canvas, "RECORDING" if session.recording else "Not Recording", MARGIN, y,
                 RED if session.recording else WHITE)
        y += LINE_HEIGHT
        put_text(canvas, f"TrainingClassLabel: {session.training_class_label}", MARGIN, y)
        y += LINE_HEIGHT
        put_text(canvas, f"NumTrainingSamples: {len(session.dataset)}", MARGIN, y)

        y += 2 * LINE_HEIGHT
        put_text(canvas, "------------------- Prediction Info -------------------", MARGIN, y)
        y += LINE_HEIGHT
        put_text(canvas, f"Model Trained: {'YES' if pipeline.trained else 'NO'}", MARGIN, y)
        y += LINE_HEIGHT
        put_text(canvas, f"PredictedClassLabel: {pipeline.predicted_class_label}", MARGIN, y)
        y += LINE_HEIGHT
        put_text(canvas, f"Likelihood: {pipeline.maximum_likelihood:.4f}", MARGIN, y)
        y += LINE_HEIGHT
        put_text(canvas, f"SampleRate: {self.sample_rate:.2f}", MARGIN, y)

        y += 2 * LINE_HEIGHT
        put_text(canvas, f"InfoText: {session.info_text}", MARGIN, y)

        if pipeline.trained:
            self._draw_prediction_view(canvas)
        else:
            if session.recording and session.recorder.sample_count:
                draw_trail(canvas, session.recorder.timeseries)
            self._draw_training_data(canvas)
        return canvas

    def _draw_prediction_view(self, canvas: np.ndarray):
        width, height = canvas.shape[1], canvas.shape[0]
        diag = self.session.pipeline.diagnostics()
        if diag is not None:
            if len(diag.input_buffer):
                draw_trail(canvas, diag.input_buffer, radius=3)
            self._draw_distance_matrices(canvas, diag.distance_matrices, diag.class_labels)

        self._ensure_plots()
        w, h = int(width * 0.5), 100
        x = MARGIN
        y = height - (h + GRAPH_SPACER) * 2
        self.predicted_plot.draw(canvas, x, y, w, h)
        y += h + GRAPH_SPACER
        self.likelihood_plot.draw(canvas, x, y, w, h)

    def _draw_distance_matrices(self, canvas: np.ndarray, matrices: list[np.ndarray], labels: list[int]):
        if not matrices:
            return
        w, h = 150, 100
        x = canvas.shape[1] - w - 10
        y = 25
        put_text(canvas, "Distance Matrix", x, y)
        y += 10
        for label, matrix in zip(labels, matrices):
            if matrix.size == 0:
                continue
            paste(canvas, matrix_heatmap(matrix, w, h), x, y)
            put_text(canvas, f"Class: {label}", x + 3, y + 13, WHITE)
            y += h + 10

    def _draw_training_data(self, canvas: np.ndarray):
        examples = self.session.dataset.examples
        if not examples:
            return
        w, h = 250, 50
        x = canvas.shape[1] - w - 10
        y = 25
        put_text(canvas, "Training Examples", x, y)
        y += 10
        for example in examples:
            if y + h > canvas.shape[0]:
                break
            plot = TimeseriesPlot(len(example.data), example.data.shape[1], f"Class: {example.class_label}")
            plot.set_data(example.data)
            plot.draw(canvas, x, y, w, h)
            y += h + 5

    def run(self):
        """Open the window and loop until q / Esc."""
        cv2.namedWindow(self.title)
        cv2.setMouseCallback(self.title, self.on_mouse)
        delay = max(1, int(1000 / self.config.frame_rate))
        key: Optional[str] = None
        logger.info("Viewer started at %d fps; press q or Esc to quit", self.config.frame_rate)

        try:
            while True:
                self.update(key)
                cv2.imshow(self.title, self.render())
                code = cv2.waitKey(delay) & 0xFF
                if code in QUIT_KEYS:
                    break
                key = None
                if code != 0xFF:
                    key = chr(code)
                    handle_key(self.session, key)
                    if self.session.info_text:
                        logger.info("%s", self.session.info_text)
        finally:
            cv2.destroyWindow(self.title)
