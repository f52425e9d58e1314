"""gesture-dtw - mouse gesture recognition with Dynamic Time Warping."""

__version__ = "0.1.0"

from gesture_dtw.config import AppConfig, DTWConfig
from gesture_dtw.dataset import DatasetError, TimeseriesDataset, TrainingExample, NULL_CLASS_LABEL
from gesture_dtw.classifier import (
    Diagnostics,
    DiagnosticsSource,
    Prediction,
    TimeseriesClassifier,
    make_classifier,
)
from gesture_dtw.dtw import DTW, DTWTemplate, TrainingError, dtw_distance
from gesture_dtw.pipeline import GesturePipeline, PredictionEvent, PipelineStats
from gesture_dtw.recorder import TimeseriesRecorder, StreamRecorder, StreamPlayer
from gesture_dtw.session import Session, handle_key, run_command, tick
from gesture_dtw.metrics import MetricsCollector
