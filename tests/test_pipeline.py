"""Tests for the gesture pipeline and the classifier registry."""

from typing import Optional

import numpy as np
import pytest

from gesture_dtw.classifier import (
    CLASSIFIERS,
    Diagnostics,
    DiagnosticsSource,
    Prediction,
    TimeseriesClassifier,
    make_classifier,
)
from gesture_dtw.config import DTWConfig
from gesture_dtw.dataset import TimeseriesDataset
from gesture_dtw.dtw import DTW
from gesture_dtw.pipeline import GesturePipeline, PredictionEvent
from gesture_dtw.synthetic import make_dataset, make_gesture


class ConstantClassifier:
    """Minimal classifier without diagnostics: always answers class 1."""

    def __init__(self):
        self.trained = False
        self.class_labels: list[int] = []
        self.num_classes = 0

    def train(self, dataset):
        self.trained = True
        self.class_labels = [1]
        self.num_classes = 1

    def predict(self, sample) -> Optional[Prediction]:
        return self.predict_timeseries([sample])

    def predict_timeseries(self, data) -> Prediction:
        return Prediction(
            class_label=1,
            best_class_label=1,
            class_labels=[1],
            likelihoods=np.array([1.0]),
            distances=np.array([0.0]),
            max_likelihood=1.0,
        )

    def reset(self):
        pass


def make_pipeline():
    return GesturePipeline(DTW(DTWConfig(offset_using_first_sample=True)))


@pytest.fixture
def short_dataset():
    """Short gestures so the streaming buffer fills quickly."""
    return make_dataset(("swipe_right", "circle_cw"), examples_per_class=3, n_points=8)


class TestRegistry:
    def test_make_dtw(self):
        classifier = make_classifier("dtw", DTWConfig(enable_null_rejection=True))
        assert isinstance(classifier, DTW)
        assert classifier.config.enable_null_rejection

    def test_case_insensitive(self):
        assert isinstance(make_classifier("DTW"), DTW)

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="Unknown classifier"):
            make_classifier("hmm")

    def test_registry_lists_dtw(self):
        assert "dtw" in CLASSIFIERS

    def test_protocols(self):
        dtw = DTW()
        assert isinstance(dtw, TimeseriesClassifier)
        assert isinstance(dtw, DiagnosticsSource)
        assert isinstance(ConstantClassifier(), TimeseriesClassifier)
        assert not isinstance(ConstantClassifier(), DiagnosticsSource)


class TestPrediction:
    def test_untrained_predict_returns_none(self):
        pipeline = make_pipeline()
        assert pipeline.predict([1.0, 2.0]) is None
        assert pipeline.predict_timeseries(np.zeros((3, 2))) is None
        assert pipeline.stats.total_samples == 1
        assert pipeline.stats.total_predictions == 0

    def test_buffering_then_events(self, short_dataset):
        pipeline = make_pipeline()
        assert pipeline.train(short_dataset)
        n = pipeline.classifier.buffer_length

        events = [pipeline.predict(s) for s in make_gesture("swipe_right", n)]
        assert all(e is None for e in events[:-1])
        event = events[-1]
        assert isinstance(event, PredictionEvent)
        assert event.class_label == pipeline.predicted_class_label
        assert set(event.class_likelihoods) == {1, 2}
        assert len(pipeline.class_likelihoods) == 2
        assert pipeline.maximum_likelihood == pytest.approx(event.max_likelihood)
        assert pipeline.last_event is event

    def test_wrong_width_sample_is_skipped(self, short_dataset):
        pipeline = make_pipeline()
        assert pipeline.train(short_dataset)
        assert pipeline.predict([1.0, 2.0, 3.0]) is None
        assert pipeline.stats.total_predictions == 0

        n = pipeline.classifier.buffer_length
        events = [pipeline.predict(s) for s in make_gesture("swipe_right", n)]
        assert events[-1] is not None

    def test_callbacks(self, short_dataset):
        pipeline = make_pipeline()
        pipeline.train(short_dataset)
        received = []
        pipeline.on_prediction(received.append)
        pipeline.predict_timeseries(short_dataset[0].data)
        assert len(received) == 1
        assert received[0].class_label == 1

    def test_event_to_dict(self, short_dataset):
        pipeline = make_pipeline()
        pipeline.train(short_dataset)
        data = pipeline.predict_timeseries(short_dataset[0].data).to_dict()
        assert data["class_label"] == 1
        assert set(data["likelihoods"]) == {"1", "2"}
        assert "timestamp" in data

    def test_stats(self, short_dataset):
        pipeline = make_pipeline()
        pipeline.train(short_dataset)
        for sample in make_gesture("circle_cw", 20):
            pipeline.predict(sample)
        stats = pipeline.stats
        assert stats.trained
        assert stats.num_classes == 2
        assert stats.total_samples == 20
        assert stats.total_predictions == 20 - pipeline.classifier.buffer_length + 1
        assert sum(stats.label_counts.values()) == stats.total_predictions
        assert stats.avg_latency_ms >= 0

    def test_reset(self, short_dataset):
        pipeline = make_pipeline()
        pipeline.train(short_dataset)
        pipeline.predict_timeseries(short_dataset[0].data)
        pipeline.reset()
        assert pipeline.trained
        assert pipeline.stats.total_predictions == 0
        assert pipeline.predicted_class_label == 0
        assert pipeline.last_event is None


class TestTraining:
    def test_empty_dataset_fails(self):
        pipeline = make_pipeline()
        assert not pipeline.train(TimeseriesDataset(num_dimensions=2))
        assert not pipeline.trained
        assert pipeline.stats.failed_training_runs == 1

    def test_failure_keeps_previous_model(self, short_dataset):
        pipeline = make_pipeline()
        assert pipeline.train(short_dataset)
        assert not pipeline.train(TimeseriesDataset(num_dimensions=2))
        assert pipeline.trained
        assert pipeline.class_labels == [1, 2]
        stats = pipeline.stats
        assert stats.training_runs == 2
        assert stats.failed_training_runs == 1

    def test_retraining_resets_prediction_state(self, short_dataset):
        pipeline = make_pipeline()
        pipeline.train(short_dataset)
        pipeline.predict_timeseries(short_dataset[0].data)
        pipeline.train(short_dataset)
        assert pipeline.predicted_class_label == 0
        assert pipeline.class_likelihoods == [0.0, 0.0]


class TestDiagnostics:
    def test_dtw_diagnostics(self, short_dataset):
        pipeline = make_pipeline()
        pipeline.train(short_dataset)
        pipeline.predict_timeseries(short_dataset[0].data)
        diag = pipeline.diagnostics()
        assert isinstance(diag, Diagnostics)
        assert diag.class_labels == [1, 2]
        assert len(diag.distance_matrices) == 2
        assert diag.input_buffer.shape == short_dataset[0].data.shape

    def test_classifier_without_diagnostics(self):
        pipeline = GesturePipeline(ConstantClassifier())
        pipeline.train(TimeseriesDataset())
        assert pipeline.diagnostics() is None
        assert pipeline.predict([0.0]).class_label == 1
