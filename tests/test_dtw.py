"""Tests for the DTW distance, preprocessing, training and prediction."""

import math

import numpy as np
import pytest

from gesture_dtw.config import DTWConfig
from gesture_dtw.dataset import TimeseriesDataset
from gesture_dtw.dtw import (
    DTW,
    TrainingError,
    accumulated_cost_matrix,
    downsample,
    dtw_distance,
    local_cost_matrix,
    offset_by_first_sample,
    trim_timeseries,
    warping_window,
    z_normalize,
)
from gesture_dtw.synthetic import make_dataset, make_gesture


def horizontal_line(y, n=10):
    return np.column_stack([np.arange(n, dtype=np.float64), np.full(n, float(y))])


def shape_dataset(noise=1.0, seed=0):
    """Two classes, three noisy examples each, translation removed by offset."""
    rng = np.random.default_rng(seed)
    ds = TimeseriesDataset(num_dimensions=2)
    for label, shape in [(1, "swipe_right"), (2, "circle_cw")]:
        for _ in range(3):
            ds.add_sample(label, make_gesture(shape, 30, noise=noise, rng=rng))
    return ds


class TestDistance:
    def test_identical_sequences(self):
        s = np.array([[0, 0], [1, 0], [2, 0]], dtype=np.float64)
        assert dtw_distance(s, s) == pytest.approx(0.0, abs=1e-9)

    def test_different_sequences(self):
        s = np.array([[0, 0], [1, 0]], dtype=np.float64)
        t = np.array([[0, 1], [1, 1]], dtype=np.float64)
        assert dtw_distance(s, t) > 0

    def test_known_value(self):
        s = np.array([[0.0], [1.0], [2.0]])
        t = np.array([[0.0], [2.0]])
        # Best path cost is 1, normalized by 3 + 2
        assert dtw_distance(s, t) == pytest.approx(0.2)

    def test_empty_is_infinite(self):
        s = np.zeros((0, 2))
        t = np.zeros((3, 2))
        assert math.isinf(dtw_distance(s, t))

    def test_wide_band_matches_full(self):
        rng = np.random.default_rng(42)
        s = rng.random((15, 2))
        t = rng.random((15, 2))
        assert dtw_distance(s, t, radius=1.0) == pytest.approx(dtw_distance(s, t), abs=1e-12)

    def test_band_never_cheaper_than_full(self):
        rng = np.random.default_rng(1)
        s = rng.random((20, 2))
        t = rng.random((25, 2))
        assert dtw_distance(s, t, radius=0.1) >= dtw_distance(s, t) - 1e-12

    def test_band_reaches_end_for_unequal_lengths(self):
        s = np.linspace(0, 1, 5).reshape(-1, 1)
        t = np.linspace(0, 1, 40).reshape(-1, 1)
        assert math.isfinite(dtw_distance(s, t, radius=0.05))
        assert math.isfinite(dtw_distance(t, s, radius=0.05))

    def test_accumulated_edges(self):
        local = local_cost_matrix(np.zeros((3, 2)), np.ones((4, 2)))
        cost = accumulated_cost_matrix(local)
        assert cost.shape == (4, 5)
        assert cost[0, 0] == 0.0
        assert np.all(np.isinf(cost[0, 1:]))
        assert np.all(np.isinf(cost[1:, 0]))

    def test_band_leaves_far_cells_infinite(self):
        local = np.ones((20, 20))
        cost = accumulated_cost_matrix(local, radius=0.1)
        assert math.isinf(cost[1, 20])
        assert math.isfinite(cost[20, 20])

    def test_local_cost_matrix_shape(self):
        local = local_cost_matrix(np.zeros((3, 2)), np.array([[3.0, 4.0]] * 5))
        assert local.shape == (3, 5)
        np.testing.assert_allclose(local, 5.0)

    def test_warping_window_covers_slope(self):
        assert warping_window(10, 10, 0.2) == 2
        assert warping_window(5, 40, 0.01) >= 8


class TestPreprocessing:
    def test_trim_removes_idle_ends(self):
        data = make_gesture("swipe_right", 40, idle=20)
        trimmed = trim_timeseries(data, threshold=0.1, max_trim_percent=90)
        assert trimmed is not None
        assert 40 <= len(trimmed) < len(data)
        np.testing.assert_allclose(trimmed[0], data[0])
        np.testing.assert_allclose(trimmed[-1], data[-1])

    def test_trim_static_series_fails(self):
        assert trim_timeseries(np.ones((20, 2))) is None

    def test_trim_respects_max_percentage(self):
        data = np.zeros((100, 2))
        data[50:] = [10.0, 0.0]
        assert trim_timeseries(data, 0.1, 90.0) is None
        trimmed = trim_timeseries(data, 0.1, 100.0)
        assert trimmed is not None
        assert len(trimmed) < 10

    def test_trim_short_series_untouched(self):
        data = np.array([[0.0, 0.0], [1.0, 1.0]])
        np.testing.assert_array_equal(trim_timeseries(data), data)

    def test_offset_by_first_sample(self):
        data = np.array([[5.0, 7.0], [6.0, 9.0]])
        out = offset_by_first_sample(data)
        np.testing.assert_array_equal(out, [[0.0, 0.0], [1.0, 2.0]])

    def test_z_normalize(self):
        rng = np.random.default_rng(3)
        data = rng.normal(10.0, 4.0, size=(200, 2))
        out = z_normalize(data)
        np.testing.assert_allclose(out.mean(axis=0), 0.0, atol=1e-9)
        np.testing.assert_allclose(out.std(axis=0), 1.0, atol=1e-9)

    def test_z_normalize_constant_dimension(self):
        data = np.column_stack([np.arange(10.0), np.full(10, 3.0)])
        out = z_normalize(data, constrain=True)
        np.testing.assert_array_equal(out[:, 1], 3.0)
        out = z_normalize(data, constrain=False)
        np.testing.assert_array_equal(out[:, 1], 0.0)

    def test_downsample(self):
        data = np.array([[0.0], [2.0], [4.0], [6.0], [8.0]])
        np.testing.assert_allclose(downsample(data, 2), [[1.0], [5.0], [8.0]])
        np.testing.assert_array_equal(downsample(data, 1), data)


class TestTraining:
    def test_empty_dataset_fails(self):
        with pytest.raises(TrainingError):
            DTW().train(TimeseriesDataset(num_dimensions=2))

    def test_too_few_examples_fails(self):
        ds = TimeseriesDataset()
        ds.add_sample(1, horizontal_line(0))
        with pytest.raises(TrainingError):
            DTW(DTWConfig(min_examples_per_class=2)).train(ds)

    def test_single_example_class(self):
        ds = TimeseriesDataset()
        line = horizontal_line(0)
        ds.add_sample(1, line)
        dtw = DTW()
        dtw.train(ds)
        assert dtw.trained
        np.testing.assert_array_equal(dtw.templates[0].data, line)
        assert math.isinf(dtw.null_rejection_thresholds[1])

    def test_template_is_medoid(self):
        ds = TimeseriesDataset()
        for y in (0, 1, 10):
            ds.add_sample(1, horizontal_line(y))
        dtw = DTW(DTWConfig(null_rejection_coeff=3.0))
        dtw.train(ds)

        template = dtw.templates[0]
        np.testing.assert_array_equal(template.data, horizontal_line(1))
        assert template.training_mu == pytest.approx(2.5)
        assert template.training_sigma == pytest.approx(2.0)
        assert template.threshold == pytest.approx(8.5)

    def test_training_is_idempotent(self):
        ds = make_dataset(examples_per_class=4, seed=7)
        a, b = DTW(), DTW()
        a.train(ds)
        b.train(ds)
        for ta, tb in zip(a.templates, b.templates):
            np.testing.assert_array_equal(ta.data, tb.data)
            assert ta.threshold == tb.threshold
        assert a.buffer_length == b.buffer_length

    def test_failed_training_keeps_model(self):
        dtw = DTW()
        dtw.train(make_dataset(examples_per_class=2))
        labels = dtw.class_labels
        with pytest.raises(TrainingError):
            dtw.train(TimeseriesDataset(num_dimensions=2))
        assert dtw.trained
        assert dtw.class_labels == labels

    def test_buffer_length_is_mean_template_length(self):
        ds = TimeseriesDataset()
        ds.add_sample(1, horizontal_line(0, n=10))
        ds.add_sample(2, horizontal_line(0, n=20))
        dtw = DTW()
        dtw.train(ds)
        assert dtw.buffer_length == 15

    def test_trimming_shortens_templates(self):
        ds = TimeseriesDataset()
        for _ in range(2):
            ds.add_sample(1, make_gesture("swipe_right", 40, idle=20))
        dtw = DTW(DTWConfig(trim_training_data=True))
        dtw.train(ds)
        assert len(dtw.templates[0].data) < 80

    def test_offset_applied_to_templates(self):
        ds = TimeseriesDataset()
        ds.add_sample(1, horizontal_line(5))
        dtw = DTW(DTWConfig(offset_using_first_sample=True))
        dtw.train(ds)
        np.testing.assert_array_equal(dtw.templates[0].data[0], [0.0, 0.0])

    def test_smoothing_factor_downsamples(self):
        ds = TimeseriesDataset()
        ds.add_sample(1, horizontal_line(0, n=20))
        dtw = DTW(DTWConfig(smoothing_factor=4))
        dtw.train(ds)
        assert len(dtw.templates[0].data) == 5
        assert dtw.buffer_length == 20

    def test_smoothed_stream_replay_matches_batch(self):
        line = horizontal_line(0, n=40)
        ds = TimeseriesDataset()
        ds.add_sample(1, line)
        ds.add_sample(2, line[::-1])
        dtw = DTW(DTWConfig(smoothing_factor=4))
        dtw.train(ds)
        assert dtw.buffer_length == 40

        batch = dtw.predict_timeseries(line)
        dtw.reset()
        results = [dtw.predict(sample) for sample in line]
        streamed = results[-1]
        assert all(r is None for r in results[:-1])
        assert streamed.class_label == batch.class_label == 1
        assert streamed.distances[0] == pytest.approx(batch.distances[0])
        assert streamed.distances[0] == pytest.approx(0.0)


class TestPrediction:
    def test_untrained_predict_raises(self):
        with pytest.raises(RuntimeError):
            DTW().predict([0.0, 0.0])

    def test_streaming_waits_for_full_buffer(self):
        ds = TimeseriesDataset()
        ds.add_sample(1, horizontal_line(0, n=5))
        dtw = DTW()
        dtw.train(ds)
        results = [dtw.predict(sample) for sample in horizontal_line(0, n=5)]
        assert results[:4] == [None] * 4
        assert results[4] is not None
        assert results[4].class_label == 1
        # Every further sample classifies the rolling window
        assert dtw.predict([5.0, 0.0]) is not None
        assert len(dtw.input_buffer) == 5

    def test_wrong_dimensions(self):
        dtw = DTW()
        dtw.train(make_dataset(examples_per_class=2))
        with pytest.raises(ValueError):
            dtw.predict([1.0, 2.0, 3.0])
        with pytest.raises(ValueError):
            dtw.predict_timeseries(np.zeros((5, 3)))

    def test_likelihoods_normalized(self):
        dtw = DTW(DTWConfig(offset_using_first_sample=True))
        dtw.train(shape_dataset())
        pred = dtw.predict_timeseries(make_gesture("swipe_right", 30))
        assert len(pred.likelihoods) == 2
        assert pred.likelihoods.sum() == pytest.approx(1.0)
        assert pred.max_likelihood == pytest.approx(pred.likelihoods.max())

    def test_replay_of_template_has_zero_cost(self):
        ds = shape_dataset()
        dtw = DTW(DTWConfig(offset_using_first_sample=True))
        dtw.train(ds)
        template = dtw.templates[1]
        # Templates are stored offset; replaying one is an exact match
        pred = dtw.predict_timeseries(template.data)
        assert pred.class_label == template.class_label
        assert pred.distances[1] == pytest.approx(0.0, abs=1e-12)
        assert pred.max_likelihood == pytest.approx(1.0)

    def test_null_rejection(self):
        ds = shape_dataset()
        far = make_gesture("wave", 30, scale=3000.0)

        dtw = DTW(DTWConfig(offset_using_first_sample=True, enable_null_rejection=True))
        dtw.train(ds)
        pred = dtw.predict_timeseries(far)
        assert pred.class_label == 0
        assert pred.null_rejected
        assert pred.best_class_label in (1, 2)

        dtw.enable_null_rejection(False)
        pred = dtw.predict_timeseries(far)
        assert pred.class_label == pred.best_class_label
        assert pred.class_label in (1, 2)

    def test_null_rejection_keeps_close_matches(self):
        dtw = DTW(DTWConfig(offset_using_first_sample=True, enable_null_rejection=True))
        dtw.train(shape_dataset())
        pred = dtw.predict_timeseries(dtw.templates[0].data)
        assert pred.class_label == 1

    def test_likelihood_rejection_mode(self):
        config = DTWConfig(
            enable_null_rejection=True,
            rejection_mode="likelihoods",
            null_likelihood_threshold=1.1,
        )
        dtw = DTW(config)
        dtw.train(shape_dataset())
        assert dtw.predict_timeseries(dtw.templates[0].data).class_label == 0

    def test_set_null_rejection_coeff_refits_thresholds(self):
        dtw = DTW()
        dtw.train(shape_dataset())
        dtw.set_null_rejection_coeff(1.0)
        for t in dtw.templates:
            assert t.threshold == pytest.approx(t.training_mu + t.training_sigma)
        with pytest.raises(ValueError):
            dtw.set_null_rejection_coeff(-1.0)

    def test_distance_matrices_retained(self):
        dtw = DTW()
        dtw.train(shape_dataset())
        query = make_gesture("swipe_right", 25)
        dtw.predict_timeseries(query)
        matrices = dtw.distance_matrices
        assert len(matrices) == 2
        for matrix, template in zip(matrices, dtw.templates):
            assert matrix.shape == (25, len(template.data))
        assert dtw.input_buffer.shape == (25, 2)

    def test_distance_matrices_can_be_disabled(self):
        dtw = DTW(DTWConfig(keep_distance_matrices=False))
        dtw.train(shape_dataset())
        dtw.predict_timeseries(make_gesture("swipe_right", 25))
        assert dtw.distance_matrices == []

    def test_reset_clears_buffer(self):
        dtw = DTW()
        dtw.train(shape_dataset())
        dtw.predict([0.0, 0.0])
        dtw.reset()
        assert len(dtw.input_buffer) == 0
        assert dtw.trained


class TestModelPersistence:
    def test_save_and_load(self, tmp_path):
        ds = shape_dataset()
        ds.add_sample(3, horizontal_line(0, n=30))
        dtw = DTW(DTWConfig(offset_using_first_sample=True, enable_null_rejection=True))
        dtw.train(ds)

        path = tmp_path / "model.json"
        dtw.save_model(path)

        loaded = DTW()
        loaded.load_model(path)
        assert loaded.class_labels == dtw.class_labels
        assert loaded.buffer_length == dtw.buffer_length
        assert loaded.config.offset_using_first_sample
        assert math.isinf(loaded.null_rejection_thresholds[3])

        query = make_gesture("circle_cw", 28, noise=1.0, rng=np.random.default_rng(5))
        a = dtw.predict_timeseries(query)
        b = loaded.predict_timeseries(query)
        assert a.class_label == b.class_label
        np.testing.assert_allclose(a.distances, b.distances)

    def test_save_untrained_raises(self, tmp_path):
        with pytest.raises(RuntimeError):
            DTW().save_model(tmp_path / "model.json")

    def test_load_malformed_keeps_model(self, tmp_path):
        dtw = DTW()
        dtw.train(shape_dataset())
        bad = tmp_path / "bad.json"
        bad.write_text('{"classifier": "dtw", "templates": []')
        with pytest.raises(TrainingError):
            dtw.load_model(bad)
        assert dtw.class_labels == [1, 2]

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(TrainingError):
            DTW().load_model(tmp_path / "missing.json")
