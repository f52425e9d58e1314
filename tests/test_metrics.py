"""Tests for Prometheus metrics."""

from gesture_dtw.metrics import MetricsCollector


class TestMetricsCollector:
    def test_record_prediction(self):
        m = MetricsCollector()
        m.record_prediction(1)
        m.record_prediction(1)
        m.record_prediction(0, null_rejected=True)
        assert m.prediction_counts == {1: 2, 0: 1}

    def test_record_sample(self):
        m = MetricsCollector()
        m.record_sample(0.001)
        m.record_sample(0.002)
        assert m.samples_total == 2

    def test_render_prometheus_format(self):
        m = MetricsCollector()
        m.record_prediction(2)
        m.record_prediction(0, null_rejected=True)
        m.record_sample(0.0005)
        m.record_training(True)
        m.record_training(False)
        m.set_training_examples(12)
        m.set_connections(3)

        output = m.render()
        assert 'gesture_dtw_predictions_total{label="2"} 1' in output
        assert "gesture_dtw_null_rejections_total 1" in output
        assert "gesture_dtw_samples_total 1" in output
        assert 'gesture_dtw_training_runs_total{result="success"} 1' in output
        assert 'gesture_dtw_training_runs_total{result="failure"} 1' in output
        assert "gesture_dtw_training_examples 12" in output
        assert "gesture_dtw_active_connections 3" in output
        assert "# HELP" in output
        assert "# TYPE" in output

    def test_histogram_buckets_are_cumulative(self):
        m = MetricsCollector()
        for _ in range(10):
            m.record_sample(0.003)
        m.record_sample(1.0)
        output = m.render()
        assert 'gesture_dtw_tick_latency_seconds_bucket{le="0.001"} 0' in output
        assert 'gesture_dtw_tick_latency_seconds_bucket{le="0.005"} 10' in output
        assert 'gesture_dtw_tick_latency_seconds_bucket{le="0.1"} 10' in output
        assert 'gesture_dtw_tick_latency_seconds_bucket{le="+Inf"} 11' in output
        assert "gesture_dtw_tick_latency_seconds_count 11" in output
