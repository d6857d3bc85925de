"""Tests for metrics aggregation and health."""

import threading

import pytest

from chat_kernel.metrics.aggregator import MetricsAggregator
from chat_kernel.models.config import HealthThresholds, MonitoringConfig
from chat_kernel.models.metrics import HealthStatus


def _record(metrics, successes, failures, response_ms=100, confidence=0.9):
    for _ in range(successes):
        metrics.record_request(True, response_ms, confidence)
    for _ in range(failures):
        metrics.record_request(False, response_ms, confidence)


class TestSnapshot:
    def test_empty(self):
        snapshot = MetricsAggregator().snapshot()
        assert snapshot.total_operations == 0
        assert snapshot.error_rate == 0.0
        assert snapshot.disambiguation_rate == 0.0

    def test_counts_and_averages(self):
        metrics = MetricsAggregator()
        metrics.record_parse(2)
        metrics.record_parse(4)
        metrics.record_execution(10)
        metrics.record_request(True, 100, 0.8)
        metrics.record_request(False, 300, 0.6)

        snapshot = metrics.snapshot()
        assert snapshot.total_operations == 2
        assert snapshot.successful_operations == 1
        assert snapshot.messages_processed == 2
        assert snapshot.error_rate == pytest.approx(0.5)
        assert snapshot.average_parsing_time == pytest.approx(3)
        assert snapshot.average_execution_time == pytest.approx(10)
        assert snapshot.average_response_time == pytest.approx(200)
        assert snapshot.average_confidence == pytest.approx(0.7)

    def test_disambiguation_counts_as_message_only(self):
        metrics = MetricsAggregator()
        metrics.record_disambiguation(5)
        metrics.record_request(True, 5, 0.9)
        snapshot = metrics.snapshot()
        assert snapshot.messages_processed == 2
        assert snapshot.total_operations == 1
        assert snapshot.disambiguation_rate == pytest.approx(0.5)

    def test_rolling_window(self):
        metrics = MetricsAggregator(MonitoringConfig(window_size=3))
        for ms in (1000, 1000, 10, 20, 30):
            metrics.record_request(True, ms)
        snapshot = metrics.snapshot()
        assert snapshot.average_response_time == pytest.approx(20)
        assert snapshot.total_operations == 5

    def test_disabled_records_nothing(self):
        metrics = MetricsAggregator(MonitoringConfig(enabled=False))
        metrics.record_request(False, 100, 0.1)
        metrics.record_disambiguation(5)
        assert metrics.snapshot().messages_processed == 0

    def test_reset(self):
        metrics = MetricsAggregator()
        _record(metrics, 1, 3)
        metrics.reset()
        snapshot = metrics.snapshot()
        assert snapshot.total_operations == 0
        assert snapshot.error_rate == 0.0
        assert snapshot.average_response_time == 0.0

    def test_concurrent_recording(self):
        metrics = MetricsAggregator()

        def worker():
            for i in range(100):
                metrics.record_request(i % 4 != 0, 10, 0.9)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snapshot = metrics.snapshot()
        assert snapshot.total_operations == 800
        assert snapshot.successful_operations == 600
        assert 0.0 <= snapshot.error_rate <= 1.0
        assert snapshot.error_rate == pytest.approx(0.25)


class TestHealth:
    def test_healthy_without_data(self):
        assert MetricsAggregator().health().status == HealthStatus.HEALTHY

    def test_healthy(self):
        metrics = MetricsAggregator()
        _record(metrics, 20, 1)
        report = metrics.health()
        assert report.status == HealthStatus.HEALTHY
        assert report.details["reasons"] == []

    def test_degraded_by_error_rate(self):
        metrics = MetricsAggregator()
        _record(metrics, 85, 15)
        report = metrics.health()
        assert report.status == HealthStatus.DEGRADED
        assert "error rate" in report.details["reasons"][0]

    def test_unhealthy_by_error_rate(self):
        metrics = MetricsAggregator()
        _record(metrics, 7, 3)
        assert metrics.health().status == HealthStatus.UNHEALTHY

    def test_degraded_by_confidence(self):
        metrics = MetricsAggregator()
        _record(metrics, 10, 0, confidence=0.6)
        assert metrics.health().status == HealthStatus.DEGRADED

    def test_unhealthy_by_response_time(self):
        metrics = MetricsAggregator()
        _record(metrics, 10, 0, response_ms=3500)
        report = metrics.health()
        assert report.status == HealthStatus.UNHEALTHY
        assert "average response" in report.details["reasons"][0]

    def test_degraded_by_response_time(self):
        metrics = MetricsAggregator()
        _record(metrics, 10, 0, response_ms=2500)
        assert metrics.health().status == HealthStatus.DEGRADED

    def test_thresholds_are_configurable(self):
        metrics = MetricsAggregator()
        _record(metrics, 85, 15)
        metrics.configure(MonitoringConfig(
            thresholds=HealthThresholds(degraded_error_rate=0.2, unhealthy_error_rate=0.5)
        ))
        assert metrics.health().status == HealthStatus.HEALTHY

    def test_configure_resizes_window(self):
        metrics = MetricsAggregator()
        for ms in (100, 200, 300, 400):
            metrics.record_request(True, ms)
        metrics.configure(MonitoringConfig(window_size=2))
        assert metrics.snapshot().average_response_time == pytest.approx(350)

    def test_health_details_include_metrics(self):
        metrics = MetricsAggregator()
        _record(metrics, 1, 0)
        details = metrics.health().details
        assert details["metrics"]["total_operations"] == 1
