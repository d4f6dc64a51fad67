"""
Unit tests for the Prometheus metrics adapter.
"""

import pytest
from prometheus_client import CollectorRegistry

from push_relay.metrics import PrometheusMetricsAdapter
from push_relay.types import MetricsAdapter


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def adapter(registry):
    return PrometheusMetricsAdapter(registry=registry)


def test_satisfies_protocol(adapter):
    assert isinstance(adapter, MetricsAdapter)


def test_metric_name_sanitized(adapter):
    assert adapter.metric_name("push.send.success") == "push_relay_push_send_success"


def test_increment_counter(adapter, registry):
    adapter.increment("push.send.success")
    adapter.increment("push.send.success")
    assert registry.get_sample_value("push_relay_push_send_success_total") == 2


def test_gauge_sets_value(adapter, registry):
    adapter.gauge("push.batch.total", 12)
    adapter.gauge("push.batch.total", 7)
    assert registry.get_sample_value("push_relay_push_batch_total") == 7


def test_timing_observes_histogram(adapter, registry):
    adapter.timing("push.send.duration", 42.0)
    assert registry.get_sample_value("push_relay_push_send_duration_count") == 1
    assert registry.get_sample_value("push_relay_push_send_duration_sum") == 42.0


def test_tags_become_labels(adapter, registry):
    adapter.increment("worker.retry.error", {"provider": "web-push"})
    adapter.increment("worker.retry.error", {"provider": "web-push", "extra": "dropped"})
    adapter.increment("worker.retry.error")
    assert (
        registry.get_sample_value("push_relay_worker_retry_error_total", {"provider": "web-push"})
        == 2
    )
    assert registry.get_sample_value("push_relay_worker_retry_error_total", {"provider": ""}) == 1


def test_custom_namespace(registry):
    adapter = PrometheusMetricsAdapter(namespace="app", registry=registry)
    adapter.increment("worker.started")
    assert registry.get_sample_value("app_worker_started_total") == 1
