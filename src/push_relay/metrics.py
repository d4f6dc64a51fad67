"""
Prometheus-backed MetricsAdapter.

Metric names emitted by the core ("push.send.success", "worker.retry.error",
...) are registered lazily: dots become underscores and the adapter namespace
is prefixed, e.g. ``push_relay_push_send_success_total``. Tag keys seen on the
first emission become the label names for that metric.
"""

from __future__ import annotations

import re
import threading
from typing import Dict, Optional, Tuple

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

_INVALID = re.compile(r"[^a-zA-Z0-9_]")

# Milliseconds; covers sub-ms in-memory sends up to slow push services.
LATENCY_BUCKETS_MS = [1, 2.5, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000]


class PrometheusMetricsAdapter:
    """MetricsAdapter writing to a prometheus_client registry.

    Example:
        metrics = PrometheusMetricsAdapter()
        core.configure(metrics_adapter=metrics)
        start_http_server(8000)  # exposes /metrics
    """

    def __init__(self, namespace: str = "push_relay", registry: Optional[CollectorRegistry] = None):
        self.namespace = namespace
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[Tuple[str, str], Tuple[object, Tuple[str, ...]]] = {}
        self._lock = threading.Lock()

    def increment(self, metric: str, tags: Optional[dict[str, str]] = None) -> None:
        counter = self._child("counter", metric, tags)
        counter.inc()

    def gauge(self, metric: str, value: float, tags: Optional[dict[str, str]] = None) -> None:
        self._child("gauge", metric, tags).set(value)

    def timing(self, metric: str, duration_ms: float, tags: Optional[dict[str, str]] = None) -> None:
        self._child("histogram", metric, tags).observe(duration_ms)

    def histogram(self, metric: str, value: float, tags: Optional[dict[str, str]] = None) -> None:
        self._child("histogram", metric, tags).observe(value)

    # --------------- internals

    def metric_name(self, metric: str) -> str:
        return _INVALID.sub("_", f"{self.namespace}_{metric}")

    def _child(self, kind: str, metric: str, tags: Optional[dict[str, str]]):
        tags = tags or {}
        with self._lock:
            key = (kind, metric)
            if key not in self._metrics:
                labelnames = tuple(sorted(tags))
                name = self.metric_name(metric)
                doc = f"push-relay {kind} for {metric}"
                if kind == "counter":
                    collector = Counter(name, doc, labelnames, registry=self.registry)
                elif kind == "gauge":
                    collector = Gauge(name, doc, labelnames, registry=self.registry)
                else:
                    collector = Histogram(
                        name, doc, labelnames, registry=self.registry, buckets=LATENCY_BUCKETS_MS
                    )
                self._metrics[key] = (collector, labelnames)
            collector, labelnames = self._metrics[key]

        if not labelnames:
            return collector
        # Missing tags get an empty label value; unknown tags are dropped
        return collector.labels(**{k: str(tags.get(k, "")) for k in labelnames})
