# Copyright 2026 Firefly Software Solutions Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Metrics collection with Prometheus-compatible counters, gauges and histograms."""

from __future__ import annotations

from typing import Any

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


class MetricsRegistry:
    """Registry for application metrics.

    Wraps prometheus_client to provide a clean API for creating and
    managing metrics. Ensures each metric name is registered only once.

    Args:
        registry: Target collector registry; defaults to the process-wide
            ``prometheus_client.REGISTRY``.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry if registry is not None else REGISTRY
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._gauges: dict[str, Gauge] = {}

    @property
    def collector_registry(self) -> CollectorRegistry:
        return self._registry

    def counter(self, name: str, description: str, labels: list[str] | None = None) -> Counter:
        """Get or create a counter metric."""
        if name not in self._counters:
            self._counters[name] = Counter(name, description, labels or [], registry=self._registry)
        return self._counters[name]

    def histogram(
        self,
        name: str,
        description: str,
        labels: list[str] | None = None,
        buckets: tuple[float, ...] | None = None,
    ) -> Histogram:
        """Get or create a histogram metric."""
        if name not in self._histograms:
            kwargs: dict[str, Any] = {}
            if buckets:
                kwargs["buckets"] = buckets
            self._histograms[name] = Histogram(
                name, description, labels or [], registry=self._registry, **kwargs
            )
        return self._histograms[name]

    def gauge(self, name: str, description: str, labels: list[str] | None = None) -> Gauge:
        """Get or create a gauge metric."""
        if name not in self._gauges:
            self._gauges[name] = Gauge(name, description, labels or [], registry=self._registry)
        return self._gauges[name]
