"""Metrics for matching runs, logged and optionally exported to Prometheus."""

from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from typing import Any, Iterator

try:  # pragma: no cover - optional dependency
    from prometheus_client import (
        CollectorRegistry,
        Counter as PromCounter,
        Gauge as PromGauge,
        Histogram as PromHistogram,
        generate_latest,
    )

    _PROMETHEUS_AVAILABLE = True
except Exception:  # pragma: no cover - dependency missing
    CollectorRegistry = None  # type: ignore[assignment]
    PromCounter = None  # type: ignore[assignment]
    PromGauge = None  # type: ignore[assignment]
    PromHistogram = None  # type: ignore[assignment]
    _PROMETHEUS_AVAILABLE = False

    def generate_latest(_registry):  # type: ignore[unused-ignore]
        raise RuntimeError("prometheus_client is not installed")


_PROM_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")
_DEFAULT_NAMESPACE = "conceptmatch"


class MetricsRecorder:
    """Record counters, gauges and timings as log lines of the form ``namespace.metric k=v``."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        namespace: str = _DEFAULT_NAMESPACE,
        logger: logging.Logger | None = None,
        prometheus_enabled: bool = False,
        registry: Any = None,
    ) -> None:
        self._enabled = enabled
        self._namespace = namespace.strip() or _DEFAULT_NAMESPACE
        self._logger = logger or logging.getLogger("conceptmatch.metrics")
        self._prometheus_enabled = bool(prometheus_enabled and _PROMETHEUS_AVAILABLE)
        if registry is None and self._prometheus_enabled:
            registry = CollectorRegistry()
        self._registry = registry
        self._prom_metrics: dict[tuple[str, str, tuple[str, ...]], Any] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def prometheus_enabled(self) -> bool:
        return self._prometheus_enabled and self._registry is not None

    def render_prometheus(self) -> bytes:
        if not self.prometheus_enabled:
            raise RuntimeError("Prometheus export is disabled")
        return generate_latest(self._registry)

    def increment(self, metric: str, *, value: int = 1, **tags: Any) -> None:
        if not self._enabled:
            return
        value = int(value)
        clean_tags = self._clean(tags)
        self._emit(metric, {"value": value}, clean_tags)
        counter = self._prom_metric("counter", metric, clean_tags)
        if counter is not None:
            counter.inc(float(max(value, 0)))

    def set_gauge(self, metric: str, value: float, **tags: Any) -> None:
        if not self._enabled:
            return
        clean_tags = self._clean(tags)
        self._emit(metric, {"value": value}, clean_tags)
        gauge = self._prom_metric("gauge", metric, clean_tags)
        if gauge is not None:
            gauge.set(float(value))

    def record_timing(self, metric: str, duration_seconds: float, **tags: Any) -> None:
        """Log the duration in milliseconds; Prometheus observes seconds."""

        if not self._enabled:
            return
        clean_tags = self._clean(tags)
        duration_ms = max(duration_seconds * 1000.0, 0.0)
        self._emit(metric, {"duration_ms": round(duration_ms, 4)}, clean_tags)
        histogram = self._prom_metric("histogram", metric, clean_tags)
        if histogram is not None:
            histogram.observe(max(duration_seconds, 0.0))

    @contextmanager
    def track_timing(self, metric: str, **tags: Any) -> Iterator[None]:
        if not self._enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(metric, time.perf_counter() - start, **tags)

    @staticmethod
    def _clean(tags: dict[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in tags.items() if value is not None}

    def _emit(self, metric: str, fields: dict[str, Any], tags: dict[str, Any]) -> None:
        segments = [f"{key}={self._stringify(value)}" for key, value in sorted(fields.items())]
        segments.extend(f"{key}={self._stringify(value)}" for key, value in sorted(tags.items()))
        message = f"{self._namespace}.{metric}"
        if segments:
            message = f"{message} {' '.join(segments)}"
        self._logger.info(message)

    def _prom_metric(self, kind: str, metric: str, tags: dict[str, Any]) -> Any:
        """Return the labelled Prometheus child for ``metric``, creating the family once."""

        if not self.prometheus_enabled:
            return None
        label_keys = tuple(sorted(tags))
        label_names = tuple(self._sanitize_label(key) for key in label_keys)
        cache_key = (kind, metric, label_names)
        family = self._prom_metrics.get(cache_key)
        if family is None:
            factory = {"counter": PromCounter, "gauge": PromGauge, "histogram": PromHistogram}[kind]
            family = factory(
                self._prom_metric_name(metric),
                f"{metric} {kind}",
                labelnames=list(label_names),
                registry=self._registry,
            )
            self._prom_metrics[cache_key] = family
        if not label_names:
            return family
        return family.labels(
            **{name: self._stringify(tags[key]) for name, key in zip(label_names, label_keys)}
        )

    def _prom_metric_name(self, metric: str) -> str:
        cleaned = _PROM_NAME_RE.sub("_", metric)
        return f"{_PROM_NAME_RE.sub('_', self._namespace)}_{cleaned}".strip("_")

    @staticmethod
    def _sanitize_label(label: str) -> str:
        return _PROM_NAME_RE.sub("_", label) or "label"

    @staticmethod
    def _stringify(value: Any) -> str:
        if isinstance(value, float):
            return f"{int(value)}" if value.is_integer() else f"{value:.4f}"
        return str(value)


__all__ = ["MetricsRecorder"]
