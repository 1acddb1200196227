from __future__ import annotations

import logging
from typing import Any

from aip_insights.config import settings

try:  # pragma: no cover - optional dependency
    from statsd import StatsClient
except ImportError:  # pragma: no cover - optional dependency guard
    StatsClient = None  # type: ignore[assignment]

logger = logging.getLogger("aip_insights.metrics")


class MetricsReporter:
    """Analyzer counters, timings and gauges, logged at debug level and optionally sent to StatsD."""

    def __init__(self) -> None:
        self._disabled = settings.metrics_disable
        self._namespace = settings.metrics_namespace or "aip_insights"
        self._statsd = self._connect() if not self._disabled else None

    def timing(self, metric: str, value_ms: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("timing", metric, value_ms, tags)

    def gauge(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("gauge", metric, value, tags)

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        self._emit("counter", metric, value, tags)

    def _connect(self) -> StatsClient | None:
        if (settings.metrics_backend or "stdout").lower() != "statsd":
            return None
        if StatsClient is None:
            logger.warning("statsd backend requested but statsd package is not installed.")
            return None
        return StatsClient(host=settings.metrics_statsd_host, port=settings.metrics_statsd_port)

    def _emit(self, metric_type: str, metric: str, value: float, tags: dict[str, Any] | None) -> None:
        if self._disabled:
            return
        name = f"{self._namespace}.{metric.strip()}"
        logger.debug(
            "aip_insights.metric",
            extra={
                "metrics": {
                    "metric": name,
                    "value": round(float(value), 4),
                    "type": metric_type,
                    "tags": tags or {},
                }
            },
        )
        if self._statsd is None:
            return
        try:
            if metric_type == "timing":
                self._statsd.timing(name, value)
            elif metric_type == "gauge":
                self._statsd.gauge(name, value)
            else:
                self._statsd.incr(name, value)
        except OSError as exc:
            logger.warning("metrics.backend_error", extra={"metric": name, "error": type(exc).__name__})


metrics = MetricsReporter()
