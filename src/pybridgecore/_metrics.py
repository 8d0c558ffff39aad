"""Request metrics collected by the request pipeline."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any

MAX_RECENT_REQUESTS = 100


@dataclass(slots=True)
class RequestMetric:
    """Timing and outcome of one logical request."""

    endpoint: str
    method: str
    started_at: float
    duration_ms: float | None = None
    success: bool | None = None
    status_code: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "method": self.method,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "status_code": self.status_code,
            "error": self.error,
        }


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class RequestMetrics:
    """Keeps the last :data:`MAX_RECENT_REQUESTS` completed requests."""

    def __init__(self, *, max_recent: int = MAX_RECENT_REQUESTS) -> None:
        self._recent: deque[RequestMetric] = deque(maxlen=max_recent)

    def record_start(self, endpoint: str, method: str) -> RequestMetric:
        return RequestMetric(endpoint=endpoint, method=method.upper(), started_at=time.monotonic())

    def record_end(
        self,
        metric: RequestMetric,
        *,
        success: bool,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        metric.duration_ms = (time.monotonic() - metric.started_at) * 1000.0
        metric.success = success
        metric.status_code = status_code
        metric.error = error
        self._recent.append(metric)

    @property
    def recent(self) -> list[RequestMetric]:
        return list(self._recent)

    def get_summary(self) -> dict[str, Any]:
        total = len(self._recent)
        successful = sum(1 for m in self._recent if m.success)
        durations = [m.duration_ms for m in self._recent if m.duration_ms is not None]
        return {
            "total_requests": total,
            "successful_requests": successful,
            "failed_requests": total - successful,
            "success_rate": (successful / total) if total else 0.0,
            "average_duration_ms": _average(durations),
            "recent_requests": [m.to_dict() for m in list(self._recent)[-10:]],
        }

    def get_endpoint_stats(self) -> dict[str, dict[str, Any]]:
        grouped: dict[str, list[RequestMetric]] = {}
        for metric in self._recent:
            grouped.setdefault(f"{metric.method}_{metric.endpoint}", []).append(metric)

        stats: dict[str, dict[str, Any]] = {}
        for key, metrics in grouped.items():
            successful = sum(1 for m in metrics if m.success)
            stats[key] = {
                "total": len(metrics),
                "successful": successful,
                "failed": len(metrics) - successful,
                "success_rate": successful / len(metrics),
                "average_duration_ms": _average([m.duration_ms for m in metrics if m.duration_ms is not None]),
            }
        return stats

    def clear(self) -> None:
        self._recent.clear()
