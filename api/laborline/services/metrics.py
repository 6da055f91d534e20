from __future__ import annotations

import time
from collections import defaultdict
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram

UNMATCHED_PATH = "unmatched"

REQUESTS_TOTAL = "laborline_http_requests_total"
ERRORS_TOTAL = "laborline_http_errors_total"
DURATION_SECONDS = "laborline_http_request_duration_seconds"


def route_template(scope: dict[str, Any]) -> str:
    """Return the matched route template, including any router mount prefix."""
    route = scope.get("route")
    path = getattr(route, "path", None)
    if not path:
        return UNMATCHED_PATH
    root_path = scope.get("root_path", "")
    if root_path and not path.startswith(root_path):
        return root_path.rstrip("/") + path
    return path


class RequestMetrics:
    """Per-route request counters and latencies fed by the HTTP middleware.

    Each instance records into its own registry; `reset` swaps in a fresh one.
    """

    def __init__(self) -> None:
        self.started_at = time.monotonic()
        self._build()

    def _build(self) -> None:
        self.registry = CollectorRegistry()
        self.requests_total = Counter(
            REQUESTS_TOTAL,
            "Total HTTP requests",
            ["path", "status_code"],
            registry=self.registry,
        )
        self.errors_total = Counter(
            ERRORS_TOTAL,
            "HTTP requests that ended with a server error",
            ["path"],
            registry=self.registry,
        )
        self.request_duration_seconds = Histogram(
            DURATION_SECONDS,
            "HTTP request duration in seconds",
            ["path"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry,
        )

    def record(self, path: str, status_code: int, duration_seconds: float) -> None:
        self.requests_total.labels(path=path, status_code=str(status_code)).inc()
        if status_code >= 500:
            self.errors_total.labels(path=path).inc()
        self.request_duration_seconds.labels(path=path).observe(duration_seconds)

    def snapshot(self) -> list[dict[str, Any]]:
        totals: dict[str, float] = defaultdict(float)
        errors: dict[str, float] = defaultdict(float)
        duration_sums: dict[str, float] = {}

        for metric in self.registry.collect():
            for sample in metric.samples:
                path = sample.labels.get("path")
                if path is None:
                    continue
                if sample.name == REQUESTS_TOTAL:
                    totals[path] += sample.value
                elif sample.name == ERRORS_TOTAL:
                    errors[path] += sample.value
                elif sample.name == f"{DURATION_SECONDS}_sum":
                    duration_sums[path] = sample.value

        items = []
        for path in sorted(totals):
            total = int(totals[path])
            error_count = int(errors.get(path, 0))
            items.append(
                {
                    "path": path,
                    "total_requests": total,
                    "error_requests": error_count,
                    "error_rate": round(error_count / total, 4),
                    "avg_duration_ms": round(duration_sums.get(path, 0.0) * 1000.0 / total, 2),
                }
            )
        return items

    def uptime_seconds(self) -> float:
        return round(time.monotonic() - self.started_at, 3)

    def reset(self) -> None:
        self._build()


REQUEST_METRICS = RequestMetrics()
