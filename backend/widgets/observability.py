from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock

from fastapi import Request
from starlette.routing import Match

logger = logging.getLogger("widgets")


@dataclass
class MetricsSnapshot:
    requests_total: int
    requests_5xx: int
    total_latency_ms: float
    occ_conflicts_total: int


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._requests_total = 0
        self._requests_5xx = 0
        self._total_latency_ms = 0.0
        self._occ_conflicts: dict[str, int] = {}
        self._by_route_status: dict[tuple[str, int], int] = {}
        self._operations: dict[tuple[str, str, str], int] = {}

    def record(self, *, route: str, status_code: int, latency_ms: float) -> None:
        with self._lock:
            self._requests_total += 1
            if status_code >= 500:
                self._requests_5xx += 1
            self._total_latency_ms += latency_ms
            key = (route, status_code)
            self._by_route_status[key] = self._by_route_status.get(key, 0) + 1

    def record_operation(self, *, widget: str, operation: str, outcome: str) -> None:
        with self._lock:
            key = (widget, operation, outcome)
            self._operations[key] = self._operations.get(key, 0) + 1

    def record_conflict(self, *, widget: str) -> None:
        with self._lock:
            self._occ_conflicts[widget] = self._occ_conflicts.get(widget, 0) + 1

    def conflict_count(self, *, widget: str) -> int:
        with self._lock:
            return self._occ_conflicts.get(widget, 0)

    def route_series(self) -> int:
        with self._lock:
            return len(self._by_route_status)

    def operation_count(self, *, widget: str, operation: str, outcome: str) -> int:
        with self._lock:
            return self._operations.get((widget, operation, outcome), 0)

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                requests_total=self._requests_total,
                requests_5xx=self._requests_5xx,
                total_latency_ms=self._total_latency_ms,
                occ_conflicts_total=sum(self._occ_conflicts.values()),
            )

    def to_prometheus(self) -> str:
        snap = self.snapshot()
        avg_latency = (
            snap.total_latency_ms / snap.requests_total if snap.requests_total else 0.0
        )
        lines = [
            "# HELP widgets_requests_total Total HTTP requests",
            "# TYPE widgets_requests_total counter",
            f"widgets_requests_total {snap.requests_total}",
            "# HELP widgets_requests_5xx_total Total 5xx HTTP requests",
            "# TYPE widgets_requests_5xx_total counter",
            f"widgets_requests_5xx_total {snap.requests_5xx}",
            "# HELP widgets_request_avg_latency_ms Average request latency ms",
            "# TYPE widgets_request_avg_latency_ms gauge",
            f"widgets_request_avg_latency_ms {avg_latency:.2f}",
            "# HELP widgets_occ_conflicts_total Optimistic write conflicts retried",
            "# TYPE widgets_occ_conflicts_total counter",
            f"widgets_occ_conflicts_total {snap.occ_conflicts_total}",
        ]
        with self._lock:
            for (route, status_code), count in sorted(self._by_route_status.items()):
                lines.append(
                    'widgets_route_requests_total'
                    f'{{route="{route}",status="{status_code}"}} {count}'
                )
            for widget, count in sorted(self._occ_conflicts.items()):
                lines.append(f'widgets_occ_conflicts_by_widget_total{{widget="{widget}"}} {count}')
            for (widget, operation, outcome), count in sorted(self._operations.items()):
                lines.append(
                    'widgets_operations_total'
                    f'{{widget="{widget}",operation="{operation}",outcome="{outcome}"}} {count}'
                )
        return "\n".join(lines) + "\n"


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


UNMATCHED_ROUTE = "unmatched"


def route_template(request: Request) -> str:
    # raw paths carry caller-chosen widget ids, so label by template
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", UNMATCHED_ROUTE)
    return UNMATCHED_ROUTE


async def observe_request(
    request: Request,
    call_next,
    *,
    metrics: MetricsRegistry,
):
    start = time.perf_counter()
    path = request.url.path
    route = route_template(request)
    try:
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000.0
        metrics.record(route=route, status_code=response.status_code, latency_ms=latency_ms)
        logger.info(
            "request_complete method=%s path=%s status=%s latency_ms=%.2f",
            request.method,
            path,
            response.status_code,
            latency_ms,
        )
        return response
    except Exception:
        latency_ms = (time.perf_counter() - start) * 1000.0
        metrics.record(route=route, status_code=500, latency_ms=latency_ms)
        logger.exception(
            "request_failed method=%s path=%s latency_ms=%.2f",
            request.method,
            path,
            latency_ms,
        )
        raise
