"""
Модуль для экспорта метрик в формате Prometheus
Отслеживает HTTP-запросы, операции синхронизации и расчеты статистики
"""

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

# Метрики запросов
http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests in progress",
    ["method", "endpoint"],
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
)

# Метрики синхронизации
synced_data_writes_total = Counter(
    "synced_data_writes_total", "Total number of synced data writes", ["operation"]
)

sync_conflicts_ignored_total = Counter(
    "sync_conflicts_ignored_total", "Total number of stale writes discarded (last-writer-wins)"
)

realtime_events_published_total = Counter(
    "realtime_events_published_total", "Total number of realtime change events published", ["event_type"]
)

# Метрики бизнес-логики
stats_computed_total = Counter(
    "stats_computed_total", "Total number of statistics computations", ["kind"]
)

profiles_updated_total = Counter("profiles_updated_total", "Total number of profile updates")


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware для автоматического сбора метрик HTTP запросов
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        # Шаблон маршрута вместо фактического пути, чтобы id не раздували кардинальность
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
            duration = time.time() - start_time

            http_requests_total.labels(
                method=method, endpoint=endpoint, status_code=status_code
            ).inc()
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)

            if status_code >= 400:
                http_errors_total.labels(
                    method=method, endpoint=endpoint, status_code=status_code
                ).inc()

            return response

        finally:
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()


def metrics_endpoint() -> Response:
    """Экспорт метрик в формате Prometheus"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def track_synced_write(operation: str):
    """
    Отслеживание записи синхронизируемых данных

    Args:
        operation: create, update или delete
    """
    synced_data_writes_total.labels(operation=operation).inc()


def track_conflict_ignored():
    sync_conflicts_ignored_total.inc()


def track_realtime_published(event_type: str, recipients: int):
    if recipients:
        realtime_events_published_total.labels(event_type=event_type).inc(recipients)


def track_stats_computed(kind: str):
    """Отслеживание расчета статистики (daily, streaks, patterns, history)"""
    stats_computed_total.labels(kind=kind).inc()


def track_profile_updated():
    profiles_updated_total.inc()
