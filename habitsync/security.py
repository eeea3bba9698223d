"""
Middleware безопасности для HabitSync API
Ограничение частоты запросов, заголовки безопасности и квоты ресурсов
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from habitsync.config import MAX_SYNCED_ITEMS_PER_USER
from habitsync.errors import ApiError


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware для ограничения частоты запросов (защита от флуда)
    По умолчанию: максимум 100 запросов/минуту на IP адрес
    """

    def __init__(self, app, requests_per_minute: int = 100):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.requests: dict[str, list[datetime]] = defaultdict(list)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_ip = request.client.host if request.client else "unknown"

        # Health check получает в 10 раз больший лимит
        if request.url.path == "/health":
            limit = self.requests_per_minute * 10
        else:
            limit = self.requests_per_minute

        now = datetime.now()
        cutoff = now - timedelta(minutes=1)
        self.requests[client_ip] = [
            req_time for req_time in self.requests[client_ip] if req_time > cutoff
        ]

        if len(self.requests[client_ip]) >= limit:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "type": "https://api.habitsync.dev/errors/rate-limit",
                    "title": "Rate Limit Exceeded",
                    "status": 429,
                    "detail": f"Превышен лимит запросов. Максимум {limit} запросов в минуту.",
                    "instance": str(request.url.path),
                },
                headers={
                    "Retry-After": "60",
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        self.requests[client_ip].append(now)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(limit - len(self.requests[client_ip]))

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Добавление заголовков безопасности ко всем ответам"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'self'"

        return response


def validate_resource_quota(current_count: int, max_count: int, resource_type: str) -> None:
    """
    Валидация лимитов квот ресурсов

    Raises:
        ApiError: Если квота превышена
    """
    if current_count >= max_count:
        raise ApiError(
            code="quota_exceeded",
            message=f"Достигнут максимальный лимит {resource_type} ({max_count})",
            status=403,
        )


def validate_synced_items_quota(current_count: int) -> None:
    validate_resource_quota(current_count, MAX_SYNCED_ITEMS_PER_USER, "synced items")
