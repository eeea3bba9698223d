"""
Обработка ошибок HabitSync
- ApiError и обработчики в формате RFC 7807 Problem Details для HTTP API
- Таксономия ошибок синхронизации (NetworkError, NotFoundError, ConflictIgnored)
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Optional, Union

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from habitsync.config import ENVIRONMENT, USE_RFC7807_ERRORS

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Базовое исключение API с поддержкой RFC 7807"""

    def __init__(
        self,
        code: str,
        message: str,
        status: int = 400,
        detail: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status = status
        self.detail = detail or message
        self.correlation_id = correlation_id or str(uuid.uuid4())
        super().__init__(self.message)


# === Ошибки синхронизации ===


class SyncError(Exception):
    """Базовая ошибка операций синхронизации"""


class NetworkError(SyncError):
    """Удаленный вызов завершился ошибкой или по таймауту"""


class NotFoundError(SyncError):
    """Элемент с указанным id отсутствует в локальном зеркале"""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")


class DuplicateItemError(SyncError):
    """Элемент с таким id уже существует в удаленном хранилище"""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item already exists: {item_id}")


@dataclass(frozen=True)
class ConflictIgnored:
    """
    Отброшенная устаревшая запись (last-writer-wins)

    Не является ошибкой: фиксируется только в логе.
    """

    item_id: str
    incoming_last_modified: int
    current_last_modified: int
    source: str = "mirror"

    def __str__(self) -> str:
        return (
            f"stale write ignored for {self.item_id} ({self.source}): "
            f"incoming last_modified={self.incoming_last_modified} "
            f"< current last_modified={self.current_last_modified}"
        )


# Карта типов ошибок для RFC 7807
ERROR_TYPE_MAP = {
    "validation_error": {
        "type": "https://api.habitsync.dev/errors/validation",
        "title": "Validation Error",
        "description": "Входные данные не прошли валидацию",
    },
    "not_found": {
        "type": "https://api.habitsync.dev/errors/not-found",
        "title": "Resource Not Found",
        "description": "Запрошенный ресурс не найден",
    },
    "conflict": {
        "type": "https://api.habitsync.dev/errors/conflict",
        "title": "Resource Conflict",
        "description": "Конфликт при создании/обновлении ресурса",
    },
    "quota_exceeded": {
        "type": "https://api.habitsync.dev/errors/quota",
        "title": "Quota Exceeded",
        "description": "Превышена квота ресурсов",
    },
    "rate_limit": {
        "type": "https://api.habitsync.dev/errors/rate-limit",
        "title": "Rate Limit Exceeded",
        "description": "Превышен лимит запросов",
    },
    "internal_error": {
        "type": "https://api.habitsync.dev/errors/internal",
        "title": "Internal Server Error",
        "description": "Внутренняя ошибка сервера",
    },
    "unauthorized": {
        "type": "https://api.habitsync.dev/errors/unauthorized",
        "title": "Unauthorized",
        "description": "Требуется аутентификация",
    },
    "forbidden": {
        "type": "https://api.habitsync.dev/errors/forbidden",
        "title": "Forbidden",
        "description": "Недостаточно прав доступа",
    },
}


def create_error_response(
    request: Request,
    error_code: str,
    detail: str,
    status_code: int,
    correlation_id: Optional[str] = None,
    mask_sensitive: bool = True,
) -> JSONResponse:
    """
    Создание ответа об ошибке в формате RFC 7807

    Args:
        request: HTTP запрос
        error_code: Код ошибки из ERROR_TYPE_MAP
        detail: Детальное описание ошибки
        status_code: HTTP статус код
        correlation_id: ID для корреляции в логах
        mask_sensitive: Маскировать чувствительную информацию

    Returns:
        JSONResponse с телом в формате RFC 7807
    """
    correlation_id = correlation_id or str(uuid.uuid4())

    error_info = ERROR_TYPE_MAP.get(
        error_code,
        {
            "type": "https://api.habitsync.dev/errors/unknown",
            "title": "Unknown Error",
            "description": "Неизвестная ошибка",
        },
    )

    # Внутренние детали 5xx не раскрываем
    if mask_sensitive and status_code >= 500:
        detail = error_info["description"]

    problem_detail = {
        "type": error_info["type"],
        "title": error_info["title"],
        "status": status_code,
        "detail": detail,
        "instance": str(request.url.path),
        "correlation_id": correlation_id,
    }

    return JSONResponse(status_code=status_code, content=problem_detail)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Обработчик ApiError с поддержкой обоих форматов"""
    if USE_RFC7807_ERRORS:
        return create_error_response(
            request=request,
            error_code=exc.code,
            detail=exc.detail,
            status_code=exc.status,
            correlation_id=exc.correlation_id,
            mask_sensitive=True,
        )
    return JSONResponse(
        status_code=exc.status,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


async def validation_error_handler(
    request: Request, exc: Union[ValidationError, RequestValidationError]
) -> JSONResponse:
    """Обработчик ошибок валидации Pydantic и FastAPI"""
    correlation_id = str(uuid.uuid4())

    if USE_RFC7807_ERRORS:
        errors = []
        for error in exc.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            errors.append({"field": field, "message": error["msg"], "type": error["type"]})

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "type": ERROR_TYPE_MAP["validation_error"]["type"],
                "title": "Validation Error",
                "status": 422,
                "detail": "Request validation failed",
                "instance": str(request.url.path),
                "errors": errors,
                "correlation_id": correlation_id,
            },
        )

    first_error = exc.errors()[0]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": {"code": "validation_error", "message": first_error["msg"]}},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Обработчик неожиданных исключений

    Маскирует детали внутренних ошибок, логирует с correlation_id
    """
    correlation_id = str(uuid.uuid4())

    logger.error(
        "Unhandled exception: %s",
        mask_pii_in_logs(f"{type(exc).__name__}: {exc}"),
        extra={"correlation_id": correlation_id, "path": request.url.path},
    )

    if ENVIRONMENT == "production":
        detail = "Внутренняя ошибка сервера. Обратитесь к администратору."
    else:
        detail = f"Internal error: {type(exc).__name__}: {str(exc)}"

    return create_error_response(
        request=request,
        error_code="internal_error",
        detail=detail,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        correlation_id=correlation_id,
        mask_sensitive=True,
    )


def mask_pii_in_logs(data: str) -> str:
    """
    Маскирование PII в логах (email, телефоны, токены, ключи)

    Args:
        data: Строка для маскирования

    Returns:
        Строка с замаскированными данными
    """
    data = re.sub(
        r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b",
        "***@***.***",
        data,
    )
    data = re.sub(r"\b\+?\d{10,15}\b", "***PHONE***", data)
    data = re.sub(r"\b[A-Za-z0-9_-]{20,}\.[A-Za-z0-9_-]{20,}\b", "***TOKEN***", data)
    data = re.sub(r"\b[A-Za-z0-9]{32,}\b", "***API_KEY***", data)
    return data
